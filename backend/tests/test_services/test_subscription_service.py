"""
Unit tests for plan limits, activity rules, recommendations and the
subscription webhook handler
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from app.core.errors import SubscriptionLimitError, ValidationError
from app.domain.subscription import SubscriptionPlan, SubscriptionStatus, UNLIMITED_STORED
from app.services.subscription_service import (
    SubscriptionService, get_all_plans, is_subscription_active, recommend_plan, usage_percent,
)

NOW = datetime(2025, 11, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store_repo(sample_store):
    repo = Mock()
    repo.find_by_id.return_value = sample_store
    repo.update_subscription.side_effect = lambda store_id, fields: sample_store.model_copy(update=fields)
    return repo


class TestLimits:

    def test_free_plan_product_limit_reached(self, store_repo):
        store_repo.count_products.return_value = 10
        service = SubscriptionService(store_repo)

        result = service.can_create_product(1)

        assert result["allowed"] is False
        assert result["limit"] == 10
        with pytest.raises(SubscriptionLimitError):
            service.ensure_can_create_product(1)

    def test_under_limit_is_allowed(self, store_repo):
        store_repo.count_products.return_value = 9

        assert SubscriptionService(store_repo).can_create_product(1)["allowed"] is True

    def test_order_limit_counts_current_month(self, store_repo):
        store_repo.count_orders_since.return_value = 100

        result = SubscriptionService(store_repo).can_create_order(1)

        assert result["allowed"] is False
        since = store_repo.count_orders_since.call_args[0][1]
        assert since.day == 1 and since.hour == 0

    def test_enterprise_is_never_limited(self, store_repo, sample_store):
        sample_store.subscription_plan = SubscriptionPlan.ENTERPRISE

        assert SubscriptionService(store_repo).can_create_product(1) == {"allowed": True}
        store_repo.count_products.assert_not_called()

    def test_usage_percent(self):
        assert usage_percent(85, 100) == 85.0
        assert usage_percent(5, -1) == 0.0


class TestIsSubscriptionActive:

    def test_active(self, sample_store):
        assert is_subscription_active(sample_store, NOW) is True

    def test_trial_until_end(self, sample_store):
        sample_store.subscription_status = SubscriptionStatus.TRIAL
        sample_store.trial_ends_at = NOW + timedelta(days=1)
        assert is_subscription_active(sample_store, NOW) is True

        sample_store.trial_ends_at = NOW - timedelta(seconds=1)
        assert is_subscription_active(sample_store, NOW) is False

    def test_past_due_grace_period(self, sample_store):
        sample_store.subscription_status = SubscriptionStatus.PAST_DUE
        sample_store.past_due_since = NOW - timedelta(days=6)
        assert is_subscription_active(sample_store, NOW) is True

        sample_store.past_due_since = NOW - timedelta(days=8)
        assert is_subscription_active(sample_store, NOW) is False

    def test_canceled_until_period_end(self, sample_store):
        sample_store.subscription_status = SubscriptionStatus.CANCELED
        sample_store.subscription_ends_at = NOW + timedelta(days=3)
        assert is_subscription_active(sample_store, NOW) is True

        sample_store.subscription_ends_at = None
        assert is_subscription_active(sample_store, NOW) is False

    def test_paused_is_inactive(self, sample_store):
        sample_store.subscription_status = SubscriptionStatus.PAUSED
        assert is_subscription_active(sample_store, NOW) is False


class TestRecommendations:

    def test_high_urgency_upgrade(self):
        recommendation = recommend_plan("FREE", 95, 10)

        assert recommendation.type == "upgrade"
        assert recommendation.recommended_plan == "BASIC"
        assert recommendation.urgency == "high"

    def test_medium_urgency_upgrade_on_orders(self):
        recommendation = recommend_plan("BASIC", 10, 85)

        assert recommendation.recommended_plan == "PRO"
        assert recommendation.urgency == "medium"
        assert "order" in recommendation.reason

    def test_downgrade_when_underused(self):
        recommendation = recommend_plan("PRO", 5, 10)

        assert recommendation.type == "downgrade"
        assert recommendation.recommended_plan == "BASIC"
        assert recommendation.urgency == "low"

    def test_no_recommendation_in_normal_range(self):
        assert recommend_plan("BASIC", 50, 40) is None
        assert recommend_plan("FREE", 5, 5) is None

    def test_enterprise_has_no_upgrade(self):
        assert recommend_plan("ENTERPRISE", 0, 0).type == "downgrade"
        assert recommend_plan("ENTERPRISE", 95, 95) is None


class TestPlanChanges:

    def test_paid_plan_starts_trial(self, store_repo):
        store = SubscriptionService(store_repo).assign_plan(1, SubscriptionPlan.PRO)

        assert store.subscription_status == SubscriptionStatus.TRIAL
        assert store.trial_ends_at is not None
        assert store.product_limit == 1000

    def test_enterprise_stores_unlimited_sentinel(self, store_repo):
        store = SubscriptionService(store_repo).assign_plan(1, SubscriptionPlan.ENTERPRISE, status="ACTIVE")

        assert store.product_limit == UNLIMITED_STORED
        assert store.trial_ends_at is None

    def test_unknown_plan(self, store_repo):
        with pytest.raises(ValidationError):
            SubscriptionService(store_repo).assign_plan(1, "GOLD")

    def test_cancel_free_plan_is_rejected(self, store_repo):
        with pytest.raises(ValidationError):
            SubscriptionService(store_repo).cancel_subscription(1)

    def test_checkout_for_free_plan_is_rejected(self, store_repo):
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(SubscriptionService(store_repo).create_checkout_session(
                1, "FREE", "https://app.test/ok", "https://app.test/cancel", connector=AsyncMock()
            ))

        assert exc_info.value.code == "INVALID_PLAN"

    def test_checkout_for_current_plan_is_rejected(self, store_repo, sample_store):
        sample_store.subscription_plan = SubscriptionPlan.BASIC

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(SubscriptionService(store_repo).create_checkout_session(
                1, "BASIC", "https://app.test/ok", "https://app.test/cancel", connector=AsyncMock()
            ))

        assert exc_info.value.code == "ALREADY_SUBSCRIBED"

    def test_downgrade_expired_stores(self, store_repo, sample_store):
        expired = sample_store.model_copy(update={"subscription_plan": "PRO", "subscription_status": "TRIAL"})
        store_repo.find_downgrade_candidates.return_value = [expired]

        assert SubscriptionService(store_repo).downgrade_expired_stores(NOW) == 1
        fields = store_repo.update_subscription.call_args[0][1]
        assert fields["subscription_plan"] == "FREE"
        assert fields["subscription_status"] == "ACTIVE"


class TestStripeSubscriptionEvents:

    def _event(self, event_type, obj):
        return {"id": "evt_1", "type": event_type, "data": {"object": obj}}

    def test_subscription_deleted_moves_to_free(self, store_repo):
        event = self._event("customer.subscription.deleted",
                            {"object": "subscription", "id": "sub_1", "metadata": {"storeId": "1"}})

        assert SubscriptionService(store_repo).handle_stripe_event(event) == "downgraded"
        assert store_repo.update_subscription.call_args[0][1]["subscription_plan"] == "FREE"

    def test_invoice_failed_marks_past_due(self, store_repo):
        event = self._event("invoice.payment_failed", {"object": "invoice", "metadata": {"storeId": "1"}})

        assert SubscriptionService(store_repo).handle_stripe_event(event) == "past_due"
        fields = store_repo.update_subscription.call_args[0][1]
        assert fields["subscription_status"] == "PAST_DUE"
        assert fields["past_due_since"] is not None

    def test_unknown_store_is_ignored(self, store_repo):
        store_repo.find_by_id.return_value = None
        store_repo.find_by_stripe_subscription_id.return_value = None
        store_repo.find_by_stripe_customer_id.return_value = None
        event = self._event("invoice.payment_succeeded", {"object": "invoice", "customer": "cus_x"})

        assert SubscriptionService(store_repo).handle_stripe_event(event) is None
        store_repo.update_subscription.assert_not_called()


def test_all_plans_in_order():
    assert [plan["plan"] for plan in get_all_plans()] == ["FREE", "BASIC", "PRO", "ENTERPRISE"]

"""
Unit tests for UserStoreService store membership management
"""
from unittest.mock import Mock

import pytest

from app.core.errors import NotFoundError, ValidationError
from app.domain.store import Membership
from app.services.user_store_service import UserStoreService


def membership(role_id=2, is_active=True):
    return Membership(id=1, user_id=5, store_id=1, role_id=role_id, role_name="Staff",
                      permissions=["orders.view"], is_active=is_active)


@pytest.fixture
def service(sample_store):
    repo = Mock()
    repo.find_membership.return_value = None
    user_repo = Mock()
    store_repo = Mock()
    store_repo.find_by_id.return_value = sample_store
    return UserStoreService(repo=repo, user_repo=user_repo, store_repo=store_repo, audit=Mock())


class TestAdd:

    def test_adds_member(self, service):
        service.repo.find_membership.side_effect = [None, membership()]

        result = service.add(1, 5, 2)

        service.repo.create.assert_called_once_with(5, 1, 2)
        assert result.role_name == "Staff"

    def test_user_already_assigned(self, service):
        service.repo.find_membership.return_value = membership()

        with pytest.raises(ValidationError) as exc:
            service.add(1, 5, 2)

        assert exc.value.code == "USER_ALREADY_ASSIGNED"
        assert exc.value.details == {"userId": 5, "storeId": 1}
        service.repo.create.assert_not_called()

    def test_unknown_store(self, service):
        service.store_repo.find_by_id.return_value = None

        with pytest.raises(NotFoundError, match="Store"):
            service.add(1, 5, 2)

    def test_unknown_user(self, service):
        service.user_repo.find_by_id.return_value = None

        with pytest.raises(NotFoundError, match="User"):
            service.add(1, 5, 2)

    def test_unknown_role(self, service):
        service.user_repo.find_role_by_id.return_value = None

        with pytest.raises(NotFoundError, match="Role"):
            service.add(1, 5, 2)


class TestUpdateRole:

    def test_records_only_changed_fields(self, service):
        service.repo.find_membership.return_value = membership(role_id=2)

        service.update_role(1, 5, role_id=3, is_active=True)

        changes = service.audit.log.call_args[1]["changes"]
        assert changes == {"roleId": {"from": 2, "to": 3}}
        service.repo.update.assert_called_once_with(5, 1, role_id=3, is_active=True)

    def test_missing_membership(self, service):
        with pytest.raises(NotFoundError):
            service.update_role(1, 5, role_id=3)


class TestRemove:

    def test_missing_membership(self, service):
        service.repo.delete.return_value = False

        with pytest.raises(NotFoundError):
            service.remove(1, 5)

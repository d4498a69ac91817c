"""
Sliding window limiter and middleware
"""
from unittest.mock import Mock

from app.core.config import settings
from app.core.rate_limit import RateLimiter, rate_limit_key


def request(path, headers=None, host="10.0.0.1"):
    req = Mock()
    req.url.path = path
    req.headers = headers or {}
    req.client.host = host
    return req


class TestRateLimiter:

    def test_refuses_once_window_is_full(self):
        limiter = RateLimiter(window_seconds=60)

        decisions = [limiter.hit("ip:a", 3, now=100.0 + i) for i in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert decisions[2].remaining == 0
        assert decisions[3].retry_after == 61 - 3

    def test_window_slides(self):
        limiter = RateLimiter(window_seconds=60)
        limiter.hit("ip:a", 1, now=100.0)

        assert limiter.hit("ip:a", 1, now=159.0).allowed is False
        assert limiter.hit("ip:a", 1, now=160.5).allowed is True

    def test_keys_are_independent(self):
        limiter = RateLimiter()
        limiter.hit("ip:a", 1, now=1.0)

        assert limiter.hit("ip:b", 1, now=1.0).allowed is True


class TestRateLimitKey:

    def test_login_is_limited_per_ip(self):
        key, limit = rate_limit_key(request("/api/v1/auth/login", {"X-Forwarded-For": "1.2.3.4, 10.0.0.1"}))

        assert key == "login:1.2.3.4"
        assert limit == settings.RATE_LIMIT_LOGIN

    def test_checkout_has_its_own_bucket(self):
        key, limit = rate_limit_key(request("/api/v1/storefront/acme/checkout"))

        assert key == "checkout:10.0.0.1"
        assert limit == settings.RATE_LIMIT_CHECKOUT

    def test_bearer_token_bucket(self):
        key, limit = rate_limit_key(request("/api/v1/orders", {"Authorization": "Bearer abc"}))

        assert key.startswith("jwt:")
        assert limit == settings.RATE_LIMIT_AUTHENTICATED

    def test_anonymous_bucket(self):
        key, limit = rate_limit_key(request("/api/v1/storefront/acme/products"))

        assert key == "ip:10.0.0.1"
        assert limit == settings.RATE_LIMIT_ANONYMOUS


def test_middleware_returns_429(client, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ANONYMOUS", 1)

    client.get("/api/v1/storefront/acme/categories-missing/x/y")
    response = client.get("/api/v1/storefront/acme/categories-missing/x/y")

    assert response.status_code == 429
    assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
    assert response.headers["Retry-After"]

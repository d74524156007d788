"""
Unit tests for the proxy rate limiters.
"""

import hashlib
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from service_veo_proxy.app.main import VeoProxyService
from service_veo_proxy.app.ratelimit.fixed_window import (
    MemoryRateLimiter,
    RateLimitMiddleware,
    RedisRateLimiter,
    build_rate_limiter,
)

from conftest import API_KEY, UpstreamStub


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMemoryRateLimiter:
    """Test cases for MemoryRateLimiter."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        limiter = MemoryRateLimiter(limit=2, clock=FakeClock(60.0))

        first = await limiter.check_rate_limit("ip:1.2.3.4")
        second = await limiter.check_rate_limit("ip:1.2.3.4")
        third = await limiter.check_rate_limit("ip:1.2.3.4")

        assert first["allowed"] is True
        assert first["remaining"] == 1
        assert second["allowed"] is True
        assert second["remaining"] == 0
        assert third["allowed"] is False
        assert third["current_count"] == 3

    @pytest.mark.asyncio
    async def test_clients_counted_separately(self):
        limiter = MemoryRateLimiter(limit=1, clock=FakeClock())

        assert (await limiter.check_rate_limit("ip:a"))["allowed"] is True
        assert (await limiter.check_rate_limit("ip:b"))["allowed"] is True
        assert (await limiter.check_rate_limit("ip:a"))["allowed"] is False

    @pytest.mark.asyncio
    async def test_window_rollover(self):
        clock = FakeClock(120.0)
        limiter = MemoryRateLimiter(limit=1, clock=clock)

        await limiter.check_rate_limit("ip:a")
        assert (await limiter.check_rate_limit("ip:a"))["allowed"] is False

        clock.now = 180.0
        result = await limiter.check_rate_limit("ip:a")
        assert result["allowed"] is True
        assert result["current_count"] == 1

    @pytest.mark.asyncio
    async def test_reset_seconds(self):
        limiter = MemoryRateLimiter(limit=5, clock=FakeClock(130.0))
        result = await limiter.check_rate_limit("ip:a")
        assert result["reset_in_seconds"] == 50


class TestRedisRateLimiter:
    """Test cases for RedisRateLimiter."""

    @pytest.fixture
    def rate_limiter(self):
        """Create RedisRateLimiter instance."""
        return RedisRateLimiter("redis://localhost:6379/0", limit=3, clock=FakeClock(125.0))

    def _mock_redis(self, count):
        pipeline = MagicMock()
        pipeline.execute = AsyncMock(return_value=[count, True])
        redis_client = MagicMock()
        redis_client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipeline)
        redis_client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        return redis_client, pipeline

    @pytest.mark.asyncio
    async def test_check_rate_limit_allowed(self, rate_limiter):
        redis_client, pipeline = self._mock_redis(2)

        with patch.object(rate_limiter, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_get_redis.return_value = redis_client
            result = await rate_limiter.check_rate_limit("key:abc")

        assert result["allowed"] is True
        assert result["remaining"] == 1
        assert result["reset_in_seconds"] == 55
        pipeline.incr.assert_called_once_with("rate_limit:key:abc:2")
        pipeline.expire.assert_called_once_with("rate_limit:key:abc:2", 60)

    @pytest.mark.asyncio
    async def test_check_rate_limit_exceeded(self, rate_limiter):
        redis_client, _ = self._mock_redis(4)

        with patch.object(rate_limiter, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_get_redis.return_value = redis_client
            result = await rate_limiter.check_rate_limit("key:abc")

        assert result["allowed"] is False
        assert result["current_count"] == 4

    @pytest.mark.asyncio
    async def test_redis_unavailable_fails_open(self, rate_limiter):
        with patch.object(rate_limiter, "_get_redis", new_callable=AsyncMock) as mock_get_redis:
            mock_get_redis.side_effect = ConnectionError("redis down")
            result = await rate_limiter.check_rate_limit("key:abc")

        assert result["allowed"] is True
        assert result["error"] == "Redis unavailable"


def test_build_rate_limiter():
    assert isinstance(build_rate_limiter(10), MemoryRateLimiter)
    assert isinstance(build_rate_limiter(10, "redis://localhost:6379/0"), RedisRateLimiter)


class TestClientIdentity:
    """Client keys used for counting."""

    @pytest.fixture
    def middleware(self):
        return RateLimitMiddleware(MemoryRateLimiter(limit=10))

    def _request(self, headers=None, host="10.0.0.1"):
        request = MagicMock()
        request.headers = headers or {}
        request.client.host = host
        return request

    def test_api_key_is_hashed(self, middleware):
        client_id = middleware._get_client_id(self._request({"x-api-key": "s3cret"}))
        assert client_id == "key:" + hashlib.sha256(b"s3cret").hexdigest()
        assert "s3cret" not in client_id

    def test_blank_api_key_falls_back_to_ip(self, middleware):
        assert middleware._get_client_id(self._request({"x-api-key": "  "})) == "ip:10.0.0.1"

    def test_forwarded_for(self, middleware):
        request = self._request({"X-Forwarded-For": "203.0.113.9, 10.0.0.2"})
        assert middleware._get_client_id(request) == "ip:203.0.113.9"

    def test_real_ip(self, middleware):
        assert middleware._get_client_id(self._request({"X-Real-IP": "198.51.100.7"})) == "ip:198.51.100.7"


class TestRateLimitedService:
    """Rate limiting wired into the service."""

    @pytest.fixture
    def limited_client(self, proxy_config):
        config = proxy_config.model_copy(update={"rate_limit_per_minute": 2})
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(
            UpstreamStub(httpx.Response(200, json={"ok": True}))
        ))
        service = VeoProxyService(config, http_client=http_client)
        return TestClient(service.app), service

    def test_excess_requests_rejected_before_auth(self, limited_client):
        """Over-quota callers get 429 even with a wrong key."""
        client, service = limited_client
        headers = {"x-api-key": "wrong"}

        assert client.post("/veo/generate", headers=headers).status_code == 401
        assert client.post("/veo/generate", headers=headers).status_code == 401

        with patch.object(service.vertex_client, "predict", new_callable=AsyncMock) as predict:
            response = client.post("/veo/generate", headers=headers)

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Too many requests"
        assert body["message"].startswith("Rate limit exceeded")
        assert "Retry-After" in response.headers
        assert response.headers["X-RateLimit-Limit"] == "2"
        predict.assert_not_called()
        assert service.metrics.get_sample(
            "rate_limit_hits_total", {"endpoint": "/veo/generate"}
        ) == 1.0

    def test_keys_counted_independently(self, limited_client):
        client, _ = limited_client

        for _ in range(2):
            assert client.get("/health", headers={"x-api-key": API_KEY}).status_code == 200

        assert client.get("/health", headers={"x-api-key": API_KEY}).status_code == 429
        assert client.get("/health", headers={"x-api-key": "other"}).status_code == 200

    def test_rate_limit_headers(self, limited_client):
        client, _ = limited_client
        response = client.get("/health")
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_rejections_on_unknown_paths_share_one_label(self, limited_client):
        client, service = limited_client

        for index in range(4):
            client.get(f"/scan/{index}")

        assert service.metrics.get_sample(
            "rate_limit_hits_total", {"endpoint": "__unmatched__"}
        ) == 2.0
        assert service.metrics.get_sample("rate_limit_hits_total", {"endpoint": "/scan/3"}) is None

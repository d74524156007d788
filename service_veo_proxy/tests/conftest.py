"""
Shared fixtures for Veo proxy tests.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from shared.config import ProxyConfig
from shared.retry import RetryConfig
from service_veo_proxy.app.main import VeoProxyService

API_KEY = "local-proxy-secret"
BEARER = "Bearer ya29.caller-token"


class UpstreamStub:
    """Scripted upstream: each call pops the next handler result."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        action = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if callable(action):
            return await action(request)
        if isinstance(action, Exception):
            raise action
        return action

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def proxy_config():
    """Proxy configuration with a short per-call timeout."""
    return ProxyConfig(
        _env_file=None,
        proxy_api_key=API_KEY,
        gcp_project_id="demo-project",
        gcp_location="us-central1",
        veo_model_id="veo-2.0-generate-001",
        request_timeout_ms=100,
        rate_limit_per_minute=1000,
    )


@pytest.fixture
def upstream():
    """Default upstream answering 200 with a JSON prediction."""
    return UpstreamStub(httpx.Response(200, json={"predictions": [{"ok": True}]}))


@pytest.fixture
def service(proxy_config, upstream):
    """VeoProxyService wired to the scripted upstream, with no retry delay."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    svc = VeoProxyService(proxy_config, http_client=http_client)
    svc.vertex_client.retry_config = RetryConfig(retries=1, min_delay=0.0, max_delay=0.0)
    return svc


@pytest.fixture
def client(service):
    """Create test client."""
    return TestClient(service.app)


@pytest.fixture
def auth_headers():
    """Headers that pass every gateway check."""
    return {
        "x-api-key": API_KEY,
        "Authorization": BEARER,
        "Content-Type": "application/json",
    }

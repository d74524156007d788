"""
Veo proxy service.

Authenticates callers with a local API key, forwards JSON bodies to the
Vertex AI predict endpoint with the caller's bearer credential, and relays
the upstream response.
"""

import hmac
import sys
from typing import Any, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ProxyConfig, load_config
from shared.errors import (
    BadGatewayError,
    BadRequestError,
    ConfigurationError,
    PayloadTooLargeError,
    ProxyError,
    UnauthorizedError,
)
from service_veo_proxy.app.adapters.vertex_client import (
    VertexCallResult,
    VertexClient,
    VertexFailure,
    VertexOutcome,
    strict_json_loads,
)
from service_veo_proxy.app.ratelimit.fixed_window import (
    API_KEY_HEADER,
    RateLimitMiddleware,
    build_rate_limiter,
)

DEFAULT_JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class VeoProxyService(BaseService):
    """Veo proxy service implementation."""

    def __init__(self, config: ProxyConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.rate_limiter = build_rate_limiter(config.rate_limit_per_minute, config.redis_url)
        self.rate_limit_middleware = RateLimitMiddleware(self.rate_limiter)
        super().__init__("veo_proxy", config)
        self.rate_limit_middleware.metrics = self.metrics
        self.vertex_client = VertexClient(
            project_id=config.gcp_project_id,
            location=config.gcp_location,
            model_id=config.veo_model_id,
            timeout_seconds=config.request_timeout_seconds,
            http_client=http_client,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.vertex_client.close()
            await self.rate_limiter.close()

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.veo_proxy_service = self

    def _setup_middleware(self):
        """Rate limiting sits inside the access log but ahead of routing."""
        self.app.middleware("http")(self.rate_limit_middleware)
        super()._setup_middleware()

    def _authenticate(self, request: Request) -> str:
        """Validate the local API key and return the forwarded Authorization header."""
        api_key = request.headers.get(API_KEY_HEADER)
        if api_key is None or not hmac.compare_digest(
            api_key.encode("utf-8"), self.config.proxy_api_key.encode("utf-8")
        ):
            raise UnauthorizedError()

        auth_header = request.headers.get("authorization")
        if auth_header is None or not auth_header.lower().startswith("bearer "):
            raise BadRequestError("Missing Authorization bearer token")

        return auth_header

    async def _read_json_body(self, request: Request) -> Any:
        """Parse the request body, distinguishing "absent" from JSON null."""
        content_type = request.headers.get("content-type")
        if content_type is None or "application/json" not in content_type.lower():
            raise BadRequestError("Content-Type must be application/json")

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.config.body_limit_bytes:
            raise PayloadTooLargeError()

        raw = await request.body()
        if len(raw) > self.config.body_limit_bytes:
            raise PayloadTooLargeError()
        if not raw.strip():
            raise BadRequestError("Body must be JSON")

        try:
            return strict_json_loads(raw)
        except ValueError:
            raise BadRequestError("Body must be JSON") from None

    def _render_outcome(self, outcome: VertexOutcome) -> Response:
        """Map an upstream outcome to the caller-facing response."""
        if isinstance(outcome, VertexCallResult):
            if outcome.is_json:
                return JSONResponse(
                    status_code=outcome.status,
                    content=outcome.body,
                    media_type=outcome.content_type or DEFAULT_JSON_CONTENT_TYPE,
                )
            return Response(
                status_code=outcome.status,
                content=outcome.body or "",
                media_type=outcome.content_type,
            )

        if isinstance(outcome, VertexFailure):
            self.logger.error("Vertex request failed", error=outcome.message)
            raise BadGatewayError()

        raise TypeError(f"Unhandled upstream outcome: {type(outcome).__name__}")

    def _setup_proxy_routes(self):
        """Set up proxy routes."""

        @self.app.post("/veo/generate")
        async def generate(request: Request):
            """Forward a Veo predict request to Vertex AI."""
            auth_header = self._authenticate(request)
            body = await self._read_json_body(request)

            try:
                outcome = await self.vertex_client.predict(auth_header, body)
                return self._render_outcome(outcome)
            except ProxyError:
                raise
            except Exception as e:
                self.logger.error("Unexpected failure", error_type=type(e).__name__, error=str(e))
                self.metrics.record_error(type(e).__name__)
                return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(config: Optional[ProxyConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
    """Create FastAPI application."""
    service = VeoProxyService(config or load_config(), http_client=http_client)
    return service.app


def main():
    """Console entry point: validate configuration, then serve."""
    try:
        config = load_config()
    except ConfigurationError as e:
        sys.stderr.write("Configuration validation failed\n")
        for message in e.messages:
            sys.stderr.write(f"  {message}\n")
        sys.exit(1)

    service = VeoProxyService(config)
    service.logger.info("Starting proxy", host=config.host, port=config.port)
    service.run()


if __name__ == "__main__":
    main()

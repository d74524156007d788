"""
Vertex AI predict client for the Veo proxy.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, with_retry

# Fixed retry budget: one retry, two attempts in total
MAX_RETRIES = 1
RETRY_MIN_DELAY = 0.5
RETRY_MAX_DELAY = 1.5


@dataclass(frozen=True)
class VertexCallResult:
    """A completed upstream HTTP exchange, relayed to the caller as-is."""

    status: int
    is_json: bool
    body: Any
    content_type: Optional[str] = None


@dataclass(frozen=True)
class VertexFailure:
    """No HTTP response was obtained from upstream."""

    message: str
    retryable: bool = False


VertexOutcome = Union[VertexCallResult, VertexFailure]


class RetryableResponse(Exception):
    """Upstream answered with 429/5xx while retry budget remains."""

    def __init__(self, result: VertexCallResult):
        super().__init__(f"Retryable Vertex response: {result.status}")
        self.result = result


class VertexTransportError(Exception):
    """Network failure or timeout before a response arrived."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


def build_vertex_endpoint(location: str, project_id: str, model_id: str) -> str:
    """Build the regional predict URL for a publisher model."""
    return (
        f"https://{location}-aiplatform.googleapis.com/v1/projects/{project_id}"
        f"/locations/{location}/publishers/google/models/{model_id}:predict"
    )


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def _reject_constant(name: str):
    raise ValueError(f"Invalid JSON constant: {name}")


def strict_json_loads(text: Any) -> Any:
    """Parse standard JSON only; NaN and Infinity are rejected."""
    return json.loads(text, parse_constant=_reject_constant)


def parse_response_body(raw_text: str, content_type: Optional[str]) -> Tuple[bool, Any]:
    """Decode a JSON body when declared; otherwise keep the raw text.

    Returns ``(is_json, body)``. Unparsable JSON falls back to the raw text.
    """
    if content_type and "application/json" in content_type.lower() and raw_text:
        try:
            return True, strict_json_loads(raw_text)
        except ValueError:
            pass
    return False, raw_text


def _should_retry(error: BaseException, attempt: int) -> bool:
    if isinstance(error, RetryableResponse):
        return True
    return isinstance(error, VertexTransportError) and error.retryable


class VertexClient:
    """Client for forwarding predict requests to Vertex AI."""

    def __init__(self,
                 project_id: str,
                 location: str,
                 model_id: str,
                 timeout_seconds: float,
                 http_client: Optional[httpx.AsyncClient] = None,
                 retry_config: Optional[RetryConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.endpoint = build_vertex_endpoint(location, project_id, model_id)
        self.timeout_seconds = timeout_seconds
        self.retry_config = retry_config or RetryConfig(
            retries=MAX_RETRIES,
            min_delay=RETRY_MIN_DELAY,
            max_delay=RETRY_MAX_DELAY,
        )
        self.metrics = metrics
        self.logger = get_logger("veo_proxy.vertex_client")
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get the shared HTTP client."""
        if self._client is None:
            # Per-attempt deadline is enforced by asyncio.wait_for
            self._client = httpx.AsyncClient(timeout=None)
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _record(self, outcome: str):
        if self.metrics is not None:
            self.metrics.record_upstream_attempt(outcome)

    async def _send(self, auth_header: str, payload: bytes) -> VertexCallResult:
        client = await self._get_client()
        response = await client.post(
            self.endpoint,
            content=payload,
            headers={
                "Authorization": auth_header,
                "Content-Type": "application/json",
            },
        )
        content_type = response.headers.get("content-type")
        raw_text = response.text
        is_json, body = parse_response_body(raw_text, content_type)
        return VertexCallResult(
            status=response.status_code,
            is_json=is_json,
            body=body,
            content_type=content_type,
        )

    async def predict(self, auth_header: str, body: Any) -> VertexOutcome:
        """Forward ``body`` to the predict endpoint with bounded retry.

        Upstream HTTP responses, including 429/5xx after the last retry, come
        back as VertexCallResult. VertexFailure means no response was ever
        obtained.
        """
        payload = json.dumps(body).encode("utf-8")

        async def _attempt(attempt: int) -> VertexCallResult:
            try:
                result = await asyncio.wait_for(
                    self._send(auth_header, payload),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                self._record("timeout")
                self.logger.warning("Vertex request timed out", attempt=attempt)
                raise VertexTransportError("Request to Vertex AI timed out") from None
            except httpx.HTTPError as e:
                self._record("transport_error")
                self.logger.warning(
                    "Vertex transport error",
                    attempt=attempt,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise VertexTransportError(str(e) or type(e).__name__) from e
            except Exception as e:
                # Anything else raised while sending still means no response
                self._record("transport_error")
                self.logger.warning(
                    "Vertex request error",
                    attempt=attempt,
                    error_type=type(e).__name__,
                )
                raise VertexTransportError(type(e).__name__) from e

            if is_retryable_status(result.status) and attempt <= self.retry_config.retries:
                self._record("retryable_response")
                self.logger.warning(
                    "Retryable Vertex response",
                    attempt=attempt,
                    status_code=result.status,
                )
                raise RetryableResponse(result)

            self._record("response")
            return result

        try:
            return await with_retry(
                _attempt,
                self.retry_config,
                should_retry=_should_retry,
                name="vertex_predict",
            )
        except RetryableResponse as e:
            return e.result
        except VertexTransportError as e:
            self.logger.error(
                "Vertex request failed",
                error=str(e),
                attempts=self.retry_config.max_attempts,
            )
            return VertexFailure(message=str(e))

"""
Shared configuration management for the Veo proxy.
"""

from typing import List, Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError


LogLevel = Literal["fatal", "error", "warn", "info", "debug", "trace", "silent"]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    log_level: LogLevel = Field(default="info")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, gt=0)


class ProxyConfig(BaseConfig):
    """Settings for the Veo proxy service.

    Built once at startup and shared read-only by every request.
    """

    # Local access control
    proxy_api_key: str = Field(..., min_length=1)

    # Vertex AI target
    gcp_project_id: str = Field(..., min_length=1)
    gcp_location: str = Field(..., min_length=1)
    veo_model_id: str = Field(..., min_length=1)
    request_timeout_ms: int = Field(default=60000, gt=0)

    # Rate limiting
    rate_limit_per_minute: int = Field(default=30, gt=0)
    redis_url: Optional[str] = Field(default=None)

    body_limit_bytes: int = Field(default=20 * 1024 * 1024, gt=0)

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0


def _describe_errors(exc: ValidationError) -> List[str]:
    """Render validation errors without echoing input values."""
    messages = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error.get("loc", ())) or "config"
        messages.append(f"{path.upper()}: {error.get('msg', 'invalid value')}")
    return messages


def load_config(**overrides) -> ProxyConfig:
    """Load proxy configuration from the environment.

    Raises ConfigurationError with one message per invalid field.
    """
    try:
        return ProxyConfig(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(_describe_errors(exc)) from None

"""Application settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. Environment variables (ESODM_ prefix)
  2. YAML config file (if specified)
  3. Default values
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


class BackendSettings(BaseModel):
    """Document store connection configuration."""

    hosts: list[str] = Field(default_factory=lambda: ["http://localhost:9200"], description="Backend node URLs")
    username: str | None = Field(default=None, description="HTTP basic-auth username")
    password: str | None = Field(default=None, description="HTTP basic-auth password")
    api_key: str | None = Field(default=None, description="API key authentication")
    verify_certs: bool = Field(default=True, description="Verify TLS certificates")
    request_timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    pit_keep_alive_seconds: int = Field(default=60, gt=0, description="Point-in-Time keep alive in seconds")
    max_bulk_bytes: int | None = Field(
        default=None,
        gt=0,
        description="Serialized bulk payload ceiling; larger payloads are split before sending",
    )

    @field_validator("hosts", mode="before")
    @classmethod
    def _parse_hosts(cls, v: Any) -> list[str]:
        """Parse hosts from JSON string (env var) or list."""
        if isinstance(v, str):
            import json

            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(h) for h in parsed]
            except (json.JSONDecodeError, TypeError):
                pass
            # Single host as plain string
            return [v] if v else []
        return list(v)


class RetryPolicy(BaseModel):
    """Retry and paging limits handed explicitly to every ``Action``.

    ``bulk_size`` is the default page size used while walking a cursor.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=5, ge=0, description="Retries allowed after a 429 response")
    base: float = Field(default=2.0, gt=0, description="Exponential backoff base")
    page_limit: int = Field(default=10000, gt=0, description="Deepest from+size served without a cursor")
    bulk_size: int = Field(default=1000, gt=0, description="Page size while walking a cursor")


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root settings.

    Configuration is loaded from environment variables with the ESODM_ prefix.
    Nested settings use double underscores: ESODM_RETRY__MAX_RETRIES=3

    Example:
        ESODM_BACKEND__HOSTS='["http://es-1:9200", "http://es-2:9200"]'
        ESODM_RETRY__PAGE_LIMIT=10000
        ESODM_OBSERVABILITY__LOG_FORMAT=console
    """

    model_config = {
        "env_prefix": "ESODM_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    debug: bool = Field(default=False, description="Debug logging unless --log-level is given")

    backend: BackendSettings = Field(default_factory=BackendSettings)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML configuration file.

        Values from the YAML file are used as defaults; environment variables
        still take precedence.

        Args:
            path: Path to the YAML config file.

        Returns:
            Populated Settings instance.
        """
        import yaml  # type: ignore[import-untyped]

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

"""Application settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. Environment variables (SEARCHSYNC_ prefix)
  2. YAML config file (if specified)
  3. Default values
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

_DEFAULT_PORTS = {"opensearch": 9200, "meilisearch": 7700}


class ServerSettings(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=1, description="Number of worker processes")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")


class HighlightSettings(BaseModel):
    """Highlight markup returned with search hits."""

    pre_tag: str = Field(default="<mark>", description="Markup inserted before a match")
    post_tag: str = Field(default="</mark>", description="Markup inserted after a match")
    fragment_size: int = Field(default=150, ge=1, description="Approximate fragment length in characters")
    number_of_fragments: int = Field(default=3, ge=1, description="Maximum fragments per field")


class SearchSettings(BaseModel):
    """Search backend connection.

    ``port`` defaults to the provider's conventional port when omitted.
    """

    provider: Literal["opensearch", "meilisearch", "memory"] = Field(
        default="opensearch", description="Search backend to use"
    )
    host: str = Field(default="localhost", description="Backend host name")
    port: int | None = Field(default=None, description="Backend port")
    ssl: bool = Field(default=False, description="Use HTTPS")
    username: str | None = Field(default=None, description="Basic auth username")
    password: str | None = Field(default=None, description="Basic auth password")
    api_key: str | None = Field(default=None, description="API key (MeiliSearch master key or OpenSearch API key)")
    verify_certs: bool = Field(default=True, description="Verify TLS certificates")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    index_prefix: str | None = Field(default=None, description="Prefix prepended to every index name")
    index_name: str = Field(default="documents", description="Logical name of the search index")
    refresh: bool = Field(default=False, description="Refresh after each write (OpenSearch only)")
    task_timeout: float = Field(default=30.0, gt=0, description="MeiliSearch task wait timeout in seconds")
    task_poll_interval: float = Field(default=0.1, gt=0, description="MeiliSearch task poll interval in seconds")
    highlight: HighlightSettings = Field(default_factory=HighlightSettings)

    @model_validator(mode="after")
    def _default_port(self) -> SearchSettings:
        if self.port is None:
            self.port = _DEFAULT_PORTS.get(self.provider)
        return self

    @property
    def base_url(self) -> str:
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self.host}:{self.port}" if self.port else f"{scheme}://{self.host}"


class SyncSettings(BaseModel):
    """Index synchronization behaviour."""

    realtime: bool = Field(default=True, description="Apply changes immediately instead of queueing them")
    batch_size: int = Field(default=100, ge=1, description="Events processed per queue drain and bulk chunk")
    max_retries: int = Field(default=3, ge=0, description="Failed attempts before an entry is pinned failed")
    retry_interval: float = Field(default=5.0, gt=0, description="Base retry delay in seconds, doubled per attempt")
    max_queue_size: int = Field(default=10_000, ge=1, description="Pending events kept before the oldest is evicted")
    drain_interval: float = Field(default=5.0, gt=0, description="Seconds between background queue drains")


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root application settings.

    Configuration is loaded from environment variables with the SEARCHSYNC_ prefix.
    Nested settings use double underscores: SEARCHSYNC_SERVER__PORT=9090

    Example:
        SEARCHSYNC_SEARCH__PROVIDER=meilisearch
        SEARCHSYNC_SEARCH__API_KEY=masterKey
        SEARCHSYNC_SYNC__REALTIME=false
    """

    model_config = {
        "env_prefix": "SEARCHSYNC_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    app_name: str = Field(default="SearchSync", description="Application name")
    version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")

    server: ServerSettings = Field(default_factory=ServerSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
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

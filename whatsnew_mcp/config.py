"""Centralized configuration using Pydantic BaseSettings"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration with environment variable support"""

    # Storage
    db_path: str = Field(default="./data/whatsnew.db", description="SQLite database file path")
    sources_config_path: str = Field(
        default="sources.yaml", description="Path to the YAML file listing source repositories"
    )

    # GitHub API
    github_token: str | None = Field(
        default=None, description="GitHub token (falls back to the GITHUB_TOKEN env var)"
    )
    github_api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    github_raw_url: str = Field(
        default="https://raw.githubusercontent.com", description="Raw content base URL"
    )
    github_web_url: str = Field(default="https://github.com", description="Browsable base URL")
    http_timeout_seconds: float = Field(
        default=30.0, ge=1.0, le=300.0, description="HTTP timeout in seconds"
    )
    max_attempts: int = Field(
        default=3, ge=1, le=10, description="Total attempts per remote call (first try included)"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Linear retry delay unit (attempt x base)"
    )
    rate_limit_low_water: int = Field(
        default=10, ge=0, description="Warn when X-RateLimit-Remaining drops below this"
    )

    # Per call-site concurrency ceilings
    probe_concurrency: int = Field(default=4, ge=1, le=32, description="Tip-revision probes")
    tree_concurrency: int = Field(default=4, ge=1, le=32, description="Tree listings")
    file_concurrency: int = Field(default=5, ge=1, le=32, description="Raw document fetches")
    commit_concurrency: int = Field(default=4, ge=1, le=32, description="Commit history calls")

    # Sync policy
    min_sync_interval_hours: float = Field(
        default=1.0, ge=0.0, description="Skip unforced syncs younger than this"
    )
    max_files_per_sync: int = Field(
        default=500, ge=1, description="Cap on documents fetched in a single run"
    )
    recent_change_window_days: int = Field(
        default=7, ge=1, description="Commit window used to refresh last-change dates"
    )
    recent_commit_detail_limit: int = Field(
        default=10, ge=0, description="Commit details fetched per source per run"
    )
    first_observed_backfill_limit: int = Field(
        default=10, ge=0, description="First-observed lookups per run"
    )
    last_change_lookup_limit: int = Field(
        default=100, ge=0, description="Per-document last-change lookups per run"
    )
    commit_page_size: int = Field(default=100, ge=1, le=100, description="Commits per page")
    new_document_threshold_days: int = Field(
        default=30, ge=0, description="Max gap between first-observed and last change for 'new'"
    )

    # Background refresh
    refresh_enabled: bool = Field(default=False, description="Enable scheduled background sync")
    refresh_interval_hours: int = Field(
        default=6, ge=1, le=168, description="Background sync interval in hours"
    )

    # MCP Server
    mcp_host: str = Field(default="0.0.0.0", description="MCP server bind address")
    mcp_port: int = Field(default=8080, ge=1024, le=65535, description="MCP server port")

    # OpenTelemetry
    otel_logging_enabled: bool = Field(default=False, description="Export tool-call logs")
    otel_tracing_enabled: bool = Field(default=False, description="Trace outbound HTTP requests")
    otel_endpoint: str = Field(
        default="http://localhost:4318",
        description="OpenTelemetry collector endpoint (HTTP/protobuf)",
    )
    otel_service_name: str = Field(
        default="whatsnew-doc-mcp", description="Service name for OpenTelemetry"
    )
    otel_service_version: str = Field(
        default="0.1.0", description="Service version for OpenTelemetry"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


# Global config instance
config = AppConfig()

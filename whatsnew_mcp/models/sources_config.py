"""Models for sources configuration (sources.yaml) and sync settings"""

from pydantic import BaseModel, Field

from whatsnew_mcp.config import AppConfig


class SourceRepository(BaseModel):
    """A statically configured GitHub repository scanned for what's-new documents"""

    model_config = {"frozen": True}

    name: str | None = Field(default=None, description="Human-readable name for this source")
    owner: str = Field(min_length=1, description="GitHub repository owner (username or org)")
    repo: str = Field(min_length=1, description="GitHub repository name")
    branch: str = Field(default="main", min_length=1, description="Branch to track")
    base_path: str = Field(
        default="", description="Only files under this path prefix are considered"
    )
    enabled: bool = Field(default=True, description="Whether this source is enabled")

    @property
    def key(self) -> str:
        """Repository key used for revision tracking (owner/repo)"""
        return f"{self.owner}/{self.repo}"


class GitHubConfig(BaseModel):
    """Configuration for GitHub API access"""

    token: str | None = Field(
        default=None, description="GitHub personal access token (or use GITHUB_TOKEN env var)"
    )
    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    raw_url: str = Field(
        default="https://raw.githubusercontent.com", description="Raw content base URL"
    )
    web_url: str = Field(default="https://github.com", description="Browsable base URL")

    @classmethod
    def from_app_config(cls, app_config: AppConfig) -> "GitHubConfig":
        return cls(
            token=app_config.github_token,
            api_url=app_config.github_api_url,
            raw_url=app_config.github_raw_url,
            web_url=app_config.github_web_url,
        )


class SyncSettings(BaseModel):
    """Tunables for one sync run, validated once at the boundary"""

    http_timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    rate_limit_low_water: int = Field(default=10, ge=0)

    probe_concurrency: int = Field(default=4, ge=1)
    tree_concurrency: int = Field(default=4, ge=1)
    file_concurrency: int = Field(default=5, ge=1)
    commit_concurrency: int = Field(default=4, ge=1)

    min_sync_interval_hours: float = Field(default=1.0, ge=0.0)
    max_files_per_sync: int = Field(default=500, ge=1)
    recent_change_window_days: int = Field(default=7, ge=1)
    recent_commit_detail_limit: int = Field(default=10, ge=0)
    first_observed_backfill_limit: int = Field(default=10, ge=0)
    last_change_lookup_limit: int = Field(default=100, ge=0)
    commit_page_size: int = Field(default=100, ge=1, le=100)

    @classmethod
    def from_app_config(cls, app_config: AppConfig) -> "SyncSettings":
        """Project the sync-related fields out of the application config"""
        return cls(**{name: getattr(app_config, name) for name in cls.model_fields})


class SourcesConfig(BaseModel):
    """Complete sources configuration"""

    sources: list[SourceRepository] = Field(default_factory=list)
    products: dict[str, str] | None = Field(
        default=None,
        description="Path keyword -> product label table (None = built-in table)",
    )
    default_product: str | None = Field(
        default=None, description="Label used when no keyword matches (None = built-in default)"
    )

    def get_enabled_sources(self) -> list[SourceRepository]:
        """Get all enabled source repositories"""
        return [source for source in self.sources if source.enabled]

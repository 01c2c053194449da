from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PLAN_INTERVALS = {"free": 48, "basic": 24, "business": 24}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "linkedin-signal-monitor"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "SIGNAL_MONITOR_ENVIRONMENT"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "SIGNAL_MONITOR_LOG_LEVEL"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/signal_monitor",
        validation_alias=AliasChoices("DATABASE_URL", "SIGNAL_MONITOR_DATABASE_URL"),
    )

    apify_token: str | None = Field(default=None, validation_alias=AliasChoices("APIFY_TOKEN", "SIGNAL_MONITOR_APIFY_TOKEN"))
    apify_base_url: str = Field(default="https://api.apify.com/v2", validation_alias=AliasChoices("APIFY_BASE_URL", "SIGNAL_MONITOR_APIFY_BASE_URL"))
    profile_posts_actor: str = Field(
        default="harvestapi/linkedin-profile-posts",
        validation_alias=AliasChoices("APIFY_ACTOR_ID", "SIGNAL_MONITOR_PROFILE_POSTS_ACTOR"),
    )
    post_reactions_actor: str = Field(
        default="datadoping/linkedin-post-reactions-scraper-no-cookie",
        validation_alias=AliasChoices("POST_REACTIONS_ACTOR", "SIGNAL_MONITOR_POST_REACTIONS_ACTOR"),
    )
    post_comments_actor: str = Field(
        default="harvestapi/linkedin-post-comments",
        validation_alias=AliasChoices("POST_COMMENTS_ACTOR", "SIGNAL_MONITOR_POST_COMMENTS_ACTOR"),
    )
    profile_details_actor: str = Field(
        default="harvestapi/linkedin-profile-scraper",
        validation_alias=AliasChoices("PROFILE_DETAILS_ACTOR", "SIGNAL_MONITOR_PROFILE_DETAILS_ACTOR"),
    )
    company_details_actor: str = Field(
        default="harvestapi/linkedin-company",
        validation_alias=AliasChoices("COMPANY_DETAILS_ACTOR", "SIGNAL_MONITOR_COMPANY_DETAILS_ACTOR"),
    )
    apify_poll_interval_sec: float = Field(default=10.0, validation_alias=AliasChoices("APIFY_POLL_INTERVAL_SEC", "SIGNAL_MONITOR_APIFY_POLL_INTERVAL_SEC"))
    apify_max_wait_sec: float = Field(default=300.0, validation_alias=AliasChoices("APIFY_MAX_WAIT_SEC", "SIGNAL_MONITOR_APIFY_MAX_WAIT_SEC"))
    apify_retry_backoff_sec: float = Field(default=5.0, validation_alias=AliasChoices("APIFY_RETRY_BACKOFF_SEC", "SIGNAL_MONITOR_APIFY_RETRY_BACKOFF_SEC"))
    apify_max_retries: int = Field(default=1, validation_alias=AliasChoices("APIFY_MAX_RETRIES", "SIGNAL_MONITOR_APIFY_MAX_RETRIES"))
    apify_request_timeout_sec: float = Field(default=30.0, validation_alias=AliasChoices("APIFY_REQUEST_TIMEOUT_SEC", "SIGNAL_MONITOR_APIFY_REQUEST_TIMEOUT_SEC"))
    max_posts_per_profile: int = Field(default=3, validation_alias=AliasChoices("MAX_POSTS_PER_PROFILE", "SIGNAL_MONITOR_MAX_POSTS_PER_PROFILE"))

    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "SIGNAL_MONITOR_SCHEDULER_ENABLED"))
    scan_interval_minutes: int = Field(default=60, validation_alias=AliasChoices("SCAN_INTERVAL_MINUTES", "SIGNAL_MONITOR_SCAN_INTERVAL_MINUTES"))
    scan_batch_size: int = Field(default=200, validation_alias=AliasChoices("SCAN_BATCH_SIZE", "SIGNAL_MONITOR_SCAN_BATCH_SIZE"))
    plan_scan_interval_hours: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_PLAN_INTERVALS),
        validation_alias=AliasChoices("PLAN_SCAN_INTERVAL_HOURS", "SIGNAL_MONITOR_PLAN_SCAN_INTERVAL_HOURS"),
    )
    webhook_timeout_sec: float = Field(default=10.0, validation_alias=AliasChoices("WEBHOOK_TIMEOUT_SEC", "SIGNAL_MONITOR_WEBHOOK_TIMEOUT_SEC"))
    snippet_max_length: int = Field(default=250, validation_alias=AliasChoices("SNIPPET_MAX_LENGTH", "SIGNAL_MONITOR_SNIPPET_MAX_LENGTH"))

    enrichment_batch_size: int = Field(default=10, validation_alias=AliasChoices("ENRICHMENT_BATCH_SIZE", "SIGNAL_MONITOR_ENRICHMENT_BATCH_SIZE"))
    enrichment_batch_delay_sec: float = Field(default=2.0, validation_alias=AliasChoices("ENRICHMENT_BATCH_DELAY_SEC", "SIGNAL_MONITOR_ENRICHMENT_BATCH_DELAY_SEC"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url

    def scan_interval_hours_for(self, plan: str | None) -> int:
        """Re-scan delay for an account plan; unknown plans get the free interval."""
        intervals = self.plan_scan_interval_hours or DEFAULT_PLAN_INTERVALS
        fallback = intervals.get("free", DEFAULT_PLAN_INTERVALS["free"])
        return intervals.get((plan or "free").lower(), fallback)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

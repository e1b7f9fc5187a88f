"""
Configuration settings for the odds collector.
Uses pydantic-settings for validation and environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class StreamFeedSettings(BaseSettings):
    """Push-stream (live) provider endpoints and reconnect behaviour."""

    bootstrap_url: str = "https://www.maxbet.rs/live/events/en"
    subscribe_url: str = "https://www.maxbet.rs/live/subscribe/sr"
    cursor_param: str = "lastInitId"
    user_agent: str = BROWSER_USER_AGENT

    # Reconnect after stream error or upstream close
    reconnect_delay_seconds: float = 5.0

    # END cursor older than this is replaced by wall-clock time
    stale_cursor_seconds: int = 300

    # Frames waiting for normalization before the reader blocks
    frame_queue_size: int = 1000

    connect_timeout_seconds: float = 30.0


class DeltaFeedSettings(BaseSettings):
    """Delta-poll (pre-match) provider endpoints and concurrency bounds."""

    base_url: str = "https://srboffer.admiralbet.rs/api/offer"
    catalog_path: str = "/getEventsStartingSoonFilterSelections/"
    detail_path: str = "/betsAndGroups"
    changes_path: str = "/cacheChanges"

    language: str = "sr-Latn"
    office_id: str = "138"
    origin: str = "https://admiralbet.rs"
    user_agent: str = BROWSER_USER_AGENT

    # Catalog pagination
    page_size: int = 30
    page_ceiling: int = 100  # Conservative upper bound, early termination finds the end
    page_concurrency: int = 5
    inter_batch_delay_seconds: float = 0.1
    lookahead_days: int = 5 * 365
    catalog_page_id: int = 35
    mapping_types: str = "1,2,3,4,5"
    live: bool = False

    # Per-event detail fetch
    detail_concurrency: int = 35
    # New events from deltas waiting for a detail slot
    detail_backlog: int = 1000

    request_timeout_seconds: float = 30.0


class CacheSettings(BaseSettings):
    """Primary key-value cache (Redis)."""

    enabled: bool = True
    host: str = "localhost"
    port: int = 6379
    password: str = Field(default="", description="Redis password (empty for none)")
    db: int = 0
    namespace: str = "odds"
    ttl_seconds: int = 86400  # 24 hours
    connect_timeout_seconds: float = 2.0


class StorageSettings(BaseSettings):
    """Local file fallback backend."""

    data_dir: str = "data"
    live_file: str = "live-feed-data.json"
    pre_match_file: str = "pre-games-data.json"


class CollectorSettings(BaseSettings):
    """Session parameter allow-lists."""

    live_intervals: list[int] = Field(default_factory=lambda: [1, 15, 30, 60, 120])
    pre_match_intervals: list[int] = Field(default_factory=lambda: [1, 15, 30, 60, 120])
    sports: list[str] = Field(default_factory=lambda: ["S", "B", "T"])


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Debug settings
    debug: bool = False
    log_level: str = "INFO"

    # Sub-settings
    stream: StreamFeedSettings = Field(default_factory=StreamFeedSettings)
    delta: DeltaFeedSettings = Field(default_factory=DeltaFeedSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    collector: CollectorSettings = Field(default_factory=CollectorSettings)


# Global settings instance
settings = Settings()

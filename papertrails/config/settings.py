"""
Paper Trails Configuration System
=================================

Configuration management with environment variables and Pydantic models.
Environment variables (prefix ``PAPERTRAILS_``, nested delimiter ``__``)
override Field defaults.
"""

import os
from pathlib import Path
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode


DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Feedly/1.0 (+https://feedly.com/f/about)",
]


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CatalogSettings(BaseModel):
    """Feed catalog location."""
    path: str = Field(default="data/feeds.json", description="Path to the feed catalog JSON file")


class ServiceClassSettings(BaseModel):
    """A group of hosts that share one throttle budget."""
    name: str = Field(..., description="Service class name, e.g. 'substack'")
    host_patterns: List[str] = Field(
        default_factory=list,
        description="Host suffixes belonging to this class (matched against the feed host)"
    )
    min_interval: float = Field(default=30.0, ge=0.0, description="Minimum seconds between any two contacts of the class")
    burst_size: int = Field(default=0, ge=0, description="Contacts before a burst pause (0 disables)")
    burst_pause: float = Field(default=0.0, ge=0.0, description="Pause in seconds after every burst_size contacts")
    defensive: bool = Field(default=True, description="Sources of this class are interleaved with general sources")
    relay: bool = Field(default=False, description="Route fetches for this class through the relay transport")

    @field_validator('host_patterns')
    @classmethod
    def normalize_patterns(cls, v):
        """Lower-case patterns and drop a leading 'www.'."""
        normalized = []
        for pattern in v:
            pattern = pattern.strip().lower()
            if pattern.startswith("www."):
                pattern = pattern[4:]
            if pattern:
                normalized.append(pattern)
        return normalized


class ThrottleSettings(BaseModel):
    """Per-host and per-service-class request spacing."""
    host_min_interval: float = Field(default=5.0, ge=0.0, description="Minimum seconds between two contacts of the same host")
    jitter_seconds: float = Field(default=1.0, ge=0.0, description="Upper bound of additive random jitter per wait")
    service_classes: List[ServiceClassSettings] = Field(
        default_factory=lambda: [
            ServiceClassSettings(
                name="substack",
                host_patterns=["substack.com"],
                min_interval=30.0,
                burst_size=5,
                burst_pause=300.0,
            )
        ],
        description="Service classes throttled as a group"
    )


class BackoffSettings(BaseModel):
    """Escalating delay after failures and the temporary skip list."""
    base_delay: float = Field(default=8.0, ge=0.0, description="Delay after the first failure in seconds")
    multiplier: float = Field(default=2.0, ge=1.0, description="Exponential growth factor per attempt")
    max_delay: float = Field(default=300.0, ge=0.0, description="Upper bound for any single backoff delay")
    skip_cooldown: float = Field(default=7200.0, ge=0.0, description="Seconds a rate-limiting host stays on the skip list")
    skip_on_rate_limit: bool = Field(default=True, description="Skip a host once rate-limit retries are exhausted")
    skip_list_path: str = Field(default="data/skip-list.json", description="Skip list state file")

    @model_validator(mode='after')
    def check_bounds(self):
        """Base delay may not exceed the cap."""
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay must not exceed max_delay")
        return self


class RetrySettings(BaseModel):
    """Per-source retry budget."""
    max_attempts: int = Field(default=3, ge=1, le=10, description="Maximum fetch attempts per source")
    rate_limit_retries: int = Field(default=1, ge=0, le=10, description="Extra attempts after a rate-limit response")
    request_timeout: float = Field(default=30.0, ge=1.0, le=300.0, description="Request timeout in seconds")


class IngestionSettings(BaseModel):
    """Feed item conversion and ordering."""
    max_items_per_source: int = Field(default=10, ge=1, le=200, description="Items converted per source, newest first")
    content_max_chars: int = Field(default=5000, ge=100, description="Stored plain-text content length")
    excerpt_chars: int = Field(default=200, ge=20, description="Excerpt length")
    words_per_minute: int = Field(default=200, ge=50, le=1000, description="Reading speed for read time estimates")
    defensive_interleave: int = Field(default=3, ge=1, description="General sources processed between two defensive ones")
    user_agents: List[str] = Field(default_factory=lambda: list(DEFAULT_USER_AGENTS), description="Client identities to rotate")
    ua_cycle_interval: int = Field(default=1, ge=1, description="Requests per client identity before rotating")

    @field_validator('user_agents')
    @classmethod
    def validate_user_agents(cls, v):
        """At least one client identity is required."""
        if not v:
            raise ValueError("user_agents must not be empty")
        return v


class TransportSettings(BaseModel):
    """Relay (proxy worker) configuration."""
    relay_url: Optional[str] = Field(default=None, description="Base URL of the relay worker exposing /api/fetch-rss")


class ArchiveSettings(BaseModel):
    """Archive persistence locations and display bounds."""
    data_dir: str = Field(default="data", description="Directory holding the archive artifacts")
    display_file: str = Field(default="articles.json", description="Display set file name")
    archive_file: str = Field(default="articles-archive.json", description="Full archive file name")
    display_limit: int = Field(default=500, ge=1, description="Records kept in the display set")
    display_max_age_days: Optional[int] = Field(default=None, ge=1, description="Drop records older than this from the display set")
    report_dir: str = Field(default="logs", description="Directory for daily run reports")
    lock_dir: str = Field(default="/tmp", description="Directory for the process lock file")

    @property
    def display_path(self) -> Path:
        return Path(self.data_dir) / self.display_file

    @property
    def archive_path(self) -> Path:
        return Path(self.data_dir) / self.archive_file


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/papertrails.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class PapertrailsSettings(BaseSettings):
    """Main application settings."""

    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    throttle: ThrottleSettings = Field(default_factory=ThrottleSettings)
    backoff: BackoffSettings = Field(default_factory=BackoffSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_name: str = Field(default="Paper Trails", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "PAPERTRAILS_",
        "extra": "ignore",
    }

    def validate_configuration(self) -> None:
        """Validate cross-section configuration."""
        errors = []

        relay_classes = [c.name for c in self.throttle.service_classes if c.relay]
        if relay_classes and not self.transport.relay_url:
            errors.append(
                f"Service classes {', '.join(relay_classes)} use the relay but transport.relay_url is not set"
            )

        names = [c.name for c in self.throttle.service_classes]
        if len(names) != len(set(names)):
            errors.append("Duplicate service class names")

        try:
            Path(self.archive.data_dir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Invalid data directory: {e}")

        if self.logging.file_path:
            try:
                Path(self.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID
            )

    def is_ci(self) -> bool:
        """Check if running inside a CI job."""
        return os.getenv("CI", "").lower() in ("1", "true")

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings() -> PapertrailsSettings:
    """Load settings from environment variables and defaults.

    Returns:
        Loaded and validated settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = PapertrailsSettings()
        settings.validate_configuration()
        return settings

    except Exception as e:
        if isinstance(e, ConfigurationError):
            raise
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_INVALID
        )


# Global settings instance
_settings: Optional[PapertrailsSettings] = None


def get_settings(reload: bool = False) -> PapertrailsSettings:
    """Get global settings instance (singleton pattern).

    Args:
        reload: Force reload of settings

    Returns:
        Global settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings()

    return _settings

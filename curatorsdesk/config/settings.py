"""
Curator's Desk Configuration System
===================================

Configuration management with environment variables and Pydantic models.
Environment variables (prefix ``CURATORSDESK_``, nested with ``__``) override
Field defaults, e.g. ``CURATORSDESK_FETCH__PARALLEL_SOURCES=10``.
"""

from pathlib import Path
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode


DEFAULT_USER_AGENT = "CuratorsDesk-Feed-Reader/1.0"

DEFAULT_WELL_KNOWN_PATHS = [
    "/feed.xml",
    "/rss.xml",
    "/atom.xml",
    "/feed/",
    "/index.xml",
    "/feed.json",
    "/rss/",
    "/feeds/rss.xml",
]


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class FetchSettings(BaseModel):
    """Outbound HTTP behaviour."""
    request_timeout: float = Field(default=10.0, gt=0, le=300, description="Feed fetch timeout in seconds")
    discovery_timeout: float = Field(default=10.0, gt=0, le=300, description="Timeout per discovery probe in seconds")
    parallel_sources: int = Field(default=5, ge=1, le=50, description="Concurrent source sync cycles")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent sent with every request")
    max_description_length: int = Field(default=500, ge=10, le=10000, description="Stored description length limit")


class DiscoverySettings(BaseModel):
    """Feed discovery probes."""
    well_known_paths: List[str] = Field(
        default_factory=lambda: list(DEFAULT_WELL_KNOWN_PATHS),
        description="Paths probed in order before falling back to HTML link tags",
    )

    @field_validator('well_known_paths')
    @classmethod
    def validate_paths(cls, v):
        """Paths must be root-relative."""
        for path in v:
            if not path.startswith('/'):
                raise ValueError(f"Well-known path must start with '/': {path}")
        return v


class MailboxSettings(BaseModel):
    """Newsletter mailbox ingestion."""
    enabled: bool = Field(default=True, description="Sync mailbox sources during batch runs")
    search_query: str = Field(default="from:*@substack.com newer_than:30d", description="Provider search query")
    max_results: int = Field(default=100, ge=1, le=500, description="Messages listed per sync")
    api_base_url: str = Field(default="https://gmail.googleapis.com/gmail/v1", description="Mailbox REST API base URL")
    access_token: Optional[str] = Field(default=None, description="Already-issued OAuth access token")
    fixture_path: Optional[str] = Field(default=None, description="JSON file of messages used instead of the API")


class DatabaseSettings(BaseModel):
    """Database configuration."""
    path: str = Field(default="data/curatorsdesk.db", description="SQLite database file path")
    pool_size: int = Field(default=5, ge=1, le=20, description="Connection pool size")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/curatorsdesk.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class SchedulerSettings(BaseModel):
    """Periodic sync service."""
    sync_interval_minutes: int = Field(default=360, ge=1, le=10080, description="Minutes between batch syncs")
    retry_delay_minutes: int = Field(default=5, ge=1, le=120, description="Wait after a failed batch")


class CuratorsDeskSettings(BaseSettings):
    """Main application settings."""

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    mailbox: MailboxSettings = Field(default_factory=MailboxSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    app_name: str = Field(default="Curator's Desk", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "CURATORSDESK_",
        "extra": "ignore",
    }

    def validate_configuration(self) -> None:
        """Create the data and log directories and check referenced files.

        Raises:
            ConfigurationError: Listing every problem found, not just the first
        """
        problems = []

        directories = {"database": self.database.path}
        if self.logging.file_path:
            directories["log file"] = self.logging.file_path
        for label, file_path in directories.items():
            try:
                Path(file_path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                problems.append(f"cannot create {label} directory for {file_path}: {e}")

        if self.mailbox.fixture_path and not Path(self.mailbox.fixture_path).exists():
            problems.append(f"mailbox fixture not found: {self.mailbox.fixture_path}")

        if problems:
            raise ConfigurationError(
                "Configuration validation failed: " + "; ".join(problems),
                error_code=ErrorCode.CONFIG_INVALID,
            )

    def get_effective_log_level(self) -> str:
        """``DEBUG`` when debug mode is on, else the configured level."""
        return "DEBUG" if self.debug else self.logging.level.value

    def has_mailbox_credentials(self) -> bool:
        """Whether mailbox sources can be synced at all."""
        return bool(self.mailbox.fixture_path or self.mailbox.access_token)


def load_settings() -> CuratorsDeskSettings:
    """Build settings from the environment, ``.env`` and Field defaults.

    Pydantic validation failures surface as ``ConfigurationError`` so the CLI
    reports them like any other configuration problem.
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = CuratorsDeskSettings()
    except ValueError as e:
        raise ConfigurationError(f"Invalid settings: {e}", error_code=ErrorCode.CONFIG_INVALID) from e

    settings.validate_configuration()
    return settings


_settings: Optional[CuratorsDeskSettings] = None


def get_settings(reload: bool = False) -> CuratorsDeskSettings:
    """Process-wide settings, loaded on first call or when ``reload`` is set."""
    global _settings

    if reload or _settings is None:
        _settings = load_settings()

    return _settings

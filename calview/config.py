"""Settings management using Pydantic for type validation and configuration.

Values come from, in increasing priority: field defaults, the YAML config
file, and ``CALVIEW_*`` environment variables (or a ``.env`` file).
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError
from .models import CalendarRecord
from .registry import InMemoryCalendarRegistry, MappingPreferences

logger = logging.getLogger(__name__)

ENV_PREFIX = "CALVIEW_"
CONFIG_PATH_ENV = "CALVIEW_CONFIG"
DEFAULT_CONFIG_PATH = Path("config") / "calview.yaml"


class CalendarConfig(BaseModel):
    """One calendar subscription with its display preferences."""

    id: str = Field(..., min_length=1, description="Calendar identifier")
    name: str = Field(default="", description="Human-readable calendar name")
    feed_url: str = Field(..., min_length=1, description="iCal feed URL")
    color: Optional[str] = Field(default=None, description="Display color, e.g. #16a34a")
    visible: bool = Field(default=True, description="Show events of this calendar")

    def to_record(self) -> CalendarRecord:
        """Registry view of this calendar."""
        return CalendarRecord(id=self.id, name=self.name or self.id, feed_url=self.feed_url)


class CalviewSettings(BaseSettings):
    """Application settings with environment variable support."""

    # Cache
    cache_ttl_seconds: float = Field(default=30.0, ge=0, description="Cache time-to-live in seconds")
    max_cache_entries: Optional[int] = Field(
        default=None, ge=1, description="Optional LRU bound on cached feeds (None = unbounded)"
    )

    # Expansion
    default_window_months: int = Field(
        default=1, ge=0, description="Recurrence expansion window (+/- months)"
    )
    max_window_months: int = Field(default=12, ge=0, description="Largest accepted window")
    default_timezone: str = Field(
        default="UTC", description="Timezone for floating times and all-day dates"
    )
    max_occurrences_per_rule: int = Field(
        default=10000, ge=1, description="Safety cap on occurrences emitted per recurring event"
    )
    max_skipped_occurrences: int = Field(
        default=100000, ge=0, description="Occurrences before the window walked per recurring event"
    )

    # Network and Retry Settings
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP read timeout in seconds")
    user_agent: str = Field(default="calview/1.0 iCal-Client", description="HTTP User-Agent")
    max_retries: int = Field(default=0, ge=0, description="Retries after a network error")
    retry_backoff_factor: float = Field(default=1.5, ge=0, description="Exponential backoff factor")

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")

    # Calendars served by the in-memory registry
    calendars: list[CalendarConfig] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = str(value).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def _check_window_bounds(self) -> "CalviewSettings":
        if self.default_window_months > self.max_window_months:
            raise ValueError(
                f"default_window_months ({self.default_window_months}) exceeds "
                f"max_window_months ({self.max_window_months})"
            )
        ids = [calendar.id for calendar in self.calendars]
        if len(ids) != len(set(ids)):
            raise ValueError("Calendar ids must be unique")
        return self

    def build_registry(self) -> InMemoryCalendarRegistry:
        """Calendar registry holding the configured calendars."""
        return InMemoryCalendarRegistry(calendar.to_record() for calendar in self.calendars)

    def build_preferences(self) -> MappingPreferences:
        """Preferences holding the configured colors and visibility flags."""
        return MappingPreferences(
            colors={c.id: c.color for c in self.calendars if c.color},
            visibility={c.id: c.visible for c in self.calendars},
        )


def _find_config_file(path: Optional[Union[str, Path]]) -> Optional[Path]:
    """Resolve the config file: explicit path, then CALVIEW_CONFIG, then ./config/calview.yaml."""
    if path:
        return Path(path)
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    default = Path.cwd() / DEFAULT_CONFIG_PATH
    return default if default.exists() else None


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a mapping from a YAML file."""
    try:
        with path.open(encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    # safe_load returns None for empty files
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at top level")
    return loaded


def _env_overridden_fields() -> set[str]:
    """Field names set through CALVIEW_* environment variables."""
    return {
        key[len(ENV_PREFIX) :].lower()
        for key in os.environ
        if key.upper().startswith(ENV_PREFIX) and key.upper() != CONFIG_PATH_ENV
    }


def load_settings(path: Optional[Union[str, Path]] = None, **overrides: Any) -> CalviewSettings:
    """Load settings from YAML and the environment.

    Args:
        path: Optional config file path
        **overrides: Explicit values that win over file and environment

    Returns:
        Validated settings

    Raises:
        ConfigError: If an explicit file is missing, unreadable, or invalid
    """
    config_file = _find_config_file(path)
    file_data: dict[str, Any] = {}

    if config_file is not None:
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        file_data = _load_yaml(config_file)
        logger.info("Loaded configuration from %s", config_file)
    else:
        logger.debug("No config file found; using defaults and environment")

    # Environment variables take priority over the file
    env_fields = _env_overridden_fields()
    init_data = {k: v for k, v in file_data.items() if k.lower() not in env_fields}
    init_data.update(overrides)

    try:
        settings = CalviewSettings(**init_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.debug("Configuration values: %s", settings.model_dump(exclude={"calendars"}))
    return settings

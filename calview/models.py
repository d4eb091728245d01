"""Data models for calendar ingestion and caching."""

from datetime import datetime
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from .timezone_utils import now_utc as _now_utc


class CacheKey(NamedTuple):
    """Composite cache key; both parts are needed since calendars may share a feed URL."""

    feed_url: str
    calendar_id: str


class CalendarRecord(BaseModel):
    """Calendar subscription as returned by the calendar registry."""

    id: str = Field(..., description="Calendar identifier")
    name: str = Field(default="", description="Human-readable calendar name")
    feed_url: str = Field(..., description="iCal feed URL")

    model_config = ConfigDict(frozen=True)


class CalendarEvent(BaseModel):
    """A single concrete event occurrence."""

    id: str = Field(..., description="Event ID, unique within a result set")
    title: str = Field(default="", description="Event summary")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")

    start_time: datetime = Field(..., description="Occurrence start (timezone-aware)")
    end_time: datetime = Field(..., description="Occurrence end (timezone-aware)")
    is_all_day: bool = Field(default=False, description="DTSTART was a DATE value")

    calendar_id: str = Field(..., description="Owning calendar subscription")
    recurrence_id: Optional[str] = Field(
        default=None, description="Master UID when this is an occurrence of a recurring series"
    )

    # Display-only, set by enrichment
    color: Optional[str] = Field(default=None, description="Display color")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_recurrence_identity(self) -> "CalendarEvent":
        if self.recurrence_id is not None and not self.id.startswith(f"{self.recurrence_id}-"):
            raise ValueError(
                f"Occurrence id {self.id!r} must be derived from recurrence id {self.recurrence_id!r}"
            )
        return self

    @property
    def is_recurring(self) -> bool:
        """Check if event is an occurrence of a recurring series."""
        return self.recurrence_id is not None

    @property
    def duration_seconds(self) -> float:
        """Event length in seconds."""
        return (self.end_time - self.start_time).total_seconds()

    @field_serializer("start_time", "end_time")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()


class CacheEntry(BaseModel):
    """Most recent expansion result for one (feed URL, calendar id) pair."""

    events: tuple[CalendarEvent, ...] = Field(default_factory=tuple)
    timestamp: datetime = Field(default_factory=_now_utc, description="Creation time (UTC)")
    date_range_months: int = Field(..., ge=0, description="Expansion window (+/- months)")
    event_count: int = Field(default=0, description="Cached len(events)")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _fill_event_count(cls, data: object) -> object:
        if isinstance(data, dict) and "event_count" not in data:
            data = {**data, "event_count": len(data.get("events") or ())}
        return data

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds elapsed since the entry was created."""
        current = now if now is not None else _now_utc()
        return (current - self.timestamp).total_seconds()


class CacheDiagnostic(BaseModel):
    """Read-only cache introspection record."""

    calendar_id: str
    feed_url: str
    event_count: int
    last_updated: datetime
    date_range_months: int
    age_seconds: float
    is_fresh: bool

    @field_serializer("last_updated")
    def serialize_last_updated(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()


class ExpansionStats(BaseModel):
    """Counters collected while expanding one feed."""

    total_components: int = 0
    event_components: int = 0
    recurring_masters: int = 0
    overrides: int = 0
    skipped: int = 0
    occurrences: int = 0
    warnings: list[str] = Field(default_factory=list)

    def add_warning(self, warning: str) -> None:
        """Add a warning message."""
        self.warnings.append(warning)

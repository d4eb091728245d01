"""Calendar feed exceptions for error handling."""

from typing import Optional


class CalviewError(Exception):
    """Base exception for calendar ingestion errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FeedError(CalviewError):
    """Base exception for errors retrieving a calendar feed."""

    def __init__(
        self, message: str, url: Optional[str] = None, status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class NetworkError(FeedError):
    """Exception raised for transport failures (DNS, timeout, refused connection)."""


class FetchError(FeedError):
    """Exception raised when the feed server answers with a non-success status."""


class ParseError(CalviewError):
    """Exception raised when feed content cannot be parsed as iCalendar."""


class NotFoundError(CalviewError):
    """Exception raised when a calendar identifier is unknown to the registry."""

    def __init__(self, calendar_id: str):
        super().__init__(f"Calendar not found: {calendar_id}")
        self.calendar_id = calendar_id


class ConfigError(CalviewError):
    """Exception raised when configuration cannot be loaded."""

"""
Curator's Desk Exceptions
=========================

Exception hierarchy for the ingestion pipeline with error codes, context
information and user-facing messages.

Two families matter to the sync loop: ``IngestionError`` subclasses are local
to one source and end up as that source's last error text, while
``DatabaseError`` means the store itself is unusable and aborts the batch.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration (C)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"

    # Storage (D)
    DATABASE_CONNECTION = "D001"
    DATABASE_SCHEMA = "D002"
    DATABASE_CONSTRAINT = "D003"
    DATABASE_ERROR = "D006"

    # Feed discovery, fetch and parse (F)
    FEED_INVALID_URL = "F001"
    FEED_FETCH_TIMEOUT = "F002"
    FEED_PARSE_ERROR = "F003"
    FEED_NETWORK_ERROR = "F004"
    FEED_HTTP_ERROR = "F005"
    FEED_NOT_FOUND = "F006"

    # Mailbox provider (M)
    MAILBOX_ACCESS_DENIED = "M001"
    MAILBOX_API_ERROR = "M002"
    MAILBOX_FIXTURE_INVALID = "M003"

    # Input validation (V)
    VALIDATION_REQUIRED_FIELD = "V001"
    VALIDATION_INVALID_FORMAT = "V002"

    # Sources (R)
    DUPLICATE_RESOURCE = "R001"
    RESOURCE_NOT_FOUND = "R002"


class CuratorsDeskError(Exception):
    """Base exception for all Curator's Desk errors.

    Subclasses set ``default_code``, ``default_user_message`` and
    ``default_recoverable``; explicit constructor arguments win.
    """

    default_code: Optional[ErrorCode] = None
    default_user_message: Optional[str] = None
    default_recoverable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: Optional[bool] = None,
    ):
        """Initialize error.

        Args:
            message: Technical error message, also stored as a source's last error
            error_code: Categorized error code
            context: Additional context information
            user_message: Text safe to show in the CLI
            recoverable: Whether the next sync cycle may succeed
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context: Dict[str, Any] = dict(context or {})
        self.user_message = user_message or self.default_user_message or message
        self.recoverable = self.default_recoverable if recoverable is None else recoverable

    def _add_context(self, **values: Any) -> None:
        self.context.update((k, v) for k, v in values.items() if v is not None)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for structured logs."""
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        if self.error_code is None:
            return self.message
        return f"[{self.error_code.value}] {self.message}"


class ConfigurationError(CuratorsDeskError):
    default_code = ErrorCode.CONFIG_INVALID

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("user_message", f"Configuration error: {message}")
        super().__init__(message, **kwargs)
        self._add_context(config_key=config_key)


class DatabaseError(CuratorsDeskError):
    """Storage failures. These abort a whole sync cycle."""

    default_code = ErrorCode.DATABASE_ERROR
    default_user_message = "Database operation failed"
    default_recoverable = True

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self._add_context(query=query)


class ValidationError(CuratorsDeskError):
    """Rejected user input (site URLs, mailbox addresses)."""

    default_code = ErrorCode.VALIDATION_INVALID_FORMAT

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        kwargs.setdefault("user_message", f"Invalid {field_name or 'input'}: {message}")
        super().__init__(message, **kwargs)
        self._add_context(field_name=field_name)


class IngestionError(CuratorsDeskError):
    """Failure local to one source. Recorded on the source, never fatal to a batch."""

    default_code = ErrorCode.FEED_NETWORK_ERROR
    default_recoverable = True

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.url = url
        self._add_context(url=url)


class DiscoveryFailure(IngestionError):
    """No feed could be located for a site."""

    default_code = ErrorCode.FEED_NOT_FOUND
    default_recoverable = False

    def __init__(self, site_url: str, **kwargs):
        super().__init__(
            f"No feed found for {site_url}. Please provide the feed URL manually.",
            url=site_url,
            **kwargs,
        )
        self.site_url = site_url


class FetchFailure(IngestionError):
    """Non-2xx/non-304 response, network error or timeout."""

    def __init__(
        self, message: str, url: Optional[str] = None, status_code: Optional[int] = None, **kwargs
    ):
        if status_code is not None:
            kwargs.setdefault("error_code", ErrorCode.FEED_HTTP_ERROR)
        super().__init__(message, url=url, **kwargs)
        self.status_code = status_code
        self._add_context(status_code=status_code)


class ParseFailure(IngestionError):
    """Body could not be parsed as the claimed feed format."""

    default_code = ErrorCode.FEED_PARSE_ERROR


class MailboxError(IngestionError):
    """Mailbox provider failures such as revoked access."""

    default_code = ErrorCode.MAILBOX_API_ERROR


class SourceManagementError(CuratorsDeskError):
    """Source lifecycle errors (duplicates, unknown ids)."""

    default_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, message: str, source_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self._add_context(source_id=source_id)


def get_user_friendly_message(exception: Exception) -> str:
    """Message suitable for the CLI, hiding internals of unexpected errors."""
    if isinstance(exception, CuratorsDeskError):
        return exception.user_message
    return "An unexpected error occurred. Please try again later."

"""
Paper Trails Custom Exceptions
==============================

Exception hierarchy for the ingestion pipeline with error codes, context
information and user-friendly messages.

Per-source failures (``FeedError`` and its subclasses) are caught at the
orchestrator boundary and turned into source reports. Run-level failures
(``ConfigurationError``, ``CatalogError``, ``ArchiveError``) abort the run.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"

    # Catalog errors (K001-K099)
    CATALOG_UNREADABLE = "K001"
    CATALOG_INVALID = "K002"

    # Feed ingestion errors (F001-F099)
    FEED_FETCH_TIMEOUT = "F002"
    FEED_PARSE_ERROR = "F003"
    FEED_NETWORK_ERROR = "F004"
    FEED_RATE_LIMITED = "F005"
    FEED_NOT_FOUND = "F006"
    FEED_HTTP_ERROR = "F007"

    # Archive errors (A001-A099)
    ARCHIVE_CORRUPT = "A001"
    ARCHIVE_UNWRITABLE = "A002"

    # Run control (R001-R099)
    RUN_INTERRUPTED = "R001"
    RUN_LOCKED = "R002"


class PapertrailsError(Exception):
    """Base exception for all Paper Trails errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: User-friendly error message
            recoverable: Whether retrying the operation may succeed
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


class ConfigurationError(PapertrailsError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.pop("user_message", f"Configuration error: {message}"),
            **kwargs,
        )


class CatalogError(PapertrailsError):
    """The feed catalog could not be read or is malformed. Fatal for the run."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if path:
            context["path"] = path

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.CATALOG_UNREADABLE),
            context=context,
            user_message=kwargs.pop("user_message", f"Feed catalog unavailable: {message}"),
            **kwargs,
        )


class ArchiveError(PapertrailsError):
    """The archive file is corrupt or cannot be written. Fatal for the run."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if path:
            context["path"] = path

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.ARCHIVE_CORRUPT),
            context=context,
            user_message=kwargs.pop("user_message", f"Archive unavailable: {message}"),
            **kwargs,
        )


class FeedError(PapertrailsError):
    """Feed ingestion and parsing errors."""

    REASON = "FeedError"

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        """Initialize feed error.

        Args:
            message: Error message
            feed_url: Feed URL that caused the error
            **kwargs: Additional arguments for PapertrailsError
        """
        context = kwargs.pop("context", {})
        if feed_url:
            context["feed_url"] = feed_url
        self.feed_url = feed_url

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.FEED_FETCH_TIMEOUT),
            context=context,
            user_message=kwargs.pop("user_message", f"Feed processing failed: {message}"),
            recoverable=kwargs.pop("recoverable", True),
            **kwargs,
        )

    @property
    def reason(self) -> str:
        """Short failure category used in source reports."""
        return self.REASON


class FeedFetchError(FeedError):
    """HTTP-level failure that is not a rate-limit signal."""

    def __init__(
        self, message: str, status: Optional[int] = None, **kwargs
    ):
        self.status = status
        context = kwargs.pop("context", {})
        if status is not None:
            context["status"] = status
        if "recoverable" not in kwargs:
            kwargs["recoverable"] = status is None or status >= 500 or status == 408
        super().__init__(
            message,
            error_code=kwargs.pop(
                "error_code",
                ErrorCode.FEED_NOT_FOUND if status in (404, 410) else ErrorCode.FEED_HTTP_ERROR,
            ),
            context=context,
            **kwargs,
        )

    @property
    def reason(self) -> str:
        return f"HTTP {self.status}" if self.status is not None else "FetchError"


class NetworkError(FeedError):
    """Timeout, DNS failure or connection reset. Always retryable."""

    REASON = "NetworkError"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.FEED_NETWORK_ERROR)
        kwargs["recoverable"] = True
        super().__init__(message, **kwargs)


class RateLimitedError(FeedError):
    """Explicit rate-limit or block response (HTTP 403/429)."""

    REASON = "RateLimited"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        self.status = status
        self.retry_after = retry_after
        context = kwargs.pop("context", {})
        if status is not None:
            context["status"] = status
        if retry_after is not None:
            context["retry_after"] = retry_after
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", ErrorCode.FEED_RATE_LIMITED),
            context=context,
            recoverable=kwargs.pop("recoverable", True),
            **kwargs,
        )


class ParseError(FeedError):
    """Malformed feed payload. Never retried."""

    REASON = "ParseError"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.FEED_PARSE_ERROR)
        kwargs["recoverable"] = False
        super().__init__(message, **kwargs)


class RunInterrupted(PapertrailsError):
    """Raised from a wait point once a stop has been requested."""

    def __init__(self, message: str = "Run interrupted", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.RUN_INTERRUPTED)
        super().__init__(message, **kwargs)


class RunLockedError(PapertrailsError):
    """Another ingestion run holds the process lock."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.RUN_LOCKED)
        super().__init__(message, **kwargs)


def handle_exception(
    exc: Exception, logger, context: Optional[Dict[str, Any]] = None
) -> PapertrailsError:
    """Log an exception and wrap it in a PapertrailsError if needed.

    Args:
        exc: Exception raised by a component
        logger: Logger or adapter used for reporting
        context: Extra context merged into the error

    Returns:
        The original error when it already belongs to the hierarchy,
        otherwise a wrapping PapertrailsError.
    """
    if isinstance(exc, PapertrailsError):
        if context:
            exc.context.update(context)
        logger.error(f"{exc.__class__.__name__}: {exc}", extra={"error": exc.to_dict()})
        return exc

    wrapped = PapertrailsError(
        message=f"Unexpected error: {exc}",
        context=context or {},
        user_message="An unexpected error occurred",
    )
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return wrapped

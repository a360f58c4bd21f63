"""
Custom exceptions for the ingestion pipeline with structured error context.

Each exception carries context information for debugging and monitoring.
Validation problems are NOT exceptions: they are accumulated as findings on a
verdict (see ``schemas.validation.Finding``).

Exception Hierarchy:
    IngestionException (base)
    ├── FetchError
    │   ├── TransientFetchError (retryable)
    │   │   ├── NetworkError
    │   │   ├── RateLimitError
    │   │   └── FetchTimeoutError
    │   ├── AuthenticationError (non-retryable)
    │   ├── ResourceNotFoundError (non-retryable)
    │   ├── PayloadFormatError (non-retryable)
    │   ├── SourceUnavailableError
    │   └── AllSourcesFailedError
    ├── PersistError
    ├── ConfigurationError
    ├── ProviderNotFoundError
    ├── RunCancelledError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class IngestionException(Exception):
    """
    Base exception for all ingestion-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (provider, url, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = dict(context or {})
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        context = {k: v for k, v in self.context.items() if k != "error_timestamp"}
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += (
                f" | Caused by: {type(self.original_exception).__name__}: "
                f"{str(self.original_exception)}"
            )

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """


class NonRetryableError(IngestionException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    - Payloads that cannot be decoded
    """


# ============================================================================
# Fetch Errors
# ============================================================================

class FetchError(IngestionException):
    """
    Base exception for provider fetch failures.

    Context should include:
        - provider: Provider or adapter name
        - url: Endpoint that failed (if applicable)
    """


class TransientFetchError(RetryableError, FetchError):
    """Network, timeout or rate-limit failure worth another attempt."""


class NetworkError(TransientFetchError):
    """Connection failures and HTTP 5xx responses."""


class FetchTimeoutError(TransientFetchError):
    """An attempt exceeded the provider's timeout."""


class RateLimitError(TransientFetchError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, FetchError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""


class ResourceNotFoundError(NonRetryableError, FetchError):
    """Resource not found errors (HTTP 404) that should not be retried."""


class PayloadFormatError(NonRetryableError, FetchError):
    """Provider answered but the payload could not be decoded."""


class SourceUnavailableError(NonRetryableError, FetchError):
    """Adapter reported it cannot run (missing key, missing file, ...)."""


class AllSourcesFailedError(FetchError):
    """
    Every aggregator tier failed or returned nothing.

    Context should include:
        - tiers_tried: Names of the tiers that were attempted
        - last_error: Message of the last tier error
    """


# ============================================================================
# Persistence Errors
# ============================================================================

class PersistError(IngestionException):
    """
    Storage rejected one observation.

    Context should include:
        - item_name: Item of the observation that failed
        - category: Category of the observation
    """


# ============================================================================
# Pipeline Errors
# ============================================================================

class ConfigurationError(NonRetryableError):
    """Invalid runtime configuration."""


class ProviderNotFoundError(NonRetryableError):
    """No adapter registered under the requested provider name."""


class RunCancelledError(IngestionException):
    """The run context was cancelled at a wait or check point."""

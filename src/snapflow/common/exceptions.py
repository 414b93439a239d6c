from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Standard error codes for snapflow operations.

    This enum provides categorized error codes that can be used
    to identify error types without creating numerous exception classes.
    Each category has a specific prefix for easy identification.

    Attributes:
        CONFIG_*: Configuration-related errors, including row-level schema
            problems such as a missing unique key value
        CONNECTION_*: Backing store or source unreachable
        DATA_*: Row-level data problems found while reconciling
        INTEGRITY_*: Atomic apply failures and concurrent writers
        RETRY_*: Transient/retryable errors
    """
    # Configuration errors
    CONFIG_ERROR = "CONFIG_001"
    CONFIG_MISSING = "CONFIG_002"
    CONFIG_INVALID = "CONFIG_003"
    MISSING_COLUMN = "CONFIG_004"
    MISSING_KEY = "CONFIG_005"
    DUPLICATE_KEY = "CONFIG_006"
    STALE_RUN_TIMESTAMP = "CONFIG_007"

    # Connection errors
    CONNECTION_ERROR = "CONNECTION_001"
    TIMEOUT_ERROR = "CONNECTION_002"

    # Data errors
    DATA_ERROR = "DATA_001"
    UNHASHABLE_VALUE = "DATA_002"
    KEY_INVALIDATED = "DATA_003"

    # Integrity errors
    INTEGRITY_ERROR = "INTEGRITY_001"
    TRANSACTION_FAILED = "INTEGRITY_002"
    CONCURRENT_RUN = "INTEGRITY_003"
    VERSION_NOT_CURRENT = "INTEGRITY_004"
    DUPLICATE_CURRENT = "INTEGRITY_005"

    # Retry/Transient errors
    RETRYABLE_ERROR = "RETRY_001"


class SnapflowError(Exception):
    """Base exception for all snapflow-related errors.

    This exception class uses error codes for categorization. The three
    error kinds callers handle differently (configuration, connectivity,
    integrity) get thin subclasses so they can be caught by type.

    Attributes:
        message: Error message
        error_code: Error code from ErrorCode enum
        details: Additional error details
        cause: Optional underlying exception
        is_retryable: Whether the error is transient and can be retried
    """

    default_error_code = ErrorCode.CONFIG_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        is_retryable: bool = False
    ):
        """Initialize snapflow error.

        Args:
            message: Error message
            error_code: Error code from ErrorCode enum
            details: Additional error details
            cause: Optional underlying exception
            is_retryable: Whether error is transient
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.cause = cause
        self.is_retryable = is_retryable

        # Lazy import to avoid circular dependency
        from snapflow.logging import get_logger
        logger = get_logger(__name__)
        logger.debug(
            message,
            extra={
                "error_code": self.error_code.value,
                "details": self.details,
                "is_retryable": is_retryable,
            },
            exc_info=cause is not None
        )

    def __str__(self) -> str:
        """String representation of the error."""
        msg = f"[{self.error_code.value}] {self.message}"
        if self.cause:
            msg = f"{msg} (caused by: {type(self.cause).__name__}: {str(self.cause)})"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "details": self.details,
            "is_retryable": self.is_retryable
        }

    @classmethod
    def from_error_code(
        cls,
        error_code: ErrorCode,
        message: str,
        **kwargs
    ) -> "SnapflowError":
        """Create exception from error code.

        The concrete subclass is picked from the error code category, so
        ``SnapflowError.from_error_code(ErrorCode.CONCURRENT_RUN, ...)``
        returns an ``IntegrityError``.

        Args:
            error_code: Error code
            message: Error message
            **kwargs: Additional arguments for SnapflowError

        Returns:
            SnapflowError instance
        """
        if error_code in [
            ErrorCode.CONNECTION_ERROR,
            ErrorCode.TIMEOUT_ERROR,
            ErrorCode.RETRYABLE_ERROR,
        ]:
            kwargs.setdefault('is_retryable', True)

        target = cls
        if cls is SnapflowError:
            category = error_code.value.split("_")[0]
            target = _CATEGORY_CLASSES.get(category, SnapflowError)

        return target(message=message, error_code=error_code, **kwargs)


class ConfigurationError(SnapflowError):
    """Bad or missing configuration, including unusable unique keys."""

    default_error_code = ErrorCode.CONFIG_ERROR


class ConnectivityError(SnapflowError):
    """Backing store or source unreachable. Retried by the caller."""

    default_error_code = ErrorCode.CONNECTION_ERROR

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None, **kwargs):
        kwargs.setdefault("is_retryable", True)
        super().__init__(message, error_code=error_code, **kwargs)


class IntegrityError(SnapflowError):
    """Atomic apply failed; the store rolled the run back."""

    default_error_code = ErrorCode.INTEGRITY_ERROR


_CATEGORY_CLASSES = {
    "CONFIG": ConfigurationError,
    "CONNECTION": ConnectivityError,
    "INTEGRITY": IntegrityError,
}


# Helper functions for common error scenarios
def configuration_error(
    message: str,
    config_key: Optional[str] = None,
    error_code: ErrorCode = ErrorCode.CONFIG_ERROR,
    **kwargs
) -> ConfigurationError:
    """Create a configuration error.

    Args:
        message: Error message
        config_key: Configuration key or column that caused the error
        error_code: Specific CONFIG_* code
        **kwargs: Additional error details

    Returns:
        ConfigurationError with the given code
    """
    details = kwargs.pop('details', None) or {}
    if config_key:
        details["config_key"] = config_key

    return ConfigurationError(
        message=message,
        error_code=error_code,
        details=details,
        **kwargs
    )


def connection_error(
    message: str,
    service: Optional[str] = None,
    host: Optional[str] = None,
    **kwargs
) -> ConnectivityError:
    """Create a connection error.

    Args:
        message: Error message
        service: Service that failed to connect
        host: Host/endpoint that failed
        **kwargs: Additional error details

    Returns:
        ConnectivityError with CONNECTION_ERROR code
    """
    details = kwargs.pop('details', None) or {}
    if service:
        details["service"] = service
    if host:
        details["host"] = host

    return ConnectivityError(
        message=message,
        error_code=ErrorCode.CONNECTION_ERROR,
        details=details,
        **kwargs
    )


def integrity_error(
    message: str,
    target: Optional[str] = None,
    error_code: ErrorCode = ErrorCode.INTEGRITY_ERROR,
    **kwargs
) -> IntegrityError:
    """Create an integrity error.

    Args:
        message: Error message
        target: Snapshot target whose apply failed
        error_code: Specific INTEGRITY_* code
        **kwargs: Additional error details

    Returns:
        IntegrityError with the given code
    """
    details = kwargs.pop('details', None) or {}
    if target:
        details["target"] = target

    return IntegrityError(
        message=message,
        error_code=error_code,
        details=details,
        **kwargs
    )


def retryable_error(
    message: str,
    retry_after: Optional[int] = None,
    attempt: Optional[int] = None,
    **kwargs
) -> SnapflowError:
    """Create a retryable error.

    Args:
        message: Error message
        retry_after: Seconds to wait before retry
        attempt: Current attempt number
        **kwargs: Additional error details

    Returns:
        SnapflowError with RETRYABLE_ERROR code and is_retryable=True
    """
    details = kwargs.pop('details', None) or {}
    if retry_after:
        details["retry_after"] = retry_after
    if attempt:
        details["attempt"] = attempt

    return SnapflowError(
        message=message,
        error_code=ErrorCode.RETRYABLE_ERROR,
        details=details,
        is_retryable=True,
        **kwargs
    )

"""Common utilities and exceptions for SnapFlow.

Exception Design:
    The exception system uses error codes for categorization rather than
    numerous specific exception classes. All exceptions inherit from
    SnapflowError and include structured error information. The three kinds
    a caller reacts to differently have their own subclass:

    - ConfigurationError: fix the configuration or the extract, do not retry
    - ConnectivityError: transient, the caller may retry the whole run
    - IntegrityError: the atomic apply was rolled back, the next run is a
      safe retry
"""

from snapflow.common.exceptions import (
    SnapflowError,
    ConfigurationError,
    ConnectivityError,
    IntegrityError,
    ErrorCode,
    # Helper functions
    configuration_error,
    connection_error,
    integrity_error,
    retryable_error,
)

__all__ = [
    # Base Exception and Error Codes
    "SnapflowError",
    "ConfigurationError",
    "ConnectivityError",
    "IntegrityError",
    "ErrorCode",
    # Helper functions
    "configuration_error",
    "connection_error",
    "integrity_error",
    "retryable_error",
]

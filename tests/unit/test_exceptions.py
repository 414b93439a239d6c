"""Tests for the error-code exception hierarchy."""

import pytest

from snapflow.common.exceptions import (
    ConfigurationError,
    ConnectivityError,
    ErrorCode,
    IntegrityError,
    SnapflowError,
    configuration_error,
    connection_error,
    integrity_error,
    retryable_error,
)


class TestSnapflowError:
    """Base error behaviour."""

    def test_str_includes_code_and_cause(self):
        cause = ValueError("bad value")
        error = SnapflowError("Something failed", error_code=ErrorCode.DATA_ERROR, cause=cause)

        assert str(error) == "[DATA_001] Something failed (caused by: ValueError: bad value)"

    def test_to_dict(self):
        error = integrity_error("Apply failed", target="customers", error_code=ErrorCode.TRANSACTION_FAILED)

        assert error.to_dict() == {
            "type": "IntegrityError",
            "message": "Apply failed",
            "error_code": "INTEGRITY_002",
            "error_name": "TRANSACTION_FAILED",
            "details": {"target": "customers"},
            "is_retryable": False,
        }

    def test_subclasses_have_default_codes(self):
        assert ConfigurationError("x").error_code == ErrorCode.CONFIG_ERROR
        assert ConnectivityError("x").error_code == ErrorCode.CONNECTION_ERROR
        assert IntegrityError("x").error_code == ErrorCode.INTEGRITY_ERROR

    def test_connectivity_errors_are_retryable(self):
        assert ConnectivityError("store down").is_retryable
        assert not IntegrityError("apply failed").is_retryable

    @pytest.mark.parametrize(
        "code,expected_type",
        [
            (ErrorCode.DUPLICATE_KEY, ConfigurationError),
            (ErrorCode.TIMEOUT_ERROR, ConnectivityError),
            (ErrorCode.CONCURRENT_RUN, IntegrityError),
            (ErrorCode.KEY_INVALIDATED, SnapflowError),
        ],
    )
    def test_from_error_code_picks_subclass(self, code, expected_type):
        error = SnapflowError.from_error_code(code, "message")

        assert type(error) is expected_type
        assert error.error_code == code

    def test_from_error_code_marks_transient_codes_retryable(self):
        assert SnapflowError.from_error_code(ErrorCode.TIMEOUT_ERROR, "slow").is_retryable
        assert not SnapflowError.from_error_code(ErrorCode.MISSING_KEY, "null").is_retryable


class TestHelpers:
    """Factory helpers."""

    def test_configuration_error(self):
        error = configuration_error(
            "Column missing",
            config_key="city",
            error_code=ErrorCode.MISSING_COLUMN,
            details={"missing_columns": ["city"]},
        )

        assert isinstance(error, ConfigurationError)
        assert error.details == {"missing_columns": ["city"], "config_key": "city"}

    def test_connection_error(self):
        cause = OSError("refused")
        error = connection_error("Store unreachable", service="postgresql", host="db", cause=cause)

        assert isinstance(error, ConnectivityError)
        assert error.is_retryable
        assert error.cause is cause
        assert error.details == {"service": "postgresql", "host": "db"}

    def test_retryable_error(self):
        error = retryable_error("Try again", retry_after=5, attempt=2)

        assert error.is_retryable
        assert error.error_code == ErrorCode.RETRYABLE_ERROR
        assert error.details == {"retry_after": 5, "attempt": 2}

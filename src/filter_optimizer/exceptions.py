"""Custom Exception Hierarchy.

Typed exceptions for the evaluation pipeline. Each carries an
``ErrorKind`` so the evaluator can turn it into an outcome record.
"""

from typing import Any, Dict, List, Optional

from src.filter_optimizer.config import ErrorKind


class FilterOptimizerError(Exception):
    """Base exception for all filter optimizer errors."""

    def __init__(
        self,
        message: str,
        error_kind: ErrorKind = ErrorKind.INTERNAL,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_kind = error_kind
        self.details = details or {}


class ConfigValidationError(FilterOptimizerError):
    """Raised when a configuration has inverted min/max pairs."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        errors: Optional[List[str]] = None,
    ):
        self.errors = errors or []
        super().__init__(message, ErrorKind.VALIDATION, {"errors": self.errors})


class UnknownParameterError(FilterOptimizerError):
    """Raised when a configuration names a parameter outside the table."""

    def __init__(self, name: str, section: Optional[str] = None):
        self.name = name
        self.section = section
        where = f" in section '{section}'" if section else ""
        super().__init__(
            f"Unknown parameter '{name}'{where}",
            ErrorKind.UNKNOWN_PARAMETER,
            {"parameter": name, "section": section},
        )


class RateLimitError(FilterOptimizerError):
    """Raised when the backtester answers HTTP 429."""

    def __init__(self, message: str = "Rate limited by backtester", retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(message, ErrorKind.RATE_LIMIT, {"retry_after": retry_after})


class TransientAPIError(FilterOptimizerError):
    """Raised on network failures and unexpected non-2xx responses."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_kind: ErrorKind = ErrorKind.TRANSIENT,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        details = dict(details or {})
        details.setdefault("status_code", status_code)
        super().__init__(message, error_kind, details)


class MalformedRequestError(TransientAPIError):
    """Raised on HTTP 500, usually a malformed or not-a-number parameter.

    Keeps the offending request parameters for diagnosis.
    """

    def __init__(self, message: str, params: Optional[Dict[str, Any]] = None):
        self.params = params or {}
        super().__init__(
            message,
            status_code=500,
            error_kind=ErrorKind.MALFORMED_REQUEST,
            details={"params": self.params},
        )


class InvalidResponseError(TransientAPIError):
    """Raised when a 2xx response body cannot be parsed."""

    def __init__(self, message: str = "Invalid response format"):
        super().__init__(message, error_kind=ErrorKind.INVALID_RESPONSE)


class BaselineError(FilterOptimizerError):
    """Raised when the starting configuration cannot be evaluated."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message, ErrorKind.BASELINE, {"reason": reason})

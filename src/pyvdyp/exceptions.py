"""
Custom exceptions for pyvdyp.
Provides domain-specific error handling with informative messages.

Two families are raised while a polygon is processed:

- ProcessingError (and subclasses): aborts the current polygon. Callers may
  continue with other polygons.
- SiteCurveError (and subclasses): raised by site-curve services. The engine
  decides per call site whether such a condition is fatal or only recorded.
"""
from typing import Any, Optional, Tuple


class VdypError(Exception):
    """Base exception for all pyvdyp errors."""
    pass


class ConfigurationError(VdypError):
    """Raised when there are configuration-related issues."""
    pass


class ParameterError(VdypError):
    """Raised when parameters are invalid or out of bounds."""
    pass


class InvalidParameterError(ParameterError):
    """Raised when a parameter value is invalid."""
    def __init__(self, param_name: str, value: Any, reason: str = ""):
        self.param_name = param_name
        self.value = value
        self.reason = reason
        message = f"Invalid value for parameter '{param_name}': {value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ProcessingError(VdypError):
    """Raised when a polygon cannot be processed.

    Attributes:
        reason_code: Optional numeric code identifying the failed condition
    """
    def __init__(self, message: str, reason_code: Optional[int] = None):
        self.reason_code = reason_code
        if reason_code is not None:
            message = f"{message} (reason code {reason_code})"
        super().__init__(message)


class StandProcessingError(ProcessingError):
    """Raised when polygon or layer input fails a structural precondition."""
    pass


class CoefficientNotFoundError(ProcessingError):
    """Raised when a mandatory coefficient table has no entry for a key."""
    def __init__(self, table: str, key: Tuple[Any, ...]):
        self.table = table
        self.key = key
        super().__init__(f"No coefficients in table '{table}' for key {key}")


class SiteCurveError(VdypError):
    """Base class for conditions reported by a site-curve service."""
    pass


class NoAnswerError(SiteCurveError):
    """Raised when a site-curve function has no answer for its inputs."""
    pass


class CurveError(SiteCurveError):
    """Raised when a site curve is unknown or cannot be evaluated."""
    pass


class SpeciesError(SiteCurveError):
    """Raised when a species has no site curve."""
    pass


class DataError(VdypError):
    """Raised when there are data-related issues."""
    pass


class FileNotFoundError(DataError):
    """Raised when a required file is not found."""
    def __init__(self, file_path: str, file_type: str = "file"):
        self.file_path = file_path
        self.file_type = file_type
        super().__init__(f"Required {file_type} not found: {file_path}")


class InvalidDataError(DataError):
    """Raised when data is malformed or invalid."""
    def __init__(self, data_description: str, reason: str):
        self.data_description = data_description
        self.reason = reason
        super().__init__(f"Invalid {data_description}: {reason}")


# Validation utilities
def validate_positive(value: float, param_name: str) -> float:
    """Validate that a value is positive.

    Args:
        value: Value to validate
        param_name: Parameter name for error message

    Returns:
        The validated value

    Raises:
        InvalidParameterError: If value is not positive
    """
    if value <= 0:
        raise InvalidParameterError(param_name, value, "must be positive")
    return value


def validate_range(value: float, min_val: float, max_val: float, param_name: str) -> float:
    """Validate that a value is within a specific range.

    Args:
        value: Value to validate
        min_val: Minimum allowed value
        max_val: Maximum allowed value
        param_name: Parameter name for error message

    Returns:
        The validated value

    Raises:
        InvalidParameterError: If value is outside the range
    """
    if not min_val <= value <= max_val:
        raise InvalidParameterError(
            param_name, value,
            f"must be between {min_val} and {max_val}"
        )
    return value

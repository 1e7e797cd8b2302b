"""
TerraOrbit - Custom Exceptions

All custom exceptions raised by the coordination engine.

Unreachable destinations and missing ground contact are not errors here:
they come back as an invalid Route or an empty pass list. Only structural
misuse (bad node references, bad parameters, aggregating nothing) raises.
"""

from typing import Optional, Dict, Any, Iterable


class TerraOrbitError(Exception):
    """Base exception for all TerraOrbit errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ValidationError(TerraOrbitError):
    """Raised when input validation fails."""

    def __init__(self, field: str, message: str):
        super().__init__(f"Validation error on '{field}': {message}")
        self.field = field


class UnsupportedParameterError(ValidationError):
    """Raised when a parameter is outside its supported set of values."""

    def __init__(self, field: str, value: Any, supported: Iterable[Any]):
        self.supported = tuple(supported)
        self.value = value
        choices = ", ".join(str(s) for s in self.supported)
        super().__init__(field, f"{value!r} is not supported (expected one of {choices})")


class InvalidReferenceError(TerraOrbitError):
    """Raised when a request references a node that does not exist."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class NoPendingDataError(TerraOrbitError):
    """Raised when aggregation is attempted with no pending submissions."""

    def __init__(self, round_number: Optional[int] = None):
        details = {"round": round_number} if round_number is not None else None
        super().__init__("No gradients to aggregate", details)
        self.round_number = round_number

"""
Shared error handling for the Eligibility engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from .logging import get_evaluation_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    evaluation_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class EligibilityException(Exception):
    """Base exception for the Eligibility engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            evaluation_id=get_evaluation_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(EligibilityException):
    """Subject data rejected by input validation."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConfigurationError(EligibilityException):
    """Structurally invalid criteria, group or threshold definitions."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class CriteriaNotFoundError(EligibilityException):
    """Evaluation requested without a resolvable criteria."""

    def __init__(self, message: str = "Criteria not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("CRITERIA_NOT_FOUND", message, details)


class CacheBackendError(EligibilityException):
    """Cache backend unreachable or failing."""

    def __init__(self, backend: str, message: str = "Cache backend error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_BACKEND_ERROR", f"{backend}: {message}", details)


class ExpressionError(EligibilityException):
    """Structural error in a boolean combination expression."""

    def __init__(self, message: str = "Invalid boolean expression", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXPRESSION_ERROR", message, details)

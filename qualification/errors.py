"""
Error taxonomy for lead qualification.

Validation errors are raised before any state is touched. Business-rule
errors carry the list of unmet conditions so callers can report them.
"""

from typing import Any, Dict, List, Optional


class QualificationError(Exception):
    """Base error for the qualification domain."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(QualificationError):
    """Unknown stage, malformed stage data, invalid snapshot or argument."""


class BusinessRuleError(QualificationError):
    """A domain rule was violated. Nothing was mutated."""

    def __init__(
        self,
        message: str,
        violations: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.violations = list(violations or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["violations"] = self.violations
        return data


class ConversationNotFoundError(QualificationError):
    """No stored state for the conversation key."""

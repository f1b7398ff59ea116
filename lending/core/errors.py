# lending/core/errors.py
from typing import Any, Dict, List, Optional


class LendingError(Exception):
    """Base class for every rule violation raised by the engine.

    ``rule`` names the violated rule, ``suggestion`` tells the caller what to do
    instead and ``conflicts`` lists the records that blocked the operation.
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        suggestion: Optional[str] = None,
        conflicts: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.suggestion = suggestion
        self.conflicts = conflicts or []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "rule": self.rule,
            "suggestion": self.suggestion,
            "conflicts": self.conflicts,
        }


class ValidationError(LendingError):
    status_code = 400


class PermissionDeniedError(LendingError):
    status_code = 403


class NotFoundError(LendingError):
    status_code = 404


class ConflictError(LendingError):
    status_code = 409

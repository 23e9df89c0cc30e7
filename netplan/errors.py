"""
Planning errors with machine-readable reason codes.

Fatal problems abort a run and surface as a ``PlanningError``; row-level and
per-destination issues are counted or reported instead of raised.
"""

from typing import Any, Dict, Optional

from .config import ErrorCode


class PlanningError(ValueError):
    """Base error for the planning engine, tagged with an ``ErrorCode``."""

    code: ErrorCode = ErrorCode.INSUFFICIENT_INPUT

    def __init__(
            self,
            reason: str,
            details: Optional[Dict[str, Any]] = None,
            code: Optional[ErrorCode] = None
    ):
        super().__init__(reason)
        self.reason = reason
        self.details = details or {}
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "reason": self.reason,
            "details": self.details,
        }


class MappingInvalidError(PlanningError):
    """Column mapping references missing columns or lacks a cost method."""

    code = ErrorCode.MAPPING_INVALID

    def __init__(self, errors, kind: str = ""):
        self.errors = list(errors)
        label = f"{kind} mapping" if kind else "mapping"
        super().__init__(
            f"Invalid {label}: " + "; ".join(self.errors),
            details={"errors": self.errors, "kind": kind},
        )


class InsufficientInputError(PlanningError):
    """Inputs are too sparse to plan or optimize anything."""

    code = ErrorCode.INSUFFICIENT_INPUT

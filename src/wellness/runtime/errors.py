from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List


class ErrorCode(IntEnum):
    """Stable ledger failure codes.

    The numeric values are part of the external contract: receipts, HTTP
    responses and downstream indexers branch on them. Never renumber.
    """

    NOT_AUTHORIZED = 100
    INSUFFICIENT_BALANCE = 101
    INSUFFICIENT_STAKE = 102
    MAX_SUPPLY_REACHED = 103
    PAUSED = 104
    ZERO_ADDRESS = 105
    INVALID_AMOUNT = 106
    INSUFFICIENT_ALLOWANCE = 107
    SELF_APPROVAL = 108

    @property
    def slug(self) -> str:
        return self.name.lower()

    @classmethod
    def from_slug(cls, slug: str) -> "ErrorCode":
        return cls[str(slug).strip().upper()]


def error_code_table() -> List[Dict[str, Any]]:
    return [{"code": int(c), "name": c.slug} for c in ErrorCode]


@dataclass
class ApplyError(Exception):
    """Canonical error type for malformed host input (envelopes, payloads, signatures).

    Ledger outcomes are never raised; they come back as ``Err`` values.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvariantViolation(RuntimeError):
    """Raised when ledger state breaks conservation, the supply cap or its shape.

    This is a defect, never an expected outcome.
    """


__all__ = ["ApplyError", "ErrorCode", "InvariantViolation", "error_code_table"]

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterator, Optional, Union

from wellness.runtime.errors import ErrorCode


@dataclass(frozen=True)
class Ok:
    value: Any = True

    ok: ClassVar[bool] = True
    error: ClassVar[Optional[ErrorCode]] = None

    def __iter__(self) -> Iterator[Any]:
        """Allow `ok, value = ledger.transfer(...)` unpacking."""
        yield True
        yield self.value

    def to_json(self) -> Dict[str, Any]:
        return {"ok": True, "value": self.value}


@dataclass(frozen=True)
class Err:
    error: ErrorCode

    ok: ClassVar[bool] = False
    value: ClassVar[Any] = None

    def __iter__(self) -> Iterator[Any]:
        yield False
        yield self.error

    @property
    def code(self) -> int:
        return int(self.error)

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": int(self.error), "name": self.error.slug}}


Result = Union[Ok, Err]

__all__ = ["Err", "Ok", "Result"]

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from wellness.ledger.constants import EVENT_KINDS

Json = Dict[str, Any]


@dataclass(frozen=True)
class LedgerEvent:
    """One observable event, emitted after a successful mutation.

    `seq` is assigned by the Ledger and strictly increases. The executor
    resumes numbering from the persisted event log after a restart.
    """

    seq: int
    kind: str
    fields: Json = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"unknown event kind: {self.kind!r}")

    def to_json(self) -> Json:
        return {"seq": int(self.seq), "kind": self.kind, "fields": dict(self.fields)}

    @staticmethod
    def from_json(j: Json) -> "LedgerEvent":
        return LedgerEvent(seq=int(j["seq"]), kind=str(j["kind"]), fields=dict(j.get("fields") or {}))


EventSink = Callable[[LedgerEvent], None]


class EventLog:
    """In-memory event sink.

    Buffers events in emission order until drained. The executor drains it
    after each applied envelope and persists the drained events with the
    receipt, so only the current envelope's events are held in memory.
    """

    def __init__(self) -> None:
        self._events: List[LedgerEvent] = []

    def __call__(self, ev: LedgerEvent) -> None:
        self._events.append(ev)

    def __len__(self) -> int:
        return len(self._events)

    def all(self) -> List[LedgerEvent]:
        return list(self._events)

    def last(self) -> Optional[LedgerEvent]:
        return self._events[-1] if self._events else None

    def of_kind(self, kind: str) -> List[LedgerEvent]:
        return [e for e in self._events if e.kind == kind]

    def drain(self) -> List[LedgerEvent]:
        """Return buffered events in order and release them."""
        out = self._events
        self._events = []
        return out


__all__ = ["EventLog", "EventSink", "LedgerEvent"]

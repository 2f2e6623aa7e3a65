from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict

from wellness.ledger.constants import ZERO_ADDRESS
from wellness.runtime.errors import InvariantViolation
from wellness.runtime.state_invariants import assert_ledger_invariants


Json = Dict[str, Any]


def _as_uint(v: Any, where: str) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvariantViolation(f"{where} must be an int, got {type(v).__name__}")
    if v < 0:
        raise InvariantViolation(f"{where} must be >= 0, got {v}")
    return int(v)


def _as_uint_map(v: Any, where: str) -> Dict[str, int]:
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise InvariantViolation(f"{where} must be an object, got {type(v).__name__}")
    return {str(k): _as_uint(amt, f"{where}[{k!r}]") for k, amt in v.items()}


@dataclass
class LedgerState:
    """Mutable ledger record: admin, pause flag, total supply and the three mappings.

    Owned exclusively by one Ledger. Absent mapping keys read as zero; entries
    are never deleted, only driven to zero.
    """

    admin: str
    paused: bool = False
    total_supply: int = 0
    balances: Dict[str, int] = field(default_factory=dict)
    staked: Dict[str, int] = field(default_factory=dict)
    # owner -> spender -> amount
    allowances: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @classmethod
    def genesis(cls, admin: str) -> "LedgerState":
        a = str(admin or "").strip()
        if not a or a == ZERO_ADDRESS:
            raise ValueError("genesis admin must be a non-zero address")
        return cls(admin=a)

    # ----------------------------
    # Zero-defaulting accessors
    # ----------------------------

    def balance_of(self, addr: str) -> int:
        return int(self.balances.get(addr, 0))

    def staked_of(self, addr: str) -> int:
        return int(self.staked.get(addr, 0))

    def allowance_of(self, owner: str, spender: str) -> int:
        return int(self.allowances.get(owner, {}).get(spender, 0))

    def set_balance(self, addr: str, amount: int) -> None:
        self.balances[addr] = int(amount)

    def set_staked(self, addr: str, amount: int) -> None:
        self.staked[addr] = int(amount)

    def set_allowance(self, owner: str, spender: str, amount: int) -> None:
        self.allowances.setdefault(owner, {})[spender] = int(amount)

    # ----------------------------
    # Snapshots
    # ----------------------------

    def copy(self) -> "LedgerState":
        return copy.deepcopy(self)

    def to_json(self) -> Json:
        return {
            "admin": self.admin,
            "paused": bool(self.paused),
            "total_supply": int(self.total_supply),
            "balances": dict(self.balances),
            "staked": dict(self.staked),
            "allowances": {o: dict(s) for o, s in self.allowances.items()},
        }

    @classmethod
    def from_json(cls, j: Any) -> "LedgerState":
        """Restore a snapshot, failing closed on any shape or invariant violation."""
        if not isinstance(j, dict):
            raise InvariantViolation(f"ledger snapshot must be an object, got {type(j).__name__}")

        admin = j.get("admin")
        if not isinstance(admin, str) or not admin.strip():
            raise InvariantViolation("snapshot admin must be a non-empty string")

        paused = j.get("paused", False)
        if not isinstance(paused, bool):
            raise InvariantViolation("snapshot paused must be a bool")

        raw_allow = j.get("allowances") or {}
        if not isinstance(raw_allow, dict):
            raise InvariantViolation("snapshot allowances must be an object")

        st = cls(
            admin=admin,
            paused=paused,
            total_supply=_as_uint(j.get("total_supply", 0), "total_supply"),
            balances=_as_uint_map(j.get("balances"), "balances"),
            staked=_as_uint_map(j.get("staked"), "staked"),
            allowances={str(o): _as_uint_map(s, f"allowances[{o!r}]") for o, s in raw_allow.items()},
        )
        assert_ledger_invariants(st)
        return st


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view handed to host components (API, receipts).
    """

    admin: str
    paused: bool
    total_supply: int
    balances: Dict[str, int] = field(default_factory=dict)
    staked: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @classmethod
    def from_state(cls, state: LedgerState) -> "LedgerView":
        return cls(
            admin=state.admin,
            paused=bool(state.paused),
            total_supply=int(state.total_supply),
            balances=copy.deepcopy(state.balances),
            staked=copy.deepcopy(state.staked),
            allowances=copy.deepcopy(state.allowances),
        )

    def get_balance(self, addr: str) -> int:
        return int(self.balances.get(addr, 0))

    def get_staked_balance(self, addr: str) -> int:
        return int(self.staked.get(addr, 0))

    def get_allowance(self, owner: str, spender: str) -> int:
        return int(self.allowances.get(owner, {}).get(spender, 0))

    def holders(self) -> list[str]:
        """Addresses with a non-zero liquid or staked position, sorted."""
        out = {a for a, v in self.balances.items() if v} | {a for a, v in self.staked.items() if v}
        return sorted(out)

    def to_json(self) -> Json:
        return {
            "admin": self.admin,
            "paused": self.paused,
            "total_supply": self.total_supply,
            "balances": copy.deepcopy(self.balances),
            "staked": copy.deepcopy(self.staked),
            "allowances": copy.deepcopy(self.allowances),
        }

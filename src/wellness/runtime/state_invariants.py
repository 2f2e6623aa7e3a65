# src/wellness/runtime/state_invariants.py
from __future__ import annotations

"""Ledger invariants.

Every reachable ledger state satisfies:

  - admin is a non-empty, non-zero address
  - 0 <= total_supply <= MAX_SUPPLY
  - every balance / staked / allowance entry is a non-negative int
  - total_supply == sum(balances) + sum(staked)      (conservation)

A violation is a defect in the ledger, never an expected outcome, so these
checks raise instead of returning a failure code. The Ledger runs them after
every successful mutation when `check_invariants` is enabled; tests run them
after every step.
"""

from typing import TYPE_CHECKING, Any, Iterable, List, Mapping

from wellness.ledger.constants import MAX_SUPPLY, ZERO_ADDRESS
from wellness.runtime.errors import InvariantViolation

if TYPE_CHECKING:  # pragma: no cover
    from wellness.ledger.state import LedgerState


def _is_uint(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v >= 0


def _bad_entries(name: str, m: Mapping[str, Any]) -> Iterable[str]:
    for k, v in m.items():
        if not _is_uint(v):
            yield f"{name}[{k!r}]={v!r}"


def ledger_violations(state: "LedgerState", *, max_supply: int = MAX_SUPPLY) -> List[str]:
    """Return a human-readable list of violated invariants (empty when healthy)."""
    out: List[str] = []

    admin = state.admin
    if not isinstance(admin, str) or not admin.strip():
        out.append("admin missing")
    elif admin == ZERO_ADDRESS:
        out.append("admin is the zero address")

    if not isinstance(state.paused, bool):
        out.append(f"paused is not a bool: {state.paused!r}")

    supply = state.total_supply
    if not _is_uint(supply):
        out.append(f"total_supply invalid: {supply!r}")
        return out
    if supply > max_supply:
        out.append(f"total_supply {supply} exceeds cap {max_supply}")

    bad = list(_bad_entries("balances", state.balances)) + list(_bad_entries("staked", state.staked))
    for owner, spenders in state.allowances.items():
        bad.extend(_bad_entries(f"allowances[{owner!r}]", spenders))
    out.extend(bad)
    if bad:
        return out

    held = sum(state.balances.values()) + sum(state.staked.values())
    if held != supply:
        out.append(f"conservation broken: total_supply={supply} held={held}")

    return out


def assert_ledger_invariants(state: "LedgerState", *, max_supply: int = MAX_SUPPLY) -> None:
    problems = ledger_violations(state, max_supply=max_supply)
    if problems:
        raise InvariantViolation("; ".join(problems))


__all__ = ["assert_ledger_invariants", "ledger_violations"]

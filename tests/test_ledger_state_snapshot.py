from __future__ import annotations

import pytest

from wellness.ledger.constants import MAX_SUPPLY, ZERO_ADDRESS
from wellness.ledger.state import LedgerState
from wellness.runtime.errors import InvariantViolation
from wellness.runtime.ledger import Ledger
from wellness.runtime.state_invariants import assert_ledger_invariants, ledger_violations

ADMIN = "ADMIN"


def _populated() -> LedgerState:
    led = Ledger.genesis(ADMIN)
    assert led.mint(ADMIN, "A", 900).ok
    assert led.transfer("A", "B", 300).ok
    assert led.stake("B", 100).ok
    assert led.approve("A", "C", 40).ok
    assert led.set_paused(ADMIN, True).ok
    return led.state


def test_snapshot_restores_identical_state() -> None:
    st = _populated()
    restored = LedgerState.from_json(st.to_json())
    assert restored == st
    assert restored.paused is True
    assert restored.allowance_of("A", "C") == 40


def test_restored_ledger_keeps_operating() -> None:
    led = Ledger(LedgerState.from_json(_populated().to_json()), check_invariants=True)
    assert led.set_paused(ADMIN, False).ok
    assert led.transfer_from("C", "A", "D", 40).ok
    assert led.get_balance("D") == 40


def test_copy_is_deep() -> None:
    st = _populated()
    cp = st.copy()
    cp.set_allowance("A", "C", 1)
    cp.set_balance("A", 0)
    assert st.allowance_of("A", "C") == 40
    assert st.balance_of("A") == 600


@pytest.mark.parametrize(
    "mutate",
    [
        lambda j: j.update(total_supply=j["total_supply"] + 1),
        lambda j: j["balances"].update(A=-1),
        lambda j: j["staked"].update(B="100"),
        lambda j: j.update(admin=""),
        lambda j: j.update(admin=ZERO_ADDRESS),
        lambda j: j.update(paused="yes"),
        lambda j: j.update(allowances=[]),
        lambda j: j["allowances"]["A"].update(C=True),
    ],
)
def test_corrupt_snapshot_fails_closed(mutate) -> None:
    j = _populated().to_json()
    mutate(j)
    with pytest.raises(InvariantViolation):
        LedgerState.from_json(j)


def test_non_object_snapshot_fails_closed() -> None:
    with pytest.raises(InvariantViolation):
        LedgerState.from_json(["not", "a", "ledger"])


def test_violations_report_conservation_and_cap() -> None:
    st = LedgerState.genesis(ADMIN)
    assert ledger_violations(st) == []

    st.set_balance("A", 5)
    problems = ledger_violations(st)
    assert len(problems) == 1
    assert "conservation" in problems[0]

    st.total_supply = 5
    assert ledger_violations(st, max_supply=4) == ["total_supply 5 exceeds cap 4"]
    assert_ledger_invariants(st, max_supply=MAX_SUPPLY)


def test_invariant_checking_ledger_raises_on_corruption() -> None:
    led = Ledger.genesis(ADMIN, check_invariants=True)
    # Simulate a defect: tokens appear outside of mint.
    led.state.set_balance("GHOST", 10)
    with pytest.raises(InvariantViolation):
        led.mint(ADMIN, "A", 1)

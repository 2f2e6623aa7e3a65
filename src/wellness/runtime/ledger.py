# src/wellness/runtime/ledger.py
from __future__ import annotations

"""The token ledger state machine.

Every mutating operation takes the caller explicitly and returns a Result:

  - Ok(value) after all effects are applied and the event is emitted
  - Err(ErrorCode) with no effects at all

Check order is uniform: pause gate, addresses (parameter order), amount,
sufficiency checks, then mutation, then the event. All checks run before the
first write so a failing call never leaves partial effects.

The whole ledger sits behind one re-entrant lock: operations from different
threads are applied one at a time, queries included.
"""

import logging
import threading
from typing import Any, Optional

from wellness.ledger.constants import (
    EVENT_APPROVAL,
    EVENT_BURN,
    EVENT_MINT,
    EVENT_STAKE,
    EVENT_TRANSFER,
    EVENT_UNSTAKE,
    MAX_SUPPLY,
    ZERO_ADDRESS,
)
from wellness.ledger.state import LedgerState, LedgerView
from wellness.runtime.errors import ErrorCode
from wellness.runtime.events import EventLog, EventSink, LedgerEvent
from wellness.runtime.log import log_event
from wellness.runtime.result import Err, Ok, Result
from wellness.runtime.state_invariants import assert_ledger_invariants

logger = logging.getLogger("wellness.ledger")


# ----------------------------
# Validation primitives (pure)
# ----------------------------


def validate_address(addr: Any) -> Optional[ErrorCode]:
    if addr == ZERO_ADDRESS:
        return ErrorCode.ZERO_ADDRESS
    return None


def validate_amount(amount: Any) -> Optional[ErrorCode]:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return ErrorCode.INVALID_AMOUNT
    return None


def _validate_allowance_amount(amount: Any) -> Optional[ErrorCode]:
    # Allowances may be zero (revocation) but never negative or non-integral.
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        return ErrorCode.INVALID_AMOUNT
    return None


class Ledger:
    """Fungible token ledger with staking, allowances, pause and a supply cap."""

    def __init__(
        self,
        state: LedgerState,
        *,
        sink: Optional[EventSink] = None,
        check_invariants: bool = False,
        next_event_seq: int = 1,
    ) -> None:
        self._state = state
        self._sink: EventSink = sink if sink is not None else EventLog()
        self._check_invariants = bool(check_invariants)
        self._next_seq = max(1, int(next_event_seq))
        self._lock = threading.RLock()

    @classmethod
    def genesis(cls, admin: str, **kwargs: Any) -> "Ledger":
        """Fresh ledger: admin = deployer, unpaused, zero supply, empty mappings."""
        return cls(LedgerState.genesis(admin), **kwargs)

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def sink(self) -> EventSink:
        return self._sink

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def next_event_seq(self) -> int:
        return self._next_seq

    # ----------------------------
    # Gate helpers
    # ----------------------------

    def require_admin(self, caller: Any) -> Optional[ErrorCode]:
        if caller != self._state.admin:
            return ErrorCode.NOT_AUTHORIZED
        return None

    def require_not_paused(self) -> Optional[ErrorCode]:
        if self._state.paused:
            return ErrorCode.PAUSED
        return None

    def _reject(self, op: str, caller: Any, code: ErrorCode) -> Err:
        log_event(logger, "ledger_rejected", op=op, caller=str(caller), code=int(code), name=code.slug)
        return Err(code)

    def _commit(self, op: str, kind: Optional[str], **fields: Any) -> None:
        """Post-mutation bookkeeping: invariant check, event emission, debug log."""
        if self._check_invariants:
            assert_ledger_invariants(self._state)
        if kind is not None:
            ev = LedgerEvent(seq=self._next_seq, kind=kind, fields=dict(fields))
            self._next_seq += 1
            self._sink(ev)
        log_event(logger, "ledger_applied", level=logging.DEBUG, op=op, **fields)

    # ----------------------------
    # Administrative operations
    # ----------------------------

    def set_paused(self, caller: str, pause: bool) -> Result:
        with self._lock:
            failure = self.require_admin(caller)
            if failure is not None:
                return self._reject("set_paused", caller, failure)

            self._state.paused = bool(pause)
            log_event(logger, "ledger_paused_set", caller=str(caller), paused=self._state.paused)
            self._commit("set_paused", None, paused=self._state.paused)
            return Ok(self._state.paused)

    def transfer_admin(self, caller: str, new_admin: str) -> Result:
        with self._lock:
            failure = self.require_admin(caller) or validate_address(new_admin)
            if failure is not None:
                return self._reject("transfer_admin", caller, failure)

            # caller == new_admin is a legal no-op
            self._state.admin = new_admin
            log_event(logger, "ledger_admin_transferred", previous=str(caller), admin=str(new_admin))
            self._commit("transfer_admin", None, admin=new_admin)
            return Ok(True)

    # ----------------------------
    # Supply operations
    # ----------------------------

    def mint(self, caller: str, recipient: str, amount: int) -> Result:
        # Not gated by pause: the admin can mint while paused.
        with self._lock:
            st = self._state
            failure = self.require_admin(caller) or validate_address(recipient) or validate_amount(amount)
            if failure is None and st.total_supply + amount > MAX_SUPPLY:
                failure = ErrorCode.MAX_SUPPLY_REACHED
            if failure is not None:
                return self._reject("mint", caller, failure)

            st.set_balance(recipient, st.balance_of(recipient) + amount)
            st.total_supply += amount
            self._commit("mint", EVENT_MINT, to=recipient, amount=amount)
            return Ok(True)

    def burn(self, caller: str, amount: int) -> Result:
        with self._lock:
            st = self._state
            failure = self.require_not_paused() or validate_amount(amount)
            if failure is None and st.balance_of(caller) < amount:
                failure = ErrorCode.INSUFFICIENT_BALANCE
            if failure is not None:
                return self._reject("burn", caller, failure)

            st.set_balance(caller, st.balance_of(caller) - amount)
            st.total_supply -= amount
            self._commit("burn", EVENT_BURN, **{"from": caller, "amount": amount})
            return Ok(True)

    # ----------------------------
    # Transfer operations
    # ----------------------------

    def transfer(self, caller: str, recipient: str, amount: int) -> Result:
        with self._lock:
            st = self._state
            failure = self.require_not_paused() or validate_address(recipient) or validate_amount(amount)
            if failure is None and st.balance_of(caller) < amount:
                failure = ErrorCode.INSUFFICIENT_BALANCE
            if failure is not None:
                return self._reject("transfer", caller, failure)

            self._move(caller, recipient, amount)
            self._commit("transfer", EVENT_TRANSFER, **{"from": caller, "to": recipient, "amount": amount})
            return Ok(True)

    def approve(self, caller: str, spender: str, amount: int) -> Result:
        with self._lock:
            failure = self.require_not_paused() or validate_address(spender)
            if failure is None and caller == spender:
                failure = ErrorCode.SELF_APPROVAL
            if failure is None:
                failure = _validate_allowance_amount(amount)
            if failure is not None:
                return self._reject("approve", caller, failure)

            # Absolute overwrite: re-approving replaces the previous grant, 0 revokes.
            self._state.set_allowance(caller, spender, amount)
            self._commit("approve", EVENT_APPROVAL, owner=caller, spender=spender, amount=amount)
            return Ok(True)

    def transfer_from(self, caller: str, owner: str, recipient: str, amount: int) -> Result:
        """Move `amount` from `owner` to `recipient`, spending the caller's allowance.

        The allowance check precedes the balance check: a call that fails both
        reports INSUFFICIENT_ALLOWANCE. There is no explicit caller != owner
        guard; approve() forbids self-approval, so an owner never holds an
        allowance on themselves.
        """
        with self._lock:
            st = self._state
            failure = (
                self.require_not_paused()
                or validate_address(owner)
                or validate_address(recipient)
                or validate_amount(amount)
            )
            if failure is None and st.allowance_of(owner, caller) < amount:
                failure = ErrorCode.INSUFFICIENT_ALLOWANCE
            if failure is None and st.balance_of(owner) < amount:
                failure = ErrorCode.INSUFFICIENT_BALANCE
            if failure is not None:
                return self._reject("transfer_from", caller, failure)

            st.set_allowance(owner, caller, st.allowance_of(owner, caller) - amount)
            self._move(owner, recipient, amount)
            self._commit("transfer_from", EVENT_TRANSFER, **{"from": owner, "to": recipient, "amount": amount})
            return Ok(True)

    def _move(self, frm: str, to: str, amount: int) -> None:
        st = self._state
        # Read-then-write per side keeps self-transfer net-zero.
        st.set_balance(frm, st.balance_of(frm) - amount)
        st.set_balance(to, st.balance_of(to) + amount)

    # ----------------------------
    # Staking operations
    # ----------------------------

    def stake(self, caller: str, amount: int) -> Result:
        with self._lock:
            st = self._state
            failure = self.require_not_paused() or validate_amount(amount)
            if failure is None and st.balance_of(caller) < amount:
                failure = ErrorCode.INSUFFICIENT_BALANCE
            if failure is not None:
                return self._reject("stake", caller, failure)

            st.set_balance(caller, st.balance_of(caller) - amount)
            st.set_staked(caller, st.staked_of(caller) + amount)
            self._commit("stake", EVENT_STAKE, staker=caller, amount=amount)
            return Ok(True)

    def unstake(self, caller: str, amount: int) -> Result:
        with self._lock:
            st = self._state
            failure = self.require_not_paused() or validate_amount(amount)
            if failure is None and st.staked_of(caller) < amount:
                failure = ErrorCode.INSUFFICIENT_STAKE
            if failure is not None:
                return self._reject("unstake", caller, failure)

            st.set_staked(caller, st.staked_of(caller) - amount)
            st.set_balance(caller, st.balance_of(caller) + amount)
            self._commit("unstake", EVENT_UNSTAKE, staker=caller, amount=amount)
            return Ok(True)

    # ----------------------------
    # Read-only queries
    # ----------------------------

    def get_balance(self, addr: str) -> int:
        with self._lock:
            return self._state.balance_of(addr)

    def get_staked_balance(self, addr: str) -> int:
        with self._lock:
            return self._state.staked_of(addr)

    def get_allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return self._state.allowance_of(owner, spender)

    def get_total_supply(self) -> int:
        with self._lock:
            return int(self._state.total_supply)

    def get_admin(self) -> str:
        with self._lock:
            return self._state.admin

    def is_paused(self) -> bool:
        with self._lock:
            return bool(self._state.paused)

    @staticmethod
    def max_supply() -> int:
        return MAX_SUPPLY

    def snapshot(self) -> LedgerView:
        with self._lock:
            return LedgerView.from_state(self._state)


__all__ = ["Ledger", "validate_address", "validate_amount"]

from __future__ import annotations

import hashlib
import logging
import threading
from typing import Any, Dict, List, Optional

from wellness.crypto.sig import verify_tx_envelope
from wellness.ledger.state import LedgerState, LedgerView
from wellness.runtime.domain_dispatch import apply_tx
from wellness.runtime.errors import ApplyError, InvariantViolation
from wellness.runtime.events import EventLog
from wellness.runtime.ledger import Ledger
from wellness.runtime.ledger_config import LedgerConfig
from wellness.runtime.log import log_event
from wellness.runtime.sqlite_db import SqliteDB, SqliteLedgerStore, _canon_json
from wellness.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]

logger = logging.getLogger("wellness.executor")


class ExecutorError(RuntimeError):
    pass


def compute_tx_id(ledger_id: str, env: TxEnvelope) -> str:
    """Canonical tx_id.

    Contract:
      - Includes ledger_id (identical envelopes on two ledgers never collide)
      - Excludes sig/pubkey (signature encoding MUST NOT affect tx_id)
    """
    obj: Json = {
        "ledger_id": str(ledger_id),
        "tx_type": env.tx_type,
        "signer": env.signer,
        "nonce": int(env.nonce),
        "payload": env.payload,
    }
    return "tx:" + hashlib.sha256(_canon_json(obj).encode("utf-8")).hexdigest()


class LedgerExecutor:
    """Host executor: resolves the caller, enforces nonces, applies, persists.

    One executor owns one Ledger and one SQLite store. submit() runs
    verify -> apply -> persist under a single lock so the persisted snapshot,
    events and receipts always follow apply order.
    """

    def __init__(
        self,
        *,
        db_path: str,
        ledger_id: str,
        admin: str,
        require_signatures: bool = True,
        check_invariants: bool = False,
    ) -> None:
        self.ledger_id = str(ledger_id)
        self.require_signatures = bool(require_signatures)
        self._check_invariants = bool(check_invariants)
        self._lock = threading.RLock()

        self._store = SqliteLedgerStore(db=SqliteDB(path=str(db_path)))

        if self._store.exists():
            snap = self._store.read()
            body = snap["state"]
            st_ledger_id = str(body.get("ledger_id") or "").strip()
            if st_ledger_id and st_ledger_id != self.ledger_id:
                raise ExecutorError(
                    f"ledger_id mismatch: db={st_ledger_id!r} executor={self.ledger_id!r}. Refuse to start."
                )
            state = LedgerState.from_json(body.get("ledger"))
            self._nonces: Dict[str, int] = {str(k): int(v) for k, v in (body.get("nonces") or {}).items()}
            self._height = int(snap["height"])
            log_event(logger, "executor_loaded", ledger_id=self.ledger_id, height=self._height)
        else:
            state = LedgerState.genesis(admin)
            self._nonces = {}
            self._height = 0
            self._store.write(self._snapshot_body(state), height=0)
            log_event(logger, "executor_genesis", ledger_id=self.ledger_id, admin=state.admin)

        self._ledger = self._build_ledger(state)

    @classmethod
    def from_config(cls, cfg: LedgerConfig) -> "LedgerExecutor":
        return cls(
            db_path=cfg.db_path,
            ledger_id=cfg.ledger_id,
            admin=cfg.admin,
            require_signatures=cfg.require_signatures,
            check_invariants=cfg.check_invariants,
        )

    def _build_ledger(self, state: LedgerState) -> Ledger:
        self._events = EventLog()
        return Ledger(
            state,
            sink=self._events,
            check_invariants=self._check_invariants,
            next_event_seq=self._store.max_event_seq() + 1,
        )

    def _snapshot_body(self, state: LedgerState) -> Json:
        return {
            "ledger_id": self.ledger_id,
            "ledger": state.to_json(),
            "nonces": dict(self._nonces),
        }

    # ----------------------------
    # Public accessors
    # ----------------------------

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def store(self) -> SqliteLedgerStore:
        return self._store

    @property
    def height(self) -> int:
        return self._height

    # Reads take the executor lock so they never observe an applied envelope
    # whose commit is still in flight (and may yet be rolled back).

    def snapshot(self) -> LedgerView:
        with self._lock:
            return self._ledger.snapshot()

    def summary(self) -> Json:
        """Ledger-wide figures plus the committed height, read atomically."""
        with self._lock:
            view = self._ledger.snapshot()
            return {
                "admin": view.admin,
                "paused": view.paused,
                "total_supply": view.total_supply,
                "max_supply": self._ledger.max_supply(),
                "height": int(self._height),
            }

    def account(self, addr: str) -> Json:
        with self._lock:
            return {
                "balance": self._ledger.get_balance(addr),
                "staked": self._ledger.get_staked_balance(addr),
                "nonce": int(self._nonces.get(addr, 0)),
            }

    def allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return self._ledger.get_allowance(owner, spender)

    def nonce_of(self, signer: str) -> int:
        with self._lock:
            return int(self._nonces.get(signer, 0))

    def get_receipt(self, tx_id: str) -> Optional[Json]:
        return self._store.get_receipt(tx_id)

    def events_after(self, after: int = 0, *, limit: int = 100, kind: Optional[str] = None) -> List[Json]:
        return self._store.events_after(after, limit=limit, kind=kind)

    # ----------------------------
    # Submission
    # ----------------------------

    def _verify(self, env: TxEnvelope) -> None:
        if not self.require_signatures:
            return
        ok, info = verify_tx_envelope(
            tx_type=env.tx_type,
            signer=env.signer,
            nonce=env.nonce,
            payload=env.payload,
            sig=env.sig,
            pubkey=env.pubkey or "",
        )
        if not ok:
            raise ApplyError("forbidden", "bad_signature", {"signer": env.signer, **info})

    def submit(self, tx: Any) -> Json:
        """Apply one envelope and return its receipt.

        Raises ApplyError for envelopes that never reach the ledger (malformed,
        unsigned, replayed). Ledger failures are normal receipts with ok=False
        and still consume the nonce.
        """
        try:
            env = TxEnvelope.from_json(tx)
        except (TypeError, ValueError) as e:
            raise ApplyError("invalid_tx", "bad_envelope", {"error": str(e)}) from e

        with self._lock:
            tx_id = compute_tx_id(self.ledger_id, env)
            known = self._store.get_receipt(tx_id)
            if known is not None:
                return dict(known, status="already_known")

            self._verify(env)

            expected = self._nonces.get(env.signer, 0) + 1
            if int(env.nonce) != expected:
                log_event(logger, "tx_invalid", tx_id=tx_id, reason="bad_nonce", signer=env.signer)
                raise ApplyError("invalid_tx", "bad_nonce", {"expected": expected, "got": int(env.nonce)})

            before = self._ledger.state.copy()
            result = apply_tx(self._ledger, env)

            height = self._height + 1
            receipt: Json = {
                "tx_id": tx_id,
                "height": height,
                "tx_type": env.tx_type,
                "signer": env.signer,
                "nonce": int(env.nonce),
                **result.to_json(),
            }
            events = [e.to_json() for e in self._events.drain()]
            receipt["events"] = [e["seq"] for e in events]

            self._nonces[env.signer] = int(env.nonce)
            try:
                self._store.commit(
                    st=self._snapshot_body(self._ledger.state),
                    height=height,
                    events=events,
                    receipt=receipt,
                )
            except Exception:
                # Keep memory identical to disk: roll back the in-memory apply.
                self._nonces[env.signer] = expected - 1
                self._ledger = self._build_ledger(before)
                log_event(logger, "tx_persist_failed", level=logging.ERROR, tx_id=tx_id)
                raise

            self._height = height
            if result.ok:
                log_event(logger, "tx_applied", tx_id=tx_id, tx_type=env.tx_type, height=height)
            else:
                log_event(
                    logger,
                    "tx_rejected",
                    tx_id=tx_id,
                    tx_type=env.tx_type,
                    height=height,
                    code=int(result.error),
                )
            return dict(receipt, status="applied")


def build_executor(cfg: LedgerConfig) -> LedgerExecutor:
    try:
        return LedgerExecutor.from_config(cfg)
    except (ValueError, InvariantViolation) as e:
        raise ExecutorError(f"cannot boot executor: {e}") from e


__all__ = ["ExecutorError", "LedgerExecutor", "build_executor", "compute_tx_id"]

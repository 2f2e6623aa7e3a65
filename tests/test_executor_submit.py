from __future__ import annotations

import threading
from dataclasses import replace
from pathlib import Path

import pytest

from wellness.runtime.errors import ApplyError, ErrorCode
from wellness.runtime.executor import ExecutorError, LedgerExecutor, build_executor, compute_tx_id
from wellness.runtime.ledger_config import default_ledger_config
from wellness.runtime.tx_types import TxEnvelope
from wellness.testing.sigtools import address_for_label, make_signed_tx

ADMIN = address_for_label("admin")
ALICE = address_for_label("alice")
BOB = address_for_label("bob")


def _executor(tmp_path: Path, *, ledger_id: str = "wellness-test", require_signatures: bool = True) -> LedgerExecutor:
    return LedgerExecutor(
        db_path=str(tmp_path / "wellness.db"),
        ledger_id=ledger_id,
        admin=ADMIN,
        require_signatures=require_signatures,
        check_invariants=True,
    )


def test_genesis_then_signed_flow(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    assert ex.height == 0
    assert ex.ledger.get_admin() == ADMIN

    r = ex.submit(make_signed_tx("admin", "MINT", 1, {"recipient": ALICE, "amount": 500}))
    assert r["ok"] is True
    assert r["status"] == "applied"
    assert r["height"] == 1
    assert r["events"] == [1]

    r = ex.submit(make_signed_tx("alice", "TRANSFER", 1, {"recipient": BOB, "amount": 200}))
    assert r["ok"] is True
    assert ex.ledger.get_balance(ALICE) == 300
    assert ex.ledger.get_balance(BOB) == 200
    assert ex.nonce_of(ALICE) == 1

    evs = ex.events_after(0)
    assert [e["kind"] for e in evs] == ["mint", "transfer"]
    assert evs[1]["fields"] == {"from": ALICE, "to": BOB, "amount": 200}
    assert evs[1]["height"] == 2


def test_ledger_rejection_is_a_receipt_and_consumes_nonce(tmp_path: Path) -> None:
    ex = _executor(tmp_path)

    r = ex.submit(make_signed_tx("alice", "TRANSFER", 1, {"recipient": BOB, "amount": 1}))
    assert r["ok"] is False
    assert r["error"] == {"code": int(ErrorCode.INSUFFICIENT_BALANCE), "name": "insufficient_balance"}
    assert r["events"] == []
    assert ex.nonce_of(ALICE) == 1

    stored = ex.get_receipt(r["tx_id"])
    assert stored is not None
    assert stored["ok"] is False

    # nonce=2 is next; nonce=1 again is a different tx (new payload) but stale.
    with pytest.raises(ApplyError) as ei:
        ex.submit(make_signed_tx("alice", "TRANSFER", 1, {"recipient": BOB, "amount": 2}))
    assert ei.value.reason == "bad_nonce"
    assert ei.value.details == {"expected": 2, "got": 1}


def test_nonce_gap_rejected_without_effects(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    with pytest.raises(ApplyError) as ei:
        ex.submit(make_signed_tx("admin", "MINT", 2, {"recipient": ALICE, "amount": 5}))
    assert ei.value.code == "invalid_tx"
    assert ex.height == 0
    assert ex.ledger.get_total_supply() == 0


def test_resubmitting_same_envelope_returns_stored_receipt(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    tx = make_signed_tx("admin", "MINT", 1, {"recipient": ALICE, "amount": 5})

    first = ex.submit(tx)
    again = ex.submit(tx)
    assert again["status"] == "already_known"
    assert again["tx_id"] == first["tx_id"]
    assert ex.ledger.get_balance(ALICE) == 5
    assert ex.height == 1


def test_bad_signature_is_forbidden(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    tx = make_signed_tx("alice", "MINT", 1, {"recipient": ALICE, "amount": 5})
    tx["signer"] = ADMIN  # claim to be the admin with alice's key

    with pytest.raises(ApplyError) as ei:
        ex.submit(tx)
    assert ei.value.code == "forbidden"
    assert ei.value.reason == "bad_signature"
    assert ex.nonce_of(ADMIN) == 0


def test_unsigned_envelopes_allowed_when_signatures_disabled(tmp_path: Path) -> None:
    ex = _executor(tmp_path, require_signatures=False)
    r = ex.submit({"tx_type": "MINT", "signer": ADMIN, "nonce": 1, "payload": {"recipient": "X", "amount": 9}})
    assert r["ok"] is True
    assert ex.ledger.get_balance("X") == 9


def test_malformed_envelope(tmp_path: Path) -> None:
    ex = _executor(tmp_path, require_signatures=False)
    with pytest.raises(ApplyError) as ei:
        ex.submit({"tx_type": "MINT", "signer": ADMIN, "nonce": "one", "payload": {}})
    assert ei.value.reason == "bad_envelope"

    with pytest.raises(ApplyError) as ei:
        ex.submit({"tx_type": "MINT", "signer": ADMIN, "nonce": 1, "payload": {"recipient": "X"}})
    assert ei.value.reason == "missing_field"
    # Rejected before the ledger ran: nonce not consumed.
    assert ex.nonce_of(ADMIN) == 0


def test_restart_restores_state_nonces_and_event_seq(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    ex.submit(make_signed_tx("admin", "MINT", 1, {"recipient": ALICE, "amount": 500}))
    ex.submit(make_signed_tx("alice", "STAKE", 1, {"amount": 200}))
    ex.submit(make_signed_tx("admin", "SET_PAUSED", 2, {"pause": True}))

    ex2 = _executor(tmp_path)
    assert ex2.height == 3
    assert ex2.ledger.get_balance(ALICE) == 300
    assert ex2.ledger.get_staked_balance(ALICE) == 200
    assert ex2.ledger.is_paused() is True
    assert ex2.nonce_of(ADMIN) == 2
    assert ex2.nonce_of(ALICE) == 1

    ex2.submit(make_signed_tx("admin", "SET_PAUSED", 3, {"pause": False}))
    r = ex2.submit(make_signed_tx("alice", "UNSTAKE", 2, {"amount": 100}))
    assert r["events"] == [3]
    assert [e["seq"] for e in ex2.events_after(0)] == [1, 2, 3]
    assert [e["kind"] for e in ex2.events_after(0, kind="stake")] == ["stake"]


def test_ledger_id_mismatch_refuses_to_start(tmp_path: Path) -> None:
    _executor(tmp_path, ledger_id="one")
    with pytest.raises(ExecutorError):
        _executor(tmp_path, ledger_id="two")


def test_failed_commit_rolls_back_memory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    ex = _executor(tmp_path)

    def _boom(**_kw):
        raise RuntimeError("disk full")

    monkeypatch.setattr(ex.store, "commit", _boom)
    with pytest.raises(RuntimeError):
        ex.submit(make_signed_tx("admin", "MINT", 1, {"recipient": ALICE, "amount": 5}))

    assert ex.ledger.get_total_supply() == 0
    assert ex.nonce_of(ADMIN) == 0
    assert ex.height == 0

    monkeypatch.undo()
    r = ex.submit(make_signed_tx("admin", "MINT", 1, {"recipient": ALICE, "amount": 5}))
    assert r["ok"] is True
    assert r["events"] == [1]


def test_tx_id_binds_ledger_id_and_ignores_signature() -> None:
    env = TxEnvelope(tx_type="BURN", signer="A", nonce=1, payload={"amount": 1})
    signed = TxEnvelope(tx_type="BURN", signer="A", nonce=1, payload={"amount": 1}, sig="ab", pubkey="cd")
    assert compute_tx_id("L1", env) == compute_tx_id("L1", signed)
    assert compute_tx_id("L1", env) != compute_tx_id("L2", env)
    assert compute_tx_id("L1", env).startswith("tx:")


def test_build_executor_from_config(tmp_path: Path) -> None:
    cfg = replace(default_ledger_config("dev"), db_path=str(tmp_path / "cfg.db"))
    ex = build_executor(cfg)
    assert ex.ledger_id == cfg.ledger_id
    assert ex.ledger.get_admin() == cfg.admin

    # Dev defaults trust the envelope signer, so the default admin can act.
    r = ex.submit({"tx_type": "MINT", "signer": cfg.admin, "nonce": 1, "payload": {"recipient": ALICE, "amount": 7}})
    assert r["ok"] is True
    assert ex.ledger.get_balance(ALICE) == 7


def test_event_buffer_is_released_after_each_submit(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    for nonce in range(1, 51):
        r = ex.submit(make_signed_tx("admin", "MINT", nonce, {"recipient": ALICE, "amount": 1}))
        assert r["events"] == [nonce]
        assert len(ex.ledger.sink) == 0

    assert len(ex.events_after(0, limit=1000)) == 50


def test_reads_wait_for_in_flight_commit(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    ex = _executor(tmp_path)
    seen = {}
    started = threading.Event()

    def _reader() -> None:
        started.set()
        seen["account"] = ex.account(ALICE)
        seen["summary"] = ex.summary()

    reader = threading.Thread(target=_reader)

    def _slow_failing_commit(**_kw):
        # The mint is applied in memory here; a reader must not see it.
        reader.start()
        started.wait(5)
        reader.join(timeout=0.2)
        seen["blocked"] = reader.is_alive()
        raise RuntimeError("disk full")

    monkeypatch.setattr(ex.store, "commit", _slow_failing_commit)
    with pytest.raises(RuntimeError):
        ex.submit(make_signed_tx("admin", "MINT", 1, {"recipient": ALICE, "amount": 5}))
    reader.join(timeout=5)

    assert seen["blocked"] is True
    assert seen["account"] == {"balance": 0, "staked": 0, "nonce": 0}
    assert seen["summary"]["total_supply"] == 0
    assert seen["summary"]["height"] == 0


def test_locked_reads_after_commit(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    ex.submit(make_signed_tx("admin", "MINT", 1, {"recipient": ALICE, "amount": 50}))
    ex.submit(make_signed_tx("alice", "APPROVE", 1, {"spender": BOB, "amount": 20}))

    assert ex.account(ALICE) == {"balance": 50, "staked": 0, "nonce": 1}
    assert ex.allowance(ALICE, BOB) == 20
    assert ex.summary() == {
        "admin": ADMIN,
        "paused": False,
        "total_supply": 50,
        "max_supply": 10**18,
        "height": 2,
    }

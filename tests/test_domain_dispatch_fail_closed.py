from __future__ import annotations

import pytest

from wellness.runtime.domain_dispatch import SUPPORTED_TX_TYPES, apply_tx
from wellness.runtime.errors import ApplyError, ErrorCode
from wellness.runtime.ledger import Ledger
from wellness.runtime.tx_types import TxEnvelope

ADMIN = "ADMIN"


def _tx(tx_type: str, signer: str, payload, nonce: int = 1):
    return {"tx_type": tx_type, "signer": signer, "nonce": nonce, "payload": payload}


def test_supported_tx_types() -> None:
    assert SUPPORTED_TX_TYPES == (
        "APPROVE",
        "BURN",
        "MINT",
        "SET_PAUSED",
        "STAKE",
        "TRANSFER",
        "TRANSFER_ADMIN",
        "TRANSFER_FROM",
        "UNSTAKE",
    )


def test_dispatch_routes_to_ledger_operations() -> None:
    led = Ledger.genesis(ADMIN)
    assert apply_tx(led, _tx("MINT", ADMIN, {"recipient": "A", "amount": 500})).ok
    assert apply_tx(led, _tx("transfer", "A", {"recipient": "B", "amount": 200})).ok
    assert apply_tx(led, _tx("APPROVE", "A", {"spender": "B", "amount": 300})).ok
    assert apply_tx(led, _tx("TRANSFER_FROM", "B", {"owner": "A", "recipient": "C", "amount": 100})).ok
    assert apply_tx(led, _tx("STAKE", "B", {"amount": 50})).ok
    assert apply_tx(led, _tx("UNSTAKE", "B", {"amount": 25})).ok
    assert apply_tx(led, _tx("BURN", "C", {"amount": 100})).ok
    assert apply_tx(led, _tx("SET_PAUSED", ADMIN, {"pause": True})).value is True
    assert apply_tx(led, _tx("TRANSFER_ADMIN", ADMIN, {"new_admin": "B"})).ok

    assert led.get_balance("A") == 200
    assert led.get_balance("B") == 175
    assert led.get_staked_balance("B") == 25
    assert led.get_allowance("A", "B") == 200
    assert led.get_total_supply() == 400
    assert led.get_admin() == "B"
    assert led.is_paused() is True


def test_dispatch_accepts_envelope_objects() -> None:
    led = Ledger.genesis(ADMIN)
    env = TxEnvelope(tx_type="MINT", signer=ADMIN, nonce=1, payload={"recipient": "A", "amount": 1})
    assert apply_tx(led, env).ok


def test_ledger_failures_come_back_as_values() -> None:
    led = Ledger.genesis(ADMIN)
    r = apply_tx(led, _tx("MINT", "A", {"recipient": "A", "amount": 1}))
    assert r.ok is False
    assert r.error is ErrorCode.NOT_AUTHORIZED

    r = apply_tx(led, _tx("TRANSFER", "A", {"recipient": "B", "amount": 0}))
    assert r.error is ErrorCode.INVALID_AMOUNT


@pytest.mark.parametrize(
    "tx, code, reason",
    [
        (_tx("", "A", {}), "invalid_tx", "missing_tx_type"),
        (_tx("REBASE", "A", {}), "tx_unimplemented", "tx_type_not_implemented"),
        (_tx("TRANSFER", "", {"recipient": "B", "amount": 1}), "invalid_tx", "missing_signer"),
        (_tx("TRANSFER", "A", {"recipient": "B"}), "invalid_payload", "missing_field"),
        (_tx("TRANSFER", "A", {"recipient": "B", "amount": "1"}), "invalid_payload", "bad_field_type"),
        (_tx("TRANSFER", "A", {"recipient": "B", "amount": True}), "invalid_payload", "bad_field_type"),
        (_tx("TRANSFER", "A", {"recipient": 7, "amount": 1}), "invalid_payload", "bad_field_type"),
        (_tx("SET_PAUSED", "ADMIN", {"pause": 1}), "invalid_payload", "bad_field_type"),
    ],
)
def test_malformed_envelopes_raise(tx, code: str, reason: str) -> None:
    led = Ledger.genesis(ADMIN)
    before = led.state.to_json()
    with pytest.raises(ApplyError) as ei:
        apply_tx(led, tx)
    assert ei.value.code == code
    assert ei.value.reason == reason
    assert led.state.to_json() == before


def test_payload_must_be_object_for_envelope_objects() -> None:
    led = Ledger.genesis(ADMIN)
    env = TxEnvelope(tx_type="BURN", signer="A", nonce=1, payload=["amount", 1])  # type: ignore[arg-type]
    with pytest.raises(ApplyError) as ei:
        apply_tx(led, env)
    assert ei.value.reason == "payload_not_object"

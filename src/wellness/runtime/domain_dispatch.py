# src/wellness/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict, Tuple

from wellness.runtime.errors import ApplyError
from wellness.runtime.ledger import Ledger
from wellness.runtime.result import Result
from wellness.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]


def _get(env: Any, key: str, default: Any = None) -> Any:
    """Read a field from either a TxEnvelope-like object or a dict.

    Tests and tools pass raw dict envelopes directly into apply_tx(), while
    the executor passes a TxEnvelope object.
    """

    if isinstance(env, dict):
        return env.get(key, default)
    return getattr(env, key, default)


def _tx_type(env: Any) -> str:
    return str(_get(env, "tx_type", "") or "").strip().upper()


def _field(t: str, payload: Json, name: str, kind: type) -> Any:
    if name not in payload:
        raise ApplyError("invalid_payload", "missing_field", {"tx_type": t, "field": name})
    v = payload[name]
    # bool is an int subclass; amounts must be real ints, flags real bools.
    if kind is int and isinstance(v, bool):
        raise ApplyError("invalid_payload", "bad_field_type", {"tx_type": t, "field": name, "want": "int"})
    if not isinstance(v, kind):
        raise ApplyError(
            "invalid_payload",
            "bad_field_type",
            {"tx_type": t, "field": name, "want": kind.__name__},
        )
    return v


def _apply_set_paused(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.set_paused(signer, _field(t, p, "pause", bool))


def _apply_transfer_admin(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.transfer_admin(signer, _field(t, p, "new_admin", str))


def _apply_mint(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.mint(signer, _field(t, p, "recipient", str), _field(t, p, "amount", int))


def _apply_burn(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.burn(signer, _field(t, p, "amount", int))


def _apply_transfer(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.transfer(signer, _field(t, p, "recipient", str), _field(t, p, "amount", int))


def _apply_approve(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.approve(signer, _field(t, p, "spender", str), _field(t, p, "amount", int))


def _apply_transfer_from(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.transfer_from(
        signer,
        _field(t, p, "owner", str),
        _field(t, p, "recipient", str),
        _field(t, p, "amount", int),
    )


def _apply_stake(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.stake(signer, _field(t, p, "amount", int))


def _apply_unstake(ledger: Ledger, signer: str, t: str, p: Json) -> Result:
    return ledger.unstake(signer, _field(t, p, "amount", int))


ApplyFn = Callable[[Ledger, str, str, Json], Result]

_APPLIERS: Dict[str, ApplyFn] = {
    "SET_PAUSED": _apply_set_paused,
    "TRANSFER_ADMIN": _apply_transfer_admin,
    "MINT": _apply_mint,
    "BURN": _apply_burn,
    "TRANSFER": _apply_transfer,
    "APPROVE": _apply_approve,
    "TRANSFER_FROM": _apply_transfer_from,
    "STAKE": _apply_stake,
    "UNSTAKE": _apply_unstake,
}

SUPPORTED_TX_TYPES: Tuple[str, ...] = tuple(sorted(_APPLIERS))


def apply_tx(ledger: Ledger, env: Any) -> Result:
    """Run the ledger operation named by an envelope on behalf of its signer.

    Malformed envelopes raise ApplyError; ledger outcomes (including failures)
    come back unchanged as Ok / Err.
    """
    env_norm: Any = env
    if isinstance(env, dict):
        env_norm = TxEnvelope.from_json(env)

    t = _tx_type(env_norm)
    if not t:
        raise ApplyError("invalid_tx", "missing_tx_type", {"tx_type": t})

    fn = _APPLIERS.get(t)
    if fn is None:
        raise ApplyError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t})

    signer = str(_get(env_norm, "signer", "") or "").strip()
    if not signer:
        raise ApplyError("invalid_tx", "missing_signer", {"tx_type": t})

    payload = _get(env_norm, "payload", None)
    if not isinstance(payload, dict):
        raise ApplyError("invalid_payload", "payload_not_object", {"tx_type": t})

    return fn(ledger, signer, t, payload)


__all__ = ["SUPPORTED_TX_TYPES", "apply_tx"]

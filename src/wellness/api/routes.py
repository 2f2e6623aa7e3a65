from __future__ import annotations

import os
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from wellness.api.errors import ApiError
from wellness.api.schemas import TxSubmitRequest
from wellness.ledger.constants import EVENT_KINDS
from wellness.runtime.errors import ApplyError, error_code_table

router = APIRouter()

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


@router.get("/health")
def v1_health() -> Json:
    return {"ok": True, "mode": (os.environ.get("WELLNESS_MODE") or "prod").strip().lower()}


@router.get("/error-codes")
def v1_error_codes() -> Json:
    return {"ok": True, "codes": error_code_table()}


@router.get("/ledger")
def v1_ledger(request: Request) -> Json:
    return {"ok": True, **_executor(request).summary()}


@router.get("/accounts/{address}")
def v1_account(address: str, request: Request) -> Json:
    return {"ok": True, "address": address, **_executor(request).account(address)}


@router.get("/allowances/{owner}/{spender}")
def v1_allowance(owner: str, spender: str, request: Request) -> Json:
    amount = _executor(request).allowance(owner, spender)
    return {"ok": True, "owner": owner, "spender": spender, "amount": amount}


@router.get("/events")
def v1_events(request: Request, after: int = 0, limit: int = 100, kind: Optional[str] = None) -> Json:
    if kind is not None and kind not in EVENT_KINDS:
        raise ApiError.bad_request("bad_event_kind", f"unknown event kind: {kind}", {"allowed": list(EVENT_KINDS)})
    events = _executor(request).events_after(after, limit=limit, kind=kind)
    return {"ok": True, "events": events, "next_after": events[-1]["seq"] if events else int(after)}


@router.get("/tx/{tx_id}")
def v1_tx_receipt(tx_id: str, request: Request) -> Json:
    receipt = _executor(request).get_receipt(tx_id)
    if receipt is None:
        raise ApiError.not_found("tx_not_found", "no receipt for tx_id", {"tx_id": tx_id})
    return receipt


@router.post("/tx/submit")
def v1_tx_submit(body: TxSubmitRequest, request: Request) -> Json:
    """Submit one signed envelope.

    Returns the receipt: ok=True with the operation's value, or ok=False with
    the ledger error {code, name}. Envelopes that never reach the ledger
    (unsupported type, bad payload, bad signature, wrong nonce) are 4xx.
    """
    ex = _executor(request)
    try:
        return ex.submit(body.model_dump())
    except ApplyError as e:
        raise ApiError.from_apply_error(e) from e

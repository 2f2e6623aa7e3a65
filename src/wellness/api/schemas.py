"""Pydantic request schemas for the public API.

These exist only for HTTP input validation; the canonical envelope type is
wellness.runtime.tx_types.TxEnvelope.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, StrictInt


class TxSubmitRequest(BaseModel):
    tx_type: str = Field(..., min_length=1, description="e.g. TRANSFER, APPROVE, STAKE")
    signer: str = Field(..., min_length=1, description="Caller address")
    nonce: StrictInt = Field(..., ge=1, description="Next per-signer nonce (last + 1)")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Operation arguments")

    sig: str = Field(default="", description="Hex or base64 Ed25519 signature")
    pubkey: Optional[str] = Field(default=None, description="Hex or base64 Ed25519 public key")

    model_config = {"extra": "forbid"}

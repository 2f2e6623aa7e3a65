from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TxEnvelope:
    """Host-side request to run one ledger operation on behalf of `signer`."""

    tx_type: str
    signer: str
    nonce: int
    payload: Dict[str, Any] = field(default_factory=dict)
    sig: str = ""
    pubkey: Optional[str] = None

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return TxEnvelope(
            tx_type=str(j.get("tx_type", "") or "").strip().upper(),
            signer=str(j.get("signer", "") or "").strip(),
            nonce=int(j.get("nonce", 0) or 0),
            payload=dict(j.get("payload", {}) or {}),
            sig=str(j.get("sig", "") or ""),
            pubkey=(None if j.get("pubkey") is None else str(j.get("pubkey"))),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": self.nonce,
            "payload": self.payload,
            "sig": self.sig,
            "pubkey": self.pubkey,
        }


__all__ = ["TxEnvelope"]

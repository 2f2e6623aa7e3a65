# src/wellness/crypto/sig.py
from __future__ import annotations

import base64
import hashlib
import json
import re
from typing import Any, Dict, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

Json = Dict[str, Any]

ADDRESS_PREFIX = "WL"
_ADDRESS_RE = re.compile(ADDRESS_PREFIX + r"[0-9A-F]{40}")


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except Exception as e:
        raise ValueError("not hex or base64") from e


def address_from_pubkey(pubkey: str) -> str:
    """Derive the ledger address owned by an Ed25519 public key.

    address = "WL" + upper(first 40 hex chars of sha256(raw pubkey bytes))
    """
    pk_b = _decode_bytes(pubkey)
    if len(pk_b) != 32:
        raise ValueError("ed25519 pubkey must be 32 bytes")
    return ADDRESS_PREFIX + hashlib.sha256(pk_b).hexdigest()[:40].upper()


def is_address(addr: Any) -> bool:
    """True if `addr` has the shape of a key-derived address (a signer can own it)."""
    return isinstance(addr, str) and _ADDRESS_RE.fullmatch(addr) is not None


def canonical_tx_message(*, tx_type: str, signer: str, nonce: int, payload: Json) -> bytes:
    obj: Json = {
        "tx_type": str(tx_type),
        "signer": str(signer),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing a 32-byte seed.
    encoding: "hex" (default) or "b64".
    """
    pk_b = _decode_bytes(privkey)
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be a 32-byte seed")

    key = Ed25519PrivateKey.from_private_bytes(pk_b)
    sig_b = key.sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def sign_tx_envelope_dict(*, tx: Json, privkey: str, pubkey: str, encoding: str = "hex") -> Json:
    """Return a copy of tx with its 'sig' and 'pubkey' fields populated."""
    tx_type = str(tx.get("tx_type") or "")
    signer = str(tx.get("signer") or "")
    nonce = int(tx.get("nonce") or 0)
    payload = tx.get("payload") if isinstance(tx.get("payload"), dict) else {}

    msg = canonical_tx_message(tx_type=tx_type, signer=signer, nonce=nonce, payload=payload)

    out = dict(tx)
    out["tx_type"] = tx_type
    out["signer"] = signer
    out["nonce"] = nonce
    out["payload"] = payload
    out["pubkey"] = pubkey
    out["sig"] = sign_ed25519(message=msg, privkey=privkey, encoding=encoding)
    return out


def verify_tx_envelope(
    *,
    tx_type: str,
    signer: str,
    nonce: int,
    payload: Json,
    sig: str,
    pubkey: str,
) -> Tuple[bool, Dict[str, Any]]:
    """Check that `pubkey` owns `signer` and signed this envelope."""
    if not pubkey or not sig:
        return False, {"reason": "missing_signature"}

    try:
        owner = address_from_pubkey(pubkey)
    except ValueError:
        return False, {"reason": "bad_pubkey"}
    if owner != signer:
        return False, {"reason": "pubkey_signer_mismatch", "derived": owner}

    msg = canonical_tx_message(tx_type=tx_type, signer=signer, nonce=nonce, payload=payload)
    if not verify_ed25519_signature(message=msg, sig=sig, pubkey=pubkey):
        return False, {"reason": "invalid_signature"}
    return True, {"pubkey": pubkey}

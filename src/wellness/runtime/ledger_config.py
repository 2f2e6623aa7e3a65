# src/wellness/runtime/ledger_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from wellness.crypto.sig import ADDRESS_PREFIX, is_address
from wellness.ledger.constants import DEV_ADMIN, ZERO_ADDRESS

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    if v is None:
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class LedgerConfig:
    ledger_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Genesis deployer; becomes the ledger admin on first boot only.
    admin: str

    db_path: str

    api_host: str
    api_port: int

    # When False the executor trusts the envelope signer (dev only).
    require_signatures: bool
    check_invariants: bool

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_ledger_config(cfg: LedgerConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.ledger_id, str) or not cfg.ledger_id.strip():
        raise ValueError("ledger_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}")

    if not isinstance(cfg.admin, str) or not cfg.admin.strip():
        raise ValueError("admin must be a non-empty address (required outside dev)")
    if cfg.admin == ZERO_ADDRESS:
        raise ValueError("admin must not be the zero address")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if mode == "prod" and not cfg.require_signatures:
        raise ValueError("require_signatures cannot be disabled in prod")

    # Signed calls act as the key-derived address; any other admin is unreachable.
    if cfg.require_signatures and not is_address(cfg.admin):
        raise ValueError(
            f"admin must be a key-derived {ADDRESS_PREFIX} address when require_signatures is on; got: {cfg.admin!r}"
        )


def default_ledger_config(mode: str = "prod") -> LedgerConfig:
    m = (mode or "prod").strip().lower()
    return LedgerConfig(
        ledger_id="wellness-dev",
        mode=m,
        # Only dev gets an implicit admin, and dev trusts the envelope signer.
        # testnet/prod operators must name the deployer (WELLNESS_ADMIN or config file).
        admin=DEV_ADMIN if m == "dev" else "",
        db_path="./data/wellness.db",
        api_host="127.0.0.1",
        api_port=8080,
        require_signatures=(m != "dev"),
        check_invariants=(m != "prod"),
        log_level="INFO",
    )


def _read_raw(path: Path) -> Json:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("ledger config must be a mapping/object")
    return raw


def read_ledger_config_file(path: str) -> LedgerConfig:
    raw = _read_raw(Path(path))

    d = default_ledger_config(_as_str(raw.get("mode"), "prod"))

    cfg = LedgerConfig(
        ledger_id=_as_str(raw.get("ledger_id"), d.ledger_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        admin=_as_str(raw.get("admin"), d.admin).strip(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        require_signatures=_as_bool(raw.get("require_signatures"), d.require_signatures),
        check_invariants=_as_bool(raw.get("check_invariants"), d.check_invariants),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )

    validate_ledger_config(cfg)
    return cfg


def load_ledger_config(*, config_path: Optional[str] = None) -> LedgerConfig:
    """Load operator config.

    Order:
      1) explicit config_path
      2) WELLNESS_LEDGER_CONFIG_PATH (JSON, or YAML by suffix)
      3) defaults for WELLNESS_MODE, with WELLNESS_ADMIN / WELLNESS_DB_PATH overrides
    """
    p = config_path or os.environ.get("WELLNESS_LEDGER_CONFIG_PATH")
    if p:
        return read_ledger_config_file(p)

    d = default_ledger_config(os.environ.get("WELLNESS_MODE", "prod"))
    cfg = LedgerConfig(
        ledger_id=_as_str(os.environ.get("WELLNESS_LEDGER_ID"), d.ledger_id),
        mode=d.mode,
        admin=_as_str(os.environ.get("WELLNESS_ADMIN"), d.admin).strip(),
        db_path=_as_str(os.environ.get("WELLNESS_DB_PATH"), d.db_path),
        api_host=_as_str(os.environ.get("WELLNESS_API_HOST"), d.api_host),
        api_port=_as_int(os.environ.get("WELLNESS_API_PORT"), d.api_port),
        require_signatures=_as_bool(os.environ.get("WELLNESS_REQUIRE_SIGNATURES"), d.require_signatures),
        check_invariants=_as_bool(os.environ.get("WELLNESS_CHECK_INVARIANTS"), d.check_invariants),
        log_level=_as_str(os.environ.get("WELLNESS_LOG_LEVEL"), d.log_level).strip().upper(),
    )
    validate_ledger_config(cfg)
    return cfg

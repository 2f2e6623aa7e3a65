# src/wellness/runtime/sqlite_db.py
from __future__ import annotations

import os
import json
import sqlite3
import time
import random
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Snapshots, events and receipts all go through this; unknown types must fail
    loudly rather than be silently coerced.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for the ledger host.

    Design goals:
      - single durable DB file for snapshot + events + receipts
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time; BEGIN IMMEDIATE can transiently
    fail with "database is locked", so write_tx() retries with backoff.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod        -> FULL
          - dev/testnet -> NORMAL

        Override with WELLNESS_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("WELLNESS_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("WELLNESS_SQLITE_SYNCHRONOUS") or default).strip().upper()

        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("WELLNESS_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        allow_non_wal = (os.environ.get("WELLNESS_SQLITE_ALLOW_NON_WAL") or "").strip() in {"1", "true", "TRUE"}
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("WELLNESS_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  height INTEGER NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                  seq INTEGER PRIMARY KEY,
                  kind TEXT NOT NULL,
                  fields_json TEXT NOT NULL,
                  height INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_events_kind ON events(kind);")

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                  tx_id TEXT PRIMARY KEY,
                  height INTEGER NOT NULL,
                  signer TEXT NOT NULL,
                  tx_type TEXT NOT NULL,
                  ok INTEGER NOT NULL,
                  code INTEGER,
                  receipt_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_receipts_signer ON receipts(signer);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed)
        """
        deadline_ms = max(250, _env_int("WELLNESS_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("WELLNESS_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("WELLNESS_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                con.execute("ROLLBACK;")
                raise


class SqliteLedgerStore:
    """Ledger snapshot, event log and receipts persisted in SQLite.

    The authoritative snapshot is a single row; events and receipts are
    append-only. commit() writes all three in one transaction so a crash never
    leaves a snapshot without its events (or the reverse).
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        """Return {"height": int, "state": {...}} for the stored snapshot."""
        with self._db.connection() as con:
            row = con.execute("SELECT height, state_json FROM ledger_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("ledger_state is not a JSON object")
            return {"height": int(row["height"]), "state": st}

    def write(self, st: Json, *, height: int = 0) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        with self._db.write_tx() as con:
            self._write_snapshot(con, st, height)

    @staticmethod
    def _write_snapshot(con: sqlite3.Connection, st: Json, height: int) -> None:
        con.execute(
            """
            INSERT INTO ledger_state(id, height, state_json, updated_ts_ms)
            VALUES(1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              height=excluded.height,
              state_json=excluded.state_json,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (int(height), _canon_json(st), _now_ms()),
        )

    def commit(self, *, st: Json, height: int, events: Iterable[Json], receipt: Json) -> None:
        """Persist snapshot + new events + receipt atomically."""
        with self._db.write_tx() as con:
            self._write_snapshot(con, st, height)
            for ev in events:
                con.execute(
                    "INSERT INTO events(seq, kind, fields_json, height) VALUES(?, ?, ?, ?);",
                    (int(ev["seq"]), str(ev["kind"]), _canon_json(ev.get("fields") or {}), int(height)),
                )
            err = receipt.get("error") if isinstance(receipt.get("error"), dict) else None
            con.execute(
                """
                INSERT INTO receipts(tx_id, height, signer, tx_type, ok, code, receipt_json, created_ts_ms)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    str(receipt["tx_id"]),
                    int(height),
                    str(receipt.get("signer") or ""),
                    str(receipt.get("tx_type") or ""),
                    1 if receipt.get("ok") else 0,
                    int(err["code"]) if err else None,
                    _canon_json(receipt),
                    _now_ms(),
                ),
            )

    def max_event_seq(self) -> int:
        with self._db.connection() as con:
            row = con.execute("SELECT MAX(seq) AS s FROM events;").fetchone()
            return int(row["s"]) if (row is not None and row["s"] is not None) else 0

    def events_after(self, after: int = 0, *, limit: int = 100, kind: Optional[str] = None) -> List[Json]:
        limit = max(1, min(int(limit), 1000))
        q = "SELECT seq, kind, fields_json, height FROM events WHERE seq > ?"
        args: List[Any] = [int(after)]
        if kind:
            q += " AND kind = ?"
            args.append(str(kind))
        q += " ORDER BY seq ASC LIMIT ?;"
        args.append(limit)
        with self._db.connection() as con:
            rows = con.execute(q, tuple(args)).fetchall()
        return [
            {
                "seq": int(r["seq"]),
                "kind": str(r["kind"]),
                "fields": json.loads(str(r["fields_json"])),
                "height": int(r["height"]),
            }
            for r in rows
        ]

    def get_receipt(self, tx_id: str) -> Optional[Json]:
        with self._db.connection() as con:
            row = con.execute("SELECT receipt_json FROM receipts WHERE tx_id=? LIMIT 1;", (str(tx_id),)).fetchone()
        if row is None:
            return None
        out = json.loads(str(row["receipt_json"]))
        return out if isinstance(out, dict) else None

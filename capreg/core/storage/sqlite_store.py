from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Iterator, Optional

from capreg.core.addressing import Address

from .base import KeyedStore, StoreTransaction
from .entry import StoredEntry


def _json_dumps(obj: Any) -> str:
    """Deterministic JSON serialization.

    Security notes:
    - Do not serialize arbitrary objects; this function expects JSON-safe values.
    """

    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _dt_from_iso(text: str) -> datetime:
    return datetime.fromisoformat(text)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    address TEXT PRIMARY KEY,
    entry_type TEXT NOT NULL,
    owner TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    snapshot_hash TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS grants (
    address TEXT NOT NULL,
    kind TEXT NOT NULL,
    digest TEXT NOT NULL,
    PRIMARY KEY (address, kind)
);
"""


class _SQLiteTransaction(StoreTransaction):
    def __init__(self, con: sqlite3.Connection) -> None:
        super().__init__()
        self._con = con

    def exists_at(self, address: Address) -> bool:
        row = self._con.execute(
            "SELECT 1 FROM entries WHERE address = ?", (address.value,)
        ).fetchone()
        return row is not None

    def load_at(self, address: Address) -> StoredEntry:
        """Load and re-hash an entry.

        Security notes:
        - Treat DB content as untrusted; a hash mismatch is an integrity failure.
        """

        row = self._con.execute(
            """SELECT address, entry_type, owner, payload_json, created_at, updated_at, snapshot_hash
               FROM entries WHERE address = ?""",
            (address.value,),
        ).fetchone()
        if row is None:
            raise KeyError(f"address not found: {address}")

        entry = StoredEntry.create(
            address=Address(row[0]),
            entry_type=row[1],
            owner=row[2],
            payload=json.loads(row[3]),
            created_at=_dt_from_iso(row[4]),
            updated_at=_dt_from_iso(row[5]),
        )
        if entry.snapshot_hash != row[6]:
            raise ValueError(f"Entry snapshot_hash mismatch for {address}")
        return entry

    def _row(self, entry: StoredEntry) -> tuple:
        return (
            entry.address.value,
            entry.entry_type,
            entry.owner,
            _json_dumps(entry.payload),
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
            entry.snapshot_hash,
        )

    def store_at(self, entry: StoredEntry) -> None:
        if not isinstance(entry, StoredEntry):
            raise TypeError("Only StoredEntry instances may be stored")
        try:
            self._con.execute(
                """INSERT INTO entries(
                    address, entry_type, owner, payload_json, created_at, updated_at, snapshot_hash
                ) VALUES(?,?,?,?,?,?,?)""",
                self._row(entry),
            )
        except sqlite3.IntegrityError as e:
            raise RuntimeError(f"Duplicate address detected: {entry.address}") from e

    def mutate_at(self, entry: StoredEntry) -> None:
        if not isinstance(entry, StoredEntry):
            raise TypeError("Only StoredEntry instances may be stored")
        row = self._row(entry)
        cur = self._con.execute(
            """UPDATE entries SET entry_type = ?, owner = ?, payload_json = ?, created_at = ?,
                   updated_at = ?, snapshot_hash = ?
               WHERE address = ?""",
            row[1:] + row[:1],
        )
        if cur.rowcount == 0:
            raise RuntimeError(f"Cannot update missing address: {entry.address}")

    def grant(self, address: Address, kind: str, digest: str) -> None:
        self._con.execute(
            "INSERT OR REPLACE INTO grants(address, kind, digest) VALUES(?,?,?)",
            (address.value, kind, digest),
        )

    def grant_digest(self, address: Address, kind: str) -> Optional[str]:
        row = self._con.execute(
            "SELECT digest FROM grants WHERE address = ? AND kind = ?",
            (address.value, kind),
        ).fetchone()
        return None if row is None else str(row[0])

    def revoke(self, address: Address, kind: str) -> None:
        self._con.execute(
            "DELETE FROM grants WHERE address = ? AND kind = ?", (address.value, kind)
        )


class SQLiteRecordStore(KeyedStore):
    """SQLite persistence for registry entries and capability grants.

    Security notes:
    - Grants hold only handle digests. Record payloads carry the record's own
      mutate and destroy handles, so the DB file must be access-controlled.
    - This store does NOT encrypt data at rest.
    - Transactions use BEGIN IMMEDIATE, so the write lock is taken before the
      existence check that guards record creation.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._lock = RLock()

    def connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self.db_path), isolation_level=None)
        con.execute("PRAGMA foreign_keys = ON")
        return con

    def init_schema(self) -> None:
        """Create tables if missing."""

        con = self.connect()
        try:
            con.executescript(_SCHEMA)
        finally:
            con.close()

    @contextmanager
    def atomic(self) -> Iterator[StoreTransaction]:
        self.init_schema()
        with self._lock:
            con = self.connect()
            try:
                con.execute("BEGIN IMMEDIATE")
                txn = _SQLiteTransaction(con)
                try:
                    yield txn
                except BaseException:
                    con.execute("ROLLBACK")
                    raise
                con.execute("COMMIT")
            finally:
                con.close()
            txn.run_commit_hooks()

    def count_entries(self, entry_type: Optional[str] = None) -> int:
        self.init_schema()
        con = self.connect()
        try:
            if entry_type:
                row = con.execute(
                    "SELECT COUNT(*) FROM entries WHERE entry_type = ?", (entry_type,)
                ).fetchone()
            else:
                row = con.execute("SELECT COUNT(*) FROM entries").fetchone()
        finally:
            con.close()
        return int(row[0])

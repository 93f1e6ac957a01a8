from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from capreg.core.addressing import address_of
from capreg.core.storage.entry import ENTRY_RECORD, StoredEntry
from capreg.core.storage.memory_store import MemoryStore
from capreg.core.storage.sqlite_store import SQLiteRecordStore

A = address_of("root", "records", "alice")


def _entry(name: str = "hello") -> StoredEntry:
    return StoredEntry.create(
        address=A,
        entry_type=ENTRY_RECORD,
        owner="alice",
        payload={"display_name": name},
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return MemoryStore()
    return SQLiteRecordStore(tmp_path / "capreg.db")


def test_store_install_load_and_mutate(store) -> None:
    assert store.exists_at(A) is False

    with store.atomic() as txn:
        txn.store_at(_entry())

    assert store.exists_at(A) is True
    loaded = store.load_at(A)
    assert loaded.payload == {"display_name": "hello"}
    assert loaded.owner == "alice"

    with store.atomic() as txn:
        txn.mutate_at(loaded.with_payload({"display_name": "renamed"}))

    reloaded = store.load_at(A)
    assert reloaded.payload["display_name"] == "renamed"
    assert reloaded.created_at == loaded.created_at
    assert reloaded.snapshot_hash != loaded.snapshot_hash


def test_store_rejects_duplicate_and_missing_addresses(store) -> None:
    with store.atomic() as txn:
        txn.store_at(_entry())

    with pytest.raises(RuntimeError):
        with store.atomic() as txn:
            txn.store_at(_entry("again"))

    other = StoredEntry.create(
        address=address_of("root", "records", "bob"),
        entry_type=ENTRY_RECORD,
        owner="bob",
        payload={},
    )
    with pytest.raises(RuntimeError):
        with store.atomic() as txn:
            txn.mutate_at(other)

    with pytest.raises(KeyError):
        store.load_at(other.address)


def test_store_rolls_back_on_error_and_skips_commit_hooks(store) -> None:
    fired = []

    with pytest.raises(ValueError):
        with store.atomic() as txn:
            txn.store_at(_entry())
            txn.grant(A, "mutate", "digest")
            txn.on_commit(lambda: fired.append("x"))
            raise ValueError("abort")

    assert store.exists_at(A) is False
    with store.atomic() as txn:
        assert txn.grant_digest(A, "mutate") is None
    assert fired == []


def test_store_runs_commit_hooks_after_commit(store) -> None:
    seen = []

    with store.atomic() as txn:
        txn.store_at(_entry())
        txn.on_commit(lambda: seen.append(store.exists_at(A)))

    assert seen == [True]


def test_failing_commit_hook_does_not_undo_the_commit(store, caplog) -> None:
    seen = []

    def broken() -> None:
        raise RuntimeError("sink down")

    with caplog.at_level("ERROR", logger="capreg.storage"):
        with store.atomic() as txn:
            txn.store_at(_entry())
            txn.on_commit(broken)
            txn.on_commit(lambda: seen.append("after"))

    assert store.exists_at(A) is True
    assert seen == ["after"]
    assert any(r.getMessage() == "commit_hook_failed" for r in caplog.records)


def test_store_grants_roundtrip(store) -> None:
    with store.atomic() as txn:
        txn.grant(A, "mutate", "d1")

    with store.atomic() as txn:
        assert txn.grant_digest(A, "mutate") == "d1"
        assert txn.grant_digest(A, "destroy") is None
        txn.revoke(A, "mutate")

    with store.atomic() as txn:
        assert txn.grant_digest(A, "mutate") is None


def test_sqlite_store_detects_tampering(tmp_path: Path) -> None:
    db_path = tmp_path / "capreg.db"
    store = SQLiteRecordStore(db_path)

    with store.atomic() as txn:
        txn.store_at(_entry())

    con = sqlite3.connect(str(db_path))
    con.execute(
        "UPDATE entries SET payload_json = ? WHERE address = ?",
        ('{"display_name":"evil"}', A.value),
    )
    con.commit()
    con.close()

    with pytest.raises(ValueError):
        store.load_at(A)


def test_sqlite_store_persists_across_instances(tmp_path: Path) -> None:
    db_path = tmp_path / "capreg.db"

    with SQLiteRecordStore(db_path).atomic() as txn:
        txn.store_at(_entry())

    reopened = SQLiteRecordStore(db_path)
    assert reopened.exists_at(A) is True
    assert reopened.count_entries(ENTRY_RECORD) == 1
    assert reopened.load_at(A).payload == {"display_name": "hello"}

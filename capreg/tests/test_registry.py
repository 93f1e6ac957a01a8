from __future__ import annotations

from pathlib import Path

import pytest

from capreg.core.registry.config import NAME_UPPER_BOUND, RegistryConfig
from capreg.core.registry.errors import (
    AlreadyExists,
    BootstrapError,
    InvalidCapability,
    NameTooLong,
    NotFound,
    Unavailable,
)
from capreg.core.registry.records import CustodyState
from capreg.core.registry.registry import RecordRegistry
from capreg.core.registry.vault import CapabilityVault
from capreg.core.runtime.event_log import EventLog
from capreg.core.security.capabilities import CapabilityKind
from capreg.core.storage.memory_store import MemoryStore
from capreg.core.storage.sqlite_store import SQLiteRecordStore


@pytest.fixture(params=["memory", "sqlite"])
def registry(request, tmp_path: Path) -> RecordRegistry:
    store = MemoryStore() if request.param == "memory" else SQLiteRecordStore(tmp_path / "r.db")
    return RecordRegistry.bootstrap("admin", store=store)


def test_record_address_is_deterministic_and_matches_install_address(registry):
    a1 = registry.record_address("alice")
    a2 = registry.record_address("alice")
    assert a1 == a2

    registry.create("alice", "hello")

    assert registry.get_record("alice").address == a1
    assert registry.store.exists_at(a1) is True


def test_owner_ids_are_keyed_verbatim(registry):
    registry.create(" alice", "padded")

    assert registry.has_record(" alice") is True
    assert registry.get_record(" alice").address == registry.record_address(" alice")
    assert registry.get_record(" alice").owner == " alice"
    assert registry.has_record("alice") is False

    registry.create("alice", "plain")
    assert registry.record_address("alice") != registry.record_address(" alice")


def test_second_create_always_conflicts(registry):
    registry.create("alice", "hello")

    for name in ("hello", "world", "", "x" * NAME_UPPER_BOUND):
        with pytest.raises(AlreadyExists) as exc:
            registry.create("alice", name)
        assert exc.value.error_class == "conflict"

    assert registry.get_record("alice").display_name == "hello"


def test_name_length_boundary_for_create_and_rename(registry):
    registry.create("alice", "a" * NAME_UPPER_BOUND)
    assert registry.get_record("alice").display_name == "a" * NAME_UPPER_BOUND

    with pytest.raises(NameTooLong) as exc:
        registry.create("bob", "b" * (NAME_UPPER_BOUND + 1))
    assert exc.value.error_class == "validation"
    assert registry.has_record("bob") is False

    registry.rename("alice", "c" * NAME_UPPER_BOUND)
    assert registry.get_record("alice").display_name == "c" * NAME_UPPER_BOUND

    with pytest.raises(NameTooLong):
        registry.rename("alice", "d" * (NAME_UPPER_BOUND + 1))
    assert registry.get_record("alice").display_name == "c" * NAME_UPPER_BOUND


def test_name_length_counts_characters_not_bytes(registry):
    registry.create("alice", "é" * NAME_UPPER_BOUND)

    with pytest.raises(NameTooLong):
        registry.create("bob", "é" * (NAME_UPPER_BOUND + 1))


def test_rename_validates_the_name_before_looking_up_the_record(registry):
    with pytest.raises(NameTooLong):
        registry.rename("nobody", "a" * (NAME_UPPER_BOUND + 1))

    with pytest.raises(Unavailable):
        registry.rename("nobody", "a" * NAME_UPPER_BOUND)


def test_rename_without_record_is_unavailable_and_leaves_others_alone(registry):
    registry.create("alice", "hello")

    with pytest.raises(Unavailable) as exc:
        registry.rename("carol", "anything")
    assert exc.value.error_class == "availability"
    assert NotFound is Unavailable

    assert registry.get_record("alice").display_name == "hello"
    assert registry.has_record("carol") is False


def test_create_transfers_ownership_to_the_principal(registry):
    registry.create("alice", "x")

    assert registry.has_record("alice") is True
    record = registry.get_record("alice")
    assert record.owner == "alice"
    assert record.owner != registry.vault.proxy_address.value
    assert record.custody is CustodyState.OWNED_BY_PRINCIPAL
    assert registry.store.load_at(record.address).owner == "alice"

    with registry.store.atomic() as txn:
        assert txn.grant_digest(record.address, CapabilityKind.TRANSFER.value) is None
        assert txn.grant_digest(record.address, CapabilityKind.MUTATE.value) is not None
        assert txn.grant_digest(record.address, CapabilityKind.DESTROY.value) is not None


def test_end_to_end_scenario(registry):
    registry.create("alice", "hello")
    assert registry.has_record("alice") is True

    with pytest.raises(AlreadyExists):
        registry.create("alice", "world")
    assert registry.has_record("alice") is True
    assert registry.get_record("alice").display_name == "hello"

    registry.rename("alice", "newname")
    assert registry.get_record("alice").display_name == "newname"

    with pytest.raises(NameTooLong):
        registry.create("bob", "a" * 41)
    assert registry.has_record("bob") is False


def test_has_record_and_addresses_for_unknown_identifiers(registry):
    assert registry.has_record("never-seen") is False
    assert registry.has_record("") is False
    assert registry.has_record(12345) is False
    assert registry.record_address(12345) == registry.record_address("12345")
    assert registry.namespace_address() == registry.vault.namespace.address

    with pytest.raises(Unavailable):
        registry.get_record("never-seen")


def test_create_emits_events_only_on_success():
    events = EventLog()
    registry = RecordRegistry.bootstrap("admin", events=events)
    base = len(events.get_events())

    registry.create("alice", "hello")
    created = events.get_events("RecordCreated")
    assert len(created) == 1
    assert created[0].derived_name == "alice"
    assert created[0].display_name == "hello"
    assert len(events.get_events("RecordTransferred")) == 1

    with pytest.raises(AlreadyExists):
        registry.create("alice", "again")
    with pytest.raises(NameTooLong):
        registry.create("bob", "b" * 41)
    registry.rename("alice", "renamed")

    assert len(events.get_events()) == base + 2
    assert events.verify_integrity() is True


def test_rename_events_are_opt_in():
    events = EventLog()
    registry = RecordRegistry.bootstrap(
        "admin", config=RegistryConfig(emit_rename_events=True), events=events
    )
    registry.create("alice", "hello")
    registry.rename("alice", "newname")

    renamed = events.get_events("RecordRenamed")
    assert len(renamed) == 1
    assert renamed[0].old_name == "hello"
    assert renamed[0].new_name == "newname"


def test_rename_requires_the_records_mutate_grant(registry):
    registry.create("alice", "hello")
    address = registry.record_address("alice")

    with registry.store.atomic() as txn:
        txn.revoke(address, CapabilityKind.MUTATE.value)

    with pytest.raises(InvalidCapability):
        registry.rename("alice", "newname")
    assert registry.get_record("alice").display_name == "hello"


def test_create_without_bootstrap_fails_before_writing():
    store = MemoryStore()
    registry = RecordRegistry(CapabilityVault(store))

    with pytest.raises(BootstrapError):
        registry.create("alice", "hello")
    assert len(store) == 0
    assert registry.has_record("alice") is False


def test_records_survive_a_new_registry_over_the_same_store(tmp_path: Path):
    store = SQLiteRecordStore(tmp_path / "r.db")
    registry = RecordRegistry.bootstrap("admin", store=store)
    registry.create("alice", "hello")

    reader = RecordRegistry(CapabilityVault(SQLiteRecordStore(tmp_path / "r.db")))
    assert reader.has_record("alice") is True
    assert reader.get_record("alice").display_name == "hello"

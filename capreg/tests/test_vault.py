from __future__ import annotations

from pathlib import Path

import pytest

from capreg.core.addressing import namespace_address
from capreg.core.registry.config import RegistryConfig
from capreg.core.registry.errors import BootstrapError, InvalidCapability
from capreg.core.registry.vault import CapabilityVault
from capreg.core.runtime.event_log import EventLog
from capreg.core.security.capabilities import CapabilityKind
from capreg.core.storage.entry import ENTRY_NAMESPACE, ENTRY_PROXY
from capreg.core.storage.memory_store import MemoryStore
from capreg.core.storage.sqlite_store import SQLiteRecordStore


def test_bootstrap_creates_proxy_and_namespace_and_emits_events():
    store = MemoryStore()
    events = EventLog()
    cfg = RegistryConfig(namespace_name="people", namespace_uri="https://example.test/ns")
    vault = CapabilityVault(store, cfg, events=events)

    assert vault.is_bootstrapped is False
    ns = vault.bootstrap("admin")

    assert vault.is_bootstrapped is True
    assert ns.address == namespace_address(cfg.root_identity, cfg.app_seed)
    assert ns.name == "people"
    assert ns.display_uri == "https://example.test/ns"

    proxy_entry = store.load_at(vault.proxy_address)
    assert proxy_entry.entry_type == ENTRY_PROXY
    assert proxy_entry.payload["admin_id"] == "admin"
    assert "BEGIN PUBLIC KEY" in proxy_entry.payload["public_key_pem"]

    ns_entry = store.load_at(ns.address)
    assert ns_entry.entry_type == ENTRY_NAMESPACE
    assert ns_entry.owner == vault.proxy_address.value

    assert [e.event_type for e in events.get_events()] == ["ProxyCreated", "NamespaceCreated"]


def test_double_bootstrap_is_fatal_and_writes_nothing():
    store = MemoryStore()
    vault = CapabilityVault(store)
    vault.bootstrap("admin")
    before = len(store)

    with pytest.raises(BootstrapError) as exc:
        vault.bootstrap("admin")

    assert exc.value.error_class == "fatal"
    assert len(store) == before


def test_second_vault_on_bootstrapped_store_is_rejected(tmp_path: Path):
    db_path = tmp_path / "capreg.db"
    CapabilityVault(SQLiteRecordStore(db_path)).bootstrap("admin")

    other = CapabilityVault(SQLiteRecordStore(db_path))
    with pytest.raises(BootstrapError):
        other.bootstrap("admin")

    assert other.is_bootstrapped is False


def test_delegated_signer_requires_bootstrap():
    vault = CapabilityVault(MemoryStore())

    with pytest.raises(BootstrapError):
        vault.delegated_signer()

    with pytest.raises(BootstrapError):
        _ = vault.namespace


def test_delegated_signer_is_reconstituted_from_extend_grant():
    store = MemoryStore()
    vault = CapabilityVault(store)
    vault.bootstrap("admin")

    signer = vault.delegated_signer()
    assert signer.address == vault.proxy_address
    assert signer.sign({"a": 1})
    assert "BEGIN PUBLIC KEY" in signer.public_key_pem

    # Revoking the grant withdraws the vault's authority.
    with store.atomic() as txn:
        txn.revoke(vault.proxy_address, CapabilityKind.EXTEND.value)

    with pytest.raises(InvalidCapability):
        vault.delegated_signer()


class _BrokenSink:
    def emit_event(self, event):
        raise RuntimeError("sink down")


def test_bootstrap_survives_a_failing_event_sink():
    store = MemoryStore()
    vault = CapabilityVault(store, events=_BrokenSink())

    vault.bootstrap("admin")

    assert vault.is_bootstrapped is True
    assert len(store) == 2
    assert vault.delegated_signer().address == vault.proxy_address

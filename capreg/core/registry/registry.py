from __future__ import annotations

import logging
from typing import List, Optional, Union

from capreg.core.addressing import Address, namespace_address, record_address
from capreg.core.registry import transfer as transfer_protocol
from capreg.core.registry.config import RegistryConfig
from capreg.core.registry.errors import AlreadyExists, Unavailable
from capreg.core.registry.records import (
    RecordView,
    check_name,
    record_payload,
    stored_handle,
)
from capreg.core.registry.vault import CapabilityVault
from capreg.core.runtime.event_log import EventLog, EventSink
from capreg.core.runtime.events import RecordCreated, RecordRenamed, RegistryEvent
from capreg.core.security.capabilities import CapabilityKind, mint_handle
from capreg.core.security.grants import check_grant, install_grant
from capreg.core.security.identity import Principal, as_principal
from capreg.core.storage.base import KeyedStore, StoreTransaction
from capreg.core.storage.entry import ENTRY_RECORD, StoredEntry
from capreg.core.storage.memory_store import MemoryStore

log = logging.getLogger("capreg.registry")


class RecordRegistry:
    """
    At most one record per principal, addressed without an index.

    Responsibilities
    - Derive record addresses from (proxy, namespace, owner id)
    - Create records through the vault's delegated signer and hand them
      to their owner with a single-use transfer ticket
    - Gate rename behind the record's own mutate handle

    Security and consistency invariants
    - Every precondition is checked before the first write
    - Each write operation runs in one store transaction
    - Events are published only after that transaction commits
    """

    def __init__(self, vault: CapabilityVault, events: Optional[EventSink] = None) -> None:
        self._vault = vault
        self._store = vault.store
        self._config = vault.config
        self._events = events

    @classmethod
    def bootstrap(
        cls,
        admin: Union[str, Principal],
        *,
        store: Optional[KeyedStore] = None,
        config: Optional[RegistryConfig] = None,
        events: Optional[EventSink] = None,
    ) -> "RecordRegistry":
        """Designated entry point: bootstrap a vault and wrap it in a registry."""

        sink = events if events is not None else EventLog()
        vault = CapabilityVault(store or MemoryStore(), config, events=sink)
        vault.bootstrap(admin)
        return cls(vault, events=sink)

    @property
    def vault(self) -> CapabilityVault:
        return self._vault

    @property
    def store(self) -> KeyedStore:
        return self._store

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def events(self) -> Optional[EventSink]:
        return self._events

    # --- pure reads ---

    def namespace_address(self) -> Address:
        return namespace_address(self._config.root_identity, self._config.app_seed)

    def record_address(self, owner_id: object) -> Address:
        return record_address(self._vault.proxy_address, self._config.namespace_name, owner_id)

    def has_record(self, owner_id: object) -> bool:
        """True iff a record exists at the derived address. Never raises for odd ids."""

        return self._store.exists_at(self.record_address(owner_id))

    def get_record(self, owner_id: object) -> RecordView:
        address = self.record_address(owner_id)
        try:
            entry = self._store.load_at(address)
        except KeyError as e:
            raise Unavailable(str(owner_id)) from e
        if entry.entry_type != ENTRY_RECORD:
            raise Unavailable(str(owner_id))
        return RecordView.from_entry(entry)

    def proxy_public_key_pem(self) -> str:
        """Public key that verifies transfer receipts issued by this registry."""

        return str(self._store.load_at(self._vault.proxy_address).payload["public_key_pem"])

    # --- writes ---

    def create(self, owner: Union[str, Principal], display_name: str) -> None:
        """Create owner's record and transfer it to them.

        Raises
        - NameTooLong: display_name exceeds the bound.
        - AlreadyExists: owner already has a record in this namespace.
        - BootstrapError: the vault was never bootstrapped.
        """

        owner = as_principal(owner)
        check_name(display_name)

        address = self.record_address(owner.principal_id)
        staged: List[RegistryEvent] = []

        with self._store.atomic() as txn:
            if txn.exists_at(address):
                raise AlreadyExists(owner.principal_id, address)

            signer = self._vault.delegated_signer(txn)

            mutate = mint_handle(CapabilityKind.MUTATE, address)
            destroy = mint_handle(CapabilityKind.DESTROY, address)
            ticket = transfer_protocol.issue_ticket(txn, address)

            txn.store_at(
                StoredEntry.create(
                    address=address,
                    entry_type=ENTRY_RECORD,
                    owner=signer.signer_id,
                    payload=record_payload(
                        namespace=self.namespace_address(),
                        derived_name=owner.principal_id,
                        display_name=display_name,
                        mutate=mutate,
                        destroy=destroy,
                    ),
                )
            )
            install_grant(txn, mutate)
            install_grant(txn, destroy)

            staged.append(
                RecordCreated(
                    record_address=address.value,
                    derived_name=owner.principal_id,
                    display_name=display_name,
                )
            )
            staged.append(transfer_protocol.transfer(txn, signer, ticket, owner))
            self._publish_on_commit(txn, staged)

        log.info(
            "record_created",
            extra={"record_address": address.value, "owner_id": owner.principal_id},
        )

    def rename(self, owner: Union[str, Principal], new_name: str) -> None:
        """Overwrite the display name of owner's record in place.

        Raises
        - NameTooLong: new_name exceeds the bound. Checked before the lookup.
        - Unavailable: owner has no record, or does not own it.
        - InvalidCapability: the record's mutate handle no longer matches its grant.
        """

        owner = as_principal(owner)
        check_name(new_name)
        address = self.record_address(owner.principal_id)

        with self._store.atomic() as txn:
            entry = self._owned_entry(txn, address, owner)

            mutate = stored_handle(entry, CapabilityKind.MUTATE)
            check_grant(txn, mutate, CapabilityKind.MUTATE, address)

            old_name = str(entry.payload.get("display_name", ""))
            payload = dict(entry.payload)
            payload["display_name"] = new_name
            txn.mutate_at(entry.with_payload(payload))

            if self._config.emit_rename_events:
                self._publish_on_commit(
                    txn,
                    [
                        RecordRenamed(
                            record_address=address.value, old_name=old_name, new_name=new_name
                        )
                    ],
                )

        log.info(
            "record_renamed",
            extra={"record_address": address.value, "owner_id": owner.principal_id},
        )

    def _owned_entry(
        self, txn: StoreTransaction, address: Address, owner: Principal
    ) -> StoredEntry:
        if not txn.exists_at(address):
            raise Unavailable(owner.principal_id)
        entry = txn.load_at(address)
        if entry.entry_type != ENTRY_RECORD or entry.owner != owner.principal_id:
            raise Unavailable(owner.principal_id)
        return entry

    def _publish_on_commit(self, txn: StoreTransaction, staged: List[RegistryEvent]) -> None:
        sink = self._events
        if sink is None:
            return

        def publish() -> None:
            for event in staged:
                sink.emit_event(event)

        txn.on_commit(publish)

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Mapping, Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from capreg.core.addressing import Address, namespace_address, proxy_address
from capreg.core.registry.config import RegistryConfig
from capreg.core.registry.errors import BootstrapError
from capreg.core.runtime.event_log import EventSink
from capreg.core.runtime.events import NamespaceCreated, ProxyCreated
from capreg.core.security.capabilities import CapabilityHandle, CapabilityKind, mint_handle
from capreg.core.security.grants import check_grant, install_grant
from capreg.core.security.identity import Principal, as_principal
from capreg.core.security.signing import (
    generate_signing_key,
    public_key_pem,
    sign_detached_ed25519,
)
from capreg.core.storage.base import KeyedStore, StoreTransaction
from capreg.core.storage.entry import ENTRY_NAMESPACE, ENTRY_PROXY, StoredEntry

log = logging.getLogger("capreg.vault")


@dataclass(frozen=True, slots=True)
class NamespaceInfo:
    """Immutable metadata fixed when the namespace is created."""

    address: Address
    name: str
    description: str
    display_uri: str
    proxy: Address


class DelegatedSigner:
    """Short-lived acting authority for the proxy identity.

    Only CapabilityVault constructs these, and only after the extend handle
    has been checked against the store.
    """

    __slots__ = ("_address", "_key")

    def __init__(self, address: Address, key: Ed25519PrivateKey) -> None:
        self._address = address
        self._key = key

    @property
    def address(self) -> Address:
        return self._address

    @property
    def signer_id(self) -> str:
        return self._address.value

    @property
    def public_key_pem(self) -> str:
        return public_key_pem(self._key)

    def sign(self, payload: Mapping[str, Any]) -> str:
        return sign_detached_ed25519(self._key, payload)

    def __repr__(self) -> str:
        return f"DelegatedSigner(address={self._address})"


class CapabilityVault:
    """
    Holds the single long-lived extend handle for the proxy identity.

    Security invariants
    - bootstrap() succeeds at most once per vault and per store
    - The extend handle and signing key never leave the vault
    - delegated_signer() fails closed before bootstrap or if the stored
      grant no longer matches the held handle
    """

    def __init__(
        self,
        store: KeyedStore,
        config: Optional[RegistryConfig] = None,
        events: Optional[EventSink] = None,
    ) -> None:
        self.store = store
        self.config = config or RegistryConfig()
        self._events = events
        self._lock = Lock()
        self._extend: Optional[CapabilityHandle] = None
        self._key: Optional[Ed25519PrivateKey] = None
        self._namespace: Optional[NamespaceInfo] = None

    @property
    def is_bootstrapped(self) -> bool:
        return self._extend is not None

    @property
    def proxy_address(self) -> Address:
        return proxy_address(self.config.root_identity, self.config.app_seed)

    @property
    def namespace(self) -> NamespaceInfo:
        if self._namespace is None:
            raise BootstrapError("vault has not been bootstrapped")
        return self._namespace

    def bootstrap(self, admin: Union[str, Principal]) -> NamespaceInfo:
        """Create the proxy identity, mint its extend handle and create the namespace.

        Raises
        - BootstrapError: on a second call, or when the store already holds
          a proxy identity or namespace at the derived addresses. Nothing is
          written in either case.
        """

        admin = as_principal(admin)
        cfg = self.config

        with self._lock:
            if self._extend is not None:
                raise BootstrapError("vault is already bootstrapped")

            proxy = self.proxy_address
            ns_addr = namespace_address(cfg.root_identity, cfg.app_seed)
            key = generate_signing_key()
            extend = mint_handle(CapabilityKind.EXTEND, proxy)
            pem = public_key_pem(key)

            with self.store.atomic() as txn:
                if txn.exists_at(proxy) or txn.exists_at(ns_addr):
                    raise BootstrapError(f"store already bootstrapped at {proxy}")

                txn.store_at(
                    StoredEntry.create(
                        address=proxy,
                        entry_type=ENTRY_PROXY,
                        owner=proxy.value,
                        payload={"admin_id": admin.principal_id, "public_key_pem": pem},
                    )
                )
                install_grant(txn, extend)

                signer = self._reconstitute(txn, extend, key)
                namespace = NamespaceInfo(
                    address=ns_addr,
                    name=cfg.namespace_name,
                    description=cfg.namespace_description,
                    display_uri=cfg.namespace_uri,
                    proxy=signer.address,
                )
                txn.store_at(
                    StoredEntry.create(
                        address=ns_addr,
                        entry_type=ENTRY_NAMESPACE,
                        owner=signer.signer_id,
                        payload={
                            "name": namespace.name,
                            "description": namespace.description,
                            "display_uri": namespace.display_uri,
                            "proxy": signer.signer_id,
                        },
                    )
                )

                if self._events is not None:
                    sink = self._events
                    txn.on_commit(
                        lambda: sink.emit_event(
                            ProxyCreated(
                                proxy_address=proxy.value,
                                admin_id=admin.principal_id,
                                public_key_pem=pem,
                            )
                        )
                    )
                    txn.on_commit(
                        lambda: sink.emit_event(
                            NamespaceCreated(
                                namespace_address=ns_addr.value,
                                name=namespace.name,
                                description=namespace.description,
                                display_uri=namespace.display_uri,
                            )
                        )
                    )

            self._extend = extend
            self._key = key
            self._namespace = namespace

        log.info(
            "vault_bootstrapped",
            extra={
                "proxy_address": proxy.value,
                "namespace_address": ns_addr.value,
                "admin_id": admin.principal_id,
            },
        )
        return namespace

    def delegated_signer(self, txn: Optional[StoreTransaction] = None) -> DelegatedSigner:
        """Reconstitute the proxy identity's signer from the stored extend handle.

        Pass the caller's open transaction to check the grant inside it;
        otherwise a short read transaction is used.

        Raises
        - BootstrapError: if bootstrap() has not run.
        - InvalidCapability: if the grant at the proxy address does not match.
        """

        extend, key = self._extend, self._key
        if extend is None or key is None:
            raise BootstrapError("vault has not been bootstrapped")

        if txn is not None:
            return self._reconstitute(txn, extend, key)

        with self.store.atomic() as own_txn:
            return self._reconstitute(own_txn, extend, key)

    @staticmethod
    def _reconstitute(
        txn: StoreTransaction, extend: CapabilityHandle, key: Ed25519PrivateKey
    ) -> DelegatedSigner:
        check_grant(txn, extend, CapabilityKind.EXTEND, extend.target)
        return DelegatedSigner(extend.target, key)

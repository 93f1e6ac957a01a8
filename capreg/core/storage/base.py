from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Callable, List, Optional

from capreg.core.addressing import Address

from .entry import StoredEntry

log = logging.getLogger("capreg.storage")


class StoreTransaction(ABC):
    """Atomic view of a keyed store for the duration of one operation.

    Writes become visible to other callers only when the enclosing
    KeyedStore.atomic() block exits without an exception.

    Callbacks registered with on_commit run after the commit, still inside
    the store's in-process lock, and are dropped on rollback. The write is
    already durable when they run, so a failing hook is logged and the
    remaining hooks still run.
    """

    def __init__(self) -> None:
        self._commit_hooks: List[Callable[[], None]] = []

    def on_commit(self, hook: Callable[[], None]) -> None:
        self._commit_hooks.append(hook)

    def run_commit_hooks(self) -> None:
        hooks, self._commit_hooks = self._commit_hooks, []
        for hook in hooks:
            try:
                hook()
            except Exception:
                log.exception("commit_hook_failed")

    @abstractmethod
    def exists_at(self, address: Address) -> bool: ...

    @abstractmethod
    def load_at(self, address: Address) -> StoredEntry:
        """Raises KeyError if nothing is stored at address."""

    @abstractmethod
    def store_at(self, entry: StoredEntry) -> None:
        """Install a new entry. Raises RuntimeError if the address is taken."""

    @abstractmethod
    def mutate_at(self, entry: StoredEntry) -> None:
        """Replace an existing entry. Raises RuntimeError if the address is empty."""

    @abstractmethod
    def grant(self, address: Address, kind: str, digest: str) -> None:
        """Record the digest of a capability handle bound to address."""

    @abstractmethod
    def grant_digest(self, address: Address, kind: str) -> Optional[str]: ...

    @abstractmethod
    def revoke(self, address: Address, kind: str) -> None: ...


class KeyedStore(ABC):
    """Persistent keyed-storage substrate.

    Contract
    - atomic() serializes writers: the existence check and the install of
      a record happen under the same isolation.
    - Reads outside atomic() see only committed state.
    """

    @abstractmethod
    def atomic(self) -> AbstractContextManager[StoreTransaction]: ...

    def exists_at(self, address: Address) -> bool:
        with self.atomic() as txn:
            return txn.exists_at(address)

    def load_at(self, address: Address) -> StoredEntry:
        with self.atomic() as txn:
            return txn.load_at(address)

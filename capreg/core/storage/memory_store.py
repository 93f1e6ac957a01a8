from __future__ import annotations

from contextlib import contextmanager
from threading import RLock
from typing import Dict, Iterator, Optional, Tuple

from capreg.core.addressing import Address

from .base import KeyedStore, StoreTransaction
from .entry import StoredEntry


class _MemoryTransaction(StoreTransaction):
    def __init__(
        self,
        entries: Dict[Address, StoredEntry],
        grants: Dict[Tuple[Address, str], str],
    ) -> None:
        super().__init__()
        self.entries = entries
        self.grants = grants

    def exists_at(self, address: Address) -> bool:
        return address in self.entries

    def load_at(self, address: Address) -> StoredEntry:
        return self.entries[address]

    def store_at(self, entry: StoredEntry) -> None:
        if not isinstance(entry, StoredEntry):
            raise TypeError("Only StoredEntry instances may be stored")
        if entry.address in self.entries:
            raise RuntimeError(f"Duplicate address detected: {entry.address}")
        self.entries[entry.address] = entry

    def mutate_at(self, entry: StoredEntry) -> None:
        if not isinstance(entry, StoredEntry):
            raise TypeError("Only StoredEntry instances may be stored")
        if entry.address not in self.entries:
            raise RuntimeError(f"Cannot update missing address: {entry.address}")
        self.entries[entry.address] = entry

    def grant(self, address: Address, kind: str, digest: str) -> None:
        self.grants[(address, kind)] = digest

    def grant_digest(self, address: Address, kind: str) -> Optional[str]:
        return self.grants.get((address, kind))

    def revoke(self, address: Address, kind: str) -> None:
        self.grants.pop((address, kind), None)


class MemoryStore(KeyedStore):
    """In-process keyed store.

    Each transaction works on staged copies of the maps and swaps them in on
    success; an exception discards the stage. Entries are immutable, so
    shallow copies are enough.
    """

    def __init__(self) -> None:
        self._entries: Dict[Address, StoredEntry] = {}
        self._grants: Dict[Tuple[Address, str], str] = {}
        self._lock = RLock()

    @contextmanager
    def atomic(self) -> Iterator[StoreTransaction]:
        with self._lock:
            txn = _MemoryTransaction(dict(self._entries), dict(self._grants))
            yield txn
            self._entries = txn.entries
            self._grants = txn.grants
            txn.run_commit_hooks()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

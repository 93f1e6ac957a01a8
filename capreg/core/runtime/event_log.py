from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from .events import RegistryEvent
from .hashing import GENESIS, stable_event_hash


@runtime_checkable
class EventSink(Protocol):
    """Fire-and-forget destination for domain events."""

    def emit_event(self, event: RegistryEvent) -> object: ...


@dataclass
class EventLog:
    """
    Append-only, hash-chained log of registry events.

    Security invariants
    - Append-only event log
    - Hash-chain integrity (previous_event_hash + event_hash)
    - Monotonic event timestamps
    - Thread-safe mutation using a lock

    """

    log_id: str = "registry"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    _events: List[RegistryEvent] = field(default_factory=list, init=False, repr=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def emit_event(self, event: RegistryEvent) -> "EventLog":
        """
        Append and seal an event.

        Hash-chain rules
        - The first event uses previous_hash = "GENESIS".
        - Each next event links to the previous event_hash.
        - Timestamps must be monotonic (no time regression).

        Security note
        - RegistryEvent is frozen (immutable). We seal hash fields using object.__setattr__
          inside this trusted boundary only.

        Raises
        - TypeError: if event is not a RegistryEvent.
        - RuntimeError: if timestamp regression is detected or chain is corrupted.
        """

        if not isinstance(event, RegistryEvent):
            raise TypeError("Only RegistryEvent instances may be emitted")

        with self._lock:
            if self._events:
                last_event = self._events[-1]
                previous_hash = last_event.event_hash
                last_ts = last_event.created_at

                if previous_hash is None:
                    raise RuntimeError("Event chain corruption: last event is not sealed")

                if event.created_at < last_ts:
                    raise RuntimeError(
                        f"Event timestamp regression detected ({event.created_at} < {last_ts})"
                    )
            else:
                previous_hash = GENESIS

            event_hash = stable_event_hash(event.to_payload(), previous_hash)

            object.__setattr__(event, "previous_event_hash", previous_hash)
            object.__setattr__(event, "event_hash", event_hash)

            self._events.append(event)

        return self

    def get_events(self, event_type: Optional[str] = None) -> Tuple[RegistryEvent, ...]:
        """
        Return an immutable snapshot of recorded events in order.
        """

        with self._lock:
            if event_type is None:
                return tuple(self._events)
            return tuple(e for e in self._events if e.event_type == event_type)

    @property
    def tip(self) -> Optional[str]:
        with self._lock:
            return self._events[-1].event_hash if self._events else None

    def verify_integrity(self) -> bool:
        """
        Verify the event hash-chain.

        Returns
        - True if the chain is valid.
        - False if any event hash does not match recomputed value.
        """

        with self._lock:
            previous_hash = GENESIS

            for event in self._events:
                if event.previous_event_hash != previous_hash:
                    return False

                expected_hash = stable_event_hash(event.to_payload(), previous_hash)
                if event.event_hash != expected_hash:
                    return False

                previous_hash = event.event_hash

        return True

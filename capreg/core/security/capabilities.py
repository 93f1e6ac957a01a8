from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Union

from capreg.core.addressing import Address
from capreg.core.registry.errors import HandleConsumed, InvalidCapability

SECRET_BYTES = 32


class CapabilityKind(str, Enum):
    """The class of operation a handle authorizes."""

    EXTEND = "extend"
    MUTATE = "mutate"
    DESTROY = "destroy"
    TRANSFER = "transfer"

    @classmethod
    def parse(cls, value: Union[str, "CapabilityKind"]) -> "CapabilityKind":
        if isinstance(value, CapabilityKind):
            return value
        if not isinstance(value, str):
            raise TypeError("Capability kind must be a string")

        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("Capability kind must be non-empty")
        return cls(normalized)


def secret_digest(secret: bytes) -> str:
    return hashlib.sha256(secret).hexdigest()


@dataclass(frozen=True)
class CapabilityHandle:
    """
    Unforgeable credential for one kind of operation against one target.

    Security invariants
    - Immutable and hashable
    - The secret never appears in repr
    - Stores keep only the digest; possession of the secret is the authority
    """

    kind: CapabilityKind
    target: Address
    secret: bytes = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", CapabilityKind.parse(self.kind))

        if not isinstance(self.target, Address):
            raise TypeError("Capability target must be an Address")
        if not isinstance(self.secret, bytes) or len(self.secret) != SECRET_BYTES:
            raise ValueError(f"Capability secret must be {SECRET_BYTES} bytes")

    @property
    def digest(self) -> str:
        return secret_digest(self.secret)

    def matches(self, digest: str) -> bool:
        """Constant-time comparison against a stored grant digest."""

        if not isinstance(digest, str):
            return False
        return hmac.compare_digest(self.digest, digest)

    def require(self, kind: CapabilityKind, target: Address) -> None:
        """Fail closed unless this handle is of `kind` and bound to `target`."""

        if self.kind is not kind:
            raise InvalidCapability(f"expected {kind.value} handle, got {self.kind.value}")
        if self.target != target:
            raise InvalidCapability(f"{kind.value} handle is not bound to {target}")


def mint_handle(kind: Union[str, CapabilityKind], target: Address) -> CapabilityHandle:
    return CapabilityHandle(
        kind=CapabilityKind.parse(kind),
        target=target,
        secret=secrets.token_bytes(SECRET_BYTES),
    )


class TransferTicket:
    """Single-use transfer handle.

    Cannot be copied or pickled. consume() releases the inner handle exactly
    once; every later call raises HandleConsumed.
    """

    __slots__ = ("_handle", "_consumed", "_lock")

    def __init__(self, handle: CapabilityHandle) -> None:
        if not isinstance(handle, CapabilityHandle):
            raise TypeError("TransferTicket wraps a CapabilityHandle")
        if handle.kind is not CapabilityKind.TRANSFER:
            raise InvalidCapability("TransferTicket requires a transfer handle")

        self._handle = handle
        self._consumed = False
        self._lock = Lock()

    @property
    def target(self) -> Address:
        return self._handle.target

    @property
    def digest(self) -> str:
        return self._handle.digest

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> CapabilityHandle:
        with self._lock:
            if self._consumed:
                raise HandleConsumed(f"transfer ticket for {self.target} already consumed")
            self._consumed = True
            return self._handle

    def __copy__(self):
        raise TypeError("TransferTicket cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("TransferTicket cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("TransferTicket cannot be serialized")

    def __repr__(self) -> str:
        return f"TransferTicket(target={self.target}, consumed={self._consumed})"


def mint_transfer_ticket(target: Address) -> TransferTicket:
    return TransferTicket(mint_handle(CapabilityKind.TRANSFER, target))

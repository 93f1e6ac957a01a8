from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Principal:
    """
    Identity capable of initiating operations and owning records.

    Security invariants
    - Immutable and hashable
    - principal_id is kept verbatim: record addresses are derived from the
      exact string, so " alice" and "alice" are distinct owners
    - Blank ids are rejected
    """

    principal_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.principal_id, str):
            raise TypeError("principal_id must be a string")

        if not self.principal_id.strip():
            raise ValueError("principal_id must be non-empty")

    def __str__(self) -> str:
        return self.principal_id


def as_principal(value: Union[str, Principal]) -> Principal:
    if isinstance(value, Principal):
        return value
    return Principal(value)

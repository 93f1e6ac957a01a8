from __future__ import annotations


class RegistryError(Exception):
    """
    Base exception for all registry failures.

    error_class lets callers distinguish the failure families without
    matching on concrete types.
    """

    error_class: str = "registry"


class ValidationError(RegistryError):
    """Input rejected before any state change. Resubmit with corrected input."""

    error_class = "validation"


class NameTooLong(ValidationError):
    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"name length {length} exceeds limit {limit}")
        self.length = length
        self.limit = limit


class ConflictError(RegistryError):
    """Policy violation; retrying with the same arguments will fail again."""

    error_class = "conflict"


class AlreadyExists(ConflictError):
    def __init__(self, owner_id: str, address: object) -> None:
        super().__init__(f"record already exists for owner {owner_id!r} at {address}")
        self.owner_id = owner_id
        self.address = address


class AvailabilityError(RegistryError):
    """Operation addressed a record that is not there."""

    error_class = "availability"


class Unavailable(AvailabilityError):
    def __init__(self, owner_id: str) -> None:
        super().__init__(f"no record available for owner {owner_id!r}")
        self.owner_id = owner_id


NotFound = Unavailable


class CapabilityError(RegistryError):
    """
    A capability handle was missing, forged, or used against the wrong target.
    """

    error_class = "capability"


class InvalidCapability(CapabilityError):
    pass


class HandleConsumed(CapabilityError):
    """Raised when a single-use handle is presented a second time."""

    pass


class InvalidTransition(CapabilityError):
    """Raised when a record is not in the custody state an operation requires."""

    pass


class FatalRegistryError(RegistryError):
    """Deployment-integrity failure. The process must not continue normally."""

    error_class = "fatal"


class BootstrapError(FatalRegistryError):
    pass

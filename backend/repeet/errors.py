"""Error taxonomy shared by both problem store backends."""


class RepeetError(Exception):
    """Base class for every error raised by the core."""


class ValidationError(RepeetError):
    """Caller-supplied input violates a constraint. Nothing was written."""


class NotFoundError(RepeetError):
    """The referenced problem does not exist for the current owner."""


class UnauthenticatedError(RepeetError):
    """A remote operation was invoked without an authenticated user."""


class StorageUnavailableError(RepeetError):
    """The underlying medium (database or local blob) failed."""

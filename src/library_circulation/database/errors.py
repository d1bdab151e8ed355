"""
Error taxonomy for the circulation core.

Every failed precondition maps to exactly one of these classes and reaches the
caller unchanged. ``kind`` is the machine-readable tag tool handlers put in
their error payloads.

- ``InvalidInputError``: malformed or out-of-range request data
- ``NotFoundError``: referenced item or entry does not exist
- ``ConflictError``: well-formed request that the current state forbids
- ``StorageError``: transient storage failure; the only retryable kind
"""


class RepositoryException(Exception):
    """Base exception for repository operations."""

    kind = "repository_error"
    retryable = False


class InvalidInputError(RepositoryException):
    """Raised when request data is malformed or out of range."""

    kind = "invalid_input"


class NotFoundError(RepositoryException):
    """Raised when an entity is not found."""

    kind = "not_found"


class ConflictError(RepositoryException):
    """Raised when a request contradicts the current circulation state."""

    kind = "conflict"


class InvalidStateError(ConflictError):
    """Raised when a ledger entry is already closed."""

    kind = "invalid_state"


class DuplicateError(RepositoryException):
    """Raised when attempting to create a duplicate entity."""

    kind = "duplicate"


class IntegrityViolationError(RepositoryException):
    """Raised when stored data contradicts the availability invariant."""

    kind = "integrity_violation"


class StorageError(RepositoryException):
    """Raised when the storage layer fails (connectivity, lock timeout)."""

    kind = "storage_error"
    retryable = True

"""Domain-specific exceptions for the bookkeeping core."""

class ValidationError(ValueError):
    """Raised when provided data does not meet validation requirements."""


class RecordNotFoundError(LookupError):
    """Raised when a transaction, client, opportunity or snapshot cannot be located."""


NotFoundError = RecordNotFoundError


class ReferentialIntegrityError(ValidationError):
    """Raised when a delete is blocked by records that still reference the target."""


class PersistenceError(IOError):
    """Raised when the persistence layer encounters unrecoverable issues."""


class PersistenceWarning(UserWarning):
    """Issued when state advanced in memory but could not be written durably."""

class TaxonomyError(Exception):
    """Base class for taxonomy configuration errors."""


class ValidationRejected(TaxonomyError):
    """The candidate name duplicates an existing structural entry."""

    def __init__(self, entity_type, name):
        super().__init__(f"{entity_type} '{name}' already exists")
        self.entity_type = entity_type
        self.name = name


class StoreFailure(TaxonomyError):
    """A read or write against the taxonomy store failed.

    The session has already been rolled back when this is raised, so no
    partial write is committed.
    """

    def __init__(self, operation, cause=None):
        message = f"Store operation failed: {operation}"
        if cause is not None:
            message = f"{message} ({type(cause).__name__}: {cause})"
        super().__init__(message)
        self.operation = operation
        self.cause = cause

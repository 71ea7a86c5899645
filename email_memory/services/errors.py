"""
Error taxonomy surfaced by the email memory services.
"""


class EmailMemoryError(Exception):
    """Base class for every typed failure returned by the services."""
    pass


class ValidationError(EmailMemoryError):
    """Input rejected before any external call."""
    pass


class NoFieldsError(ValidationError):
    """Partial update carried no fields."""
    pass


class NotFoundError(EmailMemoryError):
    """Target email is absent for this owner."""
    pass


class EmbeddingError(EmailMemoryError):
    """Embedding provider failed or returned an unusable vector."""
    pass


class StorageError(EmailMemoryError):
    """Relational or vector store operation failed."""
    pass


class CompletionError(EmailMemoryError):
    """Completion provider failed."""
    pass

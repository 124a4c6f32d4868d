class ArchiveError(Exception):
    """Base class for every error raised by the archival pipeline."""


class ValidationError(ArchiveError):
    """Input rejected before any job work begins."""


class ExternalServiceError(ArchiveError):
    """The rendering service was unreachable or returned unusable content."""

    def __init__(self, message: str, service: str):
        super().__init__(message)
        self.service = service


class StorageError(ArchiveError):
    """The object store was unreachable or rejected a request."""


class RepositoryError(ArchiveError):
    """The record store was unreachable or rejected a request."""


class NotFoundError(RepositoryError):
    pass


class InvalidTransitionError(RepositoryError):
    """A status update matched no row in the expected source state."""

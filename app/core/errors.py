"""Errors raised by the snapshot pipeline."""


class ReportingError(Exception):
    """Base class for snapshot pipeline errors."""


class ValidationError(ReportingError):
    """Malformed month/year, or a period with no data yet."""


class ConflictError(ReportingError):
    """A snapshot already exists and regeneration was not requested."""


class NotFoundError(ReportingError):
    """Unknown client, snapshot or document."""


class StorageError(ReportingError):
    """Content storage or metadata write failed."""

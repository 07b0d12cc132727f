"""Adapter-specific exceptions.

``retryable`` tells the sync engine whether a failed event is worth
re-attempting.
"""


class AdapterError(Exception):
    """Base exception for adapter errors."""

    retryable: bool = True


class ConnectionError(AdapterError):
    """Raised when the adapter cannot connect to the search backend."""


class IndexOperationError(AdapterError):
    """Raised when an index lifecycle operation or a document write fails."""


class QueryError(AdapterError):
    """Raised when a search, count or suggest query fails."""


class DocumentNotFoundError(AdapterError):
    """Raised when a partial update targets a document that does not exist."""


class DocumentMissingError(AdapterError):
    """Raised when an event that needs a document payload has none."""

    retryable = False


class TaskTimeoutError(AdapterError):
    """Raised when an asynchronous backend task does not finish in time."""


class ConfigurationError(AdapterError):
    """Raised when adapter configuration is invalid."""

    retryable = False

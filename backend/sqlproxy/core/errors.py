"""
Proxy error taxonomy.

Every error a request can end with is a ``ProxyError`` carrying the HTTP status
it maps to; ``sqlproxy.main`` renders them as ``{"error": message}`` bodies.
"""


class ProxyError(Exception):
    status_code: int = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


# --- auth gate ---


class MissingCredential(ProxyError):
    status_code = 401


class InvalidCredential(ProxyError):
    status_code = 403


# --- request / query ---


class QueryValidationError(ProxyError):
    """Request body is missing a required field or carries unsupported values."""

    status_code = 400


class QueryError(ProxyError):
    """The database rejected or failed the statement."""

    status_code = 500


# --- pool / infrastructure ---


class PoolError(ProxyError):
    status_code = 500


class PoolExhausted(PoolError):
    """No connection became free within the acquire timeout."""


class PoolConnectionError(PoolError):
    """A new database connection could not be opened (or was lost mid-query)."""


class PoolClosed(PoolError):
    status_code = 503


class PoolFatalError(PoolError):
    """The shared pool is poisoned; the process is expected to shut down."""

    status_code = 503

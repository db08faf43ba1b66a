"""Error taxonomy shared by the clients and the caches."""

from __future__ import annotations


class PEcoinError(Exception):
    """Base class for errors raised by this package."""


class ValidationError(PEcoinError):
    """Caller input has the wrong shape. Raised before any cache or network access."""


class ExternalFetchError(PEcoinError):
    """An external call failed: non-2xx, JSON-RPC error or malformed payload."""

    def __init__(self, message: str, endpoint: str = "", key_count: int = 0) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.key_count = key_count


class ExternalFetchTimeout(ExternalFetchError):
    """An external call exceeded its time budget."""

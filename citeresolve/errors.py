from __future__ import annotations

from typing import Optional


class CiteResolveError(Exception):
    """Base class for errors raised inside citeresolve."""


class AdapterError(CiteResolveError):
    """A bibliographic source could not answer (transport, HTTP status, malformed payload)."""

    def __init__(self, source: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message
        self.status = status

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


class PersistenceError(CiteResolveError):
    """Writing to the record store or the cache failed."""

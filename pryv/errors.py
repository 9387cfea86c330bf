"""
Exceptions raised by the Pryv client engine.

Every failure of a batch dispatch or a streamed read surfaces to the caller
as one of these classes. Errors returned by the service for a single call
inside a successful batch are *not* exceptions: they are ordinary result
entries of the form ``{"error": {"id": ..., "message": ...}}``.
"""

from __future__ import annotations

from typing import Optional


class PryvError(Exception):
    """Base class for all client engine errors."""


class TransportError(PryvError):
    """Network failure or non-success HTTP status.

    Attributes:
        status: HTTP status code, or None when no response was received.
        error_id: ``error.id`` from the service's error body, if any.
        chunk_start: index of the first call of the failed chunk when raised
            by a batch dispatch, None otherwise.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        error_id: Optional[str] = None,
        chunk_start: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.error_id = error_id
        self.chunk_start = chunk_start


class ProtocolViolation(PryvError):
    """The service answered with something the client cannot interpret."""


class TruncatedStream(ProtocolViolation):
    """A streamed body ended before its envelope was closed."""


class HandlerError(PryvError):
    """A caller supplied result handler raised.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, index: int, method: str) -> None:
        super().__init__(f'result handler for call {index} ({method}) failed')
        self.index = index
        self.method = method


class CancellationError(PryvError):
    """The caller aborted the operation. No results are delivered."""

"""
Transport abstractions for the Pryv client engine.

This module defines the interface every transport backend must implement.
A transport performs a single HTTP request/response exchange. It either
returns the whole body at once (``request``) or hands back an incrementally
readable ``ByteSource`` (``open_stream``) for bodies too large to buffer.

Implementations may talk to a real server (see
:mod:`pryv.transport.requests_transport`) or serve canned answers for
development and testing (see :mod:`pryv.transport.mock_transport`).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ..errors import ProtocolViolation, TransportError


def status_error(status: int, body: bytes, reason: str = '') -> TransportError:
    """Build a ``TransportError`` for a non-success response.

    The service describes failures as ``{"error": {"id": ..., "message": ...}}``;
    those fields are used when the body carries them.
    """
    error_id = None
    message = reason or f'HTTP {status}'
    try:
        error = json.loads(body).get('error')
    except (ValueError, AttributeError):
        error = None
    if isinstance(error, dict):
        error_id = error.get('id')
        message = error.get('message') or message
    return TransportError(f'HTTP {status}: {message}', status=status, error_id=error_id)


@dataclass
class TransportResponse:
    """A fully buffered HTTP response."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b''

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            ProtocolViolation: if the body is not valid JSON.
        """
        try:
            return json.loads(self.body)
        except ValueError as exc:
            raise ProtocolViolation(f'response body is not valid JSON: {exc}') from exc


class ByteSource:
    """Abstract incrementally readable response body."""

    async def read(self) -> bytes:
        """Return the next chunk of bytes, or ``b''`` once the body is exhausted."""
        raise NotImplementedError('read must be implemented by subclasses')

    async def aclose(self) -> None:
        """Release the underlying connection. Safe to call more than once."""


class BufferedByteSource(ByteSource):
    """A one-shot buffer exposed as a byte source with a single chunk."""

    def __init__(self, data: bytes) -> None:
        self._data: Optional[bytes] = bytes(data)

    async def read(self) -> bytes:
        data, self._data = self._data, None
        return data or b''


class Transport:
    """Abstract base class for transport backends."""

    #: Whether ``open_stream`` can deliver a body incrementally.
    supports_streaming = False

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        data: Optional[bytes] = None,
    ) -> TransportResponse:
        """Perform one request and return the fully buffered response.

        Args:
            method: HTTP method.
            url: absolute URL.
            headers: extra request headers.
            params: query-string parameters.
            json_body: value serialized as the JSON request body.
            data: raw request body, used when ``json_body`` is None.

        Returns:
            The response, always with a 2xx status.

        Raises:
            TransportError: on network failure or non-2xx status.
            NotImplementedError: if not implemented by subclass.
        """
        raise NotImplementedError('request must be implemented by subclasses')

    async def open_stream(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ByteSource:
        """Perform one request and return its body as a byte source.

        The caller owns the returned source and must ``aclose`` it.

        Raises:
            TransportError: on network failure or non-2xx status.
            NotImplementedError: if the backend cannot stream.
        """
        raise NotImplementedError('this transport does not support streaming')

    async def aclose(self) -> None:
        """Release any pooled connections."""

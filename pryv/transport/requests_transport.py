"""
HTTP transport backed by ``requests``.

This module provides a ``RequestsTransport`` class that performs the actual
HTTP exchanges with a Pryv API endpoint through a pooled
``requests.Session``. ``requests`` is blocking, so every call runs in a
worker thread via ``asyncio.to_thread``; the event loop is never blocked.

Streamed bodies are read with ``Response.iter_content``: each ``read`` pulls
the next chunk from the socket, so nothing beyond one chunk is buffered here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterator, Mapping, Optional

import requests

from ..errors import TransportError
from .base import ByteSource, Transport, TransportResponse, status_error

logger = logging.getLogger(__name__)


class RequestsByteSource(ByteSource):
    """Byte source reading an open streamed ``requests.Response``."""

    def __init__(self, response: requests.Response, chunk_size: int) -> None:
        self.response = response
        self._chunks: Iterator[bytes] = response.iter_content(chunk_size=chunk_size)
        self._closed = False

    def _next_chunk(self) -> bytes:
        try:
            return next(self._chunks, b'')
        except requests.RequestException as exc:
            raise TransportError(f'network error while streaming: {exc}') from exc

    async def read(self) -> bytes:
        if self._closed:
            return b''
        return await asyncio.to_thread(self._next_chunk)

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self.response.close()


class RequestsTransport(Transport):
    """Transport using a ``requests.Session``."""

    supports_streaming = True

    def __init__(self, timeout: float = 30, stream_chunk_bytes: int = 64 * 1024,
                 session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.stream_chunk_bytes = stream_chunk_bytes
        self.session = session or requests.Session()

    def _send(self, method: str, url: str, stream: bool = False, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, stream=stream, **kwargs)
        except requests.RequestException as exc:
            logger.error('%s %s failed: %s', method, url, exc)
            raise TransportError(f'network error: {exc}') from exc
        if not response.ok:
            # Error bodies are small; read them even on streamed requests.
            body = response.content
            response.close()
            logger.error('%s %s answered HTTP %s', method, url, response.status_code)
            raise status_error(response.status_code, body, response.reason or '')
        return response

    def _request_sync(self, method: str, url: str, **kwargs: Any) -> TransportResponse:
        response = self._send(method, url, **kwargs)
        try:
            body = response.content
        except requests.RequestException as exc:
            raise TransportError(f'network error while reading body: {exc}') from exc
        finally:
            response.close()
        return TransportResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=body,
        )

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
        return await asyncio.to_thread(
            self._request_sync, method, url,
            headers=headers, params=params, json=json_body, data=data,
        )

    async def open_stream(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ByteSource:
        response = await asyncio.to_thread(
            self._send, method, url, stream=True, headers=headers, params=params,
        )
        return RequestsByteSource(response, self.stream_chunk_bytes)

    async def aclose(self) -> None:
        self.session.close()

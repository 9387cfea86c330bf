"""
Mock transport for development and testing without a Pryv server.

Requests are recorded and routed to a plain Python handler that returns
``(status, body)``. A body that is not ``bytes`` is serialized as JSON.
Streamed bodies are cut into small chunks so that the incremental decoding
path sees item boundaries falling anywhere, including inside strings.

Usage:

```python
def handler(req):
    return 200, {'results': [{'events': []}], 'meta': {'serverTime': 1.0}}

transport = MockTransport(handler, chunk_bytes=7)
```
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .base import BufferedByteSource, ByteSource, Transport, TransportResponse, status_error


@dataclass
class RecordedRequest:
    """A request seen by the mock transport."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Mapping[str, Any]] = None
    json_body: Any = None
    data: Optional[bytes] = None
    streamed: bool = False


Handler = Callable[[RecordedRequest], Tuple[int, Any]]


class ChunkedByteSource(ByteSource):
    """Serves a buffer in fixed-size slices and counts the reads."""

    def __init__(self, data: bytes, chunk_bytes: int) -> None:
        self._data = data
        self._chunk_bytes = chunk_bytes
        self._offset = 0
        self.reads = 0
        self.closed = False

    async def read(self) -> bytes:
        self.reads += 1
        chunk = self._data[self._offset:self._offset + self._chunk_bytes]
        self._offset += len(chunk)
        return chunk

    async def aclose(self) -> None:
        self.closed = True


class MockTransport(Transport):
    """Transport answering from an in-process handler."""

    def __init__(self, handler: Handler, supports_streaming: bool = True, chunk_bytes: int = 16) -> None:
        self.handler = handler
        self.supports_streaming = supports_streaming
        self.chunk_bytes = chunk_bytes
        self.requests: List[RecordedRequest] = []
        self.sources: List[ChunkedByteSource] = []

    def _serve(self, request: RecordedRequest) -> bytes:
        self.requests.append(request)
        status, body = self.handler(request)
        if not isinstance(body, bytes):
            body = json.dumps(body).encode('utf-8')
        if not 200 <= status < 300:
            raise status_error(status, body)
        return body

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
        body = self._serve(RecordedRequest(
            method=method, url=url, headers=dict(headers or {}),
            params=params, json_body=json_body, data=data,
        ))
        return TransportResponse(status=200, headers={'Content-Type': 'application/json'}, body=body)

    async def open_stream(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ByteSource:
        if not self.supports_streaming:
            return await super().open_stream(method, url, headers=headers, params=params)
        body = self._serve(RecordedRequest(
            method=method, url=url, headers=dict(headers or {}), params=params, streamed=True,
        ))
        if self.chunk_bytes <= 0:
            return BufferedByteSource(body)
        source = ChunkedByteSource(body, self.chunk_bytes)
        self.sources.append(source)
        return source

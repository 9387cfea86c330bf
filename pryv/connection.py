"""
Connection to a Pryv API endpoint.

This module provides the ``Connection`` class, the entry point the rest of a
client application talks to. It wires the pieces together:

- batches of method calls go through a ``ChunkedBatchDispatcher`` posting
  each chunk to the endpoint root;
- large event listings go through the streaming decoder;
- every response's ``meta.serverTime`` feeds the connection's
  ``ClockSkewEstimator``;
- attachments are encoded by ``AttachmentEncoder``.

Usage:

```python
async with Connection('https://TOKEN@user.pryv.me/') as conn:
    results = await conn.api([{'method': 'events.get', 'params': {'limit': 1}}])
    summary = await conn.get_events_streamed({'fromTime': 0}, print)
    print(conn.delta_time)
```
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .attachments import AttachmentEncoder, EncodedAttachment
from .clock import ClockSkewEstimator
from .config import ConnectionConfig
from .dispatcher import CallLike, ChunkedBatchDispatcher, ProgressHandler
from .errors import CancellationError, ProtocolViolation
from .streaming import EventCallback, StreamSummary, decode_stream
from .transport.base import Transport, TransportResponse
from .transport.requests_transport import RequestsTransport
from .utils import build_api_endpoint, extract_token_and_endpoint


class Connection:
    """A Pryv API endpoint together with its access token."""

    def __init__(self, api_endpoint: Optional[str] = None, transport: Optional[Transport] = None,
                 config: Optional[ConnectionConfig] = None) -> None:
        if config is None:
            if not api_endpoint:
                raise ValueError('api_endpoint or config is required')
            config = ConnectionConfig(api_endpoint=api_endpoint)
        self.config = config
        self.token, self.endpoint = extract_token_and_endpoint(api_endpoint or config.api_endpoint)
        self.transport = transport or RequestsTransport(
            timeout=config.timeout, stream_chunk_bytes=config.stream_chunk_bytes,
        )
        self.clock = ClockSkewEstimator()
        self.attachments = AttachmentEncoder(max_upload_bytes=config.max_upload_bytes)
        self.dispatcher = ChunkedBatchDispatcher(self._post_batch)
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: ConnectionConfig, transport: Optional[Transport] = None) -> 'Connection':
        return cls(config=config, transport=transport)

    async def __aenter__(self) -> 'Connection':
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    @property
    def api_endpoint(self) -> str:
        """The endpoint with the token embedded: ``https://{token}@host/``."""
        return build_api_endpoint(self.endpoint, self.token)

    @property
    def delta_time(self) -> float:
        """Estimated server clock minus local clock, in seconds."""
        return self.clock.current

    def current_clock_skew(self) -> float:
        return self.clock.current

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.token:
            headers['Authorization'] = self.token
        if extra:
            headers.update(extra)
        return headers

    def _url(self, path: str) -> str:
        return self.endpoint + path.lstrip('/')

    def _handle_meta(self, body: Any, sent_at: float) -> None:
        meta = body.get('meta') if isinstance(body, Mapping) else None
        self.clock.update_from_meta(sent_at, time.time(), meta)

    async def _exchange(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = self._headers(kwargs.pop('headers', None))
        sent_at = time.time()
        response: TransportResponse = await self.transport.request(
            method, self._url(path), headers=headers, **kwargs,
        )
        body = response.json()
        self._handle_meta(body, sent_at)
        return body

    async def _post_batch(self, wire_calls: List[Dict[str, Any]]) -> List[Any]:
        body = await self._exchange('POST', '', json_body=wire_calls)
        # The service wraps results as {"results": [...], "meta": {...}}.
        if isinstance(body, Mapping):
            body = body.get('results')
        if not isinstance(body, list):
            raise ProtocolViolation(f'batch response has no results array: {type(body).__name__}')
        return body

    async def api(self, calls: Sequence[CallLike], on_progress: Optional[ProgressHandler] = None,
                  cancel_event: Optional[threading.Event] = None,
                  chunk_size: Optional[int] = None) -> List[Any]:
        """Perform a batch of method calls.

        Calls are sent in chunks of ``chunk_size``, falling back to
        ``config.chunk_size`` when not given. See
        :meth:`pryv.dispatcher.ChunkedBatchDispatcher.dispatch` for the
        ordering, progress and error guarantees.

        Returns:
            One result per call, in submission order. Calls the service
            rejected individually appear as ``{"error": {...}}`` entries.
        """
        return await self.dispatcher.dispatch(
            calls, chunk_size=chunk_size if chunk_size is not None else self.config.chunk_size,
            on_progress=on_progress, cancel_event=cancel_event,
        )

    async def get(self, path: str, query: Optional[Mapping[str, Any]] = None) -> Any:
        """GET ``path`` relative to the endpoint and return the decoded body."""
        return await self._exchange('GET', path, params=query)

    async def post(self, path: str, data: Any) -> Any:
        """POST ``data`` as JSON to ``path`` and return the decoded body."""
        return await self._exchange('POST', path, json_body=data)

    async def get_events_streamed(self, query: Optional[Mapping[str, Any]], for_each_event: EventCallback,
                                  cancel_event: Optional[threading.Event] = None) -> StreamSummary:
        """Fetch ``events`` without holding the whole listing in memory.

        ``for_each_event`` is called synchronously once per event (and once
        per deletion when the query includes deletions).

        Returns:
            The listing's summary; ``events_count`` is the number of events
            handed to ``for_each_event``.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError('streamed query cancelled')
        sent_at = time.time()
        url = self._url('events')
        if self.config.streaming and self.transport.supports_streaming:
            body: Any = await self.transport.open_stream('GET', url, headers=self._headers(), params=query)
        else:
            self.logger.debug('Transport cannot stream; reading the whole listing')
            response = await self.transport.request('GET', url, headers=self._headers(), params=query)
            body = response.body
        summary = await decode_stream(body, for_each_event, cancel_event=cancel_event)
        self.clock.update_from_meta(sent_at, time.time(), summary.meta)
        return summary

    async def _post_attachment(self, encoded: EncodedAttachment) -> Any:
        return await self._exchange(
            'POST', encoded.path,
            headers={'Content-Type': encoded.content_type}, data=encoded.body,
        )

    async def create_event_with_attachment(self, event: Mapping[str, Any], content: bytes, filename: str,
                                           content_type: Optional[str] = None) -> Any:
        """Create ``event`` with ``content`` attached as ``filename``."""
        return await self._post_attachment(
            self.attachments.for_new_event(event, filename, content, content_type)
        )

    async def create_event_with_file(self, event: Mapping[str, Any], file_path: str) -> Any:
        """Create ``event`` with a local file attached."""
        filename, content = self.attachments.read_file(file_path)
        return await self.create_event_with_attachment(event, content, filename)

    async def add_attachment(self, event_id: str, file_path: str) -> Any:
        """Attach a local file to an existing event."""
        filename, content = self.attachments.read_file(file_path)
        return await self._post_attachment(self.attachments.for_event_id(event_id, filename, content))

    async def add_points_to_hf_event(self, event_id: str, fields: Sequence[str],
                                     points: Sequence[Sequence[Any]]) -> Any:
        """Append points to a high-frequency (series) event.

        Raises:
            ProtocolViolation: if the service does not answer ``status: ok``.
        """
        res = await self.post(f'events/{event_id}/series', {
            'format': 'flatJSON',
            'fields': list(fields),
            'points': [list(p) for p in points],
        })
        if not isinstance(res, Mapping) or res.get('status') != 'ok':
            status = res.get('status') if isinstance(res, Mapping) else res
            raise ProtocolViolation(f'Failed loading serie: {status!r}')
        return res

    async def access_info(self) -> Any:
        """Return the ``access-info`` of the connection's token."""
        return await self.get('access-info')

    async def username(self) -> str:
        info = await self.access_info()
        try:
            return info['user']['username']
        except (KeyError, TypeError) as exc:
            raise ProtocolViolation('access-info has no user.username') from exc

"""
Chunked batch dispatcher.

A batch is an ordered list of method calls sent to the service's root
endpoint; the service answers with one result per call, in the same order.
Large batches are split into chunks of at most ``chunk_size`` calls. Chunks
are sent one after the other, never concurrently, so that:

- progress percentages reported after each chunk only grow,
- result handlers run in exactly the order the calls were submitted.

The dispatcher knows nothing about URLs or HTTP: it is given an async
``send`` callable that posts one chunk and returns its result list.

Usage:

```python
dispatcher = ChunkedBatchDispatcher(post_chunk, chunk_size=100)
results = await dispatcher.dispatch([
    Call('events.get', {'limit': 10}, handle_result=print),
    Call('streams.get', {}),
])
```
"""

from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .errors import CancellationError, HandlerError, ProtocolViolation, TransportError

logger = logging.getLogger(__name__)

ResultHandler = Callable[[Any], Any]
ProgressHandler = Callable[[int], Any]
SendChunk = Callable[[List[Dict[str, Any]]], Awaitable[List[Any]]]


@dataclass(frozen=True)
class Call:
    """One named remote method call.

    ``handle_result`` is local only: it is never sent to the service. It may
    return a plain value or an awaitable; awaitables are awaited before the
    next handler runs.
    """

    method: str
    params: Any = field(default_factory=dict)
    handle_result: Optional[ResultHandler] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'Call':
        """Build a call from ``{method, params, handleResult}``."""
        if 'method' not in data:
            raise ValueError(f'call has no method: {data!r}')
        handler = data.get('handle_result', data.get('handleResult'))
        return cls(method=data['method'], params=data.get('params', {}), handle_result=handler)

    def to_wire(self) -> Dict[str, Any]:
        return {'method': self.method, 'params': self.params}


CallLike = Union[Call, Mapping[str, Any]]


def is_error_result(result: Any) -> bool:
    """True if a result entry is a per-call error descriptor."""
    return isinstance(result, Mapping) and 'error' in result


def progress_percent(processed: int, total: int) -> int:
    """Percentage of processed calls, rounded half up (2 of 3 gives 67)."""
    return (200 * processed + total) // (2 * total)


async def _settle(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _check_chunk_size(size: Any) -> None:
    if not isinstance(size, int) or isinstance(size, bool) or size < 1:
        raise ValueError(f'chunk_size must be an integer >= 1, got {size!r}')


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CancellationError('batch dispatch cancelled')


class ChunkedBatchDispatcher:
    """Send batches of calls in sequential, order preserving chunks."""

    def __init__(self, send: SendChunk, chunk_size: Optional[int] = None) -> None:
        if chunk_size is not None:
            _check_chunk_size(chunk_size)
        self.send = send
        self.chunk_size = chunk_size

    async def dispatch(
        self,
        calls: Sequence[CallLike],
        chunk_size: Optional[int] = None,
        on_progress: Optional[ProgressHandler] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Any]:
        """Send ``calls`` and return their results in submission order.

        Args:
            calls: calls to perform; ``Call`` instances or mappings.
            chunk_size: calls per request; defaults to the dispatcher's
                setting, and None means everything in one request.
            on_progress: called with the completed percentage once per chunk;
                the last call always receives 100.
            cancel_event: when set, the dispatch stops before the next chunk
                or handler.

        Returns:
            One result per call, same length and order as ``calls``.

        Raises:
            TransportError: a chunk could not be sent; ``chunk_start`` holds
                the index of its first call. No partial results are returned.
            ProtocolViolation: a chunk's result count did not match.
            HandlerError: a result handler failed.
            CancellationError: ``cancel_event`` was set.
        """
        pending = [c if isinstance(c, Call) else Call.from_mapping(c) for c in calls]
        total = len(pending)
        if total == 0:
            return []

        size = chunk_size if chunk_size is not None else self.chunk_size
        if size is None:
            size = total
        _check_chunk_size(size)

        results: List[Any] = []
        for start in range(0, total, size):
            _check_cancelled(cancel_event)
            chunk = pending[start:start + size]
            logger.debug('Sending calls %d-%d of %d', start, start + len(chunk) - 1, total)
            try:
                chunk_results = await self.send([call.to_wire() for call in chunk])
            except TransportError as exc:
                logger.error('Batch chunk starting at call %d failed: %s', start, exc)
                raise TransportError(
                    f'chunk starting at call {start} failed: {exc}',
                    status=exc.status, error_id=exc.error_id, chunk_start=start,
                ) from exc

            if not isinstance(chunk_results, list) or len(chunk_results) != len(chunk):
                got = len(chunk_results) if isinstance(chunk_results, list) else type(chunk_results).__name__
                raise ProtocolViolation(
                    f'chunk starting at call {start}: expected {len(chunk)} results, got {got}'
                )

            for offset, (call, result) in enumerate(zip(chunk, chunk_results)):
                if call.handle_result is None:
                    continue
                _check_cancelled(cancel_event)
                try:
                    await _settle(call.handle_result(result))
                except Exception as exc:
                    raise HandlerError(start + offset, call.method) from exc

            results.extend(chunk_results)
            if on_progress is not None:
                await _settle(on_progress(progress_percent(len(results), total)))

        logger.info('Dispatched %d calls in %d chunk(s)', total, -(-total // size))
        return results

"""
Incremental decoder for large event listings.

Time-ranged queries can return an unbounded number of events in a single
JSON document shaped like::

    {"events": [{...}, {...}, ...], "eventDeletions": [...], "meta": {...}}

``StreamingEventDecoder`` is fed the body chunk by chunk. It scans the
envelope for item boundaries inside the streamed arrays, decodes each item
on its own, hands it to a callback and drops its bytes. Members outside the
streamed arrays (``meta`` and friends) are small and are decoded whole into
the final ``StreamSummary``.

When the transport cannot stream, ``decode_buffered`` parses the whole body
at once and produces the same callbacks and the same summary.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Union

from .errors import CancellationError, ProtocolViolation, TruncatedStream
from .transport.base import ByteSource

logger = logging.getLogger(__name__)

DEFAULT_ARRAY_KEYS = ('events', 'eventDeletions')

EventCallback = Callable[[Any], Any]

_WHITESPACE = b' \t\r\n'
_OPENERS = b'[{'
_IN_STRING = re.compile(rb'["\\]')
_NESTED = re.compile(rb'["\[\]{}]')
_SCALAR_END = re.compile(rb'[\s,\]}]')

# Parser states
_START = 'start'
_FIRST_KEY = 'first_key'
_KEY = 'key'
_KEY_STRING = 'key_string'
_COLON = 'colon'
_VALUE = 'value'
_FIELD = 'field'
_AFTER_MEMBER = 'after_member'
_FIRST_ITEM = 'first_item'
_NEXT_ITEM = 'next_item'
_ITEM = 'item'
_AFTER_ITEM = 'after_item'
_DONE = 'done'


@dataclass
class StreamSummary:
    """Trailer of a streamed listing, available once the body is consumed."""

    events_count: int = 0
    event_deletions_count: int = 0
    meta: Optional[Dict[str, Any]] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)


class _ValueScanner:
    """Resumable search for the end of one JSON value in a growing buffer.

    Only structure is tracked (nesting depth and string state); the value is
    validated when it is decoded.
    """

    def __init__(self, start: int) -> None:
        self.start = start
        self.pos = start
        self.depth = 0
        self.in_string = False
        self.escaped = False

    def shift(self, offset: int) -> None:
        self.start -= offset
        self.pos -= offset

    def scan(self, buf: bytearray) -> Optional[int]:
        """Return the end offset of the value, or None if more bytes are needed."""
        pos = self.pos
        size = len(buf)
        while pos < size:
            if self.in_string:
                if self.escaped:
                    self.escaped = False
                    pos += 1
                    continue
                match = _IN_STRING.search(buf, pos)
                if match is None:
                    pos = size
                    break
                pos = match.start()
                if buf[pos] == 0x5C:
                    self.escaped = True
                    pos += 1
                    continue
                self.in_string = False
                pos += 1
                if self.depth == 0:
                    self.pos = pos
                    return pos
                continue

            if self.depth == 0:
                byte = buf[pos]
                if byte == 0x22:
                    self.in_string = True
                    pos += 1
                    continue
                if byte in _OPENERS:
                    self.depth = 1
                    pos += 1
                    continue
                # Scalar: runs until a delimiter. At the buffer's end it may
                # still be growing, so wait for more bytes.
                match = _SCALAR_END.search(buf, pos)
                if match is None:
                    pos = size
                    break
                self.pos = match.start()
                return self.pos

            match = _NESTED.search(buf, pos)
            if match is None:
                pos = size
                break
            pos = match.start()
            byte = buf[pos]
            pos += 1
            if byte == 0x22:
                self.in_string = True
            elif byte in _OPENERS:
                self.depth += 1
            else:
                self.depth -= 1
                if self.depth == 0:
                    self.pos = pos
                    return pos
        self.pos = pos
        return None


def _decode(data: Union[bytes, bytearray], what: str) -> Any:
    try:
        return json.loads(data)
    except ValueError as exc:
        raise ProtocolViolation(f'malformed {what}: {exc}') from exc


class StreamingEventDecoder:
    """Push parser for ``{"events": [...], ...}`` envelopes.

    Call ``feed`` with every chunk of the body as it arrives, then ``finish``
    to get the summary. ``on_event`` is called synchronously, once per item
    of every array named in ``array_keys``, in document order.
    """

    def __init__(self, on_event: EventCallback, array_keys: Iterable[str] = DEFAULT_ARRAY_KEYS) -> None:
        self.on_event = on_event
        self.array_keys: FrozenSet[str] = frozenset(array_keys)
        self._buf = bytearray()
        self._pos = 0
        self._state = _START
        self._key: Optional[str] = None
        self._scanner: Optional[_ValueScanner] = None
        self._counts: Dict[str, int] = {}
        self._fields: Dict[str, Any] = {}

    @property
    def buffered_bytes(self) -> int:
        """Bytes held that have not been consumed yet."""
        return len(self._buf) - self._pos

    def _compact(self) -> None:
        # A value still being scanned keeps its bytes from its first byte on.
        cut = self._scanner.start if self._scanner is not None else self._pos
        if cut:
            del self._buf[:cut]
            if self._scanner is not None:
                self._scanner.shift(cut)
            self._pos -= cut

    def feed(self, data: bytes) -> None:
        """Consume one chunk of the body, emitting every item it completes."""
        self._compact()
        self._buf += data
        self._parse()

    def _skip_whitespace(self) -> bool:
        buf = self._buf
        pos = self._pos
        size = len(buf)
        while pos < size and buf[pos] in _WHITESPACE:
            pos += 1
        self._pos = pos
        return pos < size

    def _violation(self, expected: str) -> ProtocolViolation:
        found = bytes(self._buf[self._pos:self._pos + 20])
        return ProtocolViolation(f'malformed envelope: expected {expected}, found {found!r}')

    def _scan(self) -> Optional[bytearray]:
        """Advance the current value scan; return the value's bytes when complete."""
        end = self._scanner.scan(self._buf)
        if end is None:
            return None
        raw = self._buf[self._scanner.start:end]
        self._scanner = None
        self._pos = end
        return raw

    def _parse(self) -> None:
        buf = self._buf
        while True:
            state = self._state
            if state in (_KEY_STRING, _FIELD, _ITEM):
                raw = self._scan()
                if raw is None:
                    return
                if state == _KEY_STRING:
                    self._key = _decode(raw, 'member name')
                    self._state = _COLON
                elif state == _FIELD:
                    self._fields[self._key] = _decode(raw, f'{self._key!r} member')
                    self._state = _AFTER_MEMBER
                else:
                    item = _decode(raw, f'{self._key!r} item')
                    self._counts[self._key] += 1
                    self.on_event(item)
                    self._state = _AFTER_ITEM
                continue

            if not self._skip_whitespace():
                return
            byte = buf[self._pos]

            if state == _START:
                if byte != 0x7B:
                    raise self._violation("'{'")
                self._pos += 1
                self._state = _FIRST_KEY
            elif state in (_FIRST_KEY, _KEY):
                if byte == 0x7D and state == _FIRST_KEY:
                    self._pos += 1
                    self._state = _DONE
                elif byte == 0x22:
                    self._scanner = _ValueScanner(self._pos)
                    self._state = _KEY_STRING
                else:
                    raise self._violation('a member name')
            elif state == _COLON:
                if byte != 0x3A:
                    raise self._violation("':'")
                self._pos += 1
                self._state = _VALUE
            elif state == _VALUE:
                if self._key in self.array_keys and byte == 0x5B:
                    self._pos += 1
                    self._counts.setdefault(self._key, 0)
                    self._state = _FIRST_ITEM
                else:
                    self._scanner = _ValueScanner(self._pos)
                    self._state = _FIELD
            elif state == _AFTER_MEMBER:
                if byte == 0x2C:
                    self._pos += 1
                    self._state = _KEY
                elif byte == 0x7D:
                    self._pos += 1
                    self._state = _DONE
                else:
                    raise self._violation("',' or '}'")
            elif state in (_FIRST_ITEM, _NEXT_ITEM):
                if byte == 0x5D and state == _FIRST_ITEM:
                    self._pos += 1
                    self._state = _AFTER_MEMBER
                elif byte in (0x2C, 0x5D, 0x7D, 0x3A):
                    raise self._violation('an array item')
                else:
                    self._scanner = _ValueScanner(self._pos)
                    self._state = _ITEM
            elif state == _AFTER_ITEM:
                if byte == 0x2C:
                    self._pos += 1
                    self._state = _NEXT_ITEM
                elif byte == 0x5D:
                    self._pos += 1
                    self._state = _AFTER_MEMBER
                else:
                    raise self._violation("',' or ']'")
            else:
                raise self._violation('end of body')

    def finish(self) -> StreamSummary:
        """Check that the envelope closed and return the summary.

        Raises:
            TruncatedStream: if the body ended before the envelope closed.
        """
        if self._state != _DONE:
            where = f'inside {self._key!r}' if self._key else 'before the first member'
            raise TruncatedStream(f'body ended {where} ({self._state})')
        return _summary(self._counts, self._fields)


def _summary(counts: Dict[str, int], fields: Dict[str, Any]) -> StreamSummary:
    meta = fields.get('meta')
    return StreamSummary(
        events_count=counts.get('events', 0),
        event_deletions_count=counts.get('eventDeletions', 0),
        meta=meta if isinstance(meta, dict) else None,
        fields=fields,
        counts=counts,
    )


def decode_buffered(
    data: Union[bytes, bytearray],
    on_event: EventCallback,
    array_keys: Iterable[str] = DEFAULT_ARRAY_KEYS,
) -> StreamSummary:
    """Whole-body counterpart of ``StreamingEventDecoder``."""
    keys = frozenset(array_keys)
    try:
        text = bytes(data).decode('utf-8')
    except UnicodeDecodeError as exc:
        if exc.reason == 'unexpected end of data':
            raise TruncatedStream(f'body ended inside a character: {exc}') from exc
        raise ProtocolViolation(f'body is not valid UTF-8: {exc}') from exc
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        # exc.pos counts characters of the decoded text.
        if exc.pos >= len(text.rstrip()) or exc.msg.startswith('Unterminated string'):
            raise TruncatedStream(f'body ended early: {exc}') from exc
        raise ProtocolViolation(f'malformed body: {exc}') from exc
    if not isinstance(document, dict):
        raise ProtocolViolation(f'expected a JSON object, got {type(document).__name__}')

    counts: Dict[str, int] = {}
    fields: Dict[str, Any] = {}
    for key, value in document.items():
        if key in keys and isinstance(value, list):
            counts[key] = 0
            for item in value:
                counts[key] += 1
                on_event(item)
        else:
            fields[key] = value
    return _summary(counts, fields)


async def decode_stream(
    body: Union[ByteSource, bytes, bytearray],
    on_event: EventCallback,
    array_keys: Iterable[str] = DEFAULT_ARRAY_KEYS,
    cancel_event: Optional[threading.Event] = None,
) -> StreamSummary:
    """Decode a streamed listing, calling ``on_event`` once per item.

    ``body`` is either a ``ByteSource`` (read incrementally, then closed) or
    a whole body as bytes (decoded with ``decode_buffered``).

    Raises:
        TruncatedStream: the body ended before the envelope closed.
        ProtocolViolation: the envelope or an item is malformed.
        CancellationError: ``cancel_event`` was set before the body was consumed.
    """
    if isinstance(body, (bytes, bytearray)):
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError('stream decoding cancelled')
        summary = decode_buffered(body, on_event, array_keys)
        logger.info('Decoded %d events from a buffered body', summary.events_count)
        return summary

    decoder = StreamingEventDecoder(on_event, array_keys)
    reads = 0
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise CancellationError('stream decoding cancelled')
            chunk = await body.read()
            if not chunk:
                break
            reads += 1
            decoder.feed(chunk)
            logger.debug('Read %d bytes, %d buffered', len(chunk), decoder.buffered_bytes)
    finally:
        await body.aclose()
    summary = decoder.finish()
    logger.info('Decoded %d events from %d reads', summary.events_count, reads)
    return summary

"""Client engine for the Pryv data-collection API."""

from .auth import AuthState
from .clock import ClockSkewEstimator
from .config import ConnectionConfig
from .connection import Connection
from .dispatcher import Call, ChunkedBatchDispatcher, is_error_result
from .errors import (
    CancellationError,
    HandlerError,
    ProtocolViolation,
    PryvError,
    TransportError,
    TruncatedStream,
)
from .streaming import StreamingEventDecoder, StreamSummary, decode_buffered, decode_stream

__version__ = '0.1.0'

__all__ = [
    'AuthState',
    'Call',
    'CancellationError',
    'ChunkedBatchDispatcher',
    'ClockSkewEstimator',
    'Connection',
    'ConnectionConfig',
    'HandlerError',
    'ProtocolViolation',
    'PryvError',
    'StreamSummary',
    'StreamingEventDecoder',
    'TransportError',
    'TruncatedStream',
    'decode_buffered',
    'decode_stream',
    'is_error_result',
]

from .base import BufferedByteSource, ByteSource, Transport, TransportResponse
from .mock_transport import MockTransport, RecordedRequest
from .requests_transport import RequestsTransport

__all__ = [
    'BufferedByteSource',
    'ByteSource',
    'MockTransport',
    'RecordedRequest',
    'RequestsTransport',
    'Transport',
    'TransportResponse',
]

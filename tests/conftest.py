import time
from typing import Any, Dict, List, Optional

import pytest

from pryv.transport.mock_transport import MockTransport, RecordedRequest

API_ENDPOINT = 'https://tok3n@alice.pryv.test/'


class FakeService:
    """Answers requests the way a small Pryv API would."""

    def __init__(self, events: Optional[List[Dict[str, Any]]] = None, clock_offset: float = 0.0) -> None:
        self.events = events if events is not None else [
            {'id': f'ev{i}', 'streamId': 'data', 'type': 'note/txt', 'content': f'n°{i} {{[x]}}'}
            for i in range(5)
        ]
        self.clock_offset = clock_offset
        self.fail_batch_at: Optional[int] = None
        self.batches = 0

    def meta(self) -> Dict[str, Any]:
        return {'apiVersion': '1.9.0', 'serverTime': time.time() + self.clock_offset}

    def call(self, call: Dict[str, Any]) -> Dict[str, Any]:
        method = call['method']
        if method == 'events.get':
            limit = call['params'].get('limit', len(self.events))
            return {'events': self.events[:limit]}
        if method == 'events.create':
            return {'event': dict(call['params'], id='new-event')}
        return {'error': {'id': 'unknown-method', 'message': f'Unknown method "{method}"'}}

    def __call__(self, req: RecordedRequest):
        path = req.url.split('alice.pryv.test/', 1)[1]
        if req.method == 'POST' and path == '':
            self.batches += 1
            if self.fail_batch_at == self.batches:
                return 500, {'error': {'id': 'unexpected-error', 'message': 'boom'}}
            return 200, {'results': [self.call(c) for c in req.json_body], 'meta': self.meta()}
        if req.method == 'GET' and path == 'events':
            params = req.params or {}
            events = self.events
            if params.get('tags'):
                events = []
            return 200, {'events': events[:params.get('limit', len(events))], 'meta': self.meta()}
        if req.method == 'GET' and path == 'access-info':
            return 200, {'type': 'personal', 'user': {'username': 'alice'}, 'meta': self.meta()}
        if req.method == 'POST' and path == 'events':
            return 201, {'event': {'id': 'att-event', 'attachments': [{'id': 'a1'}]}, 'meta': self.meta()}
        if req.method == 'POST' and path.endswith('/series'):
            return 200, {'status': 'ok', 'meta': self.meta()}
        return 404, {'error': {'id': 'unknown-resource', 'message': path}}


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def transport(service):
    return MockTransport(service, chunk_bytes=7)

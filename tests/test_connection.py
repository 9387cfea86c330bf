import asyncio
import json
import threading

import pytest

from conftest import API_ENDPOINT, FakeService
from pryv.config import ConnectionConfig
from pryv.connection import Connection
from pryv.dispatcher import Call, is_error_result
from pryv.errors import CancellationError, ProtocolViolation, TransportError
from pryv.transport.mock_transport import MockTransport

pytestmark = pytest.mark.asyncio


def connect(transport, **options):
    return Connection(config=ConnectionConfig(api_endpoint=API_ENDPOINT, **options), transport=transport)


async def test_api_single_call(transport):
    res = await connect(transport).api([{'method': 'events.get', 'params': {}}])
    assert len(res) == 1
    assert 'events' in res[0]
    req = transport.requests[0]
    assert req.method == 'POST'
    assert req.url == 'https://alice.pryv.test/'
    assert req.headers['Authorization'] == 'tok3n'
    assert req.json_body == [{'method': 'events.get', 'params': {}}]


async def test_api_split_in_chunks(transport):
    conn = connect(transport)
    conn.config.chunk_size = 2
    res = await conn.api([{'method': 'events.get', 'params': {}}] * 3)
    assert len(res) == 3
    assert [len(r.json_body) for r in transport.requests] == [2, 1]


async def test_api_chunk_size_argument_overrides_config(transport):
    conn = connect(transport, chunk_size=5)
    res = await conn.api([{'method': 'events.get', 'params': {}}] * 3, chunk_size=1)
    assert len(res) == 3
    assert [len(r.json_body) for r in transport.requests] == [1, 1, 1]


async def test_api_with_result_handlers(transport):
    received = []

    async def one_more_result(res):
        assert 'events' in res
        await asyncio.sleep(0.01)
        received.append(res)

    res = await connect(transport, chunk_size=2).api(
        [{'method': 'events.get', 'params': {}, 'handleResult': one_more_result}] * 3
    )
    assert len(res) == len(received) == 3


async def test_api_progress_percentages(transport):
    percents = []
    res = await connect(transport, chunk_size=2).api(
        [Call('events.get')] * 3, on_progress=percents.append
    )
    assert len(res) == 3
    assert percents == [67, 100]


async def test_api_keeps_per_call_errors(transport):
    res = await connect(transport).api([Call('events.get'), Call('nothing.get'), Call('events.get')])
    assert [is_error_result(r) for r in res] == [False, True, False]


async def test_api_server_failure_on_second_chunk(service, transport):
    service.fail_batch_at = 2
    with pytest.raises(TransportError) as info:
        await connect(transport, chunk_size=2).api([Call('events.get')] * 5)
    assert info.value.status == 500
    assert info.value.error_id == 'unexpected-error'
    assert info.value.chunk_start == 2


async def test_api_cancelled(transport):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(CancellationError):
        await connect(transport).api([Call('events.get')], cancel_event=cancel)
    assert transport.requests == []


async def test_batch_response_without_results_is_protocol_violation():
    transport = MockTransport(lambda req: (200, {'meta': {'serverTime': 1.0}}))
    with pytest.raises(ProtocolViolation):
        await connect(transport).api([Call('events.get')])


async def test_bare_results_array_is_accepted():
    transport = MockTransport(lambda req: (200, [{'events': []}]))
    assert await connect(transport).api([Call('events.get')]) == [{'events': []}]


async def test_get_events(transport):
    res = await connect(transport).get('events', {'limit': 1})
    assert len(res['events']) == 1
    assert transport.requests[0].params == {'limit': 1}


async def test_delta_time_follows_server_time():
    service = FakeService(clock_offset=100.0)
    conn = connect(MockTransport(service))
    assert conn.delta_time == 0.0
    await conn.get('events', {'limit': 1})
    assert abs(conn.delta_time - 100.0) < 2
    assert conn.current_clock_skew() == conn.delta_time


async def test_response_without_meta_keeps_delta_time():
    conn = connect(MockTransport(FakeService(clock_offset=-50.0)))
    await conn.get('events')
    before = conn.delta_time
    conn.transport = MockTransport(lambda req: (200, {'events': []}))
    await conn.get('events')
    assert conn.delta_time == before


async def test_api_endpoint_property(transport):
    conn = connect(transport)
    assert conn.api_endpoint.startswith('https://' + conn.token + '@')
    assert conn.endpoint == 'https://alice.pryv.test/'


@pytest.mark.parametrize('streaming', [True, False])
async def test_events_streamed(service, streaming):
    transport = MockTransport(service, supports_streaming=streaming, chunk_bytes=5)
    count = 0

    def for_each_event(event):
        nonlocal count
        count += 1

    summary = await connect(transport).get_events_streamed({'fromTime': 0, 'limit': 10000}, for_each_event)
    assert count == summary.events_count == len(service.events)
    assert transport.requests[0].streamed is streaming
    assert transport.requests[0].url.endswith('/events')


async def test_events_streamed_disabled_by_config(service):
    transport = MockTransport(service)
    await connect(transport, streaming=False).get_events_streamed({}, lambda e: None)
    assert transport.requests[0].streamed is False


async def test_events_streamed_no_events(transport):
    summary = await connect(transport).get_events_streamed({'tags': ['RANDOM-123']}, lambda e: None)
    assert summary.events_count == 0


async def test_events_streamed_updates_delta_time():
    conn = connect(MockTransport(FakeService(clock_offset=30.0), chunk_bytes=3))
    await conn.get_events_streamed({}, lambda e: None)
    assert abs(conn.delta_time - 30.0) < 2


async def test_events_streamed_http_error():
    transport = MockTransport(lambda req: (403, {'error': {'id': 'forbidden', 'message': 'no'}}))
    with pytest.raises(TransportError) as info:
        await connect(transport).get_events_streamed({}, lambda e: None)
    assert info.value.error_id == 'forbidden'


async def test_create_event_with_file(tmp_path, transport):
    picture = tmp_path / 'Y.png'
    picture.write_bytes(b'\x89PNG fake picture')
    res = await connect(transport).create_event_with_file({'type': 'picture/attached', 'streamId': 'data'},
                                                           str(picture))
    assert len(res['event']['attachments']) == 1
    req = transport.requests[0]
    assert req.url.endswith('/events')
    assert req.headers['Content-Type'].startswith('multipart/form-data; boundary=')
    assert b'\x89PNG fake picture' in req.data
    assert b'filename="Y.png"' in req.data
    assert json.dumps({'type': 'picture/attached', 'streamId': 'data'}).encode() in req.data


async def test_create_event_with_attachment_bytes(transport):
    res = await connect(transport).create_event_with_attachment(
        {'type': 'file/attached', 'streamId': 'data'}, b'Hello', 'hello.txt', 'text/txt'
    )
    assert res['event']['id'] == 'att-event'
    assert b'Content-Type: text/txt' in transport.requests[0].data


async def test_add_attachment_to_existing_event(tmp_path):
    seen = []

    def handler(req):
        seen.append(req)
        return 200, {'event': {'id': 'ev1', 'attachments': [{'id': 'a'}]}}

    doc = tmp_path / 'notes.txt'
    doc.write_text('some notes')
    await connect(MockTransport(handler)).add_attachment('ev1', str(doc))
    assert seen[0].url == 'https://alice.pryv.test/events/ev1'
    assert b'name="event"' not in seen[0].data


async def test_add_points_to_hf_event(transport):
    conn = connect(transport)
    res = await conn.api([{'method': 'events.create', 'params': {'type': 'series:mass/kg', 'streamId': 'data'}}])
    event = res[0]['event']
    res2 = await conn.add_points_to_hf_event(event['id'], ['deltaTime', 'value'], [[0, 1], [1, 1]])
    assert res2['status'] == 'ok'
    req = transport.requests[-1]
    assert req.url.endswith('/events/new-event/series')
    assert req.json_body == {'format': 'flatJSON', 'fields': ['deltaTime', 'value'], 'points': [[0, 1], [1, 1]]}


async def test_add_points_rejects_non_ok_status():
    transport = MockTransport(lambda req: (200, {'status': 'pending'}))
    with pytest.raises(ProtocolViolation):
        await connect(transport).add_points_to_hf_event('ev', ['deltaTime', 'value'], [[0, 1]])


async def test_username(transport):
    assert await connect(transport).username() == 'alice'


async def test_connection_requires_endpoint():
    with pytest.raises(ValueError):
        Connection()


async def test_connection_from_api_endpoint_only(transport):
    async with Connection(API_ENDPOINT, transport=transport) as conn:
        assert conn.token == 'tok3n'
        assert conn.config.chunk_size is None

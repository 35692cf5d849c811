import asyncio

import pytest

from crafty_api import (
    MAX_CONCURRENT_STATS,
    CraftyClient,
    RemoteServer,
    TransportError,
    extract_server_array,
    gather_server_stats,
    normalize_server,
    normalize_server_stats,
    parse_port,
    parse_status,
)
from mock_crafty import TEST_CONFIG, FakeResponse, FakeSession, connection_error

SERVERS = [
    {'server_id': 1, 'server_name': 'Survival', 'status': 'online', 'server_port': 25565},
    {'id': 'abc', 'name': 'Creative', 'state': 'Offline', 'port': '25566'},
]


def make_client(responses=None):
    session = FakeSession()
    for (method, path), response in (responses or {}).items():
        session.add(method, path, response)
    return CraftyClient(TEST_CONFIG, session=session), session


@pytest.mark.parametrize("payload", [
    SERVERS,
    {'data': SERVERS},
    {'servers': SERVERS},
    {'data': {'servers': SERVERS}},
])
def test_list_servers_same_result_for_every_payload_shape(payload):
    session = FakeSession()
    session.add('GET', '/api/v2/servers', FakeResponse(payload=payload))
    client = CraftyClient(TEST_CONFIG, session=session)

    servers = asyncio.run(client.list_servers())

    assert servers == [
        RemoteServer(id='1', name='Survival', status='running', port=25565),
        RemoteServer(id='abc', name='Creative', status='stopped', port=25566),
    ]


@pytest.mark.parametrize("payload", [{}, {'data': 'nope'}, {'status': 'ok'}, None, 'text'])
def test_unrecognized_server_payloads_fall_back_to_empty(payload):
    assert extract_server_array(payload) == []


def test_list_servers_with_non_json_body_is_empty():
    session = FakeSession()
    session.add('GET', '/api/v2/servers', FakeResponse(text='<html>oops</html>', content_type='text/html'))
    client = CraftyClient(TEST_CONFIG, session=session)

    assert asyncio.run(client.list_servers()) == []


def test_client_sends_bearer_token_and_ssl_setting():
    session = FakeSession()
    CraftyClient(TEST_CONFIG, session=session)

    assert session.headers['Authorization'] == 'Bearer crafty-test-token'
    assert session.verify is True


def test_normalize_server_field_precedence():
    server = normalize_server({
        'uuid': 'u-1',
        'display_name': 'Modded',
        'stats': {'status': 'UP'},
        'server_properties': {'server_port': 25570},
    })

    assert server.id == 'u-1'
    assert server.name == 'Modded'
    assert server.status == 'running'
    assert server.port == 25570


def test_normalize_server_defaults():
    server = normalize_server({})

    assert server == RemoteServer(id='unknown-id', name='Unnamed Server', status='unknown', port=None)
    assert server.label == 'Unnamed Server (unknown-id)'


def test_parse_status_passthrough_and_flags():
    assert parse_status('Crashed') == 'crashed'
    assert parse_status(True) == 'running'
    assert parse_status(False) == 'stopped'
    assert parse_status(None) == 'unknown'


@pytest.mark.parametrize("raw, expected", [
    (25565, 25565),
    ('25565', 25565),
    ('25565.0', 25565),
    ('', None),
    ('abc', None),
    (None, None),
    (True, None),
    (0, None),
    (12.5, None),
])
def test_parse_port(raw, expected):
    assert parse_port(raw) == expected


def test_stats_merge_top_level_wins():
    payload = {'status': 'ok', 'data': {'online': 3, 'max': 20, 'status': 'inner'}}

    stats = normalize_server_stats(payload)

    assert stats['online'] == 3
    assert stats['max'] == 20
    assert stats['status'] == 'ok'
    assert normalize_server_stats(['not', 'a', 'dict']) == {}


def test_fetch_server_stats():
    client, session = make_client({
        ('GET', '/api/v2/servers/1/stats'): FakeResponse(payload={'data': {'online': 2, 'running': True}}),
    })

    stats = asyncio.run(client.fetch_server_stats('1'))

    assert stats['online'] == 2
    assert session.requests[0]['timeout'] == TEST_CONFIG.request_timeout


def test_send_console_command_posts_plain_text():
    client, session = make_client({
        ('POST', '/api/v2/servers/7/stdin'): FakeResponse(text='ok'),
    })

    ack = asyncio.run(client.send_console_command('7', '  whitelist list \n'))

    assert ack == 'ok'
    request = session.requests[0]
    assert request['data'] == b'whitelist list'
    assert request['headers'] == {'Content-Type': 'text/plain'}


def test_send_console_command_json_ack():
    client, _ = make_client({
        ('POST', '/api/v2/servers/7/stdin'): FakeResponse(payload={'status': 'ok'}),
    })

    assert asyncio.run(client.send_console_command('7', 'say hi')) == {'status': 'ok'}


def test_http_error_raises_transport_error_with_truncated_body():
    client, _ = make_client({
        ('POST', '/api/v2/servers/7/stdin'): FakeResponse(status_code=500, text='x' * 1000),
    })

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(client.send_console_command('7', 'whitelist on'))

    assert excinfo.value.status_code == 500
    assert excinfo.value.endpoint == '/servers/7/stdin'
    assert len(excinfo.value.body) == 300
    assert '(500)' in str(excinfo.value)


def test_connection_failure_is_a_transport_error():
    client, _ = make_client({('GET', '/api/v2/servers'): connection_error()})

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(client.list_servers())

    assert excinfo.value.status_code is None
    assert 'ConnectionError' in excinfo.value.body


def test_fetch_logs_requests_plain_output():
    client, session = make_client({
        ('GET', '/api/v2/servers/1/logs'): FakeResponse(payload={'data': ['line one', 'line two']}),
    })

    logs = asyncio.run(client.fetch_recent_logs('1'))

    assert logs == ['line one', 'line two']
    assert session.requests[0]['params'] == {'file': 'false', 'colors': 'false', 'raw': 'false', 'html': 'false'}


def test_fetch_logs_passes_flags():
    client, session = make_client({
        ('GET', '/api/v2/servers/1/logs'): FakeResponse(payload=[]),
    })

    asyncio.run(client.fetch_recent_logs('1', file=True, html=True))

    assert session.requests[0]['params'] == {'file': 'true', 'colors': 'false', 'raw': 'false', 'html': 'true'}


def test_fetch_logs_plain_text_body():
    client, _ = make_client({
        ('GET', '/api/v2/servers/1/logs'): FakeResponse(text='first\n\n  second  \r\n'),
    })

    assert asyncio.run(client.fetch_recent_logs('1')) == ['first', 'second']


@pytest.mark.parametrize("response", [
    FakeResponse(text=''),
    FakeResponse(payload={'data': None}),
    FakeResponse(payload={'message': 'no logs'}),
])
def test_fetch_logs_never_returns_none(response):
    client, _ = make_client({('GET', '/api/v2/servers/1/logs'): response})

    assert asyncio.run(client.fetch_recent_logs('1')) == []


def test_find_server_matches_id_as_string():
    client, _ = make_client({('GET', '/api/v2/servers'): FakeResponse(payload=SERVERS)})

    assert asyncio.run(client.find_server(1)).name == 'Survival'
    assert asyncio.run(client.find_server('missing')) is None


def test_gather_server_stats_degrades_single_failure():
    client, _ = make_client({
        ('GET', '/api/v2/servers/1/stats'): FakeResponse(payload={'online': 4}),
        ('GET', '/api/v2/servers/2/stats'): FakeResponse(status_code=404, text='not found'),
    })
    servers = [
        RemoteServer(id='1', name='One', status='running', port=25565),
        RemoteServer(id='2', name='Two', status='stopped', port=None),
    ]

    stats = asyncio.run(gather_server_stats(client, servers))

    assert stats == {'1': {'online': 4}, '2': {}}


class CountingStatsClient:
    def __init__(self):
        self.in_flight = 0
        self.peak = 0

    async def fetch_server_stats(self, server_id):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        return {'online': int(server_id)}


def test_gather_server_stats_bounds_requests_in_flight():
    client = CountingStatsClient()
    servers = [RemoteServer(id=str(n), name=f"S{n}", status='running', port=None) for n in range(12)]

    stats = asyncio.run(gather_server_stats(client, servers))

    assert client.peak == MAX_CONCURRENT_STATS
    assert stats == {str(n): {'online': n} for n in range(12)}

    client = CountingStatsClient()
    asyncio.run(gather_server_stats(client, servers, limit=1))
    assert client.peak == 1


def test_close_closes_session():
    client, session = make_client()
    client.close()
    assert session.closed

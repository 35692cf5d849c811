"""Stand-ins for requests.Session and CraftyClient used by the test suite."""

import json
from collections import deque
from urllib.parse import urlparse

import requests

from bot_config import BotConfig
from crafty_api import TransportError

TEST_CONFIG = BotConfig(
    discord_token="discord-test-token",
    crafty_base_url="https://crafty.test:8443",
    crafty_token="crafty-test-token",
)

MARKER = "validation_test000001"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, content_type=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        if content_type is None:
            content_type = 'application/json' if payload is not None else 'text/plain; charset=utf-8'
        self.headers = {'content-type': content_type}

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is not None:
            return self._payload
        return json.loads(self.text)


class FakeSession:
    """Replays canned responses per (method, path) and records every request"""

    def __init__(self, responses=None):
        self.headers = {}
        self.verify = True
        self.requests = []
        self.closed = False
        self._responses = {}
        for key, value in (responses or {}).items():
            self.add(*key, value)

    def add(self, method, path, response):
        self._responses.setdefault((method, path), deque()).append(response)

    def request(self, method, url, timeout=None, **kwargs):
        path = urlparse(url).path
        self.requests.append({'method': method, 'path': path, 'timeout': timeout, **kwargs})
        queue = self._responses.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {path}")
        response = queue[0] if len(queue) == 1 else queue.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class FakeCraftyClient:
    """
    Scripted gateway for resolver and bot tests.
    Each log fetch returns the next window; the last window repeats.
    """

    def __init__(self, windows=None, send_error=None, servers=None, list_error=None):
        self.windows = deque(windows or [[]])
        self.send_error = send_error
        self.servers = list(servers or [])
        self.list_error = list_error
        self.sent = []
        self.fetches = []
        self.list_calls = 0

    async def list_servers(self):
        self.list_calls += 1
        if self.list_error:
            raise self.list_error
        return list(self.servers)

    async def find_server(self, server_id):
        for server in await self.list_servers():
            if server.id == str(server_id):
                return server
        return None

    async def send_console_command(self, server_id, text):
        if self.send_error:
            raise self.send_error
        self.sent.append((server_id, text))
        return "ok"

    async def fetch_recent_logs(self, server_id, *, file=False, colors=False, raw=False, html=False):
        self.fetches.append({'server_id': server_id, 'file': file, 'colors': colors, 'raw': raw, 'html': html})
        window = self.windows[0] if len(self.windows) == 1 else self.windows.popleft()
        if isinstance(window, Exception):
            raise window
        return list(window)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def http_error(status_code=502, body="Bad Gateway"):
    return TransportError("/servers/1/logs", status_code, body)


def connection_error():
    return requests.ConnectionError("connection refused")

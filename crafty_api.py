"""
Crafty Controller API client
Sends console commands to game servers and reads back their logs, server
listings and stats. Every call is a fresh HTTP request; nothing is cached.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from bot_config import BotConfig

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v2"
ERROR_BODY_LIMIT = 300
# requests.Session is shared by every worker thread; keep the stats fan-out small
MAX_CONCURRENT_STATS = 4

RUNNING_STATUSES = ('running', 'online', 'started', 'up', 'active')
STOPPED_STATUSES = ('stopped', 'offline', 'down', 'inactive')


# =============================================================================
# ERRORS
# =============================================================================

class CraftyApiError(Exception):
    """Base class for Crafty API failures"""


class TransportError(CraftyApiError):
    """Non-success HTTP response (or no response at all) from the Crafty API"""

    def __init__(self, endpoint: str, status_code: Optional[int], body: str = ""):
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = (body or "")[:ERROR_BODY_LIMIT]
        if status_code is None:
            message = f"Crafty API request to {endpoint} failed: {self.body}"
        else:
            message = f"Crafty API request failed ({status_code}) on {endpoint}: {self.body}"
        super().__init__(message)


class MalformedPayloadError(CraftyApiError):
    """The Crafty API answered with something that is not the JSON we asked for"""


# =============================================================================
# NORMALIZATION
# =============================================================================

@dataclass(frozen=True)
class RemoteServer:
    id: str
    name: str
    status: str
    port: Optional[int]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def label(self) -> str:
        return f"{self.name} ({self.id})"


def _first_defined(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _nested(mapping: Any, *keys):
    """Walk nested mappings, returning None as soon as a level is missing"""
    current = mapping
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def parse_status(raw) -> str:
    if raw is None:
        return 'unknown'
    if isinstance(raw, bool):
        return 'running' if raw else 'stopped'

    normalized = str(raw).strip().lower()
    if normalized in RUNNING_STATUSES:
        return 'running'
    if normalized in STOPPED_STATUSES:
        return 'stopped'
    return normalized or 'unknown'


def parse_port(raw) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        number = float(str(raw).strip())
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer() or number <= 0:
        return None
    return int(number)


def normalize_server(server: Dict[str, Any]) -> RemoteServer:
    """
    Map one upstream server descriptor onto RemoteServer.
    Field precedence is left to right in each _first_defined call.
    """
    status_source = _first_defined(
        server.get('status'),
        server.get('server_status'),
        _nested(server, 'stats', 'status'),
        server.get('state'),
        server.get('running'),
    )
    port_source = _first_defined(
        server.get('server_port'),
        server.get('port'),
        _nested(server, 'ports', 'primary'),
        _nested(server, 'server_properties', 'server_port'),
        _nested(server, 'execution_stats', 'port'),
    )

    return RemoteServer(
        id=str(_first_defined(server.get('server_id'), server.get('id'), server.get('uuid'), 'unknown-id')),
        name=str(_first_defined(server.get('server_name'), server.get('name'), server.get('display_name'),
                                'Unnamed Server')),
        status=parse_status(status_source),
        port=parse_port(port_source),
        raw=server,
    )


# Tried in order; the first strategy returning a list wins
SERVER_LIST_STRATEGIES: Sequence[Callable[[Any], Any]] = (
    lambda payload: payload,
    lambda payload: _nested(payload, 'data'),
    lambda payload: _nested(payload, 'servers'),
    lambda payload: _nested(payload, 'data', 'servers'),
)

LOG_LIST_STRATEGIES: Sequence[Callable[[Any], Any]] = (
    lambda payload: payload,
    lambda payload: _nested(payload, 'data'),
)


def _first_list(payload, strategies) -> list:
    for strategy in strategies:
        candidate = strategy(payload)
        if isinstance(candidate, list):
            return candidate
    return []


def extract_server_array(payload) -> List[Dict[str, Any]]:
    return [entry for entry in _first_list(payload, SERVER_LIST_STRATEGIES) if isinstance(entry, dict)]


def normalize_server_stats(payload) -> Dict[str, Any]:
    """Merge the optional `data` section with top-level fields (top-level wins)"""
    if not isinstance(payload, dict):
        return {}
    data_section = payload.get('data') if isinstance(payload.get('data'), dict) else {}
    return {**data_section, **payload}


def parse_log_text(text: str) -> List[str]:
    return [line.strip() for line in text.split('\n') if line.strip()]


def parse_log_json(payload) -> List[str]:
    return [str(entry) for entry in _first_list(payload, LOG_LIST_STRATEGIES) if entry is not None]


# =============================================================================
# CLIENT
# =============================================================================

def _is_json(response) -> bool:
    return 'application/json' in (response.headers.get('content-type') or '')


def _flag(value: bool) -> str:
    return 'true' if value else 'false'


class CraftyClient:
    """
    Thin transport over the Crafty v2 REST API.
    The blocking requests calls run in worker threads so the bot's event loop keeps going.
    """

    def __init__(self, config: BotConfig, session: Optional[requests.Session] = None):
        self.base_url = config.crafty_base_url.rstrip('/') + API_PREFIX
        self.timeout = config.request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Authorization': f"Bearer {config.crafty_token}"})
        self.session.verify = config.verify_ssl

    def close(self):
        self.session.close()

    def _request(self, method: str, endpoint: str, **kwargs):
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"{method} {endpoint}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"Crafty API unreachable on {endpoint}: {e}")
            raise TransportError(endpoint, None, f"{type(e).__name__}: {e}") from e

        if not response.ok:
            logger.warning(f"Crafty API returned {response.status_code} on {endpoint}")
            raise TransportError(endpoint, response.status_code, response.text)
        return response

    def _json(self, response, endpoint: str):
        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayloadError(f"Expected JSON from {endpoint}: {e}") from e

    # -- blocking implementations ------------------------------------------------

    def _list_servers(self) -> List[RemoteServer]:
        endpoint = "/servers"
        response = self._request('GET', endpoint)
        try:
            payload = self._json(response, endpoint)
        except MalformedPayloadError as e:
            logger.warning(str(e))
            return []
        return [normalize_server(server) for server in extract_server_array(payload)]

    def _fetch_server_stats(self, server_id: str) -> Dict[str, Any]:
        endpoint = f"/servers/{server_id}/stats"
        response = self._request('GET', endpoint)
        try:
            payload = self._json(response, endpoint)
        except MalformedPayloadError as e:
            logger.warning(str(e))
            return {}
        return normalize_server_stats(payload)

    def _send_console_command(self, server_id: str, text: str):
        endpoint = f"/servers/{server_id}/stdin"
        command = str(text if text is not None else '').strip()
        response = self._request(
            'POST',
            endpoint,
            data=command.encode('utf-8'),
            headers={'Content-Type': 'text/plain'},
        )
        if _is_json(response):
            try:
                return self._json(response, endpoint)
            except MalformedPayloadError:
                return response.text
        return response.text

    def _fetch_recent_logs(self, server_id: str, file: bool, colors: bool, raw: bool, html: bool) -> List[str]:
        endpoint = f"/servers/{server_id}/logs"
        params = {'file': _flag(file), 'colors': _flag(colors), 'raw': _flag(raw), 'html': _flag(html)}
        response = self._request('GET', endpoint, params=params)
        if _is_json(response):
            try:
                return parse_log_json(self._json(response, endpoint))
            except MalformedPayloadError as e:
                logger.warning(str(e))
                return []
        return parse_log_text(response.text or '')

    # -- async API -------------------------------------------------------------

    async def list_servers(self) -> List[RemoteServer]:
        return await asyncio.to_thread(self._list_servers)

    async def find_server(self, server_id) -> Optional[RemoteServer]:
        for server in await self.list_servers():
            if server.id == str(server_id):
                return server
        return None

    async def fetch_server_stats(self, server_id: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._fetch_server_stats, server_id)

    async def send_console_command(self, server_id: str, text: str):
        """Write one line to the server's stdin. No retries here."""
        return await asyncio.to_thread(self._send_console_command, server_id, text)

    async def fetch_recent_logs(self, server_id: str, *, file: bool = False, colors: bool = False,
                                raw: bool = False, html: bool = False) -> List[str]:
        """Most recent console output window, oldest line first. Never None."""
        return await asyncio.to_thread(self._fetch_recent_logs, server_id, file, colors, raw, html)


async def gather_server_stats(client, servers: Sequence[RemoteServer],
                              limit: int = MAX_CONCURRENT_STATS) -> Dict[str, Dict[str, Any]]:
    """
    Fetch stats for many servers, at most `limit` requests in flight.
    One server failing only blanks out that server's stats.
    """
    semaphore = asyncio.Semaphore(limit)

    async def fetch_one(server: RemoteServer):
        try:
            async with semaphore:
                return server.id, await client.fetch_server_stats(server.id)
        except CraftyApiError as e:
            logger.warning(f"Stats unavailable for {server.label}: {e}")
            return server.id, {}

    results = await asyncio.gather(*(fetch_one(server) for server in servers))
    return dict(results)

"""
Bot configuration
Loads .env / environment settings once at startup into an immutable BotConfig
"""

import logging
import os
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_PORT_RANGE = "25565-25590"
DEFAULT_POLL_ATTEMPTS = 6
DEFAULT_POLL_INTERVAL = 0.7
DEFAULT_REQUEST_TIMEOUT = 10.0

REQUIRED_VARS = (
    "DISCORD_TOKEN",
    "CRAFTY_BASE_URL",
    "CRAFTY_TOKEN",
)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class ConfigError(ValueError):
    """Raised when a required setting is missing or malformed"""


class PortRange(NamedTuple):
    start: int
    end: int

    def ports(self) -> range:
        return range(self.start, self.end + 1)

    def includes(self, port) -> bool:
        return port is not None and self.start <= port <= self.end


@dataclass(frozen=True)
class BotConfig:
    discord_token: str
    crafty_base_url: str
    crafty_token: str
    discord_guild_id: Optional[int] = None
    port_range: PortRange = PortRange(25565, 25590)
    verify_ssl: bool = True
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    poll_attempts: int = DEFAULT_POLL_ATTEMPTS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    admin_role_ids: Tuple[int, ...] = ()
    log_level: str = "INFO"


def parse_port_range(value: str) -> PortRange:
    """
    Parse a "start-end" port range.
    Reversed bounds are normalized; anything non-numeric or non-positive fails.
    """
    parts = str(value).split('-')
    if len(parts) != 2:
        raise ConfigError(f"Invalid CRAFTY_PORT_RANGE value: {value}")

    try:
        first, second = (int(part.strip()) for part in parts)
    except ValueError:
        raise ConfigError(f"Invalid CRAFTY_PORT_RANGE value: {value}") from None

    if first <= 0 or second <= 0:
        raise ConfigError(f"Invalid CRAFTY_PORT_RANGE value: {value}")

    return PortRange(min(first, second), max(first, second))


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off'):
        return False
    raise ConfigError(f"{name} must be true or false, got: {raw}")


def _parse_number(name: str, raw: str, cast):
    try:
        number = cast(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got: {raw}") from None
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got: {raw}")
    return number


def _parse_role_ids(raw: str) -> Tuple[int, ...]:
    role_ids = []
    for chunk in raw.split(','):
        chunk = chunk.strip()
        if not chunk:
            continue
        if not chunk.isdigit():
            raise ConfigError(f"ADMIN_ROLE_IDS must be numeric role ids, got: {chunk}")
        role_ids.append(int(chunk))
    return tuple(role_ids)


def load_config(environ=None, dotenv: bool = True) -> BotConfig:
    """Build a BotConfig from the environment (and .env when dotenv is set)"""
    if dotenv:
        load_dotenv()
    env = os.environ if environ is None else environ

    missing = [key for key in REQUIRED_VARS if not env.get(key)]
    if missing:
        raise ConfigError(f"Missing required environment variable: {', '.join(missing)}")

    guild_raw = env.get('DISCORD_GUILD_ID', '').strip()
    if guild_raw and not guild_raw.isdigit():
        raise ConfigError(f"DISCORD_GUILD_ID must be numeric, got: {guild_raw}")

    return BotConfig(
        discord_token=env['DISCORD_TOKEN'],
        crafty_base_url=env['CRAFTY_BASE_URL'].rstrip('/'),
        crafty_token=env['CRAFTY_TOKEN'],
        discord_guild_id=int(guild_raw) if guild_raw else None,
        port_range=parse_port_range(env.get('CRAFTY_PORT_RANGE') or DEFAULT_PORT_RANGE),
        verify_ssl=_parse_bool('CRAFTY_VERIFY_SSL', env.get('CRAFTY_VERIFY_SSL') or 'true'),
        request_timeout=_parse_number(
            'CRAFTY_REQUEST_TIMEOUT', env.get('CRAFTY_REQUEST_TIMEOUT') or str(DEFAULT_REQUEST_TIMEOUT), float
        ),
        poll_attempts=_parse_number(
            'WHITELIST_POLL_ATTEMPTS', env.get('WHITELIST_POLL_ATTEMPTS') or str(DEFAULT_POLL_ATTEMPTS), int
        ),
        poll_interval=_parse_number(
            'WHITELIST_POLL_INTERVAL', env.get('WHITELIST_POLL_INTERVAL') or str(DEFAULT_POLL_INTERVAL), float
        ),
        admin_role_ids=_parse_role_ids(env.get('ADMIN_ROLE_IDS', '')),
        log_level=(env.get('LOG_LEVEL') or 'INFO').upper(),
    )


def setup_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)

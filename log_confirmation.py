"""
Log-based command confirmation
Crafty's stdin endpoint only says "received", so the effect of a console command
has to be read back from the server log. A throwaway marker command is sent
first; anything logged after the marker belongs to the real command.
"""

import asyncio
import html
import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from crafty_api import TransportError

logger = logging.getLogger(__name__)

MARKER_PREFIX = "validation_"
MARKER_LENGTH = 10
MAX_CONFIRMATION_LINES = 8

# [12:34:56] [Server thread/INFO]:
LOG_PREFIX_PATTERN = re.compile(r'\[(?:\d{1,2}:){2}\d{1,2}\]\s*\[[^\]]+\]:\s*')

NOISE_TOKENS = (
    'joined the game',
    'left the game',
    'logged in with entity id',
    'lost connection',
    '[not secure]',
    'uuid of player',
    'server empty for',
)

CONFIRMATION_PATTERN = re.compile(
    r'whitelist|unknown or incomplete command|incorrect argument|added|removed|turned on|turned off',
    re.IGNORECASE,
)


def new_marker() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return MARKER_PREFIX + ''.join(secrets.choice(alphabet) for _ in range(MARKER_LENGTH))


def _normalize_once(line: str) -> str:
    return html.unescape(LOG_PREFIX_PATTERN.sub('', line)).strip()


def normalize_log_line(line) -> str:
    """Strip log-framework prefixes and HTML entities. Idempotent."""
    current = str(line)
    while True:
        cleaned = _normalize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def is_noise_line(line: str) -> bool:
    """Player join/leave chatter and blank lines"""
    lowered = line.lower()
    if not lowered.strip():
        return True
    return any(token in lowered for token in NOISE_TOKENS)


def extract_confirmation_lines(log_lines: Sequence[str], marker: str) -> Optional[List[str]]:
    """
    Cleaned lines logged after the marker, or None if the marker hasn't shown up yet.
    The last line mentioning the marker is the anchor: Minecraft prints the
    "Unknown or incomplete command" error for the marker before echoing it back
    with <--[HERE], and that error belongs to the marker, not the real command.
    """
    marker_index = None
    for index, line in enumerate(log_lines):
        if marker in line:
            marker_index = index
    if marker_index is None:
        return None

    cleaned = (normalize_log_line(line) for line in log_lines[marker_index + 1:])
    return [line for line in cleaned if line and marker not in line and not is_noise_line(line)]


def select_confirmation_lines(lines: Optional[Sequence[str]], limit: int = MAX_CONFIRMATION_LINES) -> List[str]:
    """Prefer lines that read like a command response; otherwise take the first few"""
    if not lines:
        return []
    preferred = [line for line in lines if CONFIRMATION_PATTERN.search(line)]
    return list(preferred or lines)[:limit]


class ConfirmationState(str, Enum):
    PENDING = "pending"
    MARKER_SENT = "marker_sent"
    COMMAND_SENT = "command_sent"
    POLLING = "polling"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"


@dataclass
class ConfirmationResult:
    command: str
    marker: str
    state: ConfirmationState = ConfirmationState.PENDING
    attempts: int = 0
    lines: List[str] = field(default_factory=list)
    # Most recent log read failure; cleared once a read succeeds
    last_error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.state == ConfirmationState.RESOLVED and bool(self.lines)

    def __bool__(self) -> bool:
        return bool(self.lines)


class LogConfirmationResolver:
    """
    Runs one console command and looks for its effect in the server log.
    Walks MARKER_SENT -> COMMAND_SENT -> POLLING -> RESOLVED | EXHAUSTED.
    Running out of attempts is a normal outcome: the command went out, we just
    couldn't see a response in time.
    """

    def __init__(self, client, attempts: int = 6, interval: float = 0.7,
                 sleep=asyncio.sleep, marker_factory=new_marker):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.client = client
        self.attempts = attempts
        self.interval = interval
        self._sleep = sleep
        self._marker_factory = marker_factory

    async def execute_with_confirmation(self, server_id: str, command_text: str) -> ConfirmationResult:
        result = ConfirmationResult(command=command_text, marker=self._marker_factory())

        # Send failures propagate; the caller tells the user the command never went out
        await self.client.send_console_command(server_id, result.marker)
        self._advance(result, ConfirmationState.MARKER_SENT, server_id)

        await self.client.send_console_command(server_id, command_text)
        self._advance(result, ConfirmationState.COMMAND_SENT, server_id)

        self._advance(result, ConfirmationState.POLLING, server_id)
        while result.attempts < self.attempts:
            if result.attempts > 0:
                await self._sleep(self.interval)
            result.attempts += 1

            lines = await self._poll_once(server_id, result)
            if lines:
                result.lines = lines
                self._advance(result, ConfirmationState.RESOLVED, server_id)
                return result

        self._advance(result, ConfirmationState.EXHAUSTED, server_id)
        logger.info(f"No log confirmation for '{command_text}' on {server_id} after {result.attempts} attempts")
        return result

    async def _poll_once(self, server_id: str, result: ConfirmationResult) -> List[str]:
        try:
            logs = await self.client.fetch_recent_logs(server_id, file=False, colors=False, raw=False, html=False)
        except TransportError as e:
            logger.warning(f"Log fetch {result.attempts}/{self.attempts} failed for {server_id}: {e}")
            result.last_error = str(e)
            return []
        result.last_error = None

        scoped = extract_confirmation_lines(logs, result.marker)
        if scoped is None:
            logger.debug(f"Marker {result.marker} not in log window yet (attempt {result.attempts})")
            return []
        return select_confirmation_lines(scoped)

    def _advance(self, result: ConfirmationResult, state: ConfirmationState, server_id: str):
        logger.debug(f"[{server_id}] {result.marker}: {result.state.value} -> {state.value}")
        result.state = state

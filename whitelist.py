"""
Whitelist management
Turns /whitelist subcommands into Minecraft console commands and reads the
player list back out of the confirmation lines.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from log_confirmation import ConfirmationResult, LogConfirmationResolver

logger = logging.getLogger(__name__)

SUBCOMMANDS = ('enable', 'disable', 'list', 'add', 'remove')
PLAYER_SUBCOMMANDS = ('add', 'remove')

NO_PLAYERS_PATTERN = re.compile(r'there are no whitelisted players', re.IGNORECASE)
# "There are 3 whitelisted player(s): a, b, c" / "Whitelisted players: a, b, c"
PLAYER_LIST_PATTERN = re.compile(r'whitelisted player(?:\(s\)|s)?:\s*(.*)', re.IGNORECASE)
ADDED_PATTERN = re.compile(r'added\s+(\S+)\s+to the whitelist', re.IGNORECASE)
PLAYER_NAME_PATTERN = re.compile(r'[A-Za-z0-9_.\-]+')
NAME_STRIP_CHARS = ".'`\""


class WhitelistError(ValueError):
    """Bad /whitelist input (unknown subcommand, missing or unusable player name)"""


def build_whitelist_command(subcommand: str, player: Optional[str] = None) -> str:
    if subcommand == 'enable':
        return 'whitelist on'
    if subcommand == 'disable':
        return 'whitelist off'
    if subcommand == 'list':
        return 'whitelist list'
    if subcommand in PLAYER_SUBCOMMANDS:
        name = (player or '').strip()
        if not name:
            raise WhitelistError("You must provide a player name.")
        # One console line per command; whitespace would smuggle in extra arguments
        if any(char.isspace() for char in name):
            raise WhitelistError(f"Invalid player name: {name!r}")
        return f"whitelist {subcommand} {name}"
    raise WhitelistError(f"Unsupported subcommand: {subcommand}")


def _split_names(text: str) -> List[str]:
    names = []
    for chunk in text.split(','):
        name = chunk.strip().strip(NAME_STRIP_CHARS).strip()
        if name:
            names.append(name)
    return names


def parse_whitelist_players(lines: Iterable[str]) -> List[str]:
    """Player names from whitelist confirmation text, first-seen order, no duplicates"""
    lines = [line.strip() for line in lines if line and line.strip()]
    if any(NO_PLAYERS_PATTERN.search(line) for line in lines):
        return []

    players = {}
    for line in lines:
        listed = PLAYER_LIST_PATTERN.search(line)
        if listed:
            for name in _split_names(listed.group(1)):
                players.setdefault(name, None)
            continue

        added = ADDED_PATTERN.search(line)
        if added:
            players.setdefault(added.group(1).strip(NAME_STRIP_CHARS), None)
            continue

        # Long whitelists sometimes wrap onto a bare "a, b, c" line
        if ',' in line:
            names = _split_names(line)
            if names and all(PLAYER_NAME_PATTERN.fullmatch(name) for name in names):
                for name in names:
                    players.setdefault(name, None)

    return list(players)


@dataclass
class WhitelistOutcome:
    server_id: str
    subcommand: str
    command: str
    confirmation: ConfirmationResult
    players: Optional[List[str]] = None

    @property
    def lines(self) -> List[str]:
        return self.confirmation.lines


class WhitelistService:
    def __init__(self, resolver: LogConfirmationResolver):
        self.resolver = resolver

    async def run(self, server_id: str, subcommand: str, player: Optional[str] = None) -> WhitelistOutcome:
        command = build_whitelist_command(subcommand, player)
        logger.info(f"Whitelist {subcommand} on {server_id}: {command}")
        confirmation = await self.resolver.execute_with_confirmation(server_id, command)

        outcome = WhitelistOutcome(
            server_id=server_id,
            subcommand=subcommand,
            command=command,
            confirmation=confirmation,
        )
        if subcommand == 'list':
            outcome.players = parse_whitelist_players(confirmation.lines)
        return outcome

    async def list_players(self, server_id: str) -> List[str]:
        outcome = await self.run(server_id, 'list')
        return outcome.players or []

"""
Discord formatting helpers
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import discord

from bot_config import PortRange
from crafty_api import RemoteServer

EMBED_FIELD_LIMIT = 1024
EMBED_DESCRIPTION_LIMIT = 4096
SERVERS_PER_EMBED = 8

WHITELIST_COLOR = 0x5865F2
ERROR_COLOR = 0xED4245


def status_emoji(status: str) -> str:
    if status == 'running':
        return "🟢"
    if status == 'stopped':
        return "🔴"
    return "⚪"


def players_online(stats: Optional[Dict[str, Any]]) -> Optional[str]:
    """'online/max' from a Crafty stats payload, if it carries player counts"""
    if not stats or stats.get('online') is None:
        return None
    if stats.get('max') is not None:
        return f"{stats['online']}/{stats['max']}"
    return str(stats['online'])


def format_server_line(server: RemoteServer, stats: Optional[Dict[str, Any]] = None) -> str:
    port_label = str(server.port) if server.port else "No port configured"
    line = (f"{status_emoji(server.status)} **{server.name}** (ID: {server.id}) "
            f"• Status: {server.status} • Port: {port_label}")
    online = players_online(stats)
    if online:
        line += f" • Players: {online}"
    return line


def chunk_lines(lines: Sequence[str], size: int = SERVERS_PER_EMBED) -> List[List[str]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [list(lines[i:i + size]) for i in range(0, len(lines), size)]


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


@dataclass
class PortSummary:
    port_range: PortRange
    used_ports: List[int] = field(default_factory=list)
    available_ports: List[int] = field(default_factory=list)
    no_port_servers: List[RemoteServer] = field(default_factory=list)

    @property
    def used_in_range(self) -> List[int]:
        return [port for port in self.used_ports if self.port_range.includes(port)]


def summarize_ports(servers: Sequence[RemoteServer], port_range: PortRange) -> PortSummary:
    summary = PortSummary(port_range=port_range)
    used = set()
    for server in servers:
        if server.port:
            used.add(server.port)
        else:
            summary.no_port_servers.append(server)

    summary.used_ports = sorted(used)
    summary.available_ports = [port for port in port_range.ports() if port not in used]
    return summary


def format_port_summary(summary: PortSummary, total_servers: int,
                        sample_size: int = 30, server_limit: int = 20) -> str:
    port_range = summary.port_range
    lines = [
        f"Port range checked: **{port_range.start}-{port_range.end}**",
        f"Registered servers: **{total_servers}**",
        f"Used ports in range: **{len(summary.used_in_range)}**",
        f"Unused ports in range: **{len(summary.available_ports)}**",
    ]

    sampled = summary.available_ports[:sample_size]
    if sampled:
        more = " ..." if len(summary.available_ports) > len(sampled) else ""
        lines.append(f"Example unused ports: {', '.join(str(port) for port in sampled)}{more}")

    if summary.no_port_servers:
        lines.append("")
        lines.append("Servers with no port configured:")
        for server in summary.no_port_servers[:server_limit]:
            lines.append(f"• {server.name} (ID: {server.id}, status: {server.status})")
        if len(summary.no_port_servers) > server_limit:
            lines.append(f"• ...and {len(summary.no_port_servers) - server_limit} more")

    return "\n".join(lines)


def format_player_list(players: Sequence[str]) -> str:
    if not players:
        return "Whitelist is empty."
    return "\n".join(f"• {player}" for player in players)


def confirmation_block(lines: Optional[Sequence[str]]) -> str:
    if not lines:
        return "⚠️ No log confirmation was found yet."
    body = "\n".join(lines)
    # Leave room for the code fence
    return f"```\n{truncate(body, EMBED_FIELD_LIMIT - 8)}\n```"


def build_whitelist_embed(server_name: str, title: str, description: str,
                          confirmation_lines: Optional[Sequence[str]] = None,
                          color: int = WHITELIST_COLOR) -> discord.Embed:
    embed = discord.Embed(
        title=title,
        description=truncate(description, EMBED_DESCRIPTION_LIMIT),
        color=color,
    )
    embed.add_field(name="Log confirmation", value=confirmation_block(confirmation_lines), inline=False)
    embed.set_footer(text=f"Server: {server_name}")
    return embed


def build_error_embed(server_name: str, description: str) -> discord.Embed:
    return build_whitelist_embed(server_name, "Whitelist command failed", description, [], color=ERROR_COLOR)


def build_stats_embed(server: RemoteServer, stats: Dict[str, Any]) -> discord.Embed:
    color = discord.Color.green() if server.status == 'running' else discord.Color.red()
    embed = discord.Embed(title=f"🎮 {server.name} Status", color=color)
    embed.add_field(name="Status", value=f"{status_emoji(server.status)} {server.status.upper()}", inline=True)
    embed.add_field(name="Port", value=str(server.port) if server.port else "None", inline=True)

    online = players_online(stats)
    if online:
        embed.add_field(name="Players", value=f"👥 {online}", inline=True)
    if stats.get('cpu') is not None:
        embed.add_field(name="CPU", value=f"💻 {stats['cpu']}%", inline=True)
    if stats.get('mem') is not None:
        embed.add_field(name="Memory", value=f"🧠 {stats['mem']}", inline=True)
    if stats.get('version'):
        embed.add_field(name="Version", value=str(stats['version']), inline=True)
    if stats.get('started'):
        embed.add_field(name="Started", value=str(stats['started']), inline=True)

    embed.set_footer(text=f"Server ID: {server.id}")
    return embed


def _log_read_failure(outcome) -> Optional[str]:
    """Why the log could not be read, when every fetch failed; None otherwise"""
    if outcome.lines:
        return None
    error = getattr(outcome.confirmation, 'last_error', None)
    if not error:
        return None
    return f"⚠️ The server log could not be read: {truncate(error, EMBED_FIELD_LIMIT)}"


def build_outcome_embed(server_name: str, outcome) -> discord.Embed:
    """Embed for a finished /whitelist run (see whitelist.WhitelistOutcome)"""
    log_failure = _log_read_failure(outcome)

    if outcome.subcommand == 'list':
        return build_whitelist_embed(
            server_name,
            f"Whitelist for {server_name}",
            log_failure or format_player_list(outcome.players or []),
            outcome.lines,
        )

    if log_failure:
        return build_whitelist_embed(
            server_name,
            "Whitelist command sent",
            f"Executed command: `{outcome.command}`\n\n"
            f"Command sent, but it could not be confirmed.\n{log_failure}",
            outcome.lines,
        )

    if not outcome.lines:
        return build_whitelist_embed(
            server_name,
            "Whitelist command sent",
            f"Executed command: `{outcome.command}`\n\n"
            f"Command sent, but no matching confirmation lines were found in logs yet.",
            outcome.lines,
        )

    return build_whitelist_embed(
        server_name,
        "Whitelist command executed",
        f"Executed command: `{outcome.command}`",
        outcome.lines,
    )

#!/usr/bin/env python3
"""
Crafty_Clanker - Discord Bot for Crafty Controller Server Management
Lists Minecraft servers and manages their whitelists through the Crafty API,
confirming each console command from the server log
"""

import asyncio
import logging
import sys
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from bot_config import BotConfig, ConfigError, load_config, setup_logging
from crafty_api import CraftyApiError, CraftyClient, gather_server_stats
from discord_format import (
    build_error_embed,
    build_outcome_embed,
    build_stats_embed,
    chunk_lines,
    format_port_summary,
    format_server_line,
    summarize_ports,
    truncate,
)
from log_confirmation import LogConfirmationResolver, normalize_log_line
from whitelist import WhitelistError, WhitelistService

logger = logging.getLogger(__name__)

MAX_AUTOCOMPLETE_CHOICES = 25
# Discord drops autocomplete responses slower than 3 seconds
AUTOCOMPLETE_TIMEOUT = 2.5
MAX_EMBEDS_PER_MESSAGE = 10
MAX_LOG_LINES = 100

GENERIC_FAILURE = "❌ Command failed. Check bot logs and Crafty API settings."

# =============================================================================
# BOT SETUP
# =============================================================================


class CraftyClanker(commands.Bot):
    def __init__(self, config: BotConfig, crafty: Optional[CraftyClient] = None):
        intents = discord.Intents.default()
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        self.crafty = crafty or CraftyClient(config)
        self.resolver = LogConfirmationResolver(
            self.crafty,
            attempts=config.poll_attempts,
            interval=config.poll_interval,
        )
        self.whitelist = WhitelistService(self.resolver)

    async def setup_hook(self):
        for command in (servers_command, unused_ports_command, server_status_command, logs_command, help_command):
            self.tree.add_command(command)
        self.tree.add_command(WhitelistCommands())
        self.tree.error(on_app_command_error)

        guild = discord.Object(id=self.config.discord_guild_id) if self.config.discord_guild_id else None
        if guild:
            self.tree.copy_global_to(guild=guild)
        try:
            synced = await self.tree.sync(guild=guild)
            logger.info(f"Synced {len(synced)} command(s)" + (f" to guild {guild.id}" if guild else ""))
        except discord.HTTPException as e:
            logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        logger.info(f"{self.user} has connected to Discord!")
        logger.info(f"Serving {len(self.guilds)} guild(s), Crafty API at {self.config.crafty_base_url}")

    async def close(self):
        await super().close()
        self.crafty.close()


def has_permission(interaction: discord.Interaction) -> bool:
    """Allow everyone unless ADMIN_ROLE_IDS is set; then the user needs one of those roles"""
    admin_roles = interaction.client.config.admin_role_ids
    if not admin_roles:
        return True
    roles = getattr(interaction.user, 'roles', [])
    return any(role.id in admin_roles for role in roles)


async def check_permission(interaction: discord.Interaction) -> bool:
    """has_permission, plus an ephemeral refusal when it says no"""
    if has_permission(interaction):
        return True

    logger.warning(f"Unauthorized command attempt by {interaction.user} ({interaction.user.id})")
    message = f"⛔ **{interaction.user.display_name}**, you are not authorized to run bot commands!"
    if interaction.response.is_done():
        await interaction.followup.send(message, ephemeral=True)
    else:
        await interaction.response.send_message(message, ephemeral=True)
    return False


async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
    """Last line of defense: every failed command still gets a reply"""
    name = interaction.command.qualified_name if interaction.command else "unknown"
    logger.error(f"Command error for /{name}", exc_info=error)
    try:
        if interaction.response.is_done():
            await interaction.followup.send(GENERIC_FAILURE, ephemeral=True)
        else:
            await interaction.response.send_message(GENERIC_FAILURE, ephemeral=True)
    except discord.HTTPException as e:
        logger.error(f"Could not report failure for /{name}: {e}")


# =============================================================================
# AUTOCOMPLETE
# =============================================================================


async def server_autocomplete(interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
    if not has_permission(interaction):
        return []

    try:
        servers = await interaction.client.crafty.list_servers()
    except CraftyApiError as e:
        logger.warning(f"Server autocomplete failed: {e}")
        return []

    lower = current.lower()
    matches = [
        server for server in servers
        if not lower or lower in server.name.lower() or lower in server.id.lower()
    ]
    return [
        app_commands.Choice(name=truncate(server.label, 100), value=server.id)
        for server in matches[:MAX_AUTOCOMPLETE_CHOICES]
    ]


async def whitelisted_player_autocomplete(interaction: discord.Interaction,
                                          current: str) -> List[app_commands.Choice[str]]:
    # Listing players sends real console commands; never do it for outsiders
    if not has_permission(interaction):
        return []

    server_id = getattr(interaction.namespace, 'server', None)
    if not server_id:
        return []

    try:
        players = await asyncio.wait_for(
            interaction.client.whitelist.list_players(str(server_id)),
            timeout=AUTOCOMPLETE_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.info(f"Whitelist autocomplete for {server_id} ran out of time")
        return []
    except CraftyApiError as e:
        logger.warning(f"Whitelist autocomplete failed for {server_id}: {e}")
        return []

    lower = current.lower()
    return [
        app_commands.Choice(name=player, value=player)
        for player in players
        if not lower or lower in player.lower()
    ][:MAX_AUTOCOMPLETE_CHOICES]


# =============================================================================
# SERVER COMMANDS
# =============================================================================


@app_commands.command(name="servers", description="Show all registered Crafty servers and their current status")
async def servers_command(interaction: discord.Interaction):
    """List servers with status, port and player count"""
    if not await check_permission(interaction):
        return

    await interaction.response.defer()
    crafty = interaction.client.crafty

    try:
        servers = await crafty.list_servers()
    except CraftyApiError as e:
        await interaction.followup.send(f"❌ Crafty API error: {str(e)[:300]}")
        return

    if not servers:
        await interaction.followup.send("📦 No servers were returned by the Crafty API.")
        return

    stats = await gather_server_stats(crafty, servers)
    chunks = chunk_lines([format_server_line(server, stats.get(server.id)) for server in servers])
    embeds = []
    for index, chunk in enumerate(chunks):
        title = "🎮 Server Overview"
        if len(chunks) > 1:
            title += f" ({index + 1}/{len(chunks)})"
        embeds.append(discord.Embed(title=title, description="\n".join(chunk), color=discord.Color.blue()))

    content = f"Found **{len(servers)}** servers in Crafty."
    for start in range(0, len(embeds), MAX_EMBEDS_PER_MESSAGE):
        await interaction.followup.send(content=content, embeds=embeds[start:start + MAX_EMBEDS_PER_MESSAGE])
        content = None


@app_commands.command(name="unused-ports",
                      description="List unassigned ports in your configured Crafty range and servers without ports")
async def unused_ports_command(interaction: discord.Interaction):
    if not await check_permission(interaction):
        return

    await interaction.response.defer()

    try:
        servers = await interaction.client.crafty.list_servers()
    except CraftyApiError as e:
        await interaction.followup.send(f"❌ Crafty API error: {str(e)[:300]}")
        return

    summary = summarize_ports(servers, interaction.client.config.port_range)
    await interaction.followup.send(truncate(format_port_summary(summary, len(servers)), 2000))


@app_commands.command(name="server-status", description="Get live stats for a Crafty server")
@app_commands.describe(server="Server to inspect")
@app_commands.autocomplete(server=server_autocomplete)
async def server_status_command(interaction: discord.Interaction, server: str):
    """Status, port and resource stats for one server"""
    if not await check_permission(interaction):
        return

    await interaction.response.defer()
    crafty = interaction.client.crafty

    try:
        remote = await crafty.find_server(server)
        if not remote:
            await interaction.followup.send(f"❌ Server not found for id: `{server}`")
            return
        stats = await crafty.fetch_server_stats(remote.id)
    except CraftyApiError as e:
        await interaction.followup.send(f"❌ Crafty API error: {str(e)[:300]}")
        return

    await interaction.followup.send(embed=build_stats_embed(remote, stats))


@app_commands.command(name="logs", description="Get recent server console logs")
@app_commands.describe(
    server="Server to read logs from",
    lines="Number of lines to show (default: 30, max: 100)"
)
@app_commands.autocomplete(server=server_autocomplete)
async def logs_command(interaction: discord.Interaction, server: str, lines: int = 30):
    if not await check_permission(interaction):
        return

    await interaction.response.defer(ephemeral=True)

    try:
        logs = await interaction.client.crafty.fetch_recent_logs(server)
    except CraftyApiError as e:
        await interaction.followup.send(f"❌ Crafty API error: {str(e)[:300]}", ephemeral=True)
        return

    tail = [normalize_log_line(line) for line in logs[-max(1, min(lines, MAX_LOG_LINES)):]]
    text = "\n".join(line for line in tail if line)
    if not text:
        await interaction.followup.send(f"📜 No log output for `{server}`.", ephemeral=True)
        return

    if len(text) > 1900:
        text = text[-1900:]
    await interaction.followup.send(f"📜 **{server}** logs:\n```\n{text}\n```", ephemeral=True)


# =============================================================================
# WHITELIST COMMANDS
# =============================================================================


async def run_whitelist(interaction: discord.Interaction, server_id: str, subcommand: str,
                        player: Optional[str] = None):
    """Shared body of every /whitelist subcommand; always ends with an ephemeral embed"""
    if not await check_permission(interaction):
        return

    await interaction.response.defer(ephemeral=True)
    bot = interaction.client

    try:
        server = await bot.crafty.find_server(server_id)
    except CraftyApiError as e:
        logger.error(f"Server lookup failed for {server_id}: {e}")
        await interaction.followup.send(embed=build_error_embed("Unknown", f"Could not reach Crafty: {e}"),
                                        ephemeral=True)
        return

    if not server:
        await interaction.followup.send(embed=build_error_embed("Unknown", f"Server not found for id: {server_id}"),
                                        ephemeral=True)
        return

    try:
        outcome = await bot.whitelist.run(server.id, subcommand, player)
    except WhitelistError as e:
        await interaction.followup.send(embed=build_error_embed(server.name, str(e)), ephemeral=True)
        return
    except CraftyApiError as e:
        logger.error(f"Whitelist {subcommand} failed on {server.label}: {e}")
        await interaction.followup.send(
            embed=build_error_embed(server.name, f"The command could not be sent to the server.\n{e}"),
            ephemeral=True,
        )
        return

    await interaction.followup.send(embed=build_outcome_embed(server.name, outcome), ephemeral=True)


class WhitelistCommands(app_commands.Group):
    def __init__(self):
        super().__init__(name="whitelist",
                         description="Manage Minecraft server whitelist through Crafty stdin commands")

    @app_commands.command(name="enable", description="Enable whitelist on a server")
    @app_commands.describe(server="Server to target")
    @app_commands.autocomplete(server=server_autocomplete)
    async def enable(self, interaction: discord.Interaction, server: str):
        await run_whitelist(interaction, server, 'enable')

    @app_commands.command(name="disable", description="Disable whitelist on a server")
    @app_commands.describe(server="Server to target")
    @app_commands.autocomplete(server=server_autocomplete)
    async def disable(self, interaction: discord.Interaction, server: str):
        await run_whitelist(interaction, server, 'disable')

    @app_commands.command(name="list", description="List whitelisted players on a server")
    @app_commands.describe(server="Server to target")
    @app_commands.autocomplete(server=server_autocomplete)
    async def list_players(self, interaction: discord.Interaction, server: str):
        await run_whitelist(interaction, server, 'list')

    @app_commands.command(name="add", description="Add player to whitelist")
    @app_commands.describe(server="Server to target", player="Minecraft username to add")
    @app_commands.autocomplete(server=server_autocomplete)
    async def add(self, interaction: discord.Interaction, server: str, player: str):
        await run_whitelist(interaction, server, 'add', player)

    @app_commands.command(name="remove", description="Remove player from whitelist")
    @app_commands.describe(server="Server to target", player="Minecraft username to remove")
    @app_commands.autocomplete(server=server_autocomplete, player=whitelisted_player_autocomplete)
    async def remove(self, interaction: discord.Interaction, server: str, player: str):
        await run_whitelist(interaction, server, 'remove', player)


# =============================================================================
# UTILITY COMMANDS
# =============================================================================


@app_commands.command(name="help", description="Show bot commands and usage")
async def help_command(interaction: discord.Interaction):
    embed = discord.Embed(
        title="🤖 Crafty Clanker - Help",
        description="Discord bot for managing Minecraft servers through Crafty Controller",
        color=discord.Color.blue()
    )

    embed.add_field(
        name="📦 Servers",
        value="`/servers` - List servers with status and ports\n"
              "`/server-status` - Live stats for one server\n"
              "`/unused-ports` - Free ports in the configured range\n"
              "`/logs` - Recent console output",
        inline=False
    )

    embed.add_field(
        name="📝 Whitelist",
        value="`/whitelist enable` - Turn the whitelist on\n"
              "`/whitelist disable` - Turn the whitelist off\n"
              "`/whitelist list` - Show whitelisted players\n"
              "`/whitelist add` - Add a player\n"
              "`/whitelist remove` - Remove a player",
        inline=False
    )

    embed.set_footer(text="Whitelist results are read back from the server log and may take a few seconds")

    await interaction.response.send_message(embed=embed, ephemeral=True)


# =============================================================================
# RUN BOT
# =============================================================================


def main():
    try:
        config = load_config()
    except ConfigError as e:
        print(f"ERROR: {e}")
        print("Set it in .env or export it, e.g.: export DISCORD_TOKEN=your_token_here")
        sys.exit(1)

    setup_logging(config.log_level)
    bot = CraftyClanker(config)
    bot.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()

from __future__ import annotations

import asyncio
import json
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from scanner_bot.bot.discord_gateway import (
    DiscordGateway,
    interaction_info,
    message_info,
    render_card,
    thread_info,
)
from scanner_bot.config import settings
from scanner_bot.forum.models import ButtonActivated, CommandInvoked, MessagePosted, ThreadCreated
from scanner_bot.forum.store import ScheduleStore
from scanner_bot.forum.tracker import CONTROL_PREFIX, ThreadLifecycleTracker, TrackerConfig
from scanner_bot.scan.ipqs import IPQSClient
from scanner_bot.scan.report import error_card, ipqs_card, pending_card, virustotal_card
from scanner_bot.scan.virustotal import ScanError, VirusTotalClient
from scanner_bot.utils.logging import configure_logging, get_logger
from scanner_bot.utils.metrics import metrics, record_command, record_scan
from scanner_bot.utils.shutdown import serve_until_signal
from scanner_bot.weather.nws import WeatherClient, WeatherError, forecast_card

configure_logging(settings.LOG_LEVEL)
log = get_logger(__name__)

INTENTS = discord.Intents.default()
INTENTS.message_content = True
INTENTS.guilds = True


class ScannerBot(commands.Bot):
    tracker: Optional[ThreadLifecycleTracker] = None

    async def close(self) -> None:
        if self.tracker is not None:
            await self.tracker.shutdown()
            self.tracker = None
        await super().close()


bot = ScannerBot(command_prefix="!", intents=INTENTS)
weather = WeatherClient(
    settings.WEATHER_LATITUDE, settings.WEATHER_LONGITUDE, settings.WEATHER_USER_AGENT
)


def _virustotal() -> Optional[VirusTotalClient]:
    return VirusTotalClient(settings.VIRUSTOTAL_API_KEY) if settings.VIRUSTOTAL_API_KEY else None


def _ipqs() -> Optional[IPQSClient]:
    return IPQSClient(settings.IPQS_API_KEY) if settings.IPQS_API_KEY else None


@bot.event
async def on_ready():
    if bot.tracker is None:
        bot.tracker = ThreadLifecycleTracker(
            DiscordGateway(bot),
            ScheduleStore(settings.FORUM_DB_PATH),
            TrackerConfig.from_settings(settings),
        )
        await bot.tracker.initialize()
    try:
        await bot.tree.sync()
        log.info("bot_ready", extra={"extra_fields": {"status": "synced", "user": str(bot.user)}})
    except Exception as e:
        log.error("sync_error", extra={"extra_fields": {"error": str(e)}})


@bot.tree.error
async def on_app_command_error(
    interaction: discord.Interaction, error: app_commands.AppCommandError
) -> None:
    log.error(
        "command_failed",
        extra={
            "extra_fields": {
                "command": interaction.command.name if interaction.command else None,
                "error": repr(getattr(error, "original", error))[:200],
            }
        },
    )
    message = "An error occurred while processing your command."
    try:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)
    except discord.HTTPException as exc:
        log.error("command_error_reply_failed", extra={"extra_fields": {"error": str(exc)}})


# ---- forum lifecycle ----
async def _forward_command(interaction: discord.Interaction, name: str) -> None:
    record_command(name)
    if bot.tracker is None:
        return await interaction.response.send_message(
            "Still starting up, try again in a moment.", ephemeral=True
        )
    await bot.tracker.dispatch(CommandInvoked(name=name, interaction=interaction_info(interaction)))


@bot.tree.command(description="Mark a forum post as solved")
async def solved(interaction: discord.Interaction):
    await _forward_command(interaction, "solved")


@bot.tree.command(description="Remove the solved tag from a forum post")
async def unsolved(interaction: discord.Interaction):
    await _forward_command(interaction, "unsolved")


@bot.event
async def on_thread_create(thread: discord.Thread):
    if bot.tracker is not None:
        await bot.tracker.dispatch(ThreadCreated(thread=thread_info(thread)))


@bot.event
async def on_message(message: discord.Message):
    if bot.tracker is None or not isinstance(message.channel, discord.Thread):
        return
    await bot.tracker.dispatch(
        MessagePosted(thread=thread_info(message.channel), message=message_info(message))
    )


@bot.event
async def on_interaction(interaction: discord.Interaction):
    if interaction.type != discord.InteractionType.component or bot.tracker is None:
        return
    custom_id = (interaction.data or {}).get("custom_id", "")
    if not custom_id.startswith(CONTROL_PREFIX):
        return
    record_command("mark_solved_button")
    await bot.tracker.dispatch(
        ButtonActivated(
            custom_id=custom_id,
            message_id=str(interaction.message.id) if interaction.message else None,
            interaction=interaction_info(interaction),
        )
    )


# ---- scanning ----
@bot.tree.command(description="Scan a URL or file for potential threats")
@app_commands.describe(url="The URL to scan", file="A file to scan (max 32MB)")
async def scan(
    interaction: discord.Interaction,
    url: Optional[str] = None,
    file: Optional[discord.Attachment] = None,
):
    record_command("scan")
    if url and file:
        return await interaction.response.send_message(
            "Please provide either a URL or a file, not both.", ephemeral=True
        )
    if not url and not file:
        return await interaction.response.send_message(
            "Please provide a URL or a file to scan.", ephemeral=True
        )
    client = _virustotal()
    if client is None:
        return await interaction.response.send_message(
            "VIRUSTOTAL_API_KEY is not configured.", ephemeral=True
        )
    target = url or file.filename
    await interaction.response.send_message(embed=render_card(pending_card(target)), ephemeral=True)
    try:
        if url:
            analysis_id = await asyncio.to_thread(client.scan_url, url)
        else:
            analysis_id = await asyncio.to_thread(client.scan_file, file.url, file.filename)
        analysis = await asyncio.to_thread(client.poll_analysis, analysis_id)
    except ScanError as exc:
        record_scan("virustotal", "error")
        log.warning("scan_failed", extra={"extra_fields": {"target": target[:200], "error": str(exc)}})
        return await interaction.edit_original_response(embed=render_card(error_card(target, str(exc))))
    record_scan("virustotal", "ok")
    await interaction.edit_original_response(embed=render_card(virustotal_card(target, analysis)))


@bot.tree.command(description="Check a URL's reputation with IPQualityScore")
@app_commands.describe(url="The URL to check")
async def urlcheck(interaction: discord.Interaction, url: str):
    record_command("urlcheck")
    client = _ipqs()
    if client is None:
        return await interaction.response.send_message("IPQS_API_KEY is not configured.", ephemeral=True)
    await interaction.response.defer(ephemeral=True)
    try:
        result = await asyncio.to_thread(client.scan_url, url)
    except ScanError as exc:
        record_scan("ipqs", "error")
        return await interaction.followup.send(embed=render_card(error_card(url, str(exc))), ephemeral=True)
    record_scan("ipqs", "ok")
    await interaction.followup.send(embed=render_card(ipqs_card(result)), ephemeral=True)


# ---- weather ----
@bot.tree.command(name="weather", description="Get the current weather forecast")
@app_commands.describe(hourly="Show the next hours instead of the next days")
async def weather_cmd(interaction: discord.Interaction, hourly: bool = False):
    record_command("weather")
    await interaction.response.defer()
    try:
        fetch = weather.get_hourly_forecast if hourly else weather.get_forecast
        forecast = await asyncio.to_thread(fetch)
        location = await asyncio.to_thread(weather.location_name)
    except WeatherError as exc:
        return await interaction.followup.send(f"Couldn't fetch the weather: {exc}", ephemeral=True)
    await interaction.followup.send(embed=render_card(forecast_card(location, forecast, hourly=hourly)))


# ---- misc ----
@bot.tree.command(name="help", description="Show information about all available commands")
async def help_cmd(interaction: discord.Interaction):
    record_command("help")
    lines = [
        "**/scan** `url` or `file`: scan with VirusTotal",
        "**/urlcheck** `url`: reputation check with IPQualityScore",
        "**/weather** `hourly`: current forecast, by day or by hour",
        "**/solved**: mark your forum post as solved (closes after 1 hour)",
        "**/unsolved**: remove the solved status before the post closes",
    ]
    await interaction.response.send_message("\n".join(lines), ephemeral=True)


@bot.tree.command(name="metrics", description="Admin metrics snapshot (counters & uptime).")
@app_commands.describe(area="Only show one area: cmd, scan or forum")
async def metrics_cmd(interaction: discord.Interaction, area: Optional[str] = None):
    record_command("metrics")
    if not interaction.user.guild_permissions.administrator:
        return await interaction.response.send_message("Admin only.", ephemeral=True)
    snap = metrics.snapshot(area)
    content = "```json\n" + json.dumps(snap, indent=2) + "\n```"
    await interaction.response.send_message(content, ephemeral=True)


async def _serve() -> None:
    async with bot:
        await serve_until_signal(bot.start(settings.DISCORD_BOT_TOKEN), bot.close)


def main() -> None:
    asyncio.run(_serve())


if __name__ == "__main__":
    main()

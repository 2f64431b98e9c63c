#!/usr/bin/env python3
"""
Discord Status Bot — periodic channel-name scan → product status tags.

Staff mark product state in the channel name ("🟢 spoofer", "🔴 esp").
Every SCAN_INTERVAL_SECONDS the bot walks every text-capable channel of every
guild it is in and hands them to ChannelReconciler, which pushes changed tags
to the product API.

Run:
    python3 discord_bot.py

Config (env / .env): DISCORD_BOT_TOKEN, PRODUCT_API_ENDPOINT, API_SECRET,
DEFAULT_PRODUCT_ID, SCAN_INTERVAL_SECONDS, STATUS_RETRY_FAILED_PUSHES,
MAPPING_DB_PATH.
"""

from __future__ import annotations

import logging
import sys
from typing import Iterable

import discord
from discord.ext import tasks

from channel_reconciler import ChannelReconciler, ChannelRef
from errors import ConfigError
from mapping_db import SQLiteMappingStore, set_store
from settings import BotSettings, setup_logging
from status_sink import StatusSink

logger = logging.getLogger("statusbot.discord")


def text_channels(guild: discord.Guild) -> list[ChannelRef]:
    """Every channel of the guild that can carry messages (text, voice, stage)."""
    return [
        ChannelRef(str(ch.id), ch.name, str(guild.id))
        for ch in guild.channels
        if isinstance(ch, discord.abc.Messageable)
    ]


def monitored_groups(guilds: Iterable[discord.Guild]) -> list[list[ChannelRef]]:
    return [text_channels(g) for g in guilds]


class StatusBot(discord.Client):
    """discord.py client that owns the scan timer and the reconciler."""

    def __init__(self, settings: BotSettings, reconciler: ChannelReconciler,
                 sink: StatusSink) -> None:
        intents = discord.Intents.default()
        super().__init__(intents=intents)
        self.settings = settings
        self.reconciler = reconciler
        self.sink = sink
        self.scan_channels.change_interval(seconds=settings.scan_interval)

    async def setup_hook(self) -> None:
        self.scan_channels.start()

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (%d guilds)", self.user, len(self.guilds))

    async def on_error(self, event_method: str, *args, **kwargs) -> None:
        logger.exception("Discord client error in %s", event_method)

    @tasks.loop(seconds=1800)
    async def scan_channels(self) -> None:
        # an exception escaping here would stop tasks.loop for good
        try:
            await self.reconciler.run_cycle(monitored_groups(self.guilds))
        except Exception:
            logger.exception("Channel scan failed")
        logger.info("Waiting %ds for the next cycle...", self.settings.scan_interval)

    @scan_channels.before_loop
    async def _wait_until_ready(self) -> None:
        await self.wait_until_ready()

    async def close(self) -> None:
        self.scan_channels.cancel()
        await self.sink.close()
        await super().close()


def build_bot(settings: BotSettings) -> StatusBot:
    store = SQLiteMappingStore(settings.mapping_db_path)
    set_store(store)
    sink = StatusSink(
        endpoint=settings.product_api_endpoint,
        api_secret=settings.api_secret,
        default_product_id=settings.default_product_id,
    )
    reconciler = ChannelReconciler(
        store=store,
        sink=sink,
        retry_failed_pushes=settings.retry_failed_pushes,
    )
    return StatusBot(settings, reconciler, sink)


def main() -> int:
    setup_logging("bot")
    try:
        settings = BotSettings.from_env()
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    bot = build_bot(settings)
    try:
        bot.run(settings.discord_token, log_handler=None)
    except discord.LoginFailure as exc:
        logger.error("Failed to login: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

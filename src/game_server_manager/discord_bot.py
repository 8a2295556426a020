# Copyright (c) 2025 Game Server Manager Contributors
#
# This file is part of Game Server Manager.
#
# Game Server Manager is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: the Game Server Manager maintainers
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""Discord bot client.

Reads prefix commands from text channels and hands them to the
CommandRouter. Each accepted command runs as its own task so the gateway
event loop is never blocked by a long backup or update.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import discord
import structlog

from .bot.commands import CommandRouter
from .discord_interface import ChannelStatusReporter

logger = structlog.get_logger()


class DiscordBot(discord.Client):
    """Discord client that feeds prefix commands to the router."""

    def __init__(
        self,
        token: str,
        router: CommandRouter,
        *,
        command_channel_id: Optional[int] = None,
        intents: Optional[discord.Intents] = None,
        ready_timeout: float = 30.0,
    ):
        """
        Initialize Discord bot.

        Args:
            token: Discord bot token
            router: Router that parses and dispatches commands
            command_channel_id: Only accept commands from this channel (None = any)
            intents: Discord intents (auto-configured if None)
            ready_timeout: Seconds to wait for the gateway to become ready
        """
        if intents is None:
            intents = discord.Intents.default()
            intents.message_content = True  # Required to read messages
            intents.guilds = True

        super().__init__(intents=intents)

        self.token = token
        self.router = router
        self.command_channel_id = command_channel_id
        self.ready_timeout = ready_timeout
        self.accepting_commands = True
        self._ready = asyncio.Event()
        self._connected = False
        self._connection_task: Optional[asyncio.Task] = None

        logger.info(
            "discord_bot_initialized",
            prefix=router.prefix,
            command_channel_id=command_channel_id,
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    # ========================================================================
    # Discord Event Handlers
    # ========================================================================

    async def on_ready(self) -> None:
        """Called when bot is ready (fires on initial connect AND reconnects)."""
        if self.user is None:
            logger.error("discord_bot_ready_but_no_user")
            return

        logger.info(
            "discord_bot_ready",
            bot_name=self.user.name,
            bot_id=self.user.id,
            guilds=len(self.guilds),
        )
        self._connected = True
        self._ready.set()

    async def on_disconnect(self) -> None:
        logger.warning("discord_bot_disconnected_from_gateway")
        self._connected = False

    async def on_message(self, message: discord.Message) -> None:
        """Route prefix commands; everything else is ignored."""
        if not self.accepting_commands:
            return
        if message.author.bot or (self.user is not None and message.author.id == self.user.id):
            return
        if self.command_channel_id is not None and message.channel.id != self.command_channel_id:
            return

        task = self.router.submit(
            message.content,
            ChannelStatusReporter(message.channel),
            requested_by=str(message.author),
        )
        if task is not None:
            logger.info(
                "command_received",
                user=str(message.author),
                channel_id=message.channel.id,
                content=message.content[:100],
            )

    # ========================================================================
    # Bot Lifecycle
    # ========================================================================

    async def connect_bot(self) -> None:
        """Log in and wait until the gateway reports ready."""
        try:
            logger.info("connecting_to_discord")
            await self.login(self.token)
            self._connection_task = asyncio.create_task(self.connect())

            try:
                await asyncio.wait_for(self._ready.wait(), timeout=self.ready_timeout)
                logger.info("discord_bot_connected")
                self._connected = True
            except asyncio.TimeoutError:
                logger.error("discord_bot_connection_timeout", timeout=self.ready_timeout)
                await self._cancel_connection_task()
                raise ConnectionError(
                    f"Discord bot connection timed out after {self.ready_timeout:g} seconds"
                )
        except discord.errors.LoginFailure as e:
            logger.error("discord_login_failed", error=str(e))
            raise ConnectionError(f"Discord login failed: {e}")
        except ConnectionError:
            raise
        except Exception as e:
            logger.error("discord_bot_connection_failed", error=str(e), exc_info=True)
            raise

    def stop_accepting_commands(self) -> None:
        """New messages are ignored from here on; in-flight work continues."""
        self.accepting_commands = False
        logger.info("discord_bot_stopped_accepting_commands")

    async def disconnect_bot(self) -> None:
        """Disconnect the bot from Discord."""
        self.accepting_commands = False
        if self._connected or self._connection_task is not None:
            logger.info("disconnecting_from_discord")
            self._connected = False

            await self._cancel_connection_task()

            if not self.is_closed():
                await self.close()
            logger.info("discord_bot_disconnected")

    async def _cancel_connection_task(self) -> None:
        if self._connection_task is None:
            return
        if not self._connection_task.done():
            self._connection_task.cancel()
            try:
                await self._connection_task
            except asyncio.CancelledError:
                pass
        self._connection_task = None

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

"""
Status reporting interface between the lifecycle engine and Discord.

The engine only needs two capabilities: post a message and edit a message
it posted earlier. ChannelStatusReporter implements them on top of a
discord.py channel; tests substitute a recording double.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import discord
import structlog

logger = structlog.get_logger()

DISCORD_MESSAGE_LIMIT = 2000


def truncate_message(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> str:
    """Clip text to Discord's message size, keeping the beginning."""
    if len(text) <= limit:
        return text
    suffix = "\n…(truncated)"
    return text[: limit - len(suffix)] + suffix


class StatusReporter(ABC):
    """Sink for the status updates an Operation produces."""

    @abstractmethod
    async def send(self, text: str) -> Optional[Any]:
        """
        Post a new message.

        Returns:
            Handle usable with edit(), or None if the message was not sent
        """

    @abstractmethod
    async def edit(self, handle: Any, text: str) -> bool:
        """Replace the content of a previously sent message."""


class ChannelStatusReporter(StatusReporter):
    """StatusReporter bound to one Discord text channel."""

    def __init__(self, channel: discord.abc.Messageable) -> None:
        self.channel = channel

    async def send(self, text: str) -> Optional[discord.Message]:
        try:
            message = await self.channel.send(truncate_message(text))
            logger.debug("status_message_sent", length=len(text))
            return message
        except discord.errors.Forbidden:
            logger.error("send_message_forbidden", channel=str(self.channel))
            return None
        except discord.errors.HTTPException as e:
            logger.error("send_message_http_error", error=str(e))
            return None

    async def edit(self, handle: Any, text: str) -> bool:
        if handle is None:
            return False
        try:
            await handle.edit(content=truncate_message(text))
            return True
        except discord.errors.NotFound:
            logger.warning("edit_message_not_found")
            return False
        except discord.errors.Forbidden:
            logger.error("edit_message_forbidden")
            return False
        except discord.errors.HTTPException as e:
            logger.error("edit_message_http_error", error=str(e))
            return False

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

"""Tests for ChannelStatusReporter and message truncation."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from game_server_manager.discord_interface import (
    DISCORD_MESSAGE_LIMIT,
    ChannelStatusReporter,
    truncate_message,
)


@pytest.fixture
def mock_channel() -> MagicMock:
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = 999888777
    channel.send = AsyncMock()
    return channel


class TestTruncateMessage:
    def test_short_text_untouched(self):
        assert truncate_message("hello") == "hello"

    def test_long_text_clipped_to_limit(self):
        text = "x" * (DISCORD_MESSAGE_LIMIT + 500)

        clipped = truncate_message(text)

        assert len(clipped) == DISCORD_MESSAGE_LIMIT
        assert clipped.endswith("(truncated)")


class TestChannelStatusReporter:
    """send() and edit() against a mocked channel."""

    @pytest.mark.asyncio
    async def test_send_returns_message_handle(self, mock_channel):
        message = MagicMock()
        mock_channel.send.return_value = message

        handle = await ChannelStatusReporter(mock_channel).send("hi")

        assert handle is message
        mock_channel.send.assert_awaited_once_with("hi")

    @pytest.mark.asyncio
    async def test_send_truncates(self, mock_channel):
        await ChannelStatusReporter(mock_channel).send("y" * 5000)

        sent = mock_channel.send.call_args.args[0]
        assert len(sent) == DISCORD_MESSAGE_LIMIT

    @pytest.mark.asyncio
    async def test_send_forbidden_returns_none(self, mock_channel):
        mock_channel.send.side_effect = discord.errors.Forbidden(MagicMock(status=403), "Forbidden")

        assert await ChannelStatusReporter(mock_channel).send("hi") is None

    @pytest.mark.asyncio
    async def test_send_http_error_returns_none(self, mock_channel):
        mock_channel.send.side_effect = discord.errors.HTTPException(MagicMock(status=500), "Error")

        assert await ChannelStatusReporter(mock_channel).send("hi") is None

    @pytest.mark.asyncio
    async def test_edit_success(self, mock_channel):
        message = MagicMock()
        message.edit = AsyncMock()

        assert await ChannelStatusReporter(mock_channel).edit(message, "new") is True
        message.edit.assert_awaited_once_with(content="new")

    @pytest.mark.asyncio
    async def test_edit_deleted_message(self, mock_channel):
        message = MagicMock()
        message.edit = AsyncMock(side_effect=discord.errors.NotFound(MagicMock(status=404), "Unknown Message"))

        assert await ChannelStatusReporter(mock_channel).edit(message, "new") is False

    @pytest.mark.asyncio
    async def test_edit_without_handle(self, mock_channel):
        assert await ChannelStatusReporter(mock_channel).edit(None, "new") is False

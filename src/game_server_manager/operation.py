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

"""Operation model: one user command and the progress it reports."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Iterable, List, Optional

import structlog

from .config import ServerConfig
from .discord_interface import DISCORD_MESSAGE_LIMIT, StatusReporter

logger = structlog.get_logger()


class CommandKind(str, Enum):
    """Commands understood by the router."""

    STATUS = "status"
    STOP = "stop"
    START = "start"
    BACKUP = "backup"
    UPDATE = "update"

    @property
    def requires_server(self) -> bool:
        return self is not CommandKind.STATUS

    @property
    def mutates_server(self) -> bool:
        """Whether the command must hold the per-server lock."""
        return self is not CommandKind.STATUS

    @classmethod
    def parse(cls, token: str) -> Optional["CommandKind"]:
        try:
            return cls(token.lower())
        except ValueError:
            return None


COMMAND_NAMES = tuple(kind.value for kind in CommandKind)


class OperationProgress:
    """Ordered log of everything an Operation reported, rendered as it happens."""

    def __init__(self, reporter: StatusReporter) -> None:
        self.reporter = reporter
        self.log: List[str] = []

    async def post(self, text: str) -> Optional[Any]:
        """Record text and send it as a new message."""
        self.log.append(text)
        return await self.reporter.send(text)

    async def error(self, text: str) -> Optional[Any]:
        """Post a user-facing error line."""
        return await self.post(f":x: {text}")

    def window(self, title: str, size: int) -> "RollingWindow":
        """Create a single-message rolling view over streamed lines."""
        return RollingWindow(self, title=title, size=size)

    @property
    def has_output(self) -> bool:
        return bool(self.log)


class RollingWindow:
    """
    Shows the last `size` lines of a stream in one edited message.

    Each line is clipped so the rendered block always fits in a single
    Discord message.
    """

    def __init__(
        self,
        progress: OperationProgress,
        title: str,
        size: int = 15,
        limit: int = DISCORD_MESSAGE_LIMIT,
    ) -> None:
        self.progress = progress
        self.title = title
        self.size = max(1, size)
        self.limit = limit
        self.lines: Deque[str] = deque(maxlen=self.size)
        self.total_lines = 0
        self._handle: Optional[Any] = None
        # title + fences + newlines
        overhead = len(title) + 16
        self._line_width = max(20, (limit - overhead) // self.size - 1)

    def render(self) -> str:
        body = "\n".join(self._clip(line) for line in self.lines)
        return f"{self.title}\n```\n{body}\n```"

    async def push(self, lines: Iterable[str]) -> None:
        """Append lines and refresh the message once."""
        added = 0
        for line in lines:
            self.lines.append(line)
            added += 1
        if not added:
            return
        self.total_lines += added

        text = self.render()
        if self._handle is None:
            self._handle = await self.progress.reporter.send(text)
            return
        if not await self.progress.reporter.edit(self._handle, text):
            # Lost the message; start a fresh one.
            self._handle = await self.progress.reporter.send(text)

    def _clip(self, line: str) -> str:
        line = line.replace("```", "'''")
        if len(line) <= self._line_width:
            return line
        return line[: self._line_width - 1] + "…"


@dataclass
class Operation:
    """One user-issued command, from receipt to final status render."""

    kind: CommandKind
    progress: OperationProgress
    server: Optional[ServerConfig] = None
    requested_by: Optional[str] = None
    server_argument: str = field(default="")

    @property
    def server_name(self) -> str:
        return self.server.name if self.server else ""

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

"""Prefix command routing.

Turns a chat line like ``!sm update Foo Bar`` into an Operation, resolves the
server, serializes it behind the server's lock and dispatches it to the
matching handler. Every accepted command produces at least one response.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set

import structlog

from ...config import ServerConfig
from ...context import ManagerContext
from ...discord_interface import StatusReporter
from ...exceptions import GameServerManagerError, MissingServerArgument, ServerNotFound
from ...operation import COMMAND_NAMES, CommandKind, Operation, OperationProgress
from ...utils.formatting import help_text
from .command_handlers import CommandResult, build_handlers

logger = structlog.get_logger()


@dataclass(frozen=True)
class ParsedCommand:
    """A prefixed chat line split into command and server argument."""

    command: str
    kind: Optional[CommandKind]
    server_argument: str = ""


class RouteOutcome(Enum):
    IGNORED = "ignored"
    REJECTED = "rejected"
    DISPATCHED = "dispatched"


class CommandRouter:
    """Parses, validates and dispatches prefix commands."""

    def __init__(
        self,
        context: ManagerContext,
        handlers: Optional[Dict[CommandKind, Any]] = None,
    ) -> None:
        self.context = context
        self.prefix = context.config.command_prefix
        self.handlers = handlers or build_handlers(
            controller=context.controller,
            running_set=context.running_set,
            roster=context.registry,
            backups=context.backups,
            updates=context.updates,
            config=context.config,
        )
        self._tasks: Set[asyncio.Task] = set()

    # ========================================================================
    # Parsing
    # ========================================================================

    def parse(self, content: str) -> Optional[ParsedCommand]:
        """
        Split a chat line into its parts.

        Returns:
            None when the line does not start with the prefix token
        """
        parts = content.strip().split(maxsplit=2)
        if not parts or parts[0].lower() != self.prefix.lower():
            return None
        if len(parts) == 1:
            return ParsedCommand(command="", kind=None)

        command = parts[1]
        server_argument = parts[2].strip() if len(parts) > 2 else ""
        return ParsedCommand(
            command=command,
            kind=CommandKind.parse(command),
            server_argument=server_argument,
        )

    def resolve(self, parsed: ParsedCommand) -> Optional[ServerConfig]:
        """
        Look up the server a parsed command targets.

        Raises:
            MissingServerArgument: The command needs a server and none was given
            ServerNotFound: No configured server matches the argument
        """
        assert parsed.kind is not None
        if not parsed.server_argument:
            if parsed.kind.requires_server:
                raise MissingServerArgument(parsed.kind.value)
            return None
        return self.context.registry.get(parsed.server_argument)

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def route(
        self,
        content: str,
        reporter: StatusReporter,
        requested_by: Optional[str] = None,
    ) -> RouteOutcome:
        """Handle one chat line to completion."""
        parsed = self.parse(content)
        if parsed is None:
            return RouteOutcome.IGNORED

        progress = OperationProgress(reporter)

        if parsed.kind is None:
            logger.info("unknown_command", command=parsed.command, user=requested_by)
            await progress.post(help_text(self.prefix, parsed.command, COMMAND_NAMES))
            return RouteOutcome.REJECTED

        try:
            server = self.resolve(parsed)
        except (ServerNotFound, MissingServerArgument) as e:
            logger.info(
                "command_rejected",
                command=parsed.kind.value,
                argument=parsed.server_argument,
                reason=str(e),
                user=requested_by,
            )
            await progress.error(str(e))
            return RouteOutcome.REJECTED

        operation = Operation(
            kind=parsed.kind,
            progress=progress,
            server=server,
            requested_by=requested_by,
            server_argument=parsed.server_argument,
        )
        await self.execute(operation)
        return RouteOutcome.DISPATCHED

    async def execute(self, operation: Operation) -> Optional[CommandResult]:
        """
        Run an operation, holding the server's lock when it mutates state.

        A second operation on a busy server is told it is queued and then
        waits its turn.
        """
        handler = self.handlers[operation.kind]
        progress = operation.progress

        logger.info(
            "operation_started",
            command=operation.kind.value,
            server=operation.server_name or None,
            user=operation.requested_by,
        )

        result: Optional[CommandResult] = None
        try:
            if operation.kind.mutates_server and operation.server is not None:
                lock = self.context.locks.get(operation.server.name)
                if lock.locked():
                    await progress.post(
                        f"'{operation.server.name}' is busy with another operation. "
                        f"Your '{operation.kind.value}' request is queued."
                    )
                async with lock:
                    result = await handler.execute(operation)
            else:
                result = await handler.execute(operation)
        except asyncio.CancelledError:
            logger.warning(
                "operation_cancelled",
                command=operation.kind.value,
                server=operation.server_name or None,
            )
            raise
        except GameServerManagerError as e:
            logger.error(
                "operation_failed",
                command=operation.kind.value,
                server=operation.server_name or None,
                error=str(e),
            )
            await progress.error(str(e))
        except Exception as e:
            logger.error(
                "operation_crashed",
                command=operation.kind.value,
                server=operation.server_name or None,
                error=str(e),
                exc_info=True,
            )
            await progress.error(f"Unexpected error while running '{operation.kind.value}'.")

        if not progress.has_output:
            await progress.post(f"'{operation.kind.value}' finished.")

        logger.info(
            "operation_finished",
            command=operation.kind.value,
            server=operation.server_name or None,
            success=result.success if result else False,
        )
        return result

    # ========================================================================
    # Task tracking
    # ========================================================================

    def submit(
        self,
        content: str,
        reporter: StatusReporter,
        requested_by: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """
        Schedule a chat line for handling without blocking the caller.

        Returns:
            The tracked task, or None when the line is not a command
        """
        if self.parse(content) is None:
            return None

        task = asyncio.create_task(self.route(content, reporter, requested_by))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("command_task_failed", error=str(error))

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight operations, cancelling whatever outlives the timeout.

        Returns:
            Number of operations that were cancelled
        """
        pending = set(self._tasks)
        if not pending:
            return 0

        logger.info("draining_operations", count=len(pending), timeout=timeout)
        _, still_running = await asyncio.wait(pending, timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("operations_cancelled_on_shutdown", count=len(still_running))

        return len(still_running)

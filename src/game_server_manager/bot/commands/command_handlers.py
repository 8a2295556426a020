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

"""Lifecycle Command Handlers.

One handler per command, each owning the sequencing of its composite
operation:

- StatusCommandHandler: liveness + usage report (no lock)
- StopCommandHandler: forceful stop
- StartCommandHandler: detached launch
- BackupCommandHandler: stop -> backup -> restart if it was running and the backup worked
- UpdateCommandHandler: stop -> backup -> update -> restart if it was running

Handlers receive their collaborators through the constructor and report
through the Operation's progress log. The per-server lock is taken by the
router before execute() is called.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog

from ...config import Config, ServerConfig
from ...exceptions import (
    StartCommandNotConfigured,
    StartFailure,
    StopFailure,
    UpdateLaunchFailure,
    UpdateTimeout,
)
from ...operation import CommandKind, Operation, OperationProgress
from ...utils.formatting import format_status_report

logger = structlog.get_logger()


# ============================================================================
# Protocols (Type-safe dependency contracts)
# ============================================================================

class ProcessControl(Protocol):
    """Protocol for the process controller."""

    async def status(self, servers: Sequence[ServerConfig]) -> List[Any]:
        ...

    async def stop(self, server: ServerConfig) -> Any:
        """Returns a StopResult (falsy when nothing was running)."""
        ...

    async def start(self, server: ServerConfig) -> Any:
        ...


class BackupRunner(Protocol):
    """Protocol for the backup engine."""

    async def backup(
        self,
        server: ServerConfig,
        progress: OperationProgress,
        context: Optional[str] = None,
    ) -> bool:
        ...


class UpdateRunner(Protocol):
    """Protocol for the update engine."""

    async def run_update(self, server: ServerConfig, on_lines: Any = None) -> Any:
        ...


class RunningSet(Protocol):
    """Protocol for the persisted running-set."""

    def mark_started(self, name: str) -> None:
        ...

    def mark_stopped(self, name: str) -> None:
        ...


class ServerRoster(Protocol):
    """Protocol for the server registry."""

    def list_servers(self) -> List[ServerConfig]:
        ...


# ============================================================================
# Result Type
# ============================================================================

@dataclass
class CommandResult:
    """Standard result type for command handlers."""

    success: bool
    was_running: bool = False
    restarted: bool = False
    aborted: bool = False


# ============================================================================
# Shared lifecycle steps
# ============================================================================

class LifecycleSteps:
    """Stop and start steps shared by the composite handlers."""

    def __init__(self, controller: ProcessControl, running_set: RunningSet) -> None:
        self.controller = controller
        self.running_set = running_set

    async def stop(
        self,
        server: ServerConfig,
        progress: OperationProgress,
        announce_idle: bool = False,
    ) -> bool:
        """
        Stop the server.

        Returns:
            True if processes were stopped, False if it was not running

        Raises:
            StopFailure: after reporting it, so the caller's sequence is interrupted
        """
        try:
            result = await self.controller.stop(server)
        except StopFailure as e:
            await progress.error(str(e))
            raise

        self.running_set.mark_stopped(server.name)

        if not result:
            if announce_idle:
                await progress.post(f"'{server.name}' is not running.")
            return False

        await progress.post(f"Stopped {result.count} process(es) for '{server.name}'.")
        if getattr(result, "lingering_pids", None):
            await progress.post(
                f"Warning: {len(result.lingering_pids)} process(es) for '{server.name}' "
                "have not exited yet."
            )
        return True

    async def start(self, server: ServerConfig, progress: OperationProgress) -> bool:
        """Launch the server. Returns True if the OS accepted the spawn."""
        if not server.start_command.strip():
            await progress.post(f"Start command not configured for server '{server.name}'.")
            return False

        await progress.post(f"Starting '{server.name}'...")
        try:
            await self.controller.start(server)
        except StartCommandNotConfigured as e:
            await progress.post(str(e))
            return False
        except StartFailure as e:
            await progress.error(str(e))
            return False

        self.running_set.mark_started(server.name)
        await progress.post(f"Start command executed for '{server.name}'.")
        return True


# ============================================================================
# Status Command Handler
# ============================================================================

class StatusCommandHandler:
    """Report running state, RAM and CPU for one server or the whole roster."""

    def __init__(self, controller: ProcessControl, roster: ServerRoster) -> None:
        self.controller = controller
        self.roster = roster

    async def execute(self, operation: Operation) -> CommandResult:
        servers = [operation.server] if operation.server else self.roster.list_servers()
        logger.info("handler_invoked", handler="StatusCommandHandler", servers=len(servers))

        statuses = await self.controller.status(servers)
        await operation.progress.post(format_status_report(statuses))
        return CommandResult(success=True)


# ============================================================================
# Stop / Start Command Handlers
# ============================================================================

class StopCommandHandler:
    """Forcefully stop a server."""

    def __init__(self, steps: LifecycleSteps) -> None:
        self.steps = steps

    async def execute(self, operation: Operation) -> CommandResult:
        server = operation.server
        assert server is not None
        logger.info("handler_invoked", handler="StopCommandHandler", server=server.name)

        try:
            was_running = await self.steps.stop(server, operation.progress, announce_idle=True)
        except StopFailure:
            return CommandResult(success=False, aborted=True)
        return CommandResult(success=True, was_running=was_running)


class StartCommandHandler:
    """Launch a server's start command."""

    def __init__(self, steps: LifecycleSteps) -> None:
        self.steps = steps

    async def execute(self, operation: Operation) -> CommandResult:
        server = operation.server
        assert server is not None
        logger.info("handler_invoked", handler="StartCommandHandler", server=server.name)

        started = await self.steps.start(server, operation.progress)
        return CommandResult(success=started, restarted=started)


# ============================================================================
# Backup Command Handler
# ============================================================================

class BackupCommandHandler:
    """
    stop -> backup -> restart.

    The server is only restarted if it was running and the backup
    succeeded; a failed backup leaves it stopped.
    """

    def __init__(self, steps: LifecycleSteps, backups: BackupRunner) -> None:
        self.steps = steps
        self.backups = backups

    async def execute(self, operation: Operation) -> CommandResult:
        server = operation.server
        assert server is not None
        progress = operation.progress
        logger.info("handler_invoked", handler="BackupCommandHandler", server=server.name)

        try:
            was_running = await self.steps.stop(server, progress)
        except StopFailure:
            return CommandResult(success=False, aborted=True)

        ok = await self.backups.backup(server, progress)
        if not ok:
            if was_running:
                await progress.post(
                    f"'{server.name}' was left stopped because the backup failed."
                )
            return CommandResult(success=False, was_running=was_running, aborted=True)

        restarted = False
        if was_running:
            restarted = await self.steps.start(server, progress)

        return CommandResult(success=True, was_running=was_running, restarted=restarted)


# ============================================================================
# Update Command Handler
# ============================================================================

class UpdateCommandHandler:
    """
    stop -> backup -> update -> restart.

    The restart is skipped when the backup fails, the update cannot be
    launched, or it times out. A non-zero exit code still restarts unless
    restart_on_update_failure is disabled.
    """

    def __init__(
        self,
        steps: LifecycleSteps,
        backups: BackupRunner,
        updates: UpdateRunner,
        output_lines: int = 15,
        restart_on_update_failure: bool = True,
    ) -> None:
        self.steps = steps
        self.backups = backups
        self.updates = updates
        self.output_lines = output_lines
        self.restart_on_update_failure = restart_on_update_failure

    async def execute(self, operation: Operation) -> CommandResult:
        server = operation.server
        assert server is not None
        progress = operation.progress
        logger.info("handler_invoked", handler="UpdateCommandHandler", server=server.name)

        try:
            was_running = await self.steps.stop(server, progress)
        except StopFailure:
            return CommandResult(success=False, aborted=True)

        if not await self.backups.backup(server, progress, context="before update"):
            await progress.error(f"Backup failed. Update aborted for '{server.name}'.")
            return CommandResult(success=False, was_running=was_running, aborted=True)

        await progress.post(f"Running update command for '{server.name}'...")
        window = progress.window(f"Update output for '{server.name}':", self.output_lines)

        try:
            result = await self.updates.run_update(server, on_lines=window.push)
        except (UpdateLaunchFailure, UpdateTimeout) as e:
            logger.error("update_command_failed", server=server.name, error=str(e))
            await progress.error(str(e))
            return CommandResult(success=False, was_running=was_running, aborted=True)

        await progress.post(
            f"Update command completed for '{server.name}' (exit code {result.return_code})."
        )

        if result.return_code != 0 and not self.restart_on_update_failure:
            if was_running:
                await progress.post(
                    f"'{server.name}' was left stopped because the update exited with an error."
                )
            return CommandResult(success=False, was_running=was_running, aborted=True)

        restarted = False
        if was_running:
            restarted = await self.steps.start(server, progress)

        return CommandResult(
            success=result.return_code == 0,
            was_running=was_running,
            restarted=restarted,
        )


def build_handlers(
    controller: ProcessControl,
    running_set: RunningSet,
    roster: ServerRoster,
    backups: BackupRunner,
    updates: UpdateRunner,
    config: Config,
) -> Dict[CommandKind, Any]:
    """Create one handler per command kind."""
    steps = LifecycleSteps(controller, running_set)
    return {
        CommandKind.STATUS: StatusCommandHandler(controller, roster),
        CommandKind.STOP: StopCommandHandler(steps),
        CommandKind.START: StartCommandHandler(steps),
        CommandKind.BACKUP: BackupCommandHandler(steps, backups),
        CommandKind.UPDATE: UpdateCommandHandler(
            steps,
            backups,
            updates,
            output_lines=config.update_output_lines,
            restart_on_update_failure=config.restart_on_update_failure,
        ),
    }

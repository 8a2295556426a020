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

"""Exception hierarchy for Game Server Manager."""

from __future__ import annotations

from typing import List, Optional, Sequence


class GameServerManagerError(Exception):
    """Base exception for game_server_manager."""


class ConfigInvalid(GameServerManagerError):
    """Raised when configuration fails validation. Fatal at startup."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors: List[str] = list(errors)
        details = "\n".join(f"- {error}" for error in self.errors)
        super().__init__(f"Configuration validation failed:\n{details}")


class ServerNotFound(GameServerManagerError, KeyError):
    """Raised when a server name does not match any configured server."""

    def __init__(self, name: str, available: Sequence[str] = ()) -> None:
        self.name = name
        self.available = list(available)
        super().__init__(name)

    def __str__(self) -> str:
        return f"No server found with name '{self.name}'."


class MissingServerArgument(GameServerManagerError):
    """Raised when a command that targets a server is sent without one."""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(
            f"The '{command}' command requires a server name."
        )


class ProcessControlFailure(GameServerManagerError):
    """A kill or launch against the OS failed."""

    def __init__(self, server_name: str, message: str) -> None:
        self.server_name = server_name
        super().__init__(message)


class StopFailure(ProcessControlFailure):
    """Raised when a matching process could not be killed."""

    def __init__(self, server_name: str, pid: int, error: BaseException) -> None:
        self.pid = pid
        self.error = error
        super().__init__(
            server_name,
            f"Failed to stop process {pid} for '{server_name}': {error}",
        )


class StartFailure(ProcessControlFailure):
    """Raised when the OS refused to spawn the start command."""

    def __init__(self, server_name: str, error: BaseException) -> None:
        self.error = error
        super().__init__(server_name, f"Failed to start '{server_name}': {error}")


class StartCommandNotConfigured(ProcessControlFailure):
    """Raised when a server has no start command."""

    def __init__(self, server_name: str) -> None:
        super().__init__(
            server_name,
            f"Start command not configured for server '{server_name}'.",
        )


class BackupFailure(GameServerManagerError):
    """Raised inside the backup engine; never escapes it."""


class UpdateLaunchFailure(GameServerManagerError):
    """Raised when the update command could not be started."""

    def __init__(self, server_name: str, reason: str) -> None:
        self.server_name = server_name
        super().__init__(f"Failed to start update process for '{server_name}': {reason}")


class UpdateTimeout(GameServerManagerError):
    """Raised when the update command outlives its timeout and is killed."""

    def __init__(
        self,
        server_name: str,
        timeout: float,
        output_lines: Optional[Sequence[str]] = None,
    ) -> None:
        self.server_name = server_name
        self.timeout = timeout
        self.output_lines = list(output_lines or [])
        super().__init__(
            f"Update for '{server_name}' did not finish within {timeout:g}s and was terminated."
        )

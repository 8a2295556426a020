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

"""Shared pytest fixtures.

This module provides:
- src/ on sys.path so tests run without an editable install
- RecordingReporter: in-memory StatusReporter that records sends and edits
- Fake process controller, backup engine and update engine with call logs
- A ManagerContext factory wired from those fakes
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import pytest

# Add src/ to Python path for absolute imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from game_server_manager.config import Config, ServerConfig  # noqa: E402
from game_server_manager.context import ManagerContext  # noqa: E402
from game_server_manager.discord_interface import StatusReporter  # noqa: E402
from game_server_manager.exceptions import StartFailure, StopFailure  # noqa: E402
from game_server_manager.process_controller import (  # noqa: E402
    LaunchedProcess,
    ProcessProbe,
    ServerRuntimeStatus,
    StopResult,
)
from game_server_manager.registry import ServerRegistry  # noqa: E402
from game_server_manager.running_set import RunningSetStore  # noqa: E402
from game_server_manager.update_engine import UpdateResult  # noqa: E402
from game_server_manager.utils.locks import ServerLocks  # noqa: E402


# ════════════════════════════════════════════════════════════════════════════
# STATUS REPORTER DOUBLE
# ════════════════════════════════════════════════════════════════════════════


class RecordingReporter(StatusReporter):
    """StatusReporter that keeps every message in memory.

    Handles are integer indexes into ``messages``; edits replace the text at
    that index and are also appended to ``edits``.
    """

    def __init__(self, fail_sends: bool = False, fail_edits: bool = False) -> None:
        self.messages: List[str] = []
        self.edits: List[tuple] = []
        self.fail_sends = fail_sends
        self.fail_edits = fail_edits

    async def send(self, text: str) -> Optional[int]:
        if self.fail_sends:
            return None
        self.messages.append(text)
        return len(self.messages) - 1

    async def edit(self, handle: Any, text: str) -> bool:
        if self.fail_edits or handle is None:
            return False
        self.messages[handle] = text
        self.edits.append((handle, text))
        return True

    @property
    def text(self) -> str:
        return "\n".join(self.messages)


# ════════════════════════════════════════════════════════════════════════════
# ENGINE FAKES
# ════════════════════════════════════════════════════════════════════════════


class FakeController:
    """In-memory stand-in for ProcessController.

    ``running`` holds the case-folded names of servers that are up.
    """

    def __init__(self) -> None:
        self.running: Set[str] = set()
        self.stop_calls: List[str] = []
        self.start_calls: List[str] = []
        self.stop_error: Optional[BaseException] = None
        self.start_error: Optional[BaseException] = None
        self.events: List[str] = []
        self.before_stop: Optional[Callable[[str], Any]] = None

    def is_running(self, server: ServerConfig) -> ProcessProbe:
        if server.key in self.running:
            return ProcessProbe(running=True, pids=frozenset({4242}))
        return ProcessProbe(running=False)

    async def status(self, servers: List[ServerConfig]) -> List[ServerRuntimeStatus]:
        return [
            ServerRuntimeStatus(
                name=server.name,
                running=server.key in self.running,
                memory_bytes=1536 if server.key in self.running else 0,
                cpu_percent=12.34 if server.key in self.running else 0.0,
            )
            for server in servers
        ]

    async def stop(self, server: ServerConfig) -> StopResult:
        self.stop_calls.append(server.name)
        self.events.append(f"stop:{server.name}:begin")
        if self.before_stop is not None:
            await self.before_stop(server.name)
        self.events.append(f"stop:{server.name}:end")
        if self.stop_error is not None:
            raise StopFailure(server.name, 4242, self.stop_error)
        if server.key not in self.running:
            return StopResult()
        self.running.discard(server.key)
        return StopResult(stopped_pids=frozenset({4242}))

    async def start(self, server: ServerConfig) -> LaunchedProcess:
        self.start_calls.append(server.name)
        self.events.append(f"start:{server.name}")
        if self.start_error is not None:
            raise StartFailure(server.name, self.start_error)
        self.running.add(server.key)
        return LaunchedProcess(server_name=server.name, pid=5151, command=server.start_command)


class FakeBackups:
    """Backup engine double that reports like the real one."""

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.calls: List[tuple] = []
        self.events: Optional[List[str]] = None

    async def backup(self, server: ServerConfig, progress: Any, context: Optional[str] = None) -> bool:
        self.calls.append((server.name, context))
        if self.events is not None:
            self.events.append(f"backup:{server.name}")
        suffix = f" ({context})" if context else ""
        await progress.post(f"Performing backup for '{server.name}'{suffix}...")
        if not self.ok:
            await progress.error(f"Failed to backup server '{server.name}': disk full")
            return False
        await progress.post(
            f"Backup of '{server.name}' completed successfully. File: {server.name}_backup_20250101000000.zip"
        )
        return True


class FakeUpdates:
    """Update engine double; feeds ``lines`` to on_lines then returns or raises."""

    def __init__(self, return_code: int = 0, lines: Optional[List[str]] = None) -> None:
        self.return_code = return_code
        self.lines = lines if lines is not None else ["Downloading...", "Done."]
        self.error: Optional[BaseException] = None
        self.calls: List[str] = []

    async def run_update(self, server: ServerConfig, on_lines: Any = None, timeout: Any = None) -> UpdateResult:
        self.calls.append(server.name)
        if self.error is not None:
            raise self.error
        if on_lines is not None and self.lines:
            await on_lines(list(self.lines))
        return UpdateResult(exit_observed=True, return_code=self.return_code, output_lines=list(self.lines))


# ════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def make_server(tmp_path: Path) -> Callable[..., ServerConfig]:
    """Factory for ServerConfig descriptors backed by real directories."""

    def _make(name: str = "Foo", **overrides: Any) -> ServerConfig:
        install = tmp_path / "servers" / name.replace(" ", "_")
        saves = install / "saves"
        saves.mkdir(parents=True, exist_ok=True)
        values: Dict[str, Any] = {
            "name": name,
            "install_location": install,
            "save_directory": saves,
            "start_command": "./start.sh",
            "update_command": "./update.sh",
            "executable_name": f"{name.replace(' ', '')}Server.exe",
        }
        values.update(overrides)
        return ServerConfig(**values)

    return _make


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory for a Config around the given servers."""

    def _make(servers: List[ServerConfig], **overrides: Any) -> Config:
        backups = tmp_path / "backups"
        backups.mkdir(exist_ok=True)
        values: Dict[str, Any] = {
            "discord_bot_token": "test-token",
            "servers": servers,
            "backup_location": backups,
            "running_set_path": tmp_path / "last_running_servers.json",
        }
        values.update(overrides)
        return Config(**values)

    return _make


@pytest.fixture
def make_context(make_config: Callable[..., Config]) -> Callable[..., ManagerContext]:
    """Factory for a ManagerContext wired with the in-memory fakes."""

    def _make(
        servers: List[ServerConfig],
        controller: Optional[FakeController] = None,
        backups: Optional[FakeBackups] = None,
        updates: Optional[FakeUpdates] = None,
        **config_overrides: Any,
    ) -> ManagerContext:
        config = make_config(servers, **config_overrides)
        return ManagerContext(
            config=config,
            registry=ServerRegistry(servers),
            running_set=RunningSetStore(config.running_set_path),
            controller=controller or FakeController(),  # type: ignore[arg-type]
            backups=backups or FakeBackups(),  # type: ignore[arg-type]
            updates=updates or FakeUpdates(),  # type: ignore[arg-type]
            locks=ServerLocks(),
        )

    return _make

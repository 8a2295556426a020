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
OS process control for managed game servers.

Servers are identified by executable image name, not by launch provenance:
any process whose image name matches a server's executable_name is treated
as that server. Set match_install_dir on a server to additionally require
the executable to live under its install_location.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

import psutil
import structlog

from .config import ServerConfig
from .exceptions import StartCommandNotConfigured, StartFailure, StopFailure

logger = structlog.get_logger()

SAMPLE_WINDOW: float = 0.5
"""CPU sampling window in seconds."""


def image_stem(name: str) -> str:
    """
    Normalize an executable or process name for comparison.

    Drops any directory part and the extension, then case-folds:
    ``C:\\Games\\Server.EXE`` -> ``server``.
    """
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    stem, _ = os.path.splitext(base)
    return (stem or base).casefold()


def _is_within(path: str, directory: Path) -> bool:
    try:
        Path(path).resolve().relative_to(directory.resolve())
        return True
    except (ValueError, OSError):
        return False


@dataclass(frozen=True)
class ProcessProbe:
    """Result of a liveness check."""

    running: bool
    pids: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class UsageSample:
    """Resource usage summed over a set of processes."""

    memory_bytes: int = 0
    cpu_percent: float = 0.0


@dataclass(frozen=True)
class ServerRuntimeStatus:
    """Point-in-time status of one server. Never persisted."""

    name: str
    running: bool
    memory_bytes: int = 0
    cpu_percent: float = 0.0
    pids: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class StopResult:
    """Outcome of a stop request. Falsy when nothing was running."""

    stopped_pids: FrozenSet[int] = frozenset()
    lingering_pids: FrozenSet[int] = frozenset()

    @property
    def count(self) -> int:
        return len(self.stopped_pids)

    def __bool__(self) -> bool:
        return bool(self.stopped_pids)


@dataclass(frozen=True)
class LaunchedProcess:
    """A start command the OS accepted. Says nothing about readiness."""

    server_name: str
    pid: int
    command: str
    cwd: Optional[Path] = field(default=None)


def detached_popen_kwargs() -> Dict[str, object]:
    """Popen options that keep a child out of the manager's console/session."""
    if os.name == "nt":
        return {
            "creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
            | getattr(subprocess, "CREATE_NO_WINDOW", 0)
        }
    return {"start_new_session": True}


def kill_process_tree(pid: int) -> List[int]:
    """
    Forcefully kill pid and all of its descendants.

    Returns:
        Pids that were signalled. Processes that already exited are ignored.
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []

    try:
        victims = parent.children(recursive=True)
    except psutil.Error:
        victims = []
    victims.append(parent)

    killed: List[int] = []
    for proc in victims:
        try:
            proc.kill()
            killed.append(proc.pid)
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as e:
            logger.warning("kill_process_tree_failed", pid=proc.pid, error=str(e))
    return killed


class ProcessController:
    """Inspect and control the OS processes backing each server."""

    def __init__(
        self,
        stop_wait_timeout: float = 10.0,
        sample_window: float = SAMPLE_WINDOW,
        cpu_count: Optional[int] = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            stop_wait_timeout: Seconds to wait for killed processes to exit
            sample_window: CPU sampling window in seconds
            cpu_count: Logical core count (detected when None)
        """
        self.stop_wait_timeout = stop_wait_timeout
        self.sample_window = sample_window
        self.cpu_count = cpu_count or psutil.cpu_count(logical=True) or 1
        self._launched: List[subprocess.Popen] = []

    # ========================================================================
    # Liveness
    # ========================================================================

    def find_processes(self, server: ServerConfig) -> List[psutil.Process]:
        """All OS processes that match the server's executable name."""
        if not server.executable_name.strip():
            return []

        wanted = image_stem(server.executable_name)
        matches: List[psutil.Process] = []

        for proc in psutil.process_iter(["pid", "name", "exe"]):
            name = proc.info.get("name") or ""
            if not name or image_stem(name) != wanted:
                continue
            if server.match_install_dir and server.install_location is not None:
                exe = proc.info.get("exe") or ""
                if not exe or not _is_within(exe, server.install_location):
                    continue
            matches.append(proc)

        return matches

    def is_running(self, server: ServerConfig) -> ProcessProbe:
        """Query the process table for the server's executable."""
        pids = frozenset(proc.pid for proc in self.find_processes(server))
        return ProcessProbe(running=bool(pids), pids=pids)

    # ========================================================================
    # Resource sampling
    # ========================================================================

    async def sample_many(
        self,
        pid_sets: Mapping[str, Iterable[int]],
        window: Optional[float] = None,
    ) -> Dict[str, UsageSample]:
        """
        Sample memory and CPU for several groups of pids in one shared window.

        Processes that exit or deny access mid-sample are skipped.

        Args:
            pid_sets: {key: pids}, typically {server name: pids}
            window: Sampling window in seconds (defaults to sample_window)

        Returns:
            {key: UsageSample}
        """
        window = self.sample_window if window is None else window
        baselines: Dict[str, List[tuple]] = {}
        memory: Dict[str, int] = {}

        for key, pids in pid_sets.items():
            baselines[key] = []
            memory[key] = 0
            for pid in pids:
                try:
                    proc = psutil.Process(pid)
                    times = proc.cpu_times()
                    memory[key] += proc.memory_info().rss
                    baselines[key].append((proc, times.user + times.system))
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue

        await asyncio.sleep(window)

        results: Dict[str, UsageSample] = {}
        for key, readings in baselines.items():
            cpu_percent = 0.0
            for proc, before in readings:
                try:
                    times = proc.cpu_times()
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue
                delta = (times.user + times.system) - before
                cpu_percent += delta / window / self.cpu_count * 100.0
            results[key] = UsageSample(memory_bytes=memory[key], cpu_percent=cpu_percent)

        return results

    async def sample_usage(
        self, pids: Iterable[int], window: Optional[float] = None
    ) -> UsageSample:
        """Sample one group of pids."""
        results = await self.sample_many({"": pids}, window)
        return results[""]

    async def status(self, servers: Sequence[ServerConfig]) -> List[ServerRuntimeStatus]:
        """
        Liveness plus usage for each server, sharing a single sampling window.

        Returns:
            One ServerRuntimeStatus per server, in the given order
        """
        probes = {server.name: self.is_running(server) for server in servers}
        running = {name: probe.pids for name, probe in probes.items() if probe.running}

        samples = await self.sample_many(running) if running else {}

        statuses: List[ServerRuntimeStatus] = []
        for server in servers:
            probe = probes[server.name]
            sample = samples.get(server.name, UsageSample())
            statuses.append(
                ServerRuntimeStatus(
                    name=server.name,
                    running=probe.running,
                    memory_bytes=sample.memory_bytes if probe.running else 0,
                    cpu_percent=sample.cpu_percent if probe.running else 0.0,
                    pids=probe.pids,
                )
            )

        logger.debug(
            "status_sampled",
            servers=len(statuses),
            running=[s.name for s in statuses if s.running],
        )
        return statuses

    # ========================================================================
    # Control
    # ========================================================================

    async def stop(self, server: ServerConfig) -> StopResult:
        """
        Forcefully terminate every process matching the server.

        Returns:
            StopResult; falsy when nothing was running (no kill issued)

        Raises:
            StopFailure: A matching process could not be killed. Remaining
                processes are left alone.
        """
        processes = self.find_processes(server)
        if not processes:
            logger.info("stop_skipped_not_running", server=server.name)
            return StopResult()

        logger.info(
            "stopping_server",
            server=server.name,
            pids=[proc.pid for proc in processes],
        )

        killed: List[psutil.Process] = []
        for proc in processes:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                # Already gone counts as stopped.
                pass
            except (psutil.Error, OSError) as e:
                logger.error(
                    "stop_process_failed",
                    server=server.name,
                    pid=proc.pid,
                    error=str(e),
                    exc_info=True,
                )
                raise StopFailure(server.name, proc.pid, e) from e
            killed.append(proc)

        lingering: FrozenSet[int] = frozenset()
        if self.stop_wait_timeout > 0:
            _, alive = await asyncio.to_thread(
                psutil.wait_procs, killed, timeout=self.stop_wait_timeout
            )
            lingering = frozenset(proc.pid for proc in alive)
            if lingering:
                logger.warning(
                    "stop_processes_still_alive",
                    server=server.name,
                    pids=sorted(lingering),
                    timeout=self.stop_wait_timeout,
                )

        result = StopResult(
            stopped_pids=frozenset(proc.pid for proc in killed),
            lingering_pids=lingering,
        )
        logger.info("server_stopped", server=server.name, count=result.count)
        return result

    async def start(self, server: ServerConfig) -> LaunchedProcess:
        """
        Launch the server's start command in a detached shell.

        Returns:
            LaunchedProcess describing the spawned shell

        Raises:
            StartCommandNotConfigured: The start command is blank
            StartFailure: The OS rejected the spawn
        """
        if not server.start_command.strip():
            logger.warning("start_command_not_configured", server=server.name)
            raise StartCommandNotConfigured(server.name)

        self._reap()
        cwd = server.install_location

        logger.info(
            "starting_server",
            server=server.name,
            command=server.start_command,
            cwd=str(cwd) if cwd else None,
        )

        try:
            process = await asyncio.to_thread(self._spawn, server.start_command, cwd)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.error("start_server_failed", server=server.name, error=str(e), exc_info=True)
            raise StartFailure(server.name, e) from e

        self._launched.append(process)
        logger.info("server_start_command_executed", server=server.name, pid=process.pid)
        return LaunchedProcess(
            server_name=server.name,
            pid=process.pid,
            command=server.start_command,
            cwd=cwd,
        )

    @staticmethod
    def _spawn(command: str, cwd: Optional[Path]) -> subprocess.Popen:
        return subprocess.Popen(  # type: ignore[call-overload]
            command,
            shell=True,
            cwd=str(cwd) if cwd else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            **detached_popen_kwargs(),
        )

    def _reap(self) -> None:
        """Collect exit status of launched shells that have finished."""
        self._launched = [proc for proc in self._launched if proc.poll() is None]

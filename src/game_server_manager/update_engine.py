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
Runs a server's update command and streams its output.

stdout and stderr are drained by two workers into one bounded queue; a
single consumer forwards lines in arrival order. The process exit status is
only collected after both streams reach end-of-stream, so output written
right before exit is never lost.
"""

from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import structlog

from .config import ServerConfig
from .exceptions import UpdateLaunchFailure, UpdateTimeout
from .process_controller import detached_popen_kwargs, kill_process_tree

logger = structlog.get_logger()

LinesCallback = Callable[[List[str]], Awaitable[None]]

STREAM_LIMIT = 1024 * 1024


@dataclass
class UpdateResult:
    """Outcome of an update run that launched successfully."""

    exit_observed: bool
    return_code: Optional[int] = None
    output_lines: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.exit_observed and self.return_code == 0


class UpdateEngine:
    """Executes update commands with captured, streamed output."""

    def __init__(self, timeout: Optional[float] = None, queue_size: int = 256) -> None:
        """
        Args:
            timeout: Default seconds before the update is killed (None = wait forever)
            queue_size: Bound on lines buffered between the drains and the consumer
        """
        self.timeout = timeout
        self.queue_size = queue_size

    async def run_update(
        self,
        server: ServerConfig,
        on_lines: Optional[LinesCallback] = None,
        timeout: Optional[float] = None,
    ) -> UpdateResult:
        """
        Run the server's update command to completion.

        Args:
            server: Server to update
            on_lines: Awaited with each batch of new non-blank output lines
            timeout: Overrides the engine default for this run

        Returns:
            UpdateResult; the exit code is reported, not judged

        Raises:
            UpdateLaunchFailure: No update command, or the spawn failed
            UpdateTimeout: The command ran past the timeout and was killed
        """
        command = server.update_command
        if not command.strip():
            raise UpdateLaunchFailure(server.name, "update command not configured")

        timeout = self.timeout if timeout is None else timeout
        cwd = server.install_location

        logger.info(
            "update_starting",
            server=server.name,
            command=command,
            cwd=str(cwd) if cwd else None,
            timeout=timeout,
        )

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                limit=STREAM_LIMIT,
                **detached_popen_kwargs(),
            )
        except (OSError, ValueError) as e:
            logger.error("update_launch_failed", server=server.name, error=str(e), exc_info=True)
            raise UpdateLaunchFailure(server.name, str(e)) from e

        output: List[str] = []

        try:
            return_code = await asyncio.wait_for(
                self._pump(process, output, on_lines, server.name),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            killed = kill_process_tree(process.pid)
            logger.error(
                "update_timed_out",
                server=server.name,
                timeout=timeout,
                killed=killed,
                lines=len(output),
            )
            await self._reap(process)
            raise UpdateTimeout(server.name, timeout or 0.0, output)
        except BaseException:
            kill_process_tree(process.pid)
            await self._reap(process)
            raise

        logger.info(
            "update_finished",
            server=server.name,
            return_code=return_code,
            lines=len(output),
        )
        return UpdateResult(exit_observed=True, return_code=return_code, output_lines=output)

    async def _pump(
        self,
        process: asyncio.subprocess.Process,
        output: List[str],
        on_lines: Optional[LinesCallback],
        server_name: str,
    ) -> int:
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=self.queue_size)

        async def drain(stream: Optional[asyncio.StreamReader], name: str) -> None:
            if stream is None:
                return
            while True:
                try:
                    raw = await stream.readline()
                except ValueError:
                    logger.warning("update_output_line_too_long", server=server_name, stream=name)
                    continue
                if not raw:
                    return
                line = raw.decode(errors="replace").rstrip("\r\n")
                if line.strip():
                    await queue.put(line)

        async def consume() -> None:
            finished = False
            while not finished:
                item = await queue.get()
                if item is None:
                    return
                batch = [item]
                while not queue.empty():
                    item = queue.get_nowait()
                    if item is None:
                        finished = True
                        break
                    batch.append(item)
                output.extend(batch)
                if on_lines is None:
                    continue
                # The drains block on a full queue, so the consumer must keep reading
                try:
                    await on_lines(batch)
                except Exception as e:
                    logger.warning(
                        "update_output_callback_failed",
                        server=server_name,
                        error=str(e),
                        exc_info=True,
                    )

        consumer = asyncio.create_task(consume())
        try:
            await asyncio.gather(
                drain(process.stdout, "stdout"),
                drain(process.stderr, "stderr"),
            )
            await queue.put(None)
            await consumer
        finally:
            if not consumer.done():
                consumer.cancel()
                try:
                    await consumer
                except asyncio.CancelledError:
                    pass

        return await process.wait()

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("update_process_not_reaped", pid=process.pid)

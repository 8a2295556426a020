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
Save-data backups.

Each backup zips a server's save_directory into
``{name}_backup_{yyyyMMddHHmmss}.zip`` under the backup root. Failures are
logged and reported, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import structlog

from .config import ServerConfig
from .exceptions import BackupFailure
from .operation import OperationProgress

logger = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def backup_file_name(server_name: str, when: datetime) -> str:
    return f"{server_name}_backup_{when.strftime(TIMESTAMP_FORMAT)}.zip"


class BackupEngine:
    """Archives save directories into the backup root."""

    def __init__(
        self,
        backup_root: Path,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Args:
            backup_root: Directory receiving the archives
            clock: Source of the archive timestamp (local time)
        """
        self.backup_root = Path(backup_root)
        self.clock = clock

    async def backup(
        self,
        server: ServerConfig,
        progress: OperationProgress,
        context: Optional[str] = None,
    ) -> bool:
        """
        Archive the server's save directory.

        Args:
            server: Server to back up
            progress: Where to report progress and failure
            context: Optional reason shown to the user (e.g. "before update")

        Returns:
            True on success, False on any failure
        """
        file_name = backup_file_name(server.name, self.clock())
        archive_path = self.backup_root / file_name
        suffix = f" ({context})" if context else ""

        await progress.post(f"Performing backup for '{server.name}'{suffix}...")
        logger.info(
            "backup_started",
            server=server.name,
            source=str(server.save_directory),
            archive=str(archive_path),
            context=context,
        )

        try:
            await asyncio.to_thread(self._archive, server, archive_path)
        except (BackupFailure, OSError, shutil.Error, ValueError) as e:
            logger.error(
                "backup_failed",
                server=server.name,
                archive=str(archive_path),
                error=str(e),
                exc_info=True,
            )
            await progress.error(f"Failed to backup server '{server.name}': {e}")
            return False

        logger.info("backup_completed", server=server.name, archive=str(archive_path))
        await progress.post(
            f"Backup of '{server.name}' completed successfully. File: {file_name}"
        )
        return True

    def _archive(self, server: ServerConfig, archive_path: Path) -> Path:
        source = server.save_directory
        if source is None:
            raise BackupFailure(f"Save directory not configured for '{server.name}'")
        if not source.is_dir():
            raise BackupFailure(f"Save directory '{source}' does not exist")
        if not self.backup_root.is_dir():
            raise BackupFailure(f"Backup location '{self.backup_root}' does not exist")

        base_name = str(archive_path.with_suffix(""))
        # make_archive leaves the cwd alone from 3.10.6 on (see requires-python)
        created = shutil.make_archive(base_name, "zip", root_dir=str(source))
        return Path(created)

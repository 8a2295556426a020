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
Persisted record of which servers the manager believes are running.

The file is a JSON array of server names. Every mutation is written through
to disk immediately; the set reflects last known intent, not OS truth, and is
reconciled against the process table when the manager starts.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Iterable, List, Set

import structlog

logger = structlog.get_logger()


class RunningSetStore:
    """Write-through store for the running-set file."""

    def __init__(self, path: Path) -> None:
        """
        Args:
            path: Location of the JSON file. Relative paths resolve against
                the manager's working directory.
        """
        self.path = Path(path)
        self._names: Set[str] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def names(self) -> Set[str]:
        """Snapshot of the current set."""
        with self._lock:
            return set(self._names)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    # ------------------------------------------------------------------
    # Mutations (always flushed)
    # ------------------------------------------------------------------

    def mark_started(self, name: str) -> None:
        with self._lock:
            logger.info("marking_server_started", server=name)
            self._names.add(name)
            self._save_locked()

    def mark_stopped(self, name: str) -> None:
        with self._lock:
            logger.info("marking_server_stopped", server=name)
            self._names.discard(name)
            self._save_locked()

    def replace(self, names: Iterable[str]) -> None:
        """Replace the whole set (used after startup reconciliation)."""
        with self._lock:
            self._names = set(names)
            self._save_locked()

    def save(self) -> None:
        """Flush the current set to disk (called on shutdown)."""
        with self._lock:
            self._save_locked()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> Set[str]:
        """
        Reload the set from disk, replacing the in-memory state.

        A missing file yields the empty set. A corrupt file is logged and
        treated as empty so a damaged state file never blocks startup.

        Returns:
            The loaded names
        """
        with self._lock:
            logger.info("loading_running_set", path=str(self.path))
            self._names = self._read()
            return set(self._names)

    def consume(self) -> Set[str]:
        """
        Load the persisted set and remove the file.

        The names are returned for auto-restart; the caller rebuilds the set
        from what actually ends up running.
        """
        names = self.load()
        with self._lock:
            try:
                self.path.unlink()
                logger.debug("running_set_consumed", path=str(self.path), names=sorted(names))
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("running_set_delete_failed", path=str(self.path), error=str(e))
        return names

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _read(self) -> Set[str]:
        if not self.path.exists():
            return set()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as e:
            logger.error("running_set_read_failed", path=str(self.path), error=str(e))
            return set()

        if not isinstance(data, list):
            logger.error("running_set_malformed", path=str(self.path), type=type(data).__name__)
            return set()

        return {name for name in data if isinstance(name, str) and name}

    def _save_locked(self) -> None:
        payload: List[str] = sorted(self._names)
        logger.debug("saving_running_set", path=str(self.path), names=payload)

        directory = self.path.parent if str(self.path.parent) else Path(".")
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".running_set.", dir=str(directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

"""Explicit dependency container built once at startup."""

from __future__ import annotations

from dataclasses import dataclass, field

from .backup_engine import BackupEngine
from .config import Config
from .process_controller import ProcessController
from .registry import ServerRegistry
from .running_set import RunningSetStore
from .update_engine import UpdateEngine
from .utils.locks import ServerLocks


@dataclass
class ManagerContext:
    """Everything the command layer needs, passed by reference. No globals."""

    config: Config
    registry: ServerRegistry
    running_set: RunningSetStore
    controller: ProcessController
    backups: BackupEngine
    updates: UpdateEngine
    locks: ServerLocks = field(default_factory=ServerLocks)

    @classmethod
    def from_config(cls, config: Config) -> "ManagerContext":
        """Wire the default engines for a validated config."""
        assert config.backup_location is not None, "backup_location not validated"
        return cls(
            config=config,
            registry=ServerRegistry(config.servers),
            running_set=RunningSetStore(config.running_set_path),
            controller=ProcessController(stop_wait_timeout=config.stop_wait_timeout),
            backups=BackupEngine(config.backup_location),
            updates=UpdateEngine(timeout=config.update_timeout),
        )

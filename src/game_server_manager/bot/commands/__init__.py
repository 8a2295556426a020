"""Prefix command handlers and routing.

Exports CommandRouter, which parses ``<prefix> <command> [server name]``
lines and dispatches them to one handler per command.
"""

from .command_handlers import (
    BackupCommandHandler,
    CommandResult,
    LifecycleSteps,
    StartCommandHandler,
    StatusCommandHandler,
    StopCommandHandler,
    UpdateCommandHandler,
    build_handlers,
)
from .router import CommandRouter, ParsedCommand, RouteOutcome

__all__ = [
    "BackupCommandHandler",
    "CommandResult",
    "CommandRouter",
    "LifecycleSteps",
    "ParsedCommand",
    "RouteOutcome",
    "StartCommandHandler",
    "StatusCommandHandler",
    "StopCommandHandler",
    "UpdateCommandHandler",
    "build_handlers",
]

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

"""Plain-text rendering for status reports and help messages."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..process_controller import ServerRuntimeStatus

KB = 1024
MB = 1024 * 1024
GB = 1024 * 1024 * 1024


def format_bytes(num_bytes: int) -> str:
    """
    Format a byte count with a binary unit.

    Examples:
        1023 -> "1023 B", 1024 -> "1.00 KB", 1048576 -> "1.00 MB"
    """
    if num_bytes < KB:
        return f"{num_bytes} B"
    if num_bytes < MB:
        return f"{num_bytes / KB:.2f} KB"
    if num_bytes < GB:
        return f"{num_bytes / MB:.2f} MB"
    return f"{num_bytes / GB:.2f} GB"


def format_status_line(status: ServerRuntimeStatus) -> str:
    """One report line; RAM and CPU only appear for running servers."""
    if not status.running:
        return f"- {status.name}: stopped"
    return (
        f"- {status.name}: running"
        f" | RAM: {format_bytes(status.memory_bytes)}"
        f" | CPU: {status.cpu_percent:.1f}%"
    )


def format_status_report(statuses: Iterable[ServerRuntimeStatus]) -> str:
    lines = [format_status_line(status) for status in statuses]
    return "Server status:\n" + "\n".join(lines)


def help_text(prefix: str, command: str, commands: Sequence[str]) -> str:
    """Help shown for an unknown or missing command."""
    available = ", ".join(commands)
    usage = f"Usage: {prefix} <command> [server name]"
    if not command:
        return f"{usage}\nAvailable commands: {available}"
    return f"Unknown command: {command}\nAvailable commands: {available}\n{usage}"

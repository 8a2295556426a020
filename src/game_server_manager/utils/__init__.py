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
General-purpose utilities for Game Server Manager.

Transport-agnostic helpers used by the command handlers and the Discord bot.
"""

from .formatting import format_bytes, format_status_line, format_status_report, help_text
from .locks import ServerLocks

__all__ = [
    # Formatting
    "format_bytes",
    "format_status_line",
    "format_status_report",
    "help_text",
    # Locking
    "ServerLocks",
]

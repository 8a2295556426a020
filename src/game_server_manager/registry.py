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
Static roster of managed game servers.

Holds the validated ServerConfig descriptors and resolves the names users
type in Discord (case-insensitive, exact match).
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

import structlog

from .config import ServerConfig
from .exceptions import ServerNotFound

logger = structlog.get_logger()


class ServerRegistry:
    """Read-only roster of server descriptors keyed by case-folded name."""

    def __init__(self, servers: Iterable[ServerConfig]):
        """
        Initialize the registry.

        Args:
            servers: Validated descriptors, in display order

        Raises:
            ValueError: If two descriptors share a name (ignoring case)
        """
        self._servers: Dict[str, ServerConfig] = {}

        for server in servers:
            if server.key in self._servers:
                raise ValueError(f"Server '{server.name}' already exists")
            self._servers[server.key] = server

        logger.info("server_registry_initialized", servers=self.list_names())

    def find(self, name: str) -> Optional[ServerConfig]:
        """Return the descriptor for name, or None."""
        return self._servers.get(name.strip().casefold())

    def get(self, name: str) -> ServerConfig:
        """
        Get a server descriptor by name.

        Args:
            name: Server name as typed by the user

        Returns:
            ServerConfig instance

        Raises:
            ServerNotFound: If no server has that name
        """
        server = self.find(name)
        if server is None:
            logger.debug("server_lookup_failed", name=name)
            raise ServerNotFound(name, self.list_names())
        return server

    def list_names(self) -> List[str]:
        """Server names in configuration order."""
        return [server.name for server in self._servers.values()]

    def list_servers(self) -> List[ServerConfig]:
        """Descriptors in configuration order."""
        return list(self._servers.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.find(name) is not None

    def __iter__(self) -> Iterator[ServerConfig]:
        return iter(self.list_servers())

    def __len__(self) -> int:
        return len(self._servers)

"""Registry of authenticated plugin connections, keyed by identity.

At most one connection is registered per identity.  Registering a second
connection for the same identity swaps the map entry first and only then
tells the previous connection it was displaced, so there is no suspension
point at which two connections both count as current.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from soundboard.plugin.handler import PluginConnection

logger = logging.getLogger(__name__)

DISPLACED_MESSAGE = "Connected from another location"


class ConnectionRegistry:
    """Process-wide map ``identity -> PluginConnection``.

    Built once by :func:`soundboard.server.create_app` and passed to every
    component that needs it.  Empty after a restart; plugins re-authenticate.
    """

    def __init__(self) -> None:
        self._connections: dict[str, PluginConnection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, identity: object) -> bool:
        return identity in self._connections

    def lookup(self, identity: str) -> PluginConnection | None:
        return self._connections.get(identity)

    def identities(self) -> list[str]:
        return list(self._connections)

    async def register(self, identity: str, connection: PluginConnection) -> None:
        """Make *connection* the current session for *identity*, displacing any other."""
        previous = self._connections.get(identity)
        self._connections[identity] = connection
        if previous is None or previous is connection:
            return
        logger.info("Plugin session for %s displaced by a new connection", identity)
        await previous.displace(DISPLACED_MESSAGE)

    def unregister_if_current(self, identity: str, connection: PluginConnection) -> bool:
        """Remove *identity* only while it still maps to *connection*."""
        if self._connections.get(identity) is not connection:
            return False
        del self._connections[identity]
        return True

    async def disconnect(self, identity: str, error: str) -> bool:
        """Drop and close the session for *identity* (e.g. after a ban)."""
        connection = self._connections.pop(identity, None)
        if connection is None:
            return False
        await connection.displace(error)
        return True

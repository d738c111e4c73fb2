"""Push ``sounds_updated`` to a connected plugin after a sound mutation.

Routes call :meth:`PushNotifier.notify_soon` once their change is
committed.  The push runs as its own task; failures are logged and never
reach the HTTP response.
"""

from __future__ import annotations

import asyncio
import logging

from soundboard import store
from soundboard.plugin import protocol
from soundboard.plugin.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class PushNotifier:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        self._tasks: set[asyncio.Task] = set()

    async def notify(self, identity: str) -> bool:
        """Send the current catalog to *identity*'s plugin.  ``False`` if nothing was sent."""
        connection = self.registry.lookup(identity)
        if connection is None:
            return False
        user = store.get_user(identity)
        if user is None:
            return False
        sounds = store.list_sound_infos(user["id"])
        return await connection.send(protocol.sounds_updated(sounds))

    def notify_soon(self, identity: str) -> asyncio.Task:
        task = asyncio.create_task(self._notify_logged(identity))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _notify_logged(self, identity: str) -> None:
        try:
            await self.notify(identity)
        except Exception:
            logger.exception("Failed to push sound update to plugin for %s", identity)

    async def drain(self) -> None:
        """Wait for in-flight pushes (used at shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

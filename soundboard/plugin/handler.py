"""WebSocket endpoint for game plugins.

Mount it in FastAPI via::

    app.add_api_websocket_route("/ws/plugin", plugin_ws_handler)

Each socket gets a :class:`PluginSession` that reads JSON frames, performs
the lookups a message needs and applies the resulting
:class:`~soundboard.plugin.protocol.Transition`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from soundboard import store
from soundboard.plugin import protocol
from soundboard.plugin.protocol import Authenticated, Closed, State, Transition, Unauthenticated
from soundboard.plugin.registry import ConnectionRegistry
from soundboard.sounds import SoundService

logger = logging.getLogger(__name__)


class PluginConnection:
    """A plugin's WebSocket plus its protocol state."""

    def __init__(self, websocket: Any) -> None:
        self.websocket = websocket
        self.state: State = Unauthenticated()
        self.connected_at = time.time()
        self._closed = False

    @property
    def identity(self) -> str | None:
        return self.state.identity if isinstance(self.state, Authenticated) else None

    @property
    def closed(self) -> bool:
        return self._closed

    def mark_closed(self) -> None:
        self._closed = True

    async def send(self, message: dict) -> bool:
        """Send a JSON message.  Returns ``False`` if the socket is already gone."""
        if self._closed:
            return False
        try:
            await self.websocket.send_json(message)
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug("Dropping %s message for closed plugin socket: %s", message.get("type"), e)
            return False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close()
        except (RuntimeError, OSError) as e:
            logger.debug("Plugin socket already closed: %s", e)

    async def apply(self, transition: Transition) -> None:
        if self._closed:
            self.state = Closed()
            return
        self.state = transition.state
        for message in transition.outgoing:
            await self.send(message)
        if transition.close:
            await self.close()

    async def displace(self, error: str) -> None:
        await self.apply(protocol.on_displaced(self.state, error))


class PluginSession:
    """Drives one :class:`PluginConnection` through the protocol."""

    def __init__(
        self,
        connection: PluginConnection,
        registry: ConnectionRegistry,
        sounds: SoundService,
        auth_timeout: float,
    ) -> None:
        self.connection = connection
        self.registry = registry
        self.sounds = sounds
        self.auth_timeout = auth_timeout
        self._timer: asyncio.Task | None = None
        self._timer_fired = False

    # ── Auth timer ────────────────────────────────────────────────

    def _arm_timer(self) -> None:
        self._timer = asyncio.create_task(self._expire_auth())

    def _disarm_timer(self) -> None:
        if self._timer is not None and not self._timer_fired:
            self._timer.cancel()
            self._timer = None

    async def _expire_auth(self) -> None:
        await asyncio.sleep(self.auth_timeout)
        self._timer_fired = True
        if isinstance(self.connection.state, Unauthenticated):
            logger.info("Plugin connection timed out waiting for auth")
        await self._apply(protocol.on_auth_timeout(self.connection.state))

    # ── Transition application ────────────────────────────────────

    async def _apply(self, transition: Transition) -> None:
        if transition.unregister:
            self.registry.unregister_if_current(transition.unregister, self.connection)
        self.connection.state = transition.state
        if transition.register and not self.connection.closed:
            await self.registry.register(transition.register, self.connection)
        await self.connection.apply(transition)

    # ── Main loop ─────────────────────────────────────────────────

    async def run(self) -> None:
        self._arm_timer()
        try:
            while not self.connection.closed:
                frame = await self.connection.websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                await self.handle_frame(frame.get("text") or frame.get("bytes"))
        except WebSocketDisconnect:
            pass
        finally:
            self._disarm_timer()
            identity = self.connection.identity
            await self._apply(protocol.on_disconnect(self.connection.state))
            self.connection.mark_closed()
            logger.info("Plugin disconnected: %s", identity or "(unauthenticated)")

    async def handle_frame(self, raw: str | bytes | None) -> None:
        message = protocol.parse_message(raw) if raw is not None else None
        if message is None:
            await self._apply(protocol.on_malformed(self.connection.state))
            return
        try:
            transition = await self._dispatch(message)
        except Exception:
            logger.exception("Error handling plugin message %r", message.get("type"))
            transition = protocol.on_internal_error(self.connection.state)
        await self._apply(transition)

    async def _dispatch(self, message: dict) -> Transition:
        msg_type = message["type"]
        state = self.connection.state

        if msg_type == protocol.AUTH:
            self._disarm_timer()
            return self._auth(state, message.get("steamId64"))

        if msg_type == protocol.GET_SOUNDS:
            if not isinstance(state, Authenticated):
                return protocol.on_unauthenticated(state)
            return protocol.on_sounds(state, store.list_sound_infos(state.user_id))

        if msg_type == protocol.PLAY_SOUND:
            if not isinstance(state, Authenticated):
                return protocol.on_unauthenticated(state)
            return await self._play_sound(state, message.get("soundId"))

        logger.warning("Unknown plugin message type: %s", msg_type)
        return protocol.on_unknown(state)

    # ── Message handlers ──────────────────────────────────────────

    def _auth(self, state: State, identity: Any) -> Transition:
        user = None
        sounds: list[dict] = []
        if protocol.is_identity(identity):
            user = store.get_user(identity)
            if user is not None and not user["is_banned"]:
                sounds = store.list_sound_infos(user["id"])

        transition = protocol.on_auth(state, identity, user, sounds)
        if isinstance(transition.state, Authenticated):
            logger.info("Plugin authenticated: %s (%s)", transition.state.username, identity)
        else:
            logger.info("Plugin auth rejected for %r", identity)
        return transition

    async def _play_sound(self, state: Authenticated, sound_id: Any) -> Transition:
        sound = store.get_sound(state.user_id, sound_id) if isinstance(sound_id, str) else None
        if sound is None:
            return protocol.on_sound_missing(state, sound_id)
        try:
            audio = await self.sounds.read_sound(state.identity, sound["filename"])
        except OSError as e:
            logger.error("Error reading sound file %s: %s", sound["filename"], e)
            return protocol.on_sound_unreadable(state, sound_id)
        return protocol.on_sound_data(state, sound, audio)


async def plugin_ws_handler(websocket: WebSocket) -> None:
    """Accept a plugin socket and run its session until it closes."""
    app_state = websocket.app.state
    await websocket.accept()
    client = websocket.client.host if websocket.client else "unknown"
    logger.info("Plugin connection from %s", client)

    session = PluginSession(
        PluginConnection(websocket),
        registry=app_state.registry,
        sounds=app_state.sounds,
        auth_timeout=app_state.auth_timeout,
    )
    await session.run()

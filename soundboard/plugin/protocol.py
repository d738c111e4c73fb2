"""Plugin protocol state machine.

States::

    Unauthenticated ──auth ok──▶ Authenticated ──disconnect──▶ Closed
          │                          │  ▲
          └─auth fail / timeout──▶ Closed  └─auth ok (re-auth)

Every transition is a pure function returning a :class:`Transition` that
names the next state, the messages to send, whether to close the socket,
and which registry entries to add or drop.  The driver in
:mod:`soundboard.plugin.handler` performs the lookups and the I/O.

Client → server::

    {"type": "auth", "steamId64": "..."}
    {"type": "get_sounds"}
    {"type": "play_sound", "soundId": "..."}

Server → client::

    auth_success, auth_error, sounds_list, sound_data, sound_error,
    sounds_updated, error
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Union


# ── States ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Unauthenticated:
    pass


@dataclass(frozen=True)
class Authenticated:
    identity: str
    username: str
    user_id: str


@dataclass(frozen=True)
class Closed:
    pass


State = Union[Unauthenticated, Authenticated, Closed]


@dataclass(frozen=True)
class Transition:
    state: State
    outgoing: tuple[dict, ...] = ()
    close: bool = False
    register: str | None = None
    unregister: str | None = None


# ── Message types ─────────────────────────────────────────────────

AUTH = "auth"
GET_SOUNDS = "get_sounds"
PLAY_SOUND = "play_sound"

AUTH_TIMEOUT_ERROR = "Authentication timeout"
NOT_AUTHENTICATED_ERROR = "Not authenticated"
INVALID_IDENTITY_ERROR = "Invalid SteamID64"
USER_NOT_FOUND_ERROR = "User not found. Please login via web panel first."
BANNED_ERROR = "Your account is banned"
SOUND_NOT_FOUND_ERROR = "Sound not found"
SOUND_UNREADABLE_ERROR = "Failed to read sound file"
INVALID_MESSAGE_ERROR = "Invalid message format"
UNKNOWN_MESSAGE_ERROR = "Unknown message type"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def auth_error(error: str) -> dict:
    return {"type": "auth_error", "error": error}


def error(message: str) -> dict:
    return {"type": "error", "error": message}


def sound_infos(rows: list[dict]) -> list[dict]:
    """Project sound rows onto the ``{id, name, duration}`` shape plugins see."""
    return [{"id": r["id"], "name": r["name"], "duration": r["duration"]} for r in rows]


def sounds_updated(rows: list[dict]) -> dict:
    return {"type": "sounds_updated", "sounds": sound_infos(rows)}


def parse_message(raw: str | bytes) -> dict | None:
    """Decode one frame.  ``None`` unless it is a JSON object with a string ``type``."""
    try:
        message = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        return None
    return message


def is_identity(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


# ── Transitions ───────────────────────────────────────────────────

def on_malformed(state: State) -> Transition:
    return Transition(state, (error(INVALID_MESSAGE_ERROR),))


def on_unknown(state: State) -> Transition:
    return Transition(state, (error(UNKNOWN_MESSAGE_ERROR),))


def on_internal_error(state: State) -> Transition:
    return Transition(state, (error(INTERNAL_ERROR_MESSAGE),))


def on_unauthenticated(state: State) -> Transition:
    """``get_sounds`` / ``play_sound`` before a successful ``auth``."""
    return Transition(state, (auth_error(NOT_AUTHENTICATED_ERROR),))


def _reject(state: State, message: str) -> Transition:
    previous = state.identity if isinstance(state, Authenticated) else None
    return Transition(Closed(), (auth_error(message),), close=True, unregister=previous)


def on_auth(
    state: State,
    identity: Any,
    user: dict | None,
    sounds: list[dict],
) -> Transition:
    """Handle ``auth`` given the user row (``None`` if unknown) and their sounds."""
    if isinstance(state, Closed):
        return Transition(state)
    if not is_identity(identity):
        return _reject(state, INVALID_IDENTITY_ERROR)
    if user is None:
        return _reject(state, USER_NOT_FOUND_ERROR)
    if user["is_banned"]:
        return _reject(state, BANNED_ERROR)

    unregister = None
    if isinstance(state, Authenticated) and state.identity != identity:
        unregister = state.identity

    return Transition(
        Authenticated(identity=identity, username=user["username"], user_id=user["id"]),
        ({"type": "auth_success", "username": user["username"], "sounds": sound_infos(sounds)},),
        register=identity,
        unregister=unregister,
    )


def on_sounds(state: Authenticated, sounds: list[dict]) -> Transition:
    return Transition(state, ({"type": "sounds_list", "sounds": sound_infos(sounds)},))


def on_sound_missing(state: Authenticated, sound_id: Any) -> Transition:
    return Transition(
        state, ({"type": "sound_error", "soundId": sound_id, "error": SOUND_NOT_FOUND_ERROR},)
    )


def on_sound_unreadable(state: Authenticated, sound_id: Any) -> Transition:
    return Transition(
        state, ({"type": "sound_error", "soundId": sound_id, "error": SOUND_UNREADABLE_ERROR},)
    )


def on_sound_data(state: Authenticated, sound: dict, audio: bytes) -> Transition:
    return Transition(state, ({
        "type": "sound_data",
        "soundId": sound["id"],
        "name": sound["name"],
        "duration": sound["duration"],
        "audioBase64": base64.b64encode(audio).decode("ascii"),
    },))


def on_auth_timeout(state: State) -> Transition:
    if not isinstance(state, Unauthenticated):
        return Transition(state)
    return Transition(Closed(), (auth_error(AUTH_TIMEOUT_ERROR),), close=True)


def on_displaced(state: State, message: str) -> Transition:
    """Another connection took over this session (or an admin ended it)."""
    if isinstance(state, Closed):
        return Transition(state)
    return Transition(Closed(), (auth_error(message),), close=True)


def on_disconnect(state: State) -> Transition:
    previous = state.identity if isinstance(state, Authenticated) else None
    return Transition(Closed(), unregister=previous)

"""Admin API router.

Operational settings, user moderation and sound removal.  All endpoints
require an admin bearer token (see :func:`soundboard.auth.require_admin`).
Users are addressed by SteamID64.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from soundboard import store
from soundboard.auth import require_admin
from soundboard.dependencies import (
    get_notifier,
    get_registry,
    get_settings_service,
    get_sound_service,
)
from soundboard.errors import NOT_FOUND, ApiError
from soundboard.plugin.notifier import PushNotifier
from soundboard.plugin.protocol import BANNED_ERROR
from soundboard.plugin.registry import ConnectionRegistry
from soundboard.settings import SettingsError, SettingsService
from soundboard.sounds import SoundService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ── Helpers ───────────────────────────────────────────────────────

def _user_dto(user: dict) -> dict:
    return {
        "id": user["id"],
        "steamId64": user["steam_id_64"],
        "username": user["username"],
        "avatarUrl": user["avatar_url"],
        "isAdmin": user["is_admin"],
        "isBanned": user["is_banned"],
        "createdAt": user["created_at"],
    }


def _target(identity: str, admin: dict) -> dict:
    if identity == admin["steam_id_64"]:
        raise ApiError(400, "SELF_MODIFICATION", "You cannot modify your own account")
    user = store.get_user(identity)
    if user is None:
        raise ApiError(404, NOT_FOUND, "User not found")
    return user


# ══════════════════════════════════════════════════════════════════
# SETTINGS
# ══════════════════════════════════════════════════════════════════

@router.get("/settings")
async def get_settings(
    admin: dict = Depends(require_admin),
    settings: SettingsService = Depends(get_settings_service),
):
    current = await settings.get()
    return {"settings": current.to_public()}


@router.put("/settings")
async def update_settings(
    patch: dict[str, Any] = Body(...),
    admin: dict = Depends(require_admin),
    settings: SettingsService = Depends(get_settings_service),
):
    try:
        updated = await settings.update(patch)
    except SettingsError as e:
        raise ApiError(400, e.code, e.message)
    logger.info("Settings updated by %s", admin["steam_id_64"])
    return {"settings": updated.to_public()}


# ══════════════════════════════════════════════════════════════════
# USERS
# ══════════════════════════════════════════════════════════════════

class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_admin: bool | None = None
    is_banned: bool | None = None


@router.patch("/users/{identity}")
async def update_user(
    identity: str,
    req: UserUpdateRequest,
    admin: dict = Depends(require_admin),
    registry: ConnectionRegistry = Depends(get_registry),
):
    if req.is_admin is None and req.is_banned is None:
        raise ApiError(400, "INVALID_REQUEST", "No changes provided")
    _target(identity, admin)

    user = store.update_user_flags(identity, is_admin=req.is_admin, is_banned=req.is_banned)
    if req.is_banned:
        await registry.disconnect(identity, BANNED_ERROR)
    logger.info(
        "User %s updated by %s (admin=%s, banned=%s)",
        identity, admin["steam_id_64"], req.is_admin, req.is_banned,
    )
    return {"user": _user_dto(user)}


@router.delete("/users/{identity}")
async def delete_user(
    identity: str,
    admin: dict = Depends(require_admin),
    sounds: SoundService = Depends(get_sound_service),
    registry: ConnectionRegistry = Depends(get_registry),
):
    user = _target(identity, admin)
    await registry.disconnect(identity, "Your account has been deleted")
    deleted = await sounds.delete_user(user)
    logger.info("User %s deleted by %s (%d sounds)", identity, admin["steam_id_64"], deleted)
    return {"success": True, "deletedSoundsCount": deleted}


# ══════════════════════════════════════════════════════════════════
# SOUNDS
# ══════════════════════════════════════════════════════════════════

@router.delete("/sounds/{sound_id}")
async def delete_any_sound(
    sound_id: str,
    admin: dict = Depends(require_admin),
    sounds: SoundService = Depends(get_sound_service),
    notifier: PushNotifier = Depends(get_notifier),
):
    owner = store.get_sound_with_owner(sound_id)
    result = await sounds.delete_any(sound_id)
    if result.error:
        raise ApiError.from_upload_error(result.error, 404)
    notifier.notify_soon(owner["owner_steam_id_64"])
    return {"success": True}

"""Sounds API router.

All endpoints act on the caller's own sounds and require a valid,
non-banned bearer token (see :mod:`soundboard.auth`).  Every successful
create/rename/delete schedules a ``sounds_updated`` push to the caller's
plugin session.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from soundboard import store
from soundboard.audio.validator import file_too_large
from soundboard.auth import require_user
from soundboard.config import OUTPUT_MEDIA_TYPE
from soundboard.dependencies import (
    get_notifier,
    get_rate_limiter,
    get_settings_service,
    get_sound_service,
)
from soundboard.errors import (
    DURATION_TOO_LONG,
    FILE_TOO_LARGE,
    INVALID_AUDIO,
    INVALID_AUDIO_FORMAT,
    INVALID_FILE_TYPE,
    NAME_TOO_LONG,
    NAME_TOO_SHORT,
    NOT_FOUND,
    QUOTA_EXCEEDED,
    ApiError,
    UploadError,
)
from soundboard.plugin.notifier import PushNotifier
from soundboard.ratelimit import UploadRateLimiter
from soundboard.settings import SettingsService
from soundboard.sounds import SoundService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sounds", tags=["sounds"])

_STATUS_BY_CODE = {
    FILE_TOO_LARGE: 413,
    INVALID_FILE_TYPE: 415,
    INVALID_AUDIO_FORMAT: 415,
    INVALID_AUDIO: 422,
    DURATION_TOO_LONG: 422,
    NAME_TOO_SHORT: 400,
    NAME_TOO_LONG: 400,
    QUOTA_EXCEEDED: 403,
    NOT_FOUND: 404,
}


def _raise_for(error: UploadError) -> None:
    raise ApiError.from_upload_error(error, _STATUS_BY_CODE.get(error.code, 400))


async def upload_rate_limit(
    response: Response,
    user: dict = Depends(require_user),
    limiter: UploadRateLimiter = Depends(get_rate_limiter),
) -> None:
    result = await limiter.consume(user["steam_id_64"])
    if not result.allowed:
        logger.info("Upload rate limit hit for %s", user["steam_id_64"])
        raise ApiError(
            429,
            "RATE_LIMIT_EXCEEDED",
            f"Too many uploads. Try again in {result.retry_after_seconds} seconds",
            headers=result.to_headers(),
        )
    response.headers.update(result.to_headers())


class RenameRequest(BaseModel):
    name: str | None = None


# ══════════════════════════════════════════════════════════════════
# LIST / UPLOAD
# ══════════════════════════════════════════════════════════════════

@router.get("")
async def list_sounds(
    page: int = Query(1),
    limit: int = Query(20),
    q: str | None = Query(None),
    user: dict = Depends(require_user),
    sounds: SoundService = Depends(get_sound_service),
    settings: SettingsService = Depends(get_settings_service),
):
    result = sounds.list_page(user, page=page, limit=limit, search=q)
    current = await settings.get()
    return {
        **result,
        "totalCount": await sounds.sound_count(user),
        "maxSounds": current.max_sounds_per_user,
    }


@router.post("", status_code=201, dependencies=[Depends(upload_rate_limit)])
async def upload_sound(
    audio: UploadFile | None = File(None),
    name: str | None = Form(None),
    user: dict = Depends(require_user),
    sounds: SoundService = Depends(get_sound_service),
    settings: SettingsService = Depends(get_settings_service),
    notifier: PushNotifier = Depends(get_notifier),
):
    if audio is None:
        raise ApiError(400, "NO_FILE", "No audio file provided")
    if not name:
        raise ApiError(400, "NO_NAME", "A sound name is required")

    # Cap the read at the configured maximum
    limits = await settings.get()
    if audio.size is not None and audio.size > limits.max_file_size:
        _raise_for(file_too_large(limits))
    raw = await audio.read(limits.max_file_size + 1)
    if len(raw) > limits.max_file_size:
        _raise_for(file_too_large(limits))

    result = await sounds.submit_upload(user, name, raw)
    if result.error:
        _raise_for(result.error)

    notifier.notify_soon(user["steam_id_64"])
    return {"sound": result.sound}


# ══════════════════════════════════════════════════════════════════
# SINGLE SOUND
# ══════════════════════════════════════════════════════════════════

@router.get("/{sound_id}/stream")
async def stream_sound(
    sound_id: str,
    user: dict = Depends(require_user),
    sounds: SoundService = Depends(get_sound_service),
):
    sound = store.get_sound(user["id"], sound_id)
    if sound is None:
        raise ApiError(404, NOT_FOUND, "Sound not found")
    path = sounds.sound_path(user["steam_id_64"], sound["filename"])
    if not path.is_file():
        logger.warning("Sound %s has a record but no file at %s", sound_id, path)
        raise ApiError(404, "FILE_NOT_FOUND", "Audio file not found")
    return FileResponse(path, media_type=OUTPUT_MEDIA_TYPE)


@router.patch("/{sound_id}")
async def rename_sound(
    sound_id: str,
    req: RenameRequest,
    user: dict = Depends(require_user),
    sounds: SoundService = Depends(get_sound_service),
    notifier: PushNotifier = Depends(get_notifier),
):
    if not req.name:
        raise ApiError(400, "NO_NAME", "A sound name is required")
    result = await sounds.rename(user, sound_id, req.name)
    if result.error:
        _raise_for(result.error)
    notifier.notify_soon(user["steam_id_64"])
    return {"sound": result.sound}


@router.delete("/{sound_id}")
async def delete_sound(
    sound_id: str,
    user: dict = Depends(require_user),
    sounds: SoundService = Depends(get_sound_service),
    notifier: PushNotifier = Depends(get_notifier),
):
    result = await sounds.delete(user, sound_id)
    if result.error:
        _raise_for(result.error)
    notifier.notify_soon(user["steam_id_64"])
    return {"success": True}

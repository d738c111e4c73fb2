"""Sound management: the upload pipeline plus rename/delete.

Upload runs as a chain of hard gates::

    name → quota → stage temp file → size/type/duration → transcode
         → drop temp → insert row → invalidate quota

Every file created on disk by a failed upload is removed before the error
is returned, so the owner's directory never gains a file without a row.
A row whose file has vanished is tolerated; it surfaces as a read error
when streamed or played.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from soundboard import store
from soundboard.audio.ffmpeg import convert_to_ogg_opus
from soundboard.audio.validator import validate_audio_file, validate_sound_name
from soundboard.config import OUTPUT_EXTENSION, UPLOAD_DIR
from soundboard.errors import INTERNAL_ERROR, NOT_FOUND, QUOTA_EXCEEDED, UploadError
from soundboard.quota import QuotaCache
from soundboard.settings import SettingsService

logger = logging.getLogger(__name__)

_IDENTITY_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

MAX_PAGE_SIZE = 50


@dataclass
class UploadResult:
    """Outcome of a sound mutation: exactly one of ``sound`` / ``error`` is set."""

    sound: dict | None = None
    error: UploadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def to_sound_dto(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "filename": row["filename"],
        "duration": row["duration"],
        "size": row["size"],
        "createdAt": row["created_at"],
    }


async def _in_thread(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


class SoundService:
    """Owns the on-disk layout ``<upload_root>/<identity>/<uuid>.ogg``."""

    def __init__(
        self,
        quota: QuotaCache,
        settings: SettingsService,
        upload_root: str | Path = UPLOAD_DIR,
    ) -> None:
        self.quota = quota
        self.settings = settings
        self.upload_root = Path(upload_root)

    # ── Paths ─────────────────────────────────────────────────────

    def owner_dir(self, identity: str) -> Path:
        if not _IDENTITY_RE.match(identity):
            raise ValueError(f"Refusing unsafe identity for storage path: {identity!r}")
        return self.upload_root / identity

    def sound_path(self, identity: str, filename: str) -> Path:
        return self.owner_dir(identity) / Path(filename).name

    async def read_sound(self, identity: str, filename: str) -> bytes:
        """Read a stored clip.  Raises :class:`OSError` if the file is unreadable."""
        return await _in_thread(self.sound_path(identity, filename).read_bytes)

    async def _discard(self, path: Path) -> None:
        try:
            await _in_thread(path.unlink, missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)

    # ── Queries ───────────────────────────────────────────────────

    async def sound_count(self, user: dict) -> int:
        return await self.quota.count(user["steam_id_64"], user["id"])

    def list_page(
        self,
        user: dict,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
    ) -> dict:
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))
        search = (search or "").strip() or None
        rows, count = store.list_sounds(user["id"], (page - 1) * limit, limit, search)
        return {
            "sounds": [to_sound_dto(r) for r in rows],
            "count": count,
            "page": page,
            "limit": limit,
            "totalPages": -(-count // limit),
        }

    # ── Upload pipeline ───────────────────────────────────────────

    async def submit_upload(self, owner: dict, display_name: str, raw: bytes) -> UploadResult:
        """Validate, transcode and persist one clip for *owner* (a user row)."""
        identity = owner["steam_id_64"]

        name_error = validate_sound_name(display_name)
        if name_error:
            return UploadResult(error=name_error)

        settings = await self.settings.get()
        count = await self.sound_count(owner)
        if count >= settings.max_sounds_per_user:
            return UploadResult(error=UploadError(
                QUOTA_EXCEEDED,
                f"Limit of {settings.max_sounds_per_user} sounds reached",
            ))

        temp_path: Path | None = None
        output_path: Path | None = None

        try:
            owner_dir = self.owner_dir(identity)
            temp_path = owner_dir / f"temp_{uuid.uuid4().hex}"
            await _in_thread(owner_dir.mkdir, parents=True, exist_ok=True)
            await _in_thread(temp_path.write_bytes, raw)

            check = await validate_audio_file(raw, temp_path, settings)
            if check.error:
                return UploadResult(error=check.error)

            filename = f"{uuid.uuid4()}{OUTPUT_EXTENSION}"
            output_path = owner_dir / filename
            await convert_to_ogg_opus(temp_path, output_path)
            await self._discard(temp_path)

            stat = await _in_thread(output_path.stat)
            row = store.insert_sound(
                owner["id"], display_name.strip(), filename, check.duration, stat.st_size,
            )
            output_path = None
        except Exception:
            logger.exception("Upload failed for %s", identity)
            return UploadResult(error=UploadError(
                INTERNAL_ERROR, "An error occurred while processing the file",
            ))
        finally:
            if temp_path is not None:
                await self._discard(temp_path)
            if output_path is not None:
                await self._discard(output_path)

        await self.quota.invalidate(identity)
        logger.info(
            "Sound %s uploaded by %s (%.1fs, %d bytes)",
            row["id"], identity, row["duration"], row["size"],
        )
        return UploadResult(sound=to_sound_dto(row))

    # ── Rename / delete ───────────────────────────────────────────

    async def rename(self, user: dict, sound_id: str, new_name: str) -> UploadResult:
        name_error = validate_sound_name(new_name)
        if name_error:
            return UploadResult(error=name_error)
        if store.get_sound(user["id"], sound_id) is None:
            return UploadResult(error=UploadError(NOT_FOUND, "Sound not found"))
        row = store.rename_sound(sound_id, new_name.strip())
        return UploadResult(sound=to_sound_dto(row))

    async def delete(self, user: dict, sound_id: str) -> UploadResult:
        """Delete one of *user*'s sounds.  A missing file does not block removal."""
        sound = store.get_sound(user["id"], sound_id)
        if sound is None:
            return UploadResult(error=UploadError(NOT_FOUND, "Sound not found"))
        await self._remove_stored(user["steam_id_64"], sound)
        return UploadResult(sound=to_sound_dto(sound))

    async def delete_any(self, sound_id: str) -> UploadResult:
        """Admin delete: remove a sound regardless of owner."""
        sound = store.get_sound_with_owner(sound_id)
        if sound is None:
            return UploadResult(error=UploadError(NOT_FOUND, "Sound not found"))
        await self._remove_stored(sound["owner_steam_id_64"], sound)
        return UploadResult(sound=to_sound_dto(sound))

    async def delete_user(self, user: dict) -> int:
        """Remove a user's files, their directory and their rows.  Returns the sound count."""
        identity = user["steam_id_64"]
        count = store.count_sounds(user["id"])
        owner_dir = self.owner_dir(identity)
        try:
            await _in_thread(shutil.rmtree, owner_dir)
        except FileNotFoundError:
            logger.debug("No upload directory for %s", identity)
        except OSError as e:
            logger.warning("Could not remove upload directory %s: %s", owner_dir, e)
        store.delete_user(user["id"])
        await self.quota.invalidate(identity)
        return count

    async def _remove_stored(self, identity: str, sound: dict) -> None:
        path = self.sound_path(identity, sound["filename"])
        try:
            await _in_thread(path.unlink)
        except FileNotFoundError:
            logger.warning("Sound file %s already missing, removing record anyway", path)
        except OSError as e:
            logger.warning("Could not delete sound file %s: %s", path, e)
        store.delete_sound(sound["id"])
        await self.quota.invalidate(identity)

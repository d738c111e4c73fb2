"""Admin-editable operational settings (quota, size/duration limits, formats).

Reads go through three tiers: the in-process copy (five minute TTL), the
``settings`` table merged over the defaults, and finally the hardcoded
defaults.  Writes are partial: the patch is validated, merged over the
current values, the merged result validated again, and only the supplied
keys are upserted.

Keys are camelCase on the wire and in the ``settings`` table
(``maxSoundsPerUser``...), snake_case as model attributes.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from soundboard import store
from soundboard.config import SETTINGS_TTL_SECONDS
from soundboard.fallback import TRY_NEXT, first_available

logger = logging.getLogger(__name__)

# file-type style sniffers report WAV under several names
_WAV_ALIASES = ("audio/wave", "audio/x-wav", "audio/vnd.wave")


class Settings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    max_sounds_per_user: int = Field(25, ge=1, le=100)
    max_file_size: int = Field(5 * 1024 * 1024, ge=102400, le=52428800)
    max_duration: float = Field(10, ge=1, le=60)
    cooldown_seconds: int = Field(0, ge=0, le=300)
    allowed_formats: list[str] = Field(
        default_factory=lambda: ["audio/ogg", "audio/mpeg", "audio/wav"],
        min_length=1,
    )

    def allowed_mime_types(self) -> set[str]:
        allowed = set(self.allowed_formats)
        if "audio/wav" in allowed:
            allowed.update(_WAV_ALIASES)
        return allowed

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SettingsPatch(BaseModel):
    """Partial update with the same bounds as :class:`Settings`, every field optional."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    max_sounds_per_user: int | None = Field(None, ge=1, le=100)
    max_file_size: int | None = Field(None, ge=102400, le=52428800)
    max_duration: float | None = Field(None, ge=1, le=60)
    cooldown_seconds: int | None = Field(None, ge=0, le=300)
    allowed_formats: list[str] | None = Field(None, min_length=1)


DEFAULT_SETTINGS = Settings()


class SettingsError(Exception):
    """A settings update was rejected.  ``code`` is ``INVALID_INPUT`` or ``UPDATE_FAILED``."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _describe(error: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(p) for p in e['loc']) or 'settings'}: {e['msg']}"
        for e in error.errors()
    )


class SettingsService:
    """Cached access to :class:`Settings` for one process."""

    def __init__(
        self,
        ttl_seconds: float = SETTINGS_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: Settings | None = None
        self._cached_at = 0.0

    # ── Cache ─────────────────────────────────────────────────────

    def _remember(self, settings: Settings) -> None:
        self._cached = settings
        self._cached_at = self._clock()

    def invalidate(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    # ── Tiers ─────────────────────────────────────────────────────

    async def _from_memory(self) -> Settings | object:
        if self._cached is not None and self._clock() - self._cached_at < self.ttl_seconds:
            return self._cached
        return TRY_NEXT

    async def _from_store(self) -> Settings | object:
        try:
            stored = store.read_settings()
        except sqlite3.Error as e:
            logger.warning("Failed to read settings from database: %s", e)
            return TRY_NEXT
        if not stored:
            return TRY_NEXT
        merged = {**DEFAULT_SETTINGS.to_public(), **stored}
        try:
            settings = Settings.model_validate(merged)
        except ValidationError as e:
            logger.warning("Stored settings are invalid, using defaults: %s", _describe(e))
            return TRY_NEXT
        self._remember(settings)
        return settings

    # ── Public API ────────────────────────────────────────────────

    async def get(self) -> Settings:
        return await first_available(
            [self._from_memory, self._from_store], default=DEFAULT_SETTINGS
        )

    async def update(self, patch: dict[str, Any]) -> Settings:
        """Apply a partial update and return the resulting settings.

        Raises :class:`SettingsError` when the patch or the merged result is
        invalid, or when the database write fails.
        """
        try:
            changes = SettingsPatch.model_validate(patch).model_dump(exclude_unset=True)
        except ValidationError as e:
            raise SettingsError("INVALID_INPUT", _describe(e)) from e

        current = await self.get()
        try:
            updated = Settings.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            raise SettingsError("UPDATE_FAILED", _describe(e)) from e

        public = updated.to_public()
        try:
            store.write_settings({to_camel(key): public[to_camel(key)] for key in changes})
        except sqlite3.Error as e:
            logger.exception("Failed to persist settings update")
            raise SettingsError("UPDATE_FAILED", "Failed to update settings") from e

        self.invalidate()
        self._remember(updated)
        logger.info("Settings updated: %s", ", ".join(sorted(changes)) or "no changes")
        return updated

"""Tests for the upload pipeline and sound management service."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from soundboard import store
from soundboard.audio.ffmpeg import FFmpegError
from soundboard.quota import QuotaCache
from soundboard.sounds import SoundService

from conftest import STEAM_ID, add_sound

OGG = b"OggS\x00\x02" + b"\x00" * 50_000


async def _fake_convert(input_path, output_path):
    Path(output_path).write_bytes(b"OggS-opus" * 100)


def _pipeline(duration: float = 3.0, convert=_fake_convert):
    """Patch the probe/convert black boxes used by the pipeline."""
    probe = patch("soundboard.audio.validator.probe_duration", AsyncMock(return_value=duration))
    conv = patch("soundboard.sounds.convert_to_ogg_opus", AsyncMock(side_effect=convert))
    return probe, conv


def _files(service: SoundService) -> list[str]:
    owner = service.upload_root / STEAM_ID
    return sorted(p.name for p in owner.iterdir()) if owner.exists() else []


class TestSubmitUpload:
    @pytest.mark.asyncio
    async def test_successful_upload(self, sound_service, user):
        probe, conv = _pipeline()
        with probe, conv:
            result = await sound_service.submit_upload(user, "  Alert ", OGG)

        assert result.ok
        sound = result.sound
        assert sound["name"] == "Alert"
        assert sound["duration"] == pytest.approx(3.0)
        assert sound["filename"].endswith(".ogg")
        assert sound["size"] == 900
        assert _files(sound_service) == [sound["filename"]]
        assert store.count_sounds(user["id"]) == 1

    @pytest.mark.asyncio
    async def test_upload_invalidates_quota(self, sound_service, user):
        assert await sound_service.sound_count(user) == 0
        probe, conv = _pipeline()
        with probe, conv:
            await sound_service.submit_upload(user, "Alert", OGG)
        assert await sound_service.sound_count(user) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,code", [("", "NAME_TOO_SHORT"), ("x" * 33, "NAME_TOO_LONG")])
    async def test_bad_name_creates_nothing(self, sound_service, user, name, code):
        result = await sound_service.submit_upload(user, name, OGG)
        assert result.error.code == code
        assert _files(sound_service) == []
        assert store.count_sounds(user["id"]) == 0

    @pytest.mark.asyncio
    async def test_quota_exceeded_writes_nothing(self, sound_service, user):
        store.write_settings({"maxSoundsPerUser": 2})
        add_sound(user, "One")
        add_sound(user, "Two")
        result = await sound_service.submit_upload(user, "Three", OGG)
        assert result.error.code == "QUOTA_EXCEEDED"
        assert _files(sound_service) == []

    @pytest.mark.asyncio
    async def test_validation_failure_removes_staged_file(self, sound_service, user):
        probe, conv = _pipeline(duration=42.0)
        with probe, conv as convert:
            result = await sound_service.submit_upload(user, "Long", OGG)
        assert result.error.code == "DURATION_TOO_LONG"
        convert.assert_not_awaited()
        assert _files(sound_service) == []

    @pytest.mark.asyncio
    async def test_wrong_type_removes_staged_file(self, sound_service, user):
        result = await sound_service.submit_upload(user, "Doc", b"plain text, not audio" * 10)
        assert result.error.code == "INVALID_FILE_TYPE"
        assert _files(sound_service) == []

    @pytest.mark.asyncio
    async def test_conversion_failure_leaves_no_files(self, sound_service, user):
        async def partial_then_fail(input_path, output_path):
            Path(output_path).write_bytes(b"half")
            raise FFmpegError("encoder crashed")

        probe, conv = _pipeline(convert=partial_then_fail)
        with probe, conv:
            result = await sound_service.submit_upload(user, "Alert", OGG)
        assert result.error.code == "INTERNAL_ERROR"
        assert _files(sound_service) == []
        assert store.count_sounds(user["id"]) == 0

    @pytest.mark.asyncio
    async def test_insert_failure_removes_output(self, sound_service, user):
        probe, conv = _pipeline()
        with probe, conv, patch("soundboard.sounds.store.insert_sound", side_effect=RuntimeError("db")):
            result = await sound_service.submit_upload(user, "Alert", OGG)
        assert result.error.code == "INTERNAL_ERROR"
        assert _files(sound_service) == []

    @pytest.mark.asyncio
    async def test_unsafe_identity_is_internal_error(self, sound_service, db_path):
        bad = store.upsert_user("../etc", "mallory")
        probe, conv = _pipeline()
        with probe, conv as convert:
            result = await sound_service.submit_upload(bad, "Alert", OGG)
        assert result.error.code == "INTERNAL_ERROR"
        convert.assert_not_awaited()
        assert not (sound_service.upload_root.parent / "etc").exists()
        assert store.count_sounds(bad["id"]) == 0


class TestRenameDelete:
    @pytest.mark.asyncio
    async def test_rename(self, sound_service, user):
        sound = add_sound(user, "Old")
        result = await sound_service.rename(user, sound["id"], " New ")
        assert result.sound["name"] == "New"

    @pytest.mark.asyncio
    async def test_rename_other_owner(self, sound_service, user, other_user):
        theirs = add_sound(other_user, "Theirs")
        result = await sound_service.rename(user, theirs["id"], "Mine")
        assert result.error.code == "NOT_FOUND"
        assert store.get_sound(other_user["id"], theirs["id"])["name"] == "Theirs"

    @pytest.mark.asyncio
    async def test_rename_bad_name(self, sound_service, user):
        sound = add_sound(user, "Old")
        result = await sound_service.rename(user, sound["id"], "x" * 40)
        assert result.error.code == "NAME_TOO_LONG"

    @pytest.mark.asyncio
    async def test_delete_removes_file_and_record(self, sound_service, user):
        sound = add_sound(user, "Bye", sound_service)
        result = await sound_service.delete(user, sound["id"])
        assert result.ok
        assert _files(sound_service) == []
        assert store.get_sound(user["id"], sound["id"]) is None

    @pytest.mark.asyncio
    async def test_delete_twice_is_not_found(self, sound_service, user):
        sound = add_sound(user, "Bye", sound_service)
        await sound_service.delete(user, sound["id"])
        result = await sound_service.delete(user, sound["id"])
        assert result.error.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete_with_missing_file(self, sound_service, user):
        sound = add_sound(user, "Ghost")
        result = await sound_service.delete(user, sound["id"])
        assert result.ok
        assert store.get_sound(user["id"], sound["id"]) is None

    @pytest.mark.asyncio
    async def test_delete_invalidates_quota(self, sound_service, user):
        sound = add_sound(user, "One", sound_service)
        assert await sound_service.sound_count(user) == 1
        await sound_service.delete(user, sound["id"])
        assert await sound_service.sound_count(user) == 0

    @pytest.mark.asyncio
    async def test_delete_any(self, sound_service, user):
        sound = add_sound(user, "One", sound_service)
        assert (await sound_service.delete_any(sound["id"])).ok
        assert (await sound_service.delete_any(sound["id"])).error.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete_user(self, sound_service, user):
        add_sound(user, "One", sound_service)
        add_sound(user, "Two", sound_service)
        assert await sound_service.delete_user(user) == 2
        assert not (sound_service.upload_root / STEAM_ID).exists()
        assert store.get_user(STEAM_ID) is None

    @pytest.mark.asyncio
    async def test_delete_user_removes_stray_temp_files(self, sound_service, user):
        add_sound(user, "One", sound_service)
        (sound_service.upload_root / STEAM_ID / "temp_deadbeef").write_bytes(b"partial")
        assert await sound_service.delete_user(user) == 1
        assert not (sound_service.upload_root / STEAM_ID).exists()

    @pytest.mark.asyncio
    async def test_delete_user_without_directory(self, sound_service, user):
        assert await sound_service.delete_user(user) == 0
        assert store.get_user(STEAM_ID) is None


class TestListPage:
    def test_paging_and_search(self, sound_service, user):
        for name in ["Alpha", "Beta", "alarm", "Gamma"]:
            add_sound(user, name)
        page = sound_service.list_page(user, page=1, limit=2)
        assert [s["name"] for s in page["sounds"]] == ["Gamma", "alarm"]
        assert page["count"] == 4
        assert page["totalPages"] == 2

        found = sound_service.list_page(user, search="AL")
        assert sorted(s["name"] for s in found["sounds"]) == ["Alpha", "alarm"]

    def test_limit_is_clamped(self, sound_service, user):
        assert sound_service.list_page(user, page=0, limit=500)["limit"] == 50
        assert sound_service.list_page(user, page=0, limit=0)["page"] == 1

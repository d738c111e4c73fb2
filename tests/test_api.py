"""HTTP and WebSocket tests for the sounds API and plugin gateway."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from soundboard import store
from soundboard.auth import create_token
from soundboard.cache import InMemoryCacheBackend
from soundboard.server import create_app

from conftest import OTHER_STEAM_ID, STEAM_ID, add_sound

OGG = b"OggS\x00\x02" + b"\x00" * 2048


async def _fake_convert(input_path, output_path):
    Path(output_path).write_bytes(b"OggS-opus-output")


@pytest.fixture()
def app(db_path, tmp_path):
    return create_app(
        cache=InMemoryCacheBackend(),
        upload_root=tmp_path / "uploads",
        auth_timeout=0.2,
    )


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def auth(user):
    return {"Authorization": f"Bearer {create_token(STEAM_ID)}"}


@pytest.fixture()
def pipeline():
    with patch("soundboard.audio.validator.probe_duration", AsyncMock(return_value=3.0)), \
         patch("soundboard.sounds.convert_to_ogg_opus", AsyncMock(side_effect=_fake_convert)):
        yield


def _upload(client, headers, name="Alert", data=OGG):
    return client.post(
        "/sounds",
        headers=headers,
        data={"name": name} if name is not None else {},
        files={"audio": ("clip.bin", data, "application/octet-stream")} if data is not None else None,
    )


# ── Auth ──────────────────────────────────────────────────────────

class TestAuth:
    def test_requires_token(self, client):
        r = client.get("/sounds")
        assert r.status_code == 401
        assert r.json()["error"]["code"] == "UNAUTHORIZED"

    def test_rejects_garbage_token(self, client):
        r = client.get("/sounds", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401

    def test_unknown_user(self, client, db_path):
        r = client.get("/sounds", headers={"Authorization": f"Bearer {create_token('123')}"})
        assert r.status_code == 401

    def test_banned_user(self, client, auth):
        store.update_user_flags(STEAM_ID, is_banned=True)
        r = client.get("/sounds", headers=auth)
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "BANNED"


# ── Sounds ────────────────────────────────────────────────────────

class TestUpload:
    def test_upload(self, client, auth, pipeline):
        r = _upload(client, auth)
        assert r.status_code == 201
        sound = r.json()["sound"]
        assert sound["name"] == "Alert"
        assert sound["duration"] == 3.0
        assert sound["filename"].endswith(".ogg")
        assert r.headers["X-RateLimit-Remaining"] == "4"

    def test_missing_file(self, client, auth):
        r = _upload(client, auth, data=None)
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "NO_FILE"

    def test_missing_name(self, client, auth):
        r = _upload(client, auth, name=None)
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "NO_NAME"

    def test_name_too_long(self, client, auth):
        r = _upload(client, auth, name="x" * 33)
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "NAME_TOO_LONG"

    def test_unsupported_type(self, client, auth):
        r = _upload(client, auth, data=b"<html>not audio</html>")
        assert r.status_code == 415
        assert r.json() == {"error": {
            "code": "INVALID_FILE_TYPE", "message": "Unable to determine the file type",
        }}

    def test_oversized_file_rejected_before_pipeline(self, client, auth, app):
        store.write_settings({"maxFileSize": 102400})
        with patch.object(app.state.sounds, "submit_upload", AsyncMock()) as submit:
            r = _upload(client, auth, data=OGG + b"\x00" * 200_000)
        assert r.status_code == 413
        assert r.json()["error"]["code"] == "FILE_TOO_LARGE"
        submit.assert_not_awaited()

    def test_file_at_cap_reaches_pipeline(self, client, auth, pipeline):
        store.write_settings({"maxFileSize": 102400})
        r = _upload(client, auth, data=OGG + b"\x00" * (102400 - len(OGG)))
        assert r.status_code == 201

    def test_quota_exceeded(self, client, auth, user):
        store.write_settings({"maxSoundsPerUser": 1})
        add_sound(user, "Only")
        r = _upload(client, auth)
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "QUOTA_EXCEEDED"

    def test_rate_limited(self, client, auth):
        for _ in range(5):
            assert _upload(client, auth, data=b"junk data").status_code == 415
        r = _upload(client, auth, data=b"junk data")
        assert r.status_code == 429
        assert r.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert int(r.headers["Retry-After"]) >= 1


class TestListAndManage:
    def test_list(self, client, auth, user):
        add_sound(user, "One")
        add_sound(user, "Two")
        body = client.get("/sounds", headers=auth).json()
        assert [s["name"] for s in body["sounds"]] == ["Two", "One"]
        assert body["totalCount"] == 2
        assert body["maxSounds"] == 25
        assert body["page"] == 1

    def test_list_search_and_limit(self, client, auth, user):
        for name in ["Boom", "Beep", "Horn"]:
            add_sound(user, name)
        body = client.get("/sounds", params={"q": "b", "limit": 1}, headers=auth).json()
        assert body["count"] == 2
        assert len(body["sounds"]) == 1
        assert body["totalPages"] == 2

    def test_stream(self, client, auth, user, app):
        sound = add_sound(user, "Alert", app.state.sounds, data=b"OggS-bytes")
        r = client.get(f"/sounds/{sound['id']}/stream", headers=auth)
        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/ogg"
        assert r.content == b"OggS-bytes"

    def test_stream_missing_file(self, client, auth, user):
        sound = add_sound(user, "Ghost")
        r = client.get(f"/sounds/{sound['id']}/stream", headers=auth)
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "FILE_NOT_FOUND"

    def test_stream_other_owner(self, client, auth, other_user):
        theirs = add_sound(other_user, "Secret")
        r = client.get(f"/sounds/{theirs['id']}/stream", headers=auth)
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "NOT_FOUND"

    def test_rename(self, client, auth, user):
        sound = add_sound(user, "Old")
        r = client.patch(f"/sounds/{sound['id']}", json={"name": "New"}, headers=auth)
        assert r.status_code == 200
        assert r.json()["sound"]["name"] == "New"

    def test_rename_without_name(self, client, auth, user):
        sound = add_sound(user, "Old")
        r = client.patch(f"/sounds/{sound['id']}", json={}, headers=auth)
        assert r.json()["error"]["code"] == "NO_NAME"

    def test_rename_unknown(self, client, auth):
        r = client.patch("/sounds/missing", json={"name": "New"}, headers=auth)
        assert r.status_code == 404

    def test_delete(self, client, auth, user, app):
        sound = add_sound(user, "Bye", app.state.sounds)
        r = client.delete(f"/sounds/{sound['id']}", headers=auth)
        assert r.json() == {"success": True}
        r = client.delete(f"/sounds/{sound['id']}", headers=auth)
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "NOT_FOUND"


# ── Plugin socket ─────────────────────────────────────────────────

class TestPluginSocket:
    def test_auth_and_get_sounds(self, client, user):
        add_sound(user, "First")
        add_sound(user, "Second")
        with client.websocket_connect("/ws/plugin") as ws:
            ws.send_json({"type": "auth", "steamId64": STEAM_ID})
            reply = ws.receive_json()
            assert reply["type"] == "auth_success"
            assert client.get("/health").json()["plugins_connected"] == 1

            ws.send_json({"type": "get_sounds"})
            listing = ws.receive_json()
            assert [s["name"] for s in listing["sounds"]] == ["Second", "First"]

    def test_auth_timeout(self, client, db_path):
        with client.websocket_connect("/ws/plugin") as ws:
            assert ws.receive_json() == {"type": "auth_error", "error": "Authentication timeout"}
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

    def test_upload_pushes_update(self, client, auth, user, pipeline):
        with client.websocket_connect("/ws/plugin") as ws:
            ws.send_json({"type": "auth", "steamId64": STEAM_ID})
            assert ws.receive_json()["sounds"] == []

            assert _upload(client, auth, name="Fresh").status_code == 201
            update = ws.receive_json()
            assert update["type"] == "sounds_updated"
            assert [s["name"] for s in update["sounds"]] == ["Fresh"]

    def test_second_connection_displaces_first(self, client, user):
        with client.websocket_connect("/ws/plugin") as first:
            first.send_json({"type": "auth", "steamId64": STEAM_ID})
            first.receive_json()
            with client.websocket_connect("/ws/plugin") as second:
                second.send_json({"type": "auth", "steamId64": STEAM_ID})
                assert second.receive_json()["type"] == "auth_success"
                assert first.receive_json() == {
                    "type": "auth_error", "error": "Connected from another location",
                }
                with pytest.raises(WebSocketDisconnect):
                    first.receive_json()

    def test_other_identity_unaffected(self, client, user, other_user):
        with client.websocket_connect("/ws/plugin") as a, client.websocket_connect("/ws/plugin") as b:
            a.send_json({"type": "auth", "steamId64": STEAM_ID})
            b.send_json({"type": "auth", "steamId64": OTHER_STEAM_ID})
            assert a.receive_json()["username"] == "alice"
            assert b.receive_json()["username"] == "bob"
            assert client.get("/health").json()["plugins_connected"] == 2


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["plugins_connected"] == 0

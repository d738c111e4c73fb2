"""pytest configuration and shared fixtures for soundboard tests."""

from __future__ import annotations

import asyncio

import pytest

from soundboard import store
from soundboard.cache import InMemoryCacheBackend
from soundboard.db import init_db, set_db_path
from soundboard.quota import QuotaCache
from soundboard.settings import SettingsService
from soundboard.sounds import SoundService

STEAM_ID = "76561198000000001"
OTHER_STEAM_ID = "76561198000000002"


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture()
def db_path(tmp_path):
    path = tmp_path / "test.db"
    set_db_path(path)
    init_db(path)
    return path


@pytest.fixture()
def user(db_path):
    return store.upsert_user(STEAM_ID, "alice")


@pytest.fixture()
def other_user(db_path):
    return store.upsert_user(OTHER_STEAM_ID, "bob")


@pytest.fixture()
def cache():
    return InMemoryCacheBackend()


@pytest.fixture()
def sound_service(db_path, cache, tmp_path):
    return SoundService(QuotaCache(cache), SettingsService(), upload_root=tmp_path / "uploads")


def add_sound(user: dict, name: str, service: SoundService | None = None, data: bytes = b"OggS-data") -> dict:
    """Insert a sound row (and its file when *service* is given) without ffmpeg."""
    row = store.insert_sound(user["id"], name, f"{name.lower()}-{len(data)}.ogg", 1.5, len(data))
    if service is not None:
        path = service.sound_path(user["steam_id_64"], row["filename"])
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return row


class FakeWebSocket:
    """Stand-in for a Starlette WebSocket driven by a frame queue."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    def push_text(self, text: str) -> None:
        self._frames.put_nowait({"type": "websocket.receive", "text": text})

    def disconnect(self) -> None:
        self._frames.put_nowait({"type": "websocket.disconnect", "code": 1000})

    async def receive(self) -> dict:
        return await self._frames.get()

    async def send_json(self, message: dict) -> None:
        if self.closed:
            raise RuntimeError("Cannot send once the socket is closed")
        self.sent.append(message)

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        # a real client answers the close frame with a disconnect
        self.disconnect()

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

"""FastAPI dependencies resolving the per-app services built by ``create_app``."""

from __future__ import annotations

from fastapi import Request

from soundboard.plugin.notifier import PushNotifier
from soundboard.plugin.registry import ConnectionRegistry
from soundboard.ratelimit import UploadRateLimiter
from soundboard.settings import SettingsService
from soundboard.sounds import SoundService


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_sound_service(request: Request) -> SoundService:
    return request.app.state.sounds


def get_settings_service(request: Request) -> SettingsService:
    return request.app.state.settings


def get_notifier(request: Request) -> PushNotifier:
    return request.app.state.notifier


def get_rate_limiter(request: Request) -> UploadRateLimiter:
    return request.app.state.rate_limiter

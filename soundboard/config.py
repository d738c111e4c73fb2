"""Static configuration for the soundboard server.

Paths and service URLs come from environment variables read once at import.
Operational limits that admins can change at runtime (quota, max size,
max duration, formats) live in :mod:`soundboard.settings` instead.
"""

from __future__ import annotations

import os
from pathlib import Path

# ── Storage ───────────────────────────────────────────────────────
UPLOAD_DIR = Path(os.environ.get("SOUNDBOARD_UPLOAD_DIR", "./uploads"))
REDIS_URL = os.environ.get("SOUNDBOARD_REDIS_URL", "")

# ── Plugin socket ─────────────────────────────────────────────────
AUTH_TIMEOUT_SECONDS = float(os.environ.get("SOUNDBOARD_AUTH_TIMEOUT", "10"))

# ── Sound names ───────────────────────────────────────────────────
NAME_MIN_LENGTH = 1
NAME_MAX_LENGTH = 32

# ── Transcode target (Ogg/Opus) ───────────────────────────────────
OUTPUT_EXTENSION = ".ogg"
OUTPUT_MEDIA_TYPE = "audio/ogg"
OUTPUT_CODEC = "libopus"
OUTPUT_BITRATE = "64k"
OUTPUT_CHANNELS = 2
OUTPUT_SAMPLE_RATE = 48000

FFMPEG_BIN = os.environ.get("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.environ.get("FFPROBE_BIN", "ffprobe")

# ── Cache / rate limit ────────────────────────────────────────────
QUOTA_TTL_SECONDS = 300
SETTINGS_TTL_SECONDS = 300
UPLOAD_RATE_LIMIT_POINTS = 5
UPLOAD_RATE_LIMIT_WINDOW_SECONDS = 60

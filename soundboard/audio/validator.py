"""Upload validation: sound names and audio content.

The content type is detected from the leading bytes of the upload with
:mod:`filetype`; the client's filename and declared content type are never
consulted.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import filetype

from soundboard.audio.ffmpeg import FFmpegError, probe_duration
from soundboard.config import NAME_MAX_LENGTH, NAME_MIN_LENGTH
from soundboard.errors import (
    DURATION_TOO_LONG,
    FILE_TOO_LARGE,
    INVALID_AUDIO,
    INVALID_AUDIO_FORMAT,
    INVALID_FILE_TYPE,
    NAME_TOO_LONG,
    NAME_TOO_SHORT,
    UploadError,
)
from soundboard.settings import Settings


@dataclass(frozen=True)
class AudioCheck:
    duration: float | None = None
    error: UploadError | None = None


def validate_sound_name(name: str) -> UploadError | None:
    trimmed = name.strip()
    if len(trimmed) < NAME_MIN_LENGTH:
        return UploadError(
            NAME_TOO_SHORT,
            f"Name must be at least {NAME_MIN_LENGTH} character long",
        )
    if len(trimmed) > NAME_MAX_LENGTH:
        return UploadError(
            NAME_TOO_LONG,
            f"Name cannot exceed {NAME_MAX_LENGTH} characters",
        )
    return None


def file_too_large(settings: Settings) -> UploadError:
    return UploadError(
        FILE_TOO_LARGE,
        f"File exceeds the maximum size of {settings.max_file_size / 1024 / 1024:.1f} MB",
    )


def sniff_mime(data: bytes) -> str | None:
    """Identify the upload's container from its signature bytes.

    Returns the MIME name :mod:`filetype` reports (``audio/x-wav`` for WAV,
    ``audio/x-flac`` for FLAC), or ``None`` when nothing matches.
    """
    kind = filetype.guess(data)
    return kind.mime if kind is not None else None


async def validate_audio_file(data: bytes, staged_path: str | Path, settings: Settings) -> AudioCheck:
    """Run the size, content-type and duration gates against a staged upload."""
    if len(data) > settings.max_file_size:
        return AudioCheck(error=file_too_large(settings))

    mime = sniff_mime(data)
    if mime is None:
        return AudioCheck(error=UploadError(
            INVALID_FILE_TYPE, "Unable to determine the file type",
        ))
    if mime not in settings.allowed_mime_types():
        return AudioCheck(error=UploadError(
            INVALID_AUDIO_FORMAT,
            f"Unsupported audio format ({mime}). Accepted: {', '.join(settings.allowed_formats)}",
        ))

    try:
        duration = await probe_duration(staged_path)
    except FFmpegError:
        return AudioCheck(error=UploadError(INVALID_AUDIO, "Unable to read the audio file"))

    if duration > settings.max_duration:
        return AudioCheck(error=UploadError(
            DURATION_TOO_LONG,
            f"Maximum duration is {settings.max_duration:g} seconds (got {duration:.1f}s)",
        ))

    return AudioCheck(duration=duration)

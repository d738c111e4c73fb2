"""ffprobe / ffmpeg wrappers.

Both binaries run as child processes via :func:`asyncio.create_subprocess_exec`
so the event loop keeps serving sockets while a clip is probed or encoded.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from pathlib import Path

from soundboard.config import (
    FFMPEG_BIN,
    FFPROBE_BIN,
    OUTPUT_BITRATE,
    OUTPUT_CHANNELS,
    OUTPUT_CODEC,
    OUTPUT_SAMPLE_RATE,
)

logger = logging.getLogger(__name__)


class FFmpegError(Exception):
    """Probing or conversion failed."""


async def _run_subprocess(cmd: list[str]) -> tuple[str, str]:
    """Run a command and return (stdout, stderr). Raises on non-zero exit."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise FFmpegError(f"{cmd[0]} is not installed or not on PATH") from e

    stdout_bytes, stderr_bytes = await proc.communicate()
    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        raise FFmpegError(
            f"Command {cmd[0]} failed (rc={proc.returncode}): {stderr[:500]}"
        )

    return stdout, stderr


async def probe_duration(path: str | Path) -> float:
    """Return the container duration of *path* in seconds."""
    stdout, _ = await _run_subprocess([
        FFPROBE_BIN,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "json",
        str(path),
    ])
    try:
        raw = json.loads(stdout)["format"]["duration"]
        duration = float(raw)
    except (ValueError, KeyError, TypeError) as e:
        raise FFmpegError(f"Could not determine audio duration for {path}") from e
    if math.isnan(duration) or duration < 0:
        raise FFmpegError(f"Could not determine audio duration for {path}")
    return duration


async def convert_to_ogg_opus(input_path: str | Path, output_path: str | Path) -> None:
    """Transcode *input_path* into an Ogg/Opus file at *output_path*."""
    await _run_subprocess([
        FFMPEG_BIN,
        "-hide_banner",
        "-v", "error",
        "-y",
        "-i", str(input_path),
        "-vn",
        "-c:a", OUTPUT_CODEC,
        "-b:a", OUTPUT_BITRATE,
        "-ac", str(OUTPUT_CHANNELS),
        "-ar", str(OUTPUT_SAMPLE_RATE),
        "-f", "ogg",
        str(output_path),
    ])
    logger.debug("Converted %s -> %s", input_path, output_path)

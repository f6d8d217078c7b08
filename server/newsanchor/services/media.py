from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Sequence


logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str]], Awaitable[str]]


class MediaCommandError(RuntimeError):
    """Raised when an external media tool exits non-zero or cannot be started."""


def scratch_path(scratch_dir: Path | str, *, prefix: str, suffix: str) -> Path:
    """Return a fresh, collision-free path inside ``scratch_dir``.

    Names combine pid, a nanosecond timestamp and a random token so concurrent
    runs (in this process or another) never share a temp file.
    """
    directory = Path(scratch_dir)
    directory.mkdir(parents=True, exist_ok=True)
    token = uuid.uuid4().hex[:8]
    return directory / f"{prefix}-{os.getpid()}-{time.time_ns()}-{token}{suffix}"


async def run_media_command(args: Sequence[str]) -> str:
    """Run ffmpeg/ffprobe-style commands and return stdout as text."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise MediaCommandError(f"Could not start {args[0]}: {exc}") from exc
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        detail = stderr.decode("utf-8", "ignore").strip()[-800:]
        raise MediaCommandError(f"{args[0]} exited with code {proc.returncode}: {detail}")
    return stdout.decode("utf-8", "ignore")


async def probe_duration(
    path: Path,
    *,
    ffprobe_binary: str = "ffprobe",
    runner: CommandRunner = run_media_command,
) -> float:
    """Return the container duration of ``path`` in seconds."""
    output = await runner(
        [
            ffprobe_binary,
            "-v",
            "quiet",
            "-show_entries",
            "format=duration",
            "-of",
            "csv=p=0",
            "-i",
            str(path),
        ]
    )
    return float(output.strip())


def remove_files(paths: Iterable[Optional[Path]]) -> None:
    """Delete temp files, logging (not raising) on failure."""
    for path in paths:
        if path is None:
            continue
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete temp file %s: %s", path, exc)

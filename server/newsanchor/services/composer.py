from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from newsanchor.config import settings
from newsanchor.services.errors import CompositionError
from newsanchor.services.media import (
    CommandRunner,
    MediaCommandError,
    remove_files,
    run_media_command,
    scratch_path,
)
from newsanchor.services.models import BaselineVideoArtifact


logger = logging.getLogger(__name__)


def fit_frame_filter(width: int, height: int) -> str:
    """Scale into ``width``x``height`` keeping aspect ratio, letterboxing the rest."""
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


class VideoComposer:
    """Builds the baseline video: one still image held for the audio's length.

    Encoding is deterministic for identical inputs, so failures are not retried.
    """

    def __init__(
        self,
        *,
        scratch_dir: Optional[Path] = None,
        ffmpeg_binary: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        fps: Optional[int] = None,
        audio_bitrate: Optional[str] = None,
        runner: CommandRunner = run_media_command,
    ) -> None:
        self._scratch_dir = Path(scratch_dir or settings.scratch_dir)
        self._ffmpeg_binary = ffmpeg_binary or settings.ffmpeg_binary
        self._width = width or settings.video_width
        self._height = height or settings.video_height
        self._fps = fps or settings.video_fps
        self._audio_bitrate = audio_bitrate or settings.audio_bitrate
        self._runner = runner

    def build_command(
        self, image_path: Path, audio_path: Path, duration_seconds: float, output_path: Path
    ) -> list[str]:
        return [
            self._ffmpeg_binary,
            "-y",
            "-loop",
            "1",
            "-framerate",
            str(self._fps),
            "-i",
            str(image_path),
            "-i",
            str(audio_path),
            "-t",
            f"{duration_seconds:.3f}",
            "-vf",
            fit_frame_filter(self._width, self._height),
            "-r",
            str(self._fps),
            "-c:v",
            "libx264",
            "-tune",
            "stillimage",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "aac",
            "-b:a",
            self._audio_bitrate,
            "-ac",
            "2",
            "-shortest",
            str(output_path),
        ]

    async def compose_from_image(
        self, image_path: Path, audio_path: Path, target_duration_seconds: float
    ) -> BaselineVideoArtifact:
        image_path = Path(image_path)
        if not image_path.is_file():
            raise CompositionError(f"Avatar image not found: {image_path}")
        if target_duration_seconds <= 0:
            raise CompositionError(f"Invalid target duration: {target_duration_seconds}")

        output_path = scratch_path(self._scratch_dir, prefix="baseline", suffix=".mp4")
        command = self.build_command(image_path, Path(audio_path), target_duration_seconds, output_path)
        logger.info(
            "Composing %.2fs baseline video at %dx%d", target_duration_seconds, self._width, self._height
        )
        try:
            await self._runner(command)
        except MediaCommandError as exc:
            remove_files([output_path])
            raise CompositionError(f"Failed to compose video from image: {exc}") from exc
        if not output_path.exists():
            raise CompositionError("Encoder reported success but the baseline video is missing")
        return BaselineVideoArtifact(file_path=output_path)

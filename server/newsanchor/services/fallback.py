from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from newsanchor.config import settings
from newsanchor.services.composer import fit_frame_filter
from newsanchor.services.errors import FallbackError, UploadError
from newsanchor.services.media import (
    CommandRunner,
    MediaCommandError,
    probe_duration,
    remove_files,
    run_media_command,
    scratch_path,
)
from newsanchor.services.storage import MediaUploader


logger = logging.getLogger(__name__)

FADE_SECONDS = 1.0


def animation_filter(
    width: int,
    height: int,
    duration_seconds: float,
    *,
    fps: int = 30,
    max_zoom: float = 1.1,
    zoom_step: float = 0.0015,
) -> str:
    """Fade in, slow centered zoom, fade out over the final second.

    zoompan emits one frame per input frame (``d=1``), so the input is
    resampled to ``fps`` first; otherwise the picture would run shorter or
    longer than the copied audio track.
    """
    fade_out_start = max(duration_seconds - FADE_SECONDS, 0.0)
    return ",".join(
        [
            f"fps={fps}",
            fit_frame_filter(width, height),
            (
                f"zoompan=z='min(zoom+{zoom_step},{max_zoom})':d=1"
                ":x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'"
                f":s={width}x{height}:fps={fps}"
            ),
            f"fade=t=in:st=0:d={FADE_SECONDS}",
            f"fade=t=out:st={fade_out_start:.3f}:d={FADE_SECONDS}",
        ]
    )


class FallbackAnimator:
    """Cheap procedural animation used when lip-sync produced nothing.

    There is no further degradation level: any failure here is a FallbackError.
    """

    def __init__(
        self,
        *,
        uploader: MediaUploader,
        scratch_dir: Optional[Path] = None,
        ffmpeg_binary: Optional[str] = None,
        ffprobe_binary: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        fps: Optional[int] = None,
        runner: CommandRunner = run_media_command,
    ) -> None:
        self._uploader = uploader
        self._scratch_dir = Path(scratch_dir or settings.scratch_dir)
        self._ffmpeg_binary = ffmpeg_binary or settings.ffmpeg_binary
        self._ffprobe_binary = ffprobe_binary or settings.ffprobe_binary
        self._width = width or settings.video_width
        self._height = height or settings.video_height
        self._fps = fps or settings.video_fps
        self._runner = runner

    async def animate(self, baseline_video_path: Path, *, duration_seconds: Optional[float] = None) -> str:
        baseline_video_path = Path(baseline_video_path)
        if not baseline_video_path.is_file():
            raise FallbackError(f"Baseline video not found: {baseline_video_path}")

        if duration_seconds is None or duration_seconds <= 0:
            try:
                duration_seconds = await probe_duration(
                    baseline_video_path, ffprobe_binary=self._ffprobe_binary, runner=self._runner
                )
            except (MediaCommandError, ValueError) as exc:
                raise FallbackError(f"Could not measure baseline video: {exc}") from exc

        animated_path = scratch_path(self._scratch_dir, prefix="animated", suffix=".mp4")
        command = [
            self._ffmpeg_binary,
            "-y",
            "-i",
            str(baseline_video_path),
            "-vf",
            animation_filter(
                self._width,
                self._height,
                duration_seconds,
                fps=self._fps,
                max_zoom=settings.fallback_max_zoom,
                zoom_step=settings.fallback_zoom_step,
            ),
            "-c:v",
            "libx264",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "copy",
            str(animated_path),
        ]
        try:
            logger.info("Rendering fallback animation for %s", baseline_video_path.name)
            await self._runner(command)
            return await self._uploader.upload(animated_path)
        except MediaCommandError as exc:
            raise FallbackError(f"Fallback animation failed: {exc}") from exc
        except UploadError as exc:
            raise FallbackError(f"Fallback upload failed: {exc}") from exc
        finally:
            remove_files([animated_path])

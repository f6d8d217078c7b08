from __future__ import annotations

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Sequence

import pytest

from newsanchor.services.composer import VideoComposer
from newsanchor.services.errors import CompositionError, FallbackError, UploadError
from newsanchor.services.fallback import FallbackAnimator, animation_filter
from newsanchor.services.media import MediaCommandError, probe_duration, run_media_command


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class FakeEncoder:
    """Records ffmpeg invocations and writes the output file (last argument)."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[list[str]] = []
        self._fail = fail

    async def __call__(self, args: Sequence[str]) -> str:
        self.calls.append(list(args))
        output = Path(args[-1])
        output.write_bytes(b"partial")
        if self._fail:
            raise MediaCommandError("ffmpeg exited with code 1: invalid data")
        output.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return ""


class FakeUploader:
    def __init__(self, error: Exception | None = None) -> None:
        self.uploaded: list[Path] = []
        self._error = error

    async def upload(self, local_path: Path) -> str:
        assert Path(local_path).exists()
        self.uploaded.append(Path(local_path))
        if self._error is not None:
            raise self._error
        return f"https://cdn.example.com/{Path(local_path).name}"


def _image(tmp_path: Path) -> Path:
    path = tmp_path / "avatar.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0" + b"\x00" * 64)
    return path


def _audio(tmp_path: Path) -> Path:
    path = tmp_path / "speech.mp3"
    path.write_bytes(b"ID3" + b"\x00" * 64)
    return path


def test_compose_holds_image_for_audio_duration(tmp_path: Path) -> None:
    encoder = FakeEncoder()
    composer = VideoComposer(scratch_dir=tmp_path / "scratch", runner=encoder)

    artifact = _run(composer.compose_from_image(_image(tmp_path), _audio(tmp_path), 4.2))

    command = encoder.calls[0]
    assert artifact.file_path.exists()
    assert artifact.file_path.parent == tmp_path / "scratch"
    assert command[command.index("-t") + 1] == "4.200"
    assert command[command.index("-loop") + 1] == "1"
    assert command[command.index("-framerate") + 1] == "30"
    assert command[command.index("-r") + 1] == "30"
    assert command.index("-framerate") < command.index(str(_image(tmp_path)))
    assert "scale=1920:1080" in command[command.index("-vf") + 1]
    assert command[command.index("-c:v") + 1] == "libx264"
    assert command[command.index("-c:a") + 1] == "aac"
    assert command[command.index("-ac") + 1] == "2"
    assert command[-1] == str(artifact.file_path)


def test_compose_failure_is_composition_error_and_leaves_no_file(tmp_path: Path) -> None:
    scratch = tmp_path / "scratch"
    composer = VideoComposer(scratch_dir=scratch, runner=FakeEncoder(fail=True))

    with pytest.raises(CompositionError) as excinfo:
        _run(composer.compose_from_image(_image(tmp_path), _audio(tmp_path), 3.0))

    assert excinfo.value.retryable is False
    assert list(scratch.iterdir()) == []


def test_compose_rejects_missing_image(tmp_path: Path) -> None:
    encoder = FakeEncoder()
    composer = VideoComposer(scratch_dir=tmp_path, runner=encoder)

    with pytest.raises(CompositionError, match="not found"):
        _run(composer.compose_from_image(tmp_path / "nope.jpg", _audio(tmp_path), 3.0))
    assert encoder.calls == []


def test_fallback_animates_uploads_and_cleans_up(tmp_path: Path) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    baseline = scratch / "baseline.mp4"
    baseline.write_bytes(b"video")
    encoder = FakeEncoder()
    uploader = FakeUploader()
    animator = FallbackAnimator(uploader=uploader, scratch_dir=scratch, runner=encoder)

    url = _run(animator.animate(baseline, duration_seconds=8.0))

    assert url == f"https://cdn.example.com/{uploader.uploaded[0].name}"
    command = encoder.calls[0]
    video_filter = command[command.index("-vf") + 1]
    assert "fade=t=in" in video_filter
    assert "fade=t=out:st=7.000" in video_filter
    assert "zoompan" in video_filter
    assert video_filter.startswith("fps=30,")
    assert ":fps=30" in video_filter
    assert command[command.index("-c:a") + 1] == "copy"
    # Only the caller-owned baseline is left behind.
    assert sorted(path.name for path in scratch.iterdir()) == ["baseline.mp4"]


def test_fallback_probes_duration_when_not_given(tmp_path: Path) -> None:
    baseline = tmp_path / "baseline.mp4"
    baseline.write_bytes(b"video")
    calls: list[list[str]] = []

    async def runner(args: Sequence[str]) -> str:
        calls.append(list(args))
        if "ffprobe" in args[0]:
            return "6.5\n"
        Path(args[-1]).write_bytes(b"video")
        return ""

    animator = FallbackAnimator(uploader=FakeUploader(), scratch_dir=tmp_path / "scratch", runner=runner)
    _run(animator.animate(baseline))

    assert calls[0][0] == "ffprobe"
    assert "fade=t=out:st=5.500" in calls[1][calls[1].index("-vf") + 1]


def test_fallback_encoder_failure_is_fallback_error(tmp_path: Path) -> None:
    baseline = tmp_path / "baseline.mp4"
    baseline.write_bytes(b"video")
    scratch = tmp_path / "scratch"
    animator = FallbackAnimator(uploader=FakeUploader(), scratch_dir=scratch, runner=FakeEncoder(fail=True))

    with pytest.raises(FallbackError):
        _run(animator.animate(baseline, duration_seconds=5.0))
    assert list(scratch.iterdir()) == []


def test_fallback_upload_failure_is_fallback_error(tmp_path: Path) -> None:
    baseline = tmp_path / "baseline.mp4"
    baseline.write_bytes(b"video")
    scratch = tmp_path / "scratch"
    animator = FallbackAnimator(
        uploader=FakeUploader(error=UploadError("bucket quota exceeded")),
        scratch_dir=scratch,
        runner=FakeEncoder(),
    )

    with pytest.raises(FallbackError, match="quota"):
        _run(animator.animate(baseline, duration_seconds=5.0))
    assert list(scratch.iterdir()) == []


def test_animation_filter_clamps_fade_out_for_short_clips() -> None:
    assert "fade=t=out:st=0.000" in animation_filter(640, 360, 0.5)


def test_animation_filter_resamples_input_to_output_rate() -> None:
    video_filter = animation_filter(640, 360, 5.0, fps=25, max_zoom=1.2, zoom_step=0.002)

    assert video_filter.startswith("fps=25,")
    assert ":fps=25" in video_filter
    assert "min(zoom+0.002,1.2)" in video_filter


def _ffmpeg_with_x264() -> bool:
    if shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None:
        return False
    encoders = subprocess.run(["ffmpeg", "-hide_banner", "-encoders"], capture_output=True, text=True, check=False)
    return "libx264" in encoders.stdout


@pytest.mark.skipif(not _ffmpeg_with_x264(), reason="ffmpeg with libx264 not available")
def test_real_encoder_matches_audio_duration(tmp_path: Path) -> None:
    image = tmp_path / "avatar.png"
    audio = tmp_path / "speech.m4a"
    subprocess.run(
        ["ffmpeg", "-y", "-f", "lavfi", "-i", "color=c=navy:s=320x240", "-frames:v", "1", str(image)],
        capture_output=True,
        check=True,
    )
    subprocess.run(
        ["ffmpeg", "-y", "-f", "lavfi", "-i", "sine=frequency=440:duration=3", "-c:a", "aac", str(audio)],
        capture_output=True,
        check=True,
    )
    audio_duration = _run(probe_duration(audio))
    composer = VideoComposer(scratch_dir=tmp_path / "scratch", width=320, height=180, runner=run_media_command)

    artifact = _run(composer.compose_from_image(image, audio, audio_duration))
    video_duration = _run(probe_duration(artifact.file_path))

    assert video_duration > 0
    assert abs(video_duration - audio_duration) <= 1.0


def _stream_duration(path: Path, stream: str) -> float:
    result = subprocess.run(
        [
            "ffprobe", "-v", "error", "-select_streams", stream,
            "-show_entries", "stream=duration", "-of", "default=noprint_wrappers=1:nokey=1", str(path),
        ],
        capture_output=True,
        text=True,
        check=True,
    )
    return float(result.stdout.strip())


class KeepingUploader:
    """Copies the upload aside so the animated file outlives the animator's cleanup."""

    def __init__(self, destination: Path) -> None:
        self.destination = destination

    async def upload(self, local_path: Path) -> str:
        shutil.copyfile(local_path, self.destination)
        return f"https://cdn.example.com/{self.destination.name}"


@pytest.mark.skipif(not _ffmpeg_with_x264(), reason="ffmpeg with libx264 not available")
def test_real_fallback_animation_keeps_picture_as_long_as_audio(tmp_path: Path) -> None:
    image = tmp_path / "avatar.png"
    audio = tmp_path / "speech.m4a"
    subprocess.run(
        ["ffmpeg", "-y", "-f", "lavfi", "-i", "color=c=navy:s=320x240", "-frames:v", "1", str(image)],
        capture_output=True,
        check=True,
    )
    subprocess.run(
        ["ffmpeg", "-y", "-f", "lavfi", "-i", "sine=frequency=440:duration=6", "-c:a", "aac", str(audio)],
        capture_output=True,
        check=True,
    )
    audio_duration = _run(probe_duration(audio))
    scratch = tmp_path / "scratch"
    composer = VideoComposer(scratch_dir=scratch, width=320, height=180, runner=run_media_command)
    baseline = _run(composer.compose_from_image(image, audio, audio_duration))
    animated = tmp_path / "animated.mp4"
    animator = FallbackAnimator(
        uploader=KeepingUploader(animated),  # type: ignore[arg-type]
        scratch_dir=scratch,
        width=320,
        height=180,
        runner=run_media_command,
    )

    _run(animator.animate(baseline.file_path, duration_seconds=audio_duration))

    video_duration = _stream_duration(animated, "v:0")
    audio_track_duration = _stream_duration(animated, "a:0")
    assert abs(video_duration - audio_track_duration) <= 1.0
    assert abs(video_duration - audio_duration) <= 1.0

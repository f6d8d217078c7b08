from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

from newsanchor.config import settings
from newsanchor.services.composer import VideoComposer
from newsanchor.services.errors import (
    ConfigurationError,
    LipSyncError,
    LipSyncTimeoutError,
    UploadError,
)
from newsanchor.services.fallback import FallbackAnimator
from newsanchor.services.heygen import HeyGenClient
from newsanchor.services.lipsync import LipSyncClient
from newsanchor.services.media import remove_files
from newsanchor.services.models import (
    AudioArtifact,
    BaselineVideoArtifact,
    GenerationRequest,
    GenerationResult,
    RemoteAvatar,
)
from newsanchor.services.probe import UrlProbe
from newsanchor.services.speech import SpeechSynthesizer
from newsanchor.services.storage import MediaUploader, ResultRecorder, build_supabase_client
from newsanchor.services.text import prepare_presenter_text


logger = logging.getLogger(__name__)


class VideoPipeline(Protocol):
    """Anything that turns a GenerationRequest into a hosted video."""

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        raise NotImplementedError


class LocalAvatarPipeline:
    """Speech -> still-image video -> hosted lip-sync, with a procedural fallback.

    Lip-sync is the only recoverable stage: an explicit failure, a timeout, a
    failed input upload, or no configured provider all degrade to the fallback
    animation. Every other stage error aborts the run. Temp files created by a
    run are removed on every exit path.
    """

    def __init__(
        self,
        *,
        synthesizer: SpeechSynthesizer,
        composer: VideoComposer,
        uploader: MediaUploader,
        animator: FallbackAnimator,
        lipsync: Optional[LipSyncClient] = None,
    ) -> None:
        self._synthesizer = synthesizer
        self._composer = composer
        self._uploader = uploader
        self._animator = animator
        self._lipsync = lipsync

    async def _lip_sync(self, baseline: BaselineVideoArtifact, audio: AudioArtifact) -> str:
        assert self._lipsync is not None
        # Both uploads must settle before returning; the caller deletes their source files.
        uploads = await asyncio.gather(
            self._uploader.upload(baseline.file_path),
            self._uploader.upload(audio.file_path),
            return_exceptions=True,
        )
        for outcome in uploads:
            if isinstance(outcome, UploadError):
                raise LipSyncError(f"Could not stage lip-sync inputs: {outcome}") from outcome
        for outcome in uploads:
            if isinstance(outcome, BaseException):
                raise outcome
        video_url, audio_url = uploads
        job_id = await self._lipsync.submit(video_url, audio_url)
        return await self._lipsync.poll_until_terminal(job_id)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if not isinstance(request.avatar, Path):
            raise ConfigurationError("Local pipeline requires an avatar image path")

        audio: Optional[AudioArtifact] = None
        baseline: Optional[BaselineVideoArtifact] = None
        try:
            logger.info("Generating speech (%d chars)", len(request.source_text))
            audio = await self._synthesizer.synthesize(request.source_text, request.voice)
            duration = await self._synthesizer.measure_duration(audio)
            logger.info("Speech ready: %s (%.2fs)", audio.file_path.name, duration)

            baseline = await self._composer.compose_from_image(request.avatar, audio.file_path, duration)

            if self._lipsync is None:
                logger.warning("Lip-sync provider not configured; using fallback animation")
            else:
                try:
                    video_url = await self._lip_sync(baseline, audio)
                except LipSyncTimeoutError as exc:
                    logger.warning("Lip-sync timed out, using fallback animation: %s", exc)
                except LipSyncError as exc:
                    logger.warning("Lip-sync failed, using fallback animation: %s", exc)
                else:
                    logger.info("Lip-sync video ready: %s", video_url)
                    return GenerationResult(video_url=video_url, used_fallback=False)

            video_url = await self._animator.animate(baseline.file_path, duration_seconds=duration)
            logger.info("Fallback video ready: %s", video_url)
            return GenerationResult(video_url=video_url, used_fallback=True)
        finally:
            remove_files(
                [
                    audio.file_path if audio is not None else None,
                    baseline.file_path if baseline is not None else None,
                ]
            )


class AvatarServicePipeline:
    """Hands raw text to a hosted avatar provider and waits for its video."""

    def __init__(self, *, client: HeyGenClient, max_text_chars: Optional[int] = None) -> None:
        self._client = client
        self._max_text_chars = max_text_chars or settings.heygen_max_text_chars

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if not isinstance(request.avatar, RemoteAvatar):
            raise ConfigurationError("Avatar service pipeline requires a remote avatar id")
        text = prepare_presenter_text(request.source_text, self._max_text_chars)
        voice_id = self._client.resolve_voice(request.voice)
        video_id = await self._client.generate(text, request.avatar.avatar_id, voice_id)
        video_url = await self._client.wait_for_video(video_id)
        logger.info("Provider video %s ready: %s", video_id, video_url)
        return GenerationResult(video_url=video_url, used_fallback=False)


class VideoOrchestrator:
    """Routes each request to the pipeline matching its avatar reference.

    Holds no per-run state, so concurrent requests run as independent pipelines.
    """

    def __init__(
        self,
        *,
        local: Optional[VideoPipeline] = None,
        remote: Optional[VideoPipeline] = None,
        recorder: Optional[ResultRecorder] = None,
        closers: Optional[list] = None,
    ) -> None:
        self._local = local
        self._remote = remote
        self._recorder = recorder
        self._closers = closers or []

    @property
    def has_local_pipeline(self) -> bool:
        return self._local is not None

    @property
    def has_remote_pipeline(self) -> bool:
        return self._remote is not None

    def select(self, request: GenerationRequest) -> VideoPipeline:
        if request.uses_remote_avatar:
            if self._remote is None:
                raise ConfigurationError("Provider avatars are not configured (set HEYGEN_API_KEY)")
            return self._remote
        if self._local is None:
            raise ConfigurationError(
                "Image avatars are not configured (Google TTS and Supabase credentials required)"
            )
        return self._local

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        pipeline = self.select(request)
        try:
            return await pipeline.generate(request)
        except Exception:
            logger.exception("Video generation failed")
            raise

    async def generate_and_record(self, request: GenerationRequest) -> tuple[GenerationResult, Optional[str]]:
        """Generate a video, then record it; returns the result and record id."""
        result = await self.generate(request)
        if self._recorder is None:
            return result, None
        input_type = "url" if request.input_reference else "text"
        record_id = await self._recorder.record(
            result,
            input_reference=request.input_reference or request.source_text[:500],
            input_type=input_type,
        )
        return result, record_id

    @classmethod
    def from_settings(cls) -> "VideoOrchestrator":
        """Build every pipeline that the environment has credentials for."""
        closers: list = []
        probe = UrlProbe()
        closers.append(probe)

        supabase = None
        local: Optional[LocalAvatarPipeline] = None
        try:
            supabase = build_supabase_client()
            uploader = MediaUploader(client=supabase)
            lipsync: Optional[LipSyncClient] = None
            if (settings.sync_api_key or "").strip():
                lipsync = LipSyncClient(is_ready=probe)
                closers.append(lipsync)
            local = LocalAvatarPipeline(
                synthesizer=SpeechSynthesizer(),
                composer=VideoComposer(),
                uploader=uploader,
                animator=FallbackAnimator(uploader=uploader),
                lipsync=lipsync,
            )
        except ConfigurationError as exc:
            logger.warning("Image avatar pipeline disabled: %s", exc)

        remote: Optional[AvatarServicePipeline] = None
        if (settings.heygen_api_key or "").strip():
            heygen = HeyGenClient(is_ready=probe)
            closers.append(heygen)
            remote = AvatarServicePipeline(client=heygen)

        if local is None and remote is None:
            raise ConfigurationError("No video pipeline is configured")

        recorder = None
        if supabase is not None and settings.record_results:
            recorder = ResultRecorder(client=supabase)
        return cls(local=local, remote=remote, recorder=recorder, closers=closers)

    async def aclose(self) -> None:
        """Close shared HTTP clients held by the pipelines."""
        for closer in self._closers:
            await closer.aclose()
        self._closers = []

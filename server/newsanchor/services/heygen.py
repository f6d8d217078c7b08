from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Union

import httpx

from newsanchor.config import settings
from newsanchor.services.errors import (
    AvatarProviderError,
    AvatarProviderUnavailableError,
    ConfigurationError,
    ProcessingTimeoutError,
)
from newsanchor.services.models import JobStatus, RemoteJob, VoiceSelector
from newsanchor.services.polling import (
    ExponentialBackoffPolicy,
    PollingPolicy,
    PollingTimeout,
    ReadinessCheck,
    Sleep,
    poll_until_terminal,
)


logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "pending": JobStatus.PENDING,
    "waiting": JobStatus.PENDING,
    "processing": JobStatus.PROCESSING,
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
}


def _error_text(error: Any) -> Optional[str]:
    """HeyGen errors arrive as plain strings or {code, message, detail} objects."""
    if isinstance(error, str):
        return error.strip() or None
    if isinstance(error, dict):
        for key in ("message", "detail", "code"):
            value = error.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


class HeyGenClient:
    """Client for HeyGen's hosted talking-avatar generation.

    HeyGen voices the raw text itself, so no local speech or composition is
    involved. Status is polled with exponential backoff plus jitter, and a
    completed video only counts once its URL is confirmed reachable.
    """

    def __init__(
        self,
        *,
        is_ready: ReadinessCheck,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        policy: Optional[PollingPolicy] = None,
        dimension: Optional[tuple[int, int]] = None,
        voice_ids: Optional[dict[VoiceSelector, Optional[str]]] = None,
        request_timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        normalized_key = (api_key if api_key is not None else settings.heygen_api_key or "").strip()
        if not normalized_key:
            raise ConfigurationError("HEYGEN_API_KEY is required for provider avatars")

        self._api_key = normalized_key
        self._api_base = (api_base or settings.heygen_api_base).rstrip("/")
        self._policy = policy or ExponentialBackoffPolicy(
            base_delay=settings.heygen_base_delay_seconds,
            max_delay=settings.heygen_max_delay_seconds,
            max_jitter=settings.heygen_max_jitter_seconds,
            max_attempts=settings.heygen_max_poll_attempts,
            initial_delay=settings.heygen_initial_delay_seconds,
        )
        self._dimension = dimension or (settings.video_width, settings.video_height)
        self._voice_ids = (
            voice_ids
            if voice_ids is not None
            else {
                VoiceSelector.MALE: settings.heygen_male_voice_id,
                VoiceSelector.FEMALE: settings.heygen_female_voice_id,
            }
        )
        self._is_ready = is_ready
        self._sleep = sleep
        timeout = (
            request_timeout_seconds
            if request_timeout_seconds is not None
            else settings.provider_request_timeout_seconds
        )
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            http2=True,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-Api-Key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def resolve_voice(self, voice: Union[VoiceSelector, str]) -> str:
        """Map a selector to a configured voice id; other strings are voice ids."""
        if isinstance(voice, str) and not isinstance(voice, VoiceSelector):
            try:
                voice = VoiceSelector(voice.strip().lower())
            except ValueError:
                if not voice.strip():
                    raise ConfigurationError("Voice id must not be empty") from None
                return voice.strip()
        voice_id = (self._voice_ids.get(voice) or "").strip()
        if not voice_id:
            raise ConfigurationError(
                f"No HeyGen voice configured for {voice.value!r}; set HEYGEN_{voice.name}_VOICE_ID"
            )
        return voice_id

    def build_payload(self, text: str, avatar_id: str, voice_id: str) -> dict[str, Any]:
        width, height = self._dimension
        return {
            "video_inputs": [
                {
                    "character": {"type": "avatar", "avatar_id": avatar_id, "avatar_style": "normal"},
                    "voice": {"type": "text", "input_text": text, "voice_id": voice_id},
                    "background": {"type": "color", "value": "#FFFFFF"},
                }
            ],
            "dimension": {"width": width, "height": height},
        }

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as exc:
            raise AvatarProviderUnavailableError(f"HeyGen request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if response.is_error:
            detail = _error_text(data.get("error")) or response.reason_phrase or "HTTP error"
            message = f"HeyGen returned HTTP {response.status_code}: {detail}"
            if response.status_code == 429 or response.status_code >= 500:
                raise AvatarProviderUnavailableError(message)
            raise AvatarProviderError(message)
        return data

    async def generate(self, text: str, avatar_id: str, voice_id: str) -> str:
        """Submit a generation job and return HeyGen's video id."""
        data = await self._request(
            "POST",
            f"{self._api_base}/v2/video/generate",
            json=self.build_payload(text, avatar_id, voice_id),
        )
        payload = data.get("data") if isinstance(data.get("data"), dict) else {}
        video_id = payload.get("video_id")
        if not isinstance(video_id, str) or not video_id.strip():
            detail = _error_text(data.get("error")) or str(data)
            raise AvatarProviderError(f"HeyGen response missing video id: {detail}")
        logger.info("Submitted HeyGen video %s for avatar %s", video_id, avatar_id)
        return video_id

    async def get_job(self, video_id: str) -> RemoteJob:
        data = await self._request(
            "GET",
            f"{self._api_base}/v1/video_status.get",
            params={"video_id": video_id},
        )
        payload = data.get("data") if isinstance(data.get("data"), dict) else {}
        raw_status = str(payload.get("status") or "").strip().lower()
        video_url = payload.get("video_url")
        return RemoteJob(
            job_id=video_id,
            status=_STATUS_MAP.get(raw_status, JobStatus.PROCESSING),
            result_url=str(video_url).strip() if video_url else None,
            error_detail=_error_text(payload.get("error")),
            raw=data,
        )

    async def wait_for_video(self, video_id: str) -> str:
        """Poll until the video is ready and reachable; return its URL."""
        try:
            job = await poll_until_terminal(
                video_id,
                lambda: self.get_job(video_id),
                self._policy,
                is_ready=self._is_ready,
                transient=(AvatarProviderUnavailableError,),
                sleep=self._sleep,
            )
        except PollingTimeout as exc:
            raise ProcessingTimeoutError(
                f"Video {video_id} is still processing. It may finish shortly; try refreshing."
            ) from exc

        if job.status == JobStatus.FAILED:
            raise AvatarProviderError(job.error_detail or f"HeyGen video {video_id} failed")
        assert job.result_url is not None
        return job.result_url

    async def aclose(self) -> None:
        await self._http.aclose()

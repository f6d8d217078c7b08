from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from newsanchor.config import settings
from newsanchor.services.errors import (
    ConfigurationError,
    LipSyncError,
    LipSyncTimeoutError,
    LipSyncUnavailableError,
)
from newsanchor.services.models import JobStatus, RemoteJob
from newsanchor.services.polling import (
    FixedIntervalPolicy,
    PollingPolicy,
    PollingTimeout,
    ReadinessCheck,
    Sleep,
    poll_until_terminal,
)


logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "PENDING": JobStatus.PENDING,
    "QUEUED": JobStatus.PENDING,
    "PROCESSING": JobStatus.PROCESSING,
    "IN_PROGRESS": JobStatus.PROCESSING,
    "COMPLETED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
    "REJECTED": JobStatus.FAILED,
    "CANCELED": JobStatus.FAILED,
    "CANCELLED": JobStatus.FAILED,
}


def _coerce_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    raise LipSyncError(f"Expected JSON object from lip-sync provider, got {type(value)!r}")


def normalize_status(raw: Any) -> JobStatus:
    """Map provider status strings onto JobStatus; unknown values keep polling."""
    return _STATUS_MAP.get(str(raw or "").strip().upper(), JobStatus.PROCESSING)


class LipSyncClient:
    """HTTP client for the sync.so v2 generate API.

    Submission posts a video URL and an audio URL; the returned job id is then
    polled at a fixed interval until it completes, fails, or the budget runs out.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        policy: Optional[PollingPolicy] = None,
        request_timeout_seconds: Optional[float] = None,
        output_resolution: Optional[tuple[int, int]] = None,
        fps: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        is_ready: Optional[ReadinessCheck] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        normalized_key = (api_key if api_key is not None else settings.sync_api_key or "").strip()
        if not normalized_key:
            raise ConfigurationError("SYNC_API_KEY is required for lip-sync")

        self._api_key = normalized_key
        self._api_base = (api_base or settings.sync_api_base).rstrip("/")
        self._model = model or settings.sync_model
        self._policy = policy or FixedIntervalPolicy(
            interval_seconds=settings.sync_poll_interval_seconds,
            max_attempts=settings.sync_max_poll_attempts,
        )
        self._output_resolution = output_resolution or (settings.video_width, settings.video_height)
        self._fps = fps or settings.video_fps
        self._is_ready = is_ready
        self._sleep = sleep
        timeout = (
            request_timeout_seconds
            if request_timeout_seconds is not None
            else settings.provider_request_timeout_seconds
        )
        # Keep-alive connections reduce TLS/session setup overhead across polls.
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            http2=True,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def build_payload(self, video_url: str, audio_url: str) -> dict[str, Any]:
        width, height = self._output_resolution
        return {
            "model": self._model,
            "input": [
                {"type": "video", "url": video_url},
                {"type": "audio", "url": audio_url},
            ],
            "options": {
                "output_format": "mp4",
                "sync_mode": "precise",
                "fps": self._fps,
                "output_resolution": [width, height],
                "active_speaker": True,
            },
        }

    async def _request(self, action: str, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send one API call; 429, 5xx and transport errors are LipSyncUnavailableError."""
        try:
            response = await self._http.request(method, url, headers=self.headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            error_cls = LipSyncUnavailableError if status == 429 or status >= 500 else LipSyncError
            raise error_cls(f"Lip-sync {action} failed with status {status}") from exc
        except httpx.HTTPError as exc:
            raise LipSyncUnavailableError(f"Lip-sync {action} request failed: {exc}") from exc

        try:
            return _coerce_dict(response.json())
        except ValueError as exc:
            raise LipSyncError(f"Lip-sync {action} response was not JSON") from exc

    async def submit(self, video_url: str, audio_url: str) -> str:
        """Submit a lip-sync job and return the provider job id.

        A response without an id is a contract violation, not a transient
        fault, so it fails immediately.
        """
        data = await self._request(
            "submit",
            "POST",
            f"{self._api_base}/generate",
            json=self.build_payload(video_url, audio_url),
        )
        job_id = data.get("id")
        if not isinstance(job_id, str) or not job_id.strip():
            raise LipSyncError(f"Lip-sync submit response missing job id: {data}")
        logger.info("Submitted lip-sync job %s", job_id)
        return job_id

    async def get_job(self, job_id: str) -> RemoteJob:
        """Fetch and normalize current status for a submitted job."""
        data = await self._request("status", "GET", f"{self._api_base}/generate/{job_id}")
        result_url = data.get("outputUrl") or data.get("output_url")
        error = data.get("error")
        return RemoteJob(
            job_id=job_id,
            status=normalize_status(data.get("status")),
            result_url=str(result_url).strip() if result_url else None,
            error_detail=str(error) if error else None,
            raw=data,
        )

    async def poll_until_terminal(self, job_id: str) -> str:
        """Poll ``job_id`` and return the lip-synced video URL.

        Raises LipSyncError when the provider reports failure and
        LipSyncTimeoutError when the attempt budget is exhausted.
        """
        try:
            job = await poll_until_terminal(
                job_id,
                lambda: self.get_job(job_id),
                self._policy,
                is_ready=self._is_ready,
                transient=(LipSyncUnavailableError,),
                sleep=self._sleep,
            )
        except PollingTimeout as exc:
            raise LipSyncTimeoutError(
                f"Lip-sync job {job_id} still processing after {exc.attempts} checks"
            ) from exc

        if job.status == JobStatus.FAILED:
            raise LipSyncError(job.error_detail or f"Lip-sync job {job_id} failed")
        assert job.result_url is not None
        return job.result_url

    async def aclose(self) -> None:
        """Close persistent HTTP resources used by this client."""
        await self._http.aclose()

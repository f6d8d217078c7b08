from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from newsanchor.services.errors import (
    ConfigurationError,
    LipSyncError,
    LipSyncTimeoutError,
    LipSyncUnavailableError,
)
from newsanchor.services.lipsync import LipSyncClient, normalize_status
from newsanchor.services.models import JobStatus
from newsanchor.services.polling import FixedIntervalPolicy


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeSyncProvider:
    """Minimal sync.so stand-in serving scripted status payloads."""

    def __init__(self, statuses: list[dict | tuple[int, dict]], submit_body: dict | None = None) -> None:
        self._statuses = statuses
        self._submit_body = submit_body if submit_body is not None else {"id": "job_123"}
        self.submitted: list[dict] = []
        self.status_calls = 0
        self.api_keys: list[str | None] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.api_keys.append(request.headers.get("x-api-key"))
        if request.method == "POST" and request.url.path == "/v2/generate":
            self.submitted.append(json.loads(request.content))
            return httpx.Response(201, json=self._submit_body)
        if request.method == "GET" and request.url.path == "/v2/generate/job_123":
            entry = self._statuses[min(self.status_calls, len(self._statuses) - 1)]
            self.status_calls += 1
            status_code, body = entry if isinstance(entry, tuple) else (200, entry)
            return httpx.Response(status_code, json=body)
        return httpx.Response(404, json={"error": "not found"})


def _client(provider: FakeSyncProvider, sleep: FakeSleep, *, max_attempts: int = 30) -> LipSyncClient:
    return LipSyncClient(
        api_key="sk-test",
        api_base="https://api.sync.so/v2",
        model="lipsync-2.0.0",
        policy=FixedIntervalPolicy(interval_seconds=10, max_attempts=max_attempts),
        output_resolution=(1920, 1080),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
        sleep=sleep,
    )


def test_submit_posts_both_urls_and_sync_options() -> None:
    provider = FakeSyncProvider(statuses=[])
    client = _client(provider, FakeSleep())

    job_id = _run(client.submit("https://cdn.example.com/in.mp4", "https://cdn.example.com/in.mp3"))

    assert job_id == "job_123"
    body = provider.submitted[0]
    assert body["model"] == "lipsync-2.0.0"
    assert body["input"] == [
        {"type": "video", "url": "https://cdn.example.com/in.mp4"},
        {"type": "audio", "url": "https://cdn.example.com/in.mp3"},
    ]
    assert body["options"]["sync_mode"] == "precise"
    assert body["options"]["output_format"] == "mp4"
    assert body["options"]["fps"] == 30
    assert body["options"]["output_resolution"] == [1920, 1080]
    assert provider.api_keys == ["sk-test"]


def test_submit_without_job_id_fails_immediately() -> None:
    provider = FakeSyncProvider(statuses=[], submit_body={"status": "PENDING"})
    client = _client(provider, FakeSleep())

    with pytest.raises(LipSyncError, match="missing job id"):
        _run(client.submit("https://a/video.mp4", "https://a/audio.mp3"))
    assert len(provider.submitted) == 1


def test_submit_http_error_is_lipsync_error() -> None:
    def reject(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid key"}, request=request)

    client = LipSyncClient(
        api_key="sk-test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(reject)),
    )

    with pytest.raises(LipSyncError, match="401"):
        _run(client.submit("https://a/video.mp4", "https://a/audio.mp3"))


def test_completed_on_thirtieth_poll_returns_output_url() -> None:
    statuses = [{"id": "job_123", "status": "PROCESSING"}] * 29 + [
        {"id": "job_123", "status": "COMPLETED", "outputUrl": "https://cdn.example.com/synced.mp4"}
    ]
    provider = FakeSyncProvider(statuses=statuses)
    sleep = FakeSleep()
    client = _client(provider, sleep)

    url = _run(client.poll_until_terminal("job_123"))

    assert url == "https://cdn.example.com/synced.mp4"
    assert provider.status_calls == 30
    assert sleep.delays == [10] * 29


def test_completed_without_output_url_is_not_success() -> None:
    statuses = [
        {"id": "job_123", "status": "COMPLETED"},
        {"id": "job_123", "status": "COMPLETED", "outputUrl": "https://cdn.example.com/late.mp4"},
    ]
    provider = FakeSyncProvider(statuses=statuses)
    client = _client(provider, FakeSleep())

    url = _run(client.poll_until_terminal("job_123"))

    assert url == "https://cdn.example.com/late.mp4"
    assert provider.status_calls == 2


def test_failed_status_surfaces_provider_error() -> None:
    statuses = [
        {"id": "job_123", "status": "PROCESSING"},
        {"id": "job_123", "status": "FAILED", "error": "Face not detected in video"},
    ]
    client = _client(FakeSyncProvider(statuses=statuses), FakeSleep())

    with pytest.raises(LipSyncError, match="Face not detected"):
        _run(client.poll_until_terminal("job_123"))


def test_exhausted_budget_raises_timeout_error() -> None:
    provider = FakeSyncProvider(statuses=[{"id": "job_123", "status": "PROCESSING"}])
    client = _client(provider, FakeSleep())

    with pytest.raises(LipSyncTimeoutError):
        _run(client.poll_until_terminal("job_123"))
    assert provider.status_calls == 30


def test_server_errors_on_status_poll_keep_polling() -> None:
    statuses = [
        {"id": "job_123", "status": "PROCESSING"},
        (503, {"error": "service unavailable"}),
        (429, {"error": "rate limited"}),
        {"id": "job_123", "status": "COMPLETED", "outputUrl": "https://cdn.example.com/synced.mp4"},
    ]
    provider = FakeSyncProvider(statuses=statuses)
    sleep = FakeSleep()

    url = _run(_client(provider, sleep).poll_until_terminal("job_123"))

    assert url == "https://cdn.example.com/synced.mp4"
    assert provider.status_calls == 4
    assert sleep.delays == [10, 10, 10]


def test_persistent_server_errors_use_up_the_budget() -> None:
    provider = FakeSyncProvider(statuses=[(500, {"error": "internal"})])

    with pytest.raises(LipSyncTimeoutError):
        _run(_client(provider, FakeSleep(), max_attempts=5).poll_until_terminal("job_123"))
    assert provider.status_calls == 5


def test_client_error_on_status_poll_is_terminal() -> None:
    provider = FakeSyncProvider(
        statuses=[(403, {"error": "forbidden"}), {"id": "job_123", "status": "COMPLETED"}]
    )

    with pytest.raises(LipSyncError, match="403") as excinfo:
        _run(_client(provider, FakeSleep()).poll_until_terminal("job_123"))

    assert not isinstance(excinfo.value, LipSyncUnavailableError)
    assert provider.status_calls == 1


def test_submit_server_error_is_unavailable() -> None:
    def busy(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "overloaded"}, request=request)

    client = LipSyncClient(
        api_key="sk-test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(busy)),
    )

    with pytest.raises(LipSyncUnavailableError, match="503"):
        _run(client.submit("https://a/video.mp4", "https://a/audio.mp3"))


def test_timeout_and_failure_are_distinct_types() -> None:
    assert not issubclass(LipSyncTimeoutError, LipSyncError)
    assert not issubclass(LipSyncError, LipSyncTimeoutError)


def test_missing_api_key_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        LipSyncClient(api_key="  ")


def test_status_normalization() -> None:
    assert normalize_status("COMPLETED") == JobStatus.COMPLETED
    assert normalize_status("pending") == JobStatus.PENDING
    assert normalize_status("REJECTED") == JobStatus.FAILED
    assert normalize_status("SOMETHING_NEW") == JobStatus.PROCESSING
    assert normalize_status(None) == JobStatus.PROCESSING

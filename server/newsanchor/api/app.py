from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from newsanchor.api.models import ErrorResponse, GenerateVideoRequest, GenerateVideoResponse
from newsanchor.config import settings
from newsanchor.services.errors import (
    AvatarProviderError,
    ConfigurationError,
    ProcessingTimeoutError,
    VideoGenerationError,
)
from newsanchor.services.models import (
    AvatarReference,
    GenerationRequest,
    RemoteAvatar,
    VoiceSelector,
)
from newsanchor.services.pipeline import VideoOrchestrator


logger = logging.getLogger(__name__)

LOCAL_AVATARS = {
    "male": "male.jpg",
    "female": "female.jpg",
}


def _error(status_code: int, message: str, *, details: Optional[str] = None, retryable: bool = False) -> JSONResponse:
    body = ErrorResponse(error=message, details=details, retryable=retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _status_for(exc: VideoGenerationError) -> int:
    if isinstance(exc, ConfigurationError):
        return 400
    if isinstance(exc, ProcessingTimeoutError):
        return 504
    if isinstance(exc, AvatarProviderError) and not exc.retryable:
        return 502
    return 500


def _parse_voice(raw: str) -> Union[VoiceSelector, str]:
    try:
        return VoiceSelector(raw.strip().lower())
    except ValueError:
        return raw.strip()


def resolve_avatar(avatar_id: str, avatar_dir: Optional[Path] = None) -> AvatarReference:
    """Map built-in presenter ids to local images; anything else is a provider id."""
    key = avatar_id.strip()
    filename = LOCAL_AVATARS.get(key.lower())
    if filename is None:
        return RemoteAvatar(avatar_id=key)
    return Path(avatar_dir or settings.avatar_dir) / filename


def create_app(orchestrator: Optional[VideoOrchestrator] = None) -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    init_error: Optional[str] = None
    if orchestrator is None:
        try:
            orchestrator = VideoOrchestrator.from_settings()
        except ConfigurationError as exc:
            # Start anyway so /health can report what is missing.
            logger.error("Video pipelines unavailable: %s", exc)
            init_error = str(exc)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if app.state.orchestrator is not None:
            await app.state.orchestrator.aclose()

    app = FastAPI(title="News Anchor Video Service", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.init_error = init_error

    @app.exception_handler(VideoGenerationError)
    async def video_error_handler(request: Request, exc: VideoGenerationError) -> JSONResponse:
        _ = request
        return _error(_status_for(exc), str(exc), retryable=exc.retryable)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        current: Optional[VideoOrchestrator] = app.state.orchestrator
        return {
            "service": "newsanchor",
            "status": "ok" if current is not None else "degraded",
            "image_avatars": bool(current and current.has_local_pipeline),
            "provider_avatars": bool(current and current.has_remote_pipeline),
            "init_error": app.state.init_error,
        }

    @app.post(
        "/generate-video",
        response_model=GenerateVideoResponse,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    )
    async def generate_video(req: GenerateVideoRequest) -> Union[GenerateVideoResponse, JSONResponse]:
        current: Optional[VideoOrchestrator] = app.state.orchestrator
        if current is None:
            return _error(503, "Video generation is not configured", details=app.state.init_error)

        text = req.text.strip()
        if not text:
            return _error(400, "Text to narrate is required")

        avatar = resolve_avatar(req.avatar_id)
        if isinstance(avatar, Path) and not avatar.is_file():
            return _error(404, "Avatar file not found", details=f"File not found at path: {avatar}")

        request = GenerationRequest(
            source_text=text,
            avatar=avatar,
            voice=_parse_voice(req.voice_type),
            input_reference=req.source_url,
        )
        result, record_id = await current.generate_and_record(request)
        return GenerateVideoResponse(
            video_url=result.video_url,
            used_fallback=result.used_fallback,
            record_id=record_id,
        )

    return app

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerateVideoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., min_length=1, description="Cleaned summary text to be read aloud.")
    avatar_id: str = Field(..., alias="avatarId", min_length=1)
    voice_type: str = Field("female", alias="voiceType", min_length=1)
    source_url: Optional[str] = Field(None, alias="sourceUrl")


class GenerateVideoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    video_url: str = Field(..., alias="videoUrl")
    used_fallback: bool = Field(..., alias="usedFallback")
    record_id: Optional[str] = Field(None, alias="videoSummaryId")


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[str] = None
    retryable: bool = False

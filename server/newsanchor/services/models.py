from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


class VoiceSelector(str, Enum):
    """Closed set of presenter voices exposed to callers."""

    MALE = "male"
    FEMALE = "female"


@dataclass(frozen=True, slots=True)
class RemoteAvatar:
    """Avatar hosted by an avatar-as-a-service provider."""

    avatar_id: str


AvatarReference = Union[Path, RemoteAvatar]


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Immutable input to one pipeline run.

    ``voice`` is either a :class:`VoiceSelector` or a provider-specific voice id.
    ``input_reference`` identifies the source (e.g. article URL) for result recording.
    """

    source_text: str
    avatar: AvatarReference
    voice: Union[VoiceSelector, str] = VoiceSelector.FEMALE
    input_reference: Optional[str] = None

    @property
    def uses_remote_avatar(self) -> bool:
        return isinstance(self.avatar, RemoteAvatar)


@dataclass(slots=True)
class AudioArtifact:
    file_path: Path
    duration_seconds: float = 0.0


@dataclass(slots=True)
class BaselineVideoArtifact:
    file_path: Path


class JobStatus(str, Enum):
    """Normalized state of an asynchronous provider job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


@dataclass(slots=True)
class RemoteJob:
    """Normalized representation of a provider job status payload."""

    job_id: str
    status: JobStatus
    result_url: Optional[str] = None
    error_detail: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


@dataclass(frozen=True, slots=True)
class GenerationResult:
    video_url: str
    used_fallback: bool

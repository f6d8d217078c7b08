from __future__ import annotations


class VideoGenerationError(RuntimeError):
    """Base class for every failure surfaced by the video pipeline.

    ``retryable`` tells the HTTP layer whether offering the user a retry makes
    sense (network-flavored faults, or a job that may still finish server-side).
    """

    retryable: bool = False


class ConfigurationError(VideoGenerationError):
    """Raised when a credential or provider setting is missing or invalid."""


class SpeechSynthesisError(VideoGenerationError):
    """Raised when the speech-synthesis provider rejects or fails a request."""

    retryable = True


class UploadError(VideoGenerationError):
    """Raised when a local file could not be pushed to durable storage."""

    retryable = True


class CompositionError(VideoGenerationError):
    """Raised when the media encoder fails to build the baseline video."""


class LipSyncError(VideoGenerationError):
    """Raised when the lip-sync provider reports a failed job or rejects submission."""

    retryable = True


class LipSyncUnavailableError(LipSyncError):
    """Raised when the lip-sync provider is rate limiting, erroring, or unreachable."""


class LipSyncTimeoutError(VideoGenerationError):
    """Raised when a lip-sync job does not finish within its poll budget."""

    retryable = True


class FallbackError(VideoGenerationError):
    """Raised when the procedural fallback animation cannot be produced."""

    retryable = True


class AvatarProviderError(VideoGenerationError):
    """Raised when the avatar-as-a-service provider reports a failed job."""


class ProcessingTimeoutError(VideoGenerationError):
    """Raised when a provider job is still running after the poll budget.

    The job may still complete on the provider side, so callers should present
    this as "try refreshing" rather than as a hard failure.
    """

    retryable = True


class AvatarProviderUnavailableError(AvatarProviderError):
    """Raised when the avatar provider could not be reached at all."""

    retryable = True

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import texttospeech

from newsanchor.config import settings
from newsanchor.services.errors import ConfigurationError, SpeechSynthesisError
from newsanchor.services.media import (
    CommandRunner,
    MediaCommandError,
    probe_duration,
    remove_files,
    run_media_command,
    scratch_path,
)
from newsanchor.services.models import AudioArtifact, VoiceSelector


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VoiceConfig:
    name: str
    language_code: str
    gender: texttospeech.SsmlVoiceGender


def default_voice_map() -> dict[VoiceSelector, VoiceConfig]:
    """Neural voices for the configured locale, one per selector."""
    return {
        VoiceSelector.MALE: VoiceConfig(
            name=settings.tts_male_voice,
            language_code=settings.tts_language_code,
            gender=texttospeech.SsmlVoiceGender.MALE,
        ),
        VoiceSelector.FEMALE: VoiceConfig(
            name=settings.tts_female_voice,
            language_code=settings.tts_language_code,
            gender=texttospeech.SsmlVoiceGender.FEMALE,
        ),
    }


class SpeechSynthesizer:
    """Turns cleaned text into an MP3 in the scratch directory.

    The caller owns the returned file and must delete it. Text quality is not
    re-checked here; only emptiness is rejected.
    """

    def __init__(
        self,
        *,
        client: Optional[Any] = None,
        scratch_dir: Optional[Path] = None,
        voices: Optional[dict[VoiceSelector, VoiceConfig]] = None,
        speaking_rate: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        default_duration_seconds: Optional[float] = None,
        ffprobe_binary: Optional[str] = None,
        runner: CommandRunner = run_media_command,
    ) -> None:
        self._client = client if client is not None else self._build_default_client()
        self._scratch_dir = Path(scratch_dir or settings.scratch_dir)
        self._voices = voices if voices is not None else default_voice_map()
        self._speaking_rate = speaking_rate if speaking_rate is not None else settings.tts_speaking_rate
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.provider_request_timeout_seconds
        )
        self._default_duration_seconds = (
            default_duration_seconds
            if default_duration_seconds is not None
            else settings.default_audio_duration_seconds
        )
        self._ffprobe_binary = ffprobe_binary or settings.ffprobe_binary
        self._runner = runner

    @staticmethod
    def _build_default_client() -> texttospeech.TextToSpeechClient:
        try:
            return texttospeech.TextToSpeechClient()
        except DefaultCredentialsError as exc:
            raise ConfigurationError(
                "Google Cloud credentials not found. Set GOOGLE_APPLICATION_CREDENTIALS."
            ) from exc

    def resolve_voice(self, voice: Union[VoiceSelector, str]) -> VoiceConfig:
        """Map a selector (or explicit engine voice name) to a voice config."""
        if isinstance(voice, str) and not isinstance(voice, VoiceSelector):
            try:
                voice = VoiceSelector(voice.strip().lower())
            except ValueError:
                language_code = settings.tts_language_code
                if voice.startswith(f"{language_code}-"):
                    return VoiceConfig(
                        name=voice,
                        language_code=language_code,
                        gender=texttospeech.SsmlVoiceGender.SSML_VOICE_GENDER_UNSPECIFIED,
                    )
                raise ConfigurationError(f"Unknown voice selector: {voice!r}") from None
        config = self._voices.get(voice)
        if config is None:
            raise ConfigurationError(f"No synthesis voice configured for {voice.value!r}")
        return config

    async def synthesize(self, text: str, voice: Union[VoiceSelector, str]) -> AudioArtifact:
        if not text or not text.strip():
            raise ValueError("text must be non-empty")
        config = self.resolve_voice(voice)

        request = texttospeech.SynthesizeSpeechRequest(
            input=texttospeech.SynthesisInput(text=text),
            voice=texttospeech.VoiceSelectionParams(
                language_code=config.language_code,
                name=config.name,
                ssml_gender=config.gender,
            ),
            audio_config=texttospeech.AudioConfig(
                audio_encoding=texttospeech.AudioEncoding.MP3,
                pitch=0.0,
                speaking_rate=self._speaking_rate,
            ),
        )

        logger.info("Synthesizing %d chars with voice %s", len(text), config.name)
        try:
            response = await asyncio.to_thread(
                self._client.synthesize_speech,
                request=request,
                timeout=self._timeout_seconds,
            )
        except GoogleAPIError as exc:
            raise SpeechSynthesisError(f"Speech synthesis failed: {exc}") from exc

        audio_content = getattr(response, "audio_content", b"")
        if not audio_content:
            raise SpeechSynthesisError("Speech synthesis returned no audio content")

        audio_path = scratch_path(self._scratch_dir, prefix="speech", suffix=".mp3")
        try:
            await asyncio.to_thread(audio_path.write_bytes, audio_content)
        except OSError as exc:
            remove_files([audio_path])
            raise SpeechSynthesisError(f"Could not write synthesized audio: {exc}") from exc
        return AudioArtifact(file_path=audio_path)

    async def measure_duration(self, artifact: AudioArtifact) -> float:
        """Probe the audio length, falling back to a conservative default.

        Duration only drives video length, so a plausible default beats
        aborting the run when probing fails.
        """
        try:
            duration = await probe_duration(
                artifact.file_path,
                ffprobe_binary=self._ffprobe_binary,
                runner=self._runner,
            )
        except (MediaCommandError, ValueError) as exc:
            logger.warning(
                "Could not probe %s (%s); using default %.1fs",
                artifact.file_path,
                exc,
                self._default_duration_seconds,
            )
            duration = self._default_duration_seconds
        if duration <= 0:
            duration = self._default_duration_seconds
        artifact.duration_seconds = duration
        return duration

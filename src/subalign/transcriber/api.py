"""Speech-to-text service boundary.

The core only depends on :class:`TranscriptionService`: submit the bytes of
one WAV clip, get back its text, and see failures classified as transient
or permanent. :class:`LiteLLMTranscriptionService` implements it with
litellm.transcription() against cloud Whisper APIs (OpenAI, Groq, etc.).
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Protocol

from subalign.core.config import TranscriptionConfig
from subalign.core.errors import PermanentTranscriptionError, TransientTranscriptionError

# 25 MB limit for OpenAI/Groq Whisper API
_MAX_FILE_SIZE = 25 * 1024 * 1024

_TRANSIENT_STATUS = {408, 409, 425, 429}

_PERMANENT_NAMES = (
    "AuthenticationError",
    "PermissionDeniedError",
    "BadRequestError",
    "NotFoundError",
)
_TRANSIENT_NAMES = (
    "RateLimitError",
    "Timeout",
    "APIConnectionError",
    "ServiceUnavailableError",
    "InternalServerError",
)


@dataclass(frozen=True)
class TranscriptResult:
    """Service output for one clip. Times are clip-relative; None if unknown."""

    text: str
    start: float | None = None
    end: float | None = None


class TranscriptionService(Protocol):
    """External speech-to-text capability.

    ``submit`` raises only TransientTranscriptionError or
    PermanentTranscriptionError.
    """

    engine_version: str

    def submit(self, audio_bytes: bytes, language_hint: str | None) -> TranscriptResult: ...


class LiteLLMTranscriptionService:
    """Transcribe WAV clips through a LiteLLM-supported Whisper API."""

    def __init__(self, config: TranscriptionConfig) -> None:
        try:
            import litellm
        except ImportError:
            raise ImportError("litellm is not installed. Install with: pip install 'subalign[api]'")

        # Drop unsupported top-level params; pass timestamp_granularities via
        # extra_body so it reaches providers that support it (e.g. Groq, OpenAI)
        litellm.drop_params = True
        self._litellm = litellm
        self.config = config
        self.engine_version = config.engine_version or f"litellm:{config.model}"

    def submit(self, audio_bytes: bytes, language_hint: str | None) -> TranscriptResult:
        if not audio_bytes:
            raise PermanentTranscriptionError("empty audio clip")
        if len(audio_bytes) > _MAX_FILE_SIZE:
            size_mb = len(audio_bytes) / (1024 * 1024)
            raise PermanentTranscriptionError(
                f"Audio clip is {size_mb:.1f} MB, exceeding the 25 MB API limit"
            )

        call_kwargs: dict = {
            "model": self.config.model,
            "response_format": "verbose_json",
            "timeout": self.config.timeout,
            "extra_body": {"timestamp_granularities": ["word"]},
        }
        language = language_hint or self.config.language
        if language:
            call_kwargs["language"] = language
        if self.config.api_base:
            call_kwargs["api_base"] = self.config.api_base

        clip = io.BytesIO(audio_bytes)
        clip.name = "clip.wav"
        try:
            response = self._litellm.transcription(file=clip, **call_kwargs)
        except Exception as e:
            raise classify_error(e, self._litellm) from e

        return response_to_result(response)


def classify_error(exc: Exception, litellm) -> Exception:
    """Map a litellm/network exception to a transient or permanent error."""
    message = f"{type(exc).__name__}: {exc}"

    permanent = _exception_types(litellm, _PERMANENT_NAMES)
    transient = _exception_types(litellm, _TRANSIENT_NAMES) + (TimeoutError, ConnectionError)
    if isinstance(exc, permanent):
        return PermanentTranscriptionError(message)
    if isinstance(exc, transient):
        return TransientTranscriptionError(message)

    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and (status in _TRANSIENT_STATUS or status >= 500):
        return TransientTranscriptionError(message)
    return PermanentTranscriptionError(message)


def _exception_types(module, names: tuple[str, ...]) -> tuple[type, ...]:
    """Exception classes exported by ``module`` under ``names`` (missing ones skipped)."""
    found = (getattr(module, name, None) for name in names)
    return tuple(t for t in found if isinstance(t, type))


def response_to_result(response) -> TranscriptResult:
    """Convert a LiteLLM transcription response to a TranscriptResult.

    Timing comes from word-level timestamps when present, otherwise from
    segment-level timestamps; the text falls back to joined segments.
    """
    # LiteLLM returns a TranscriptionResponse; extract the inner dict
    data = response.model_dump() if hasattr(response, "model_dump") else response

    text = (_get(data, "text", "") or "").strip()
    timed = _get(data, "words") or _get(data, "segments") or []
    timed = [item for item in timed if _get(item, "start") is not None]

    if not text:
        raw_segments = _get(data, "segments") or []
        text = " ".join(
            _get(seg, "text", "").strip() for seg in raw_segments if _get(seg, "text", "").strip()
        )

    if not timed:
        return TranscriptResult(text=text)
    return TranscriptResult(
        text=text,
        start=float(_get(timed[0], "start", 0)),
        end=float(_get(timed[-1], "end", 0)),
    )


def _get(obj, key: str, default=None):
    """Get a value from a dict or object attribute."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)

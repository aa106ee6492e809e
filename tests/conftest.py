"""Shared test fixtures."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable

import numpy as np
import pytest

from subalign.transcriber.api import TranscriptResult
from subalign.utils.cache import content_hash

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_RATE = 16000


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_fr_srt(fixtures_dir: Path) -> Path:
    return fixtures_dir / "sample.fr.srt"


@pytest.fixture
def sample_en_srt(fixtures_dir: Path) -> Path:
    return fixtures_dir / "sample.en.srt"


@pytest.fixture
def sample_vtt(fixtures_dir: Path) -> Path:
    return fixtures_dir / "sample.vtt"


@pytest.fixture
def sample_ass(fixtures_dir: Path) -> Path:
    return fixtures_dir / "sample.ass"


class FakeService:
    """In-memory transcription service that records every call.

    ``responder(audio_bytes, call_number)`` may return a TranscriptResult
    or raise a transcription error; by default each clip gets a text
    derived from its content hash.
    """

    engine_version = "fake-engine-1"

    def __init__(
        self,
        responder: Callable[[bytes, int], TranscriptResult] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responder = responder
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.languages: list[str | None] = []
        self._lock = threading.Lock()

    def submit(self, audio_bytes: bytes, language_hint: str | None) -> TranscriptResult:
        with self._lock:
            self.calls += 1
            number = self.calls
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.languages.append(language_hint)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.responder is not None:
                return self.responder(audio_bytes, number)
            return TranscriptResult(text=f"clip {content_hash(audio_bytes)[:8]}")
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def fake_service() -> FakeService:
    return FakeService()


@pytest.fixture
def service_factory() -> type[FakeService]:
    return FakeService


def _audio(parts: list[tuple], sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Build int16 audio from (seconds, is_tone[, frequency]) parts.

    Tones default to 440 Hz; pass a frequency to make bursts differ.
    """
    chunks = []
    for seconds, is_tone, *rest in parts:
        n = int(round(seconds * sample_rate))
        if is_tone:
            frequency = rest[0] if rest else 440.0
            t = np.arange(n) / sample_rate
            chunks.append((np.sin(2 * np.pi * frequency * t) * 0.5 * 32767).astype(np.int16))
        else:
            chunks.append(np.zeros(n, dtype=np.int16))
    return np.concatenate(chunks) if chunks else np.zeros(0, dtype=np.int16)


@pytest.fixture
def make_audio() -> Callable[..., np.ndarray]:
    return _audio

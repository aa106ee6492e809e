"""Tests for bounded-parallel interval transcription."""

import time
from pathlib import Path

import numpy as np
import pytest

from subalign.core.errors import PermanentTranscriptionError, TranscriptionCancelled
from subalign.core.events import CancellationToken, PipelineEvent
from subalign.core.models import SpeechInterval
from subalign.transcriber.api import TranscriptResult
from subalign.transcriber.cache import TranscriptionCache
from subalign.transcriber.client import TranscriptionClient
from subalign.transcriber.dispatch import transcribe_intervals
from subalign.utils.audio import slice_samples, wav_bytes
from subalign.utils.cache import content_hash

SR = 16000


@pytest.fixture
def audio() -> np.ndarray:
    # A ramp, so every slice has distinct bytes (and a distinct hash).
    return (np.arange(SR * 10) % 30000).astype(np.int16)


def _intervals(n: int) -> list[SpeechInterval]:
    return [SpeechInterval(start=float(i), end=i + 0.5) for i in range(n)]


def test_results_follow_interval_order(audio, service_factory):
    def respond(audio_bytes: bytes, n: int) -> TranscriptResult:
        # Finish in scrambled order.
        time.sleep((int(content_hash(audio_bytes)[:2], 16) % 5) * 0.01)
        return TranscriptResult(text=f"call {n}", start=0.1, end=0.4)

    service = service_factory(responder=respond)
    intervals = _intervals(8)
    client = TranscriptionClient(service)
    run = transcribe_intervals(audio, SR, intervals, client, max_concurrency=4)

    assert run.complete
    assert [s.start for s in run.segments] == pytest.approx([i + 0.1 for i in range(8)])
    assert [s.end for s in run.segments] == pytest.approx([i + 0.4 for i in range(8)])


def test_concurrency_is_capped(audio, service_factory):
    service = service_factory(delay=0.05)
    run = transcribe_intervals(
        audio, SR, _intervals(8), TranscriptionClient(service), max_concurrency=2
    )
    assert len(run.segments) == 8
    assert service.calls == 8
    assert 1 <= service.max_in_flight <= 2


def test_invalid_concurrency(audio, fake_service):
    with pytest.raises(ValueError):
        transcribe_intervals(
            audio, SR, _intervals(1), TranscriptionClient(fake_service), max_concurrency=0
        )


def test_no_intervals(audio, fake_service):
    run = transcribe_intervals(audio, SR, [], TranscriptionClient(fake_service))
    assert run.segments == []
    assert run.complete
    assert fake_service.calls == 0


def test_language_hint_reaches_service(audio, fake_service):
    transcribe_intervals(audio, SR, _intervals(2), TranscriptionClient(fake_service), "fr")
    assert fake_service.languages == ["fr", "fr"]


def test_failures_are_collected(audio, service_factory):
    bad = content_hash(wav_bytes(slice_samples(audio, SR, 2.0, 2.5), SR))

    def respond(audio_bytes: bytes, n: int) -> TranscriptResult:
        if content_hash(audio_bytes) == bad:
            raise PermanentTranscriptionError("unsupported audio")
        return TranscriptResult(text="ok")

    intervals = _intervals(4)
    client = TranscriptionClient(service_factory(responder=respond))
    run = transcribe_intervals(audio, SR, intervals, client)

    assert len(run.segments) == 3
    assert [f.index for f in run.failures] == [2]
    assert run.failures[0].interval == intervals[2]
    assert not run.complete
    with pytest.raises(PermanentTranscriptionError) as exc_info:
        run.raise_for_failures()
    assert exc_info.value.segment_index == 2


def test_cancelled_before_start(audio, fake_service):
    token = CancellationToken()
    token.cancel()
    client = TranscriptionClient(fake_service)
    run = transcribe_intervals(audio, SR, _intervals(3), client, cancel=token)
    assert run.cancelled
    assert run.segments == []
    assert run.skipped == [0, 1, 2]
    assert fake_service.calls == 0
    with pytest.raises(TranscriptionCancelled):
        run.raise_for_failures()


def test_cancel_stops_new_requests(audio, service_factory):
    token = CancellationToken()

    def respond(audio_bytes: bytes, n: int) -> TranscriptResult:
        token.cancel()
        return TranscriptResult(text="first")

    service = service_factory(responder=respond)
    run = transcribe_intervals(
        audio, SR, _intervals(5), TranscriptionClient(service), max_concurrency=1, cancel=token
    )
    assert service.calls == 1
    assert [s.text for s in run.segments] == ["first"]
    assert run.skipped == [1, 2, 3, 4]
    assert run.cancelled


def test_progress_events(audio, fake_service):
    events: list[PipelineEvent] = []
    transcribe_intervals(
        audio, SR, _intervals(3), TranscriptionClient(fake_service), on_event=events.append
    )
    assert all(e.stage == "transcribe" for e in events)
    assert events[0].progress == 0.0
    assert events[-1].progress == 1.0
    assert len(events) == 4


def test_rerun_on_identical_audio_hits_cache(tmp_path: Path, service_factory, make_audio):
    clip = make_audio([(3.0, True)])
    interval = [SpeechInterval(start=0.0, end=3.0)]
    path = tmp_path / "transcripts.sqlite3"

    first = service_factory()
    with TranscriptionCache(path) as cache:
        run = transcribe_intervals(clip, SR, interval, TranscriptionClient(first, cache=cache))
        assert cache.writes == 1
    assert first.calls == 1
    assert run.segments[0].end == pytest.approx(3.0)

    second = service_factory()
    with TranscriptionCache(path) as cache:
        again = transcribe_intervals(clip, SR, interval, TranscriptionClient(second, cache=cache))
        assert cache.hits == 1
        assert cache.writes == 0
    assert second.calls == 0
    assert again.segments == run.segments

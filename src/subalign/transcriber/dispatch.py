"""Bounded-parallel transcription of speech intervals.

Each interval is cut from the sample buffer, encoded as a WAV clip and
handed to the TranscriptionClient on a thread pool whose size caps the
number of simultaneous external calls. Results are re-ordered by interval
index; completion order never affects the output.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from rich.markup import escape

from subalign.core.errors import TranscriptionCancelled, TranscriptionError
from subalign.core.events import CancellationToken, EventCallback, PipelineEvent
from subalign.core.models import SpeechInterval, TranscriptSegment
from subalign.transcriber.client import TranscriptionClient
from subalign.utils.audio import slice_samples, wav_bytes
from subalign.utils.console import console


@dataclass
class SegmentFailure:
    """A speech interval whose transcription failed."""

    index: int
    interval: SpeechInterval
    error: TranscriptionError


@dataclass
class TranscriptionRun:
    """Outcome of transcribing a list of intervals.

    Attributes:
        segments: Successful transcripts in interval order, absolute times.
        failures: Intervals that failed, in interval order.
        skipped: Indices never transcribed because the run was cancelled.
        cancelled: Whether cancellation was requested during the run.
    """

    segments: list[TranscriptSegment] = field(default_factory=list)
    failures: list[SegmentFailure] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    cancelled: bool = False

    @property
    def complete(self) -> bool:
        return not self.failures and not self.skipped

    def raise_for_failures(self) -> None:
        """Raise the first failure (with its segment index), if any."""
        if self.failures:
            failure = self.failures[0]
            failure.error.segment_index = failure.index
            raise failure.error
        if self.skipped:
            raise TranscriptionCancelled("run cancelled", segment_index=self.skipped[0])


def transcribe_intervals(
    samples: np.ndarray,
    sample_rate: int,
    intervals: Sequence[SpeechInterval],
    client: TranscriptionClient,
    language_hint: str | None = None,
    max_concurrency: int = 4,
    cancel: CancellationToken | None = None,
    on_event: EventCallback | None = None,
) -> TranscriptionRun:
    """Transcribe every interval with at most ``max_concurrency`` calls in flight.

    Args:
        samples: Mono int16 audio the intervals refer to.
        sample_rate: Sample rate of ``samples``.
        intervals: Speech intervals, in timeline order.
        client: Client shared by all workers of this run.
        language_hint: Language passed to the service.
        max_concurrency: Worker pool size.
        cancel: Run-level cancellation token.
        on_event: Optional progress callback.

    Returns:
        A TranscriptionRun; failures are collected, not raised.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")
    cancel = cancel or CancellationToken()
    total = len(intervals)

    def emit(progress: float, message: str, data: dict | None = None) -> None:
        if on_event:
            on_event(
                PipelineEvent(stage="transcribe", progress=progress, message=message, data=data)
            )

    def work(interval: SpeechInterval) -> TranscriptSegment | None:
        if cancel.cancelled:
            return None
        clip_samples = slice_samples(samples, sample_rate, interval.start, interval.end)
        clip = wav_bytes(clip_samples, sample_rate)
        segment = client.transcribe(clip, language_hint, cancel)
        return segment.shifted(interval.start)

    results: dict[int, TranscriptSegment] = {}
    failures: dict[int, SegmentFailure] = {}
    skipped: list[int] = []

    emit(0.0, f"Transcribing {total} segments...")
    with ThreadPoolExecutor(max_workers=max_concurrency) as executor:
        futures = {executor.submit(work, interval): i for i, interval in enumerate(intervals)}
        for done, future in enumerate(as_completed(futures), 1):
            index = futures[future]
            try:
                segment = future.result()
            except TranscriptionCancelled:
                skipped.append(index)
            except TranscriptionError as e:
                failures[index] = SegmentFailure(index=index, interval=intervals[index], error=e)
                console.print(f"[yellow]Segment {index} failed:[/yellow] {escape(str(e))}")
            else:
                if segment is None:
                    skipped.append(index)
                else:
                    results[index] = segment
            emit(done / total, f"Transcribed {done}/{total}", {"index": index})

    if skipped:
        console.print(f"[dim]Cancelled: {len(skipped)} segments not transcribed.[/dim]")

    return TranscriptionRun(
        segments=[results[i] for i in sorted(results)],
        failures=[failures[i] for i in sorted(failures)],
        skipped=sorted(skipped),
        cancelled=cancel.cancelled,
    )

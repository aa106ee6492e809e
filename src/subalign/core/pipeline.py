"""Pipeline orchestrator: parse both tracks, then align them."""

from __future__ import annotations

from pathlib import Path

import numpy as np
from rich.markup import escape

from subalign.alignment.engine import align
from subalign.core.config import SubalignConfig, load_config
from subalign.core.errors import CacheIOError, TranscriptionCancelled
from subalign.core.events import CancellationToken, EventCallback, PipelineEvent
from subalign.core.models import AlignedPair, SubtitleDocument
from subalign.subtitles.converter import transcript_to_document
from subalign.subtitles.parsers import load_subtitles
from subalign.transcriber.api import LiteLLMTranscriptionService, TranscriptionService
from subalign.transcriber.cache import TranscriptionCache
from subalign.transcriber.client import TranscriptionClient
from subalign.transcriber.dispatch import transcribe_intervals
from subalign.transcriber.vad import segment
from subalign.utils.audio import extract_audio_cached, is_pcm_wav, read_wav
from subalign.utils.console import console


def load_audio(audio_path: Path, config: SubalignConfig) -> tuple[np.ndarray, int]:
    """Load mono int16 samples, extracting with ffmpeg unless already a matching WAV."""
    audio_path = Path(audio_path)
    if not audio_path.is_file():
        raise FileNotFoundError(f"Audio file not found: {audio_path}")

    sample_rate = config.segmenter.sample_rate
    if is_pcm_wav(audio_path, sample_rate):
        return read_wav(audio_path)

    console.print(f"[bold]Extracting audio:[/bold] {escape(str(audio_path))}")
    wav_path, cache_hit = extract_audio_cached(audio_path, config.workspace_dir, sample_rate)
    if cache_hit:
        console.print("[dim]Audio found in cache.[/dim]")
    return read_wav(wav_path)


def open_cache(config: SubalignConfig) -> TranscriptionCache | None:
    """Open the run's transcription cache, or None if disabled or unavailable."""
    if not config.cache.enabled:
        return None
    try:
        return TranscriptionCache(config.cache_path)
    except CacheIOError as e:
        console.print(
            "[yellow]Transcription cache unavailable, continuing without it:[/yellow] "
            f"{escape(str(e))}"
        )
        return None


def acquire_transcript(
    audio_path: Path,
    config: SubalignConfig,
    cache: TranscriptionCache | None = None,
    service: TranscriptionService | None = None,
    cancel: CancellationToken | None = None,
    on_event: EventCallback | None = None,
) -> SubtitleDocument:
    """Turn an audio track into a transcript document.

    Args:
        audio_path: WAV file, or any media ffmpeg can read.
        config: Full application config.
        cache: Transcription cache handle for this run, if any.
        service: Speech-to-text service; LiteLLM-backed when None.
        cancel: Run-level cancellation token.
        on_event: Optional callback for streaming progress events.

    Raises:
        TranscriptionCancelled: If the run was cancelled.
        TranscriptionError: On failed segments unless transcription.allow_partial.
    """

    def emit(stage: str, progress: float, message: str, data: dict | None = None) -> None:
        if on_event:
            on_event(PipelineEvent(stage=stage, progress=progress, message=message, data=data))

    emit("audio", 0.0, "Loading audio...")
    samples, sample_rate = load_audio(audio_path, config)
    emit("audio", 1.0, "Audio ready")

    emit("segment", 0.0, "Detecting speech...")
    intervals = segment(samples, sample_rate, config.segmenter)
    console.print(f"[bold]Speech segments:[/bold] {len(intervals)}")
    emit("segment", 1.0, f"{len(intervals)} speech segments", {"count": len(intervals)})

    if service is None:
        service = LiteLLMTranscriptionService(config.transcription)
    client = TranscriptionClient(service, cache=cache, config=config.transcription)

    run = transcribe_intervals(
        samples,
        sample_rate,
        intervals,
        client,
        language_hint=config.transcription.language,
        max_concurrency=config.transcription.max_concurrency,
        cancel=cancel,
        on_event=on_event,
    )

    if run.cancelled:
        first_skipped = run.skipped[0] if run.skipped else None
        raise TranscriptionCancelled("run cancelled", segment_index=first_skipped)
    if run.failures:
        if not config.transcription.allow_partial:
            run.raise_for_failures()
        console.print(
            f"[yellow]{len(run.failures)} of {len(intervals)} segments failed; "
            "continuing with a partial transcript.[/yellow]"
        )

    console.print(
        f"[green]Transcription complete:[/green] {len(run.segments)} segments "
        f"({client.calls} service calls)"
    )
    return transcript_to_document(
        run.segments,
        source=str(audio_path),
        language=config.transcription.language,
    )


def run_alignment(
    left_path: Path,
    right_path: Path | None = None,
    audio_path: Path | None = None,
    config: SubalignConfig | None = None,
    service: TranscriptionService | None = None,
    cancel: CancellationToken | None = None,
    on_event: EventCallback | None = None,
) -> list[AlignedPair]:
    """Align a subtitle file with a second subtitle file or an audio transcript.

    Args:
        left_path: Primary subtitle file.
        right_path: Second subtitle file; when None the second track is
            transcribed from ``audio_path``.
        audio_path: Audio or video used when ``right_path`` is None.
        config: Full application config; loaded from all layers when None.
        service: Speech-to-text service override.
        cancel: Run-level cancellation token.
        on_event: Optional callback for streaming progress events.

    Returns:
        The aligned pair sequence.
    """
    if right_path is None and audio_path is None:
        raise ValueError("Either right_path or audio_path is required")
    config = config or load_config()

    def emit(stage: str, progress: float, message: str, data: dict | None = None) -> None:
        if on_event:
            on_event(PipelineEvent(stage=stage, progress=progress, message=message, data=data))

    emit("parse", 0.0, f"Parsing {left_path}")
    left = load_subtitles(left_path)
    console.print(
        f"[bold]Loaded:[/bold] {escape(str(left_path))} "
        f"({len(left)} cues, language: {left.language or 'unknown'})"
    )

    if right_path is not None:
        right = load_subtitles(right_path)
        console.print(
            f"[bold]Loaded:[/bold] {escape(str(right_path))} "
            f"({len(right)} cues, language: {right.language or 'unknown'})"
        )
        emit("parse", 1.0, "Subtitles parsed")
    else:
        emit("parse", 1.0, "Subtitles parsed")
        cache = open_cache(config)
        try:
            right = acquire_transcript(
                audio_path,
                config,
                cache=cache,
                service=service,
                cancel=cancel,
                on_event=on_event,
            )
        finally:
            if cache is not None:
                cache.close()

    emit("align", 0.0, "Aligning...")
    pairs = align(left, right, config.alignment)
    matched = sum(1 for pair in pairs if pair.is_match)
    console.print(
        f"[green]Aligned:[/green] {matched} pairs, "
        f"{sum(1 for p in pairs if p.is_deletion)} left-only, "
        f"{sum(1 for p in pairs if p.is_insertion)} right-only"
    )
    emit("align", 1.0, "Alignment complete", {"pairs": len(pairs), "matched": matched})
    return pairs

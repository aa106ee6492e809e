"""Voice-activity segmentation.

Splits raw audio into speech intervals: fixed-size frames are classified as
speech / non-speech, adjacent speech frames are merged into runs, and each
run is padded so that transcription does not clip speech onsets or
offsets. The classifier itself is pluggable; WebRTC VAD is the default and
an energy threshold is available where WebRTC's frame constraints do not
fit.
"""

from __future__ import annotations

import math
from typing import Protocol

import numpy as np

from subalign.core.config import SegmenterConfig
from subalign.core.models import SpeechInterval
from subalign.utils.audio import to_int16


class VoiceActivityClassifier(Protocol):
    """Classifies a single int16 frame as speech or not."""

    def is_speech(self, frame: np.ndarray, sample_rate: int) -> bool: ...


class EnergyClassifier:
    """Speech when the frame's RMS level reaches ``threshold_db`` dBFS."""

    def __init__(self, threshold_db: float = -35.0) -> None:
        self.threshold_db = threshold_db

    def is_speech(self, frame: np.ndarray, sample_rate: int) -> bool:
        normalized = frame.astype(np.float64) / 32768.0
        rms = math.sqrt(float(np.mean(normalized**2))) if len(normalized) else 0.0
        if rms <= 0.0:
            return False
        return 20.0 * math.log10(rms) >= self.threshold_db


class WebRtcClassifier:
    """WebRTC voice-activity detector (16-bit mono PCM, 10/20/30 ms frames)."""

    SAMPLE_RATES = (8000, 16000, 32000, 48000)
    FRAME_MS = (10, 20, 30)

    def __init__(self, aggressiveness: int = 2) -> None:
        try:
            import webrtcvad
        except ImportError:
            raise ImportError(
                "webrtcvad is not installed. Install with: pip install webrtcvad-wheels"
            )

        self._vad = webrtcvad.Vad(aggressiveness)

    def is_speech(self, frame: np.ndarray, sample_rate: int) -> bool:
        if sample_rate not in self.SAMPLE_RATES:
            raise ValueError(f"WebRTC VAD does not support {sample_rate} Hz audio")
        if not any(len(frame) * 1000 == ms * sample_rate for ms in self.FRAME_MS):
            raise ValueError(f"WebRTC VAD needs 10, 20 or 30 ms frames, got {len(frame)} samples")
        return self._vad.is_speech(frame.astype("<i2").tobytes(), sample_rate)


def make_classifier(config: SegmenterConfig) -> VoiceActivityClassifier:
    """Build the classifier named by ``config.backend``."""
    if config.backend == "webrtc":
        return WebRtcClassifier(config.aggressiveness)
    if config.backend == "energy":
        return EnergyClassifier(config.energy_threshold_db)
    raise ValueError(f"Unknown VAD backend: {config.backend!r}")


def _classify_frames(
    samples: np.ndarray,
    sample_rate: int,
    frame_len: int,
    classifier: VoiceActivityClassifier,
) -> list[bool]:
    flags = []
    for offset in range(0, len(samples), frame_len):
        frame = samples[offset : offset + frame_len]
        if len(frame) < frame_len:
            frame = np.pad(frame, (0, frame_len - len(frame)))
        flags.append(bool(classifier.is_speech(frame, sample_rate)))
    return flags


def segment(
    samples: np.ndarray,
    sample_rate: int,
    config: SegmenterConfig | None = None,
    classifier: VoiceActivityClassifier | None = None,
) -> list[SpeechInterval]:
    """Convert raw mono samples into ordered speech intervals.

    Args:
        samples: Mono audio, int16 or float in [-1, 1].
        sample_rate: Sample rate in Hz.
        config: Segmenter settings; defaults apply when None.
        classifier: Frame classifier; built from ``config`` when None.

    Returns:
        Padded, non-overlapping speech intervals sorted by start time.
    """
    config = config or SegmenterConfig()
    samples = to_int16(samples)
    if samples.ndim != 1:
        raise ValueError("segment() expects mono audio")
    if sample_rate <= 0:
        raise ValueError(f"Invalid sample rate: {sample_rate}")
    frame_len = sample_rate * config.frame_ms // 1000
    if frame_len <= 0:
        raise ValueError(f"Frame of {config.frame_ms} ms is empty at {sample_rate} Hz")
    if len(samples) == 0:
        return []

    classifier = classifier or make_classifier(config)
    flags = _classify_frames(samples, sample_rate, frame_len, classifier)
    frame_s = frame_len / sample_rate
    duration = len(samples) / sample_rate

    # Runs of speech frames, bridging gaps shorter than merge_gap_ms.
    runs: list[list[int]] = []
    for i, is_speech in enumerate(flags):
        if not is_speech:
            continue
        if runs and (i - runs[-1][1] - 1) * config.frame_ms < config.merge_gap_ms:
            runs[-1][1] = i
        else:
            runs.append([i, i])

    pad = config.padding_ms / 1000.0
    padded: list[list[float]] = []  # [start, end, speech_frames, total_frames]
    for first, last in runs:
        start = first * frame_s
        end = min((last + 1) * frame_s, duration)
        if (end - start) * 1000.0 < config.min_speech_ms:
            continue
        speech = sum(flags[first : last + 1])
        total = last - first + 1
        start, end = max(0.0, start - pad), min(duration, end + pad)
        if padded and start <= padded[-1][1]:
            padded[-1][1] = max(padded[-1][1], end)
            padded[-1][2] += speech
            padded[-1][3] += total
        else:
            padded.append([start, end, speech, total])

    intervals: list[SpeechInterval] = []
    for start, end, speech, total in padded:
        confidence = round(speech / total, 4)
        pieces = 1
        if config.max_interval_seconds > 0:
            pieces = max(1, math.ceil((end - start) / config.max_interval_seconds))
        step = (end - start) / pieces
        for k in range(pieces):
            piece_start = start + k * step
            piece_end = end if k == pieces - 1 else start + (k + 1) * step
            intervals.append(
                SpeechInterval(
                    start=round(piece_start, 3),
                    end=round(piece_end, 3),
                    confidence=confidence,
                )
            )
    return intervals

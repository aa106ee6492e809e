"""Audio extraction and PCM helpers.

Media files are converted to 16-bit mono WAV with ffmpeg; WAV files are
read into int16 numpy arrays for voice-activity detection, and speech
intervals are re-encoded as standalone WAV clips for transcription.
"""

from __future__ import annotations

import io
import shutil
import subprocess
import wave
from pathlib import Path

import numpy as np

from subalign.utils.cache import file_key, get_cache_dir


def check_ffmpeg() -> bool:
    """Check if ffmpeg is available on the system."""
    return shutil.which("ffmpeg") is not None


def extract_audio(
    media_path: Path,
    output_path: Path | None = None,
    sample_rate: int = 16000,
) -> Path:
    """Extract the audio track of a media file to 16-bit mono WAV.

    Args:
        media_path: Path to the input video or audio file.
        output_path: Path for the output WAV file. Defaults to
            same directory and stem as the input with .wav extension.
        sample_rate: Audio sample rate in Hz.

    Returns:
        Path to the extracted audio file.

    Raises:
        FileNotFoundError: If ffmpeg is not installed or the input doesn't exist.
        subprocess.CalledProcessError: If ffmpeg fails.
    """
    if not check_ffmpeg():
        raise FileNotFoundError("ffmpeg not found. Install it with your package manager.")

    media_path = Path(media_path)
    if not media_path.is_file():
        raise FileNotFoundError(f"Media file not found: {media_path}")

    if output_path is None:
        output_path = media_path.with_suffix(".wav")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        "ffmpeg",
        "-i",
        str(media_path),
        "-vn",  # no video
        "-acodec",
        "pcm_s16le",  # 16-bit PCM
        "-ar",
        str(sample_rate),
        "-ac",
        "1",  # mono
        "-map_metadata",
        "-1",
        "-y",
        str(output_path),
    ]

    result = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
    if result.returncode != 0:
        stderr_msg = result.stderr.decode(errors="replace").strip()
        raise subprocess.CalledProcessError(result.returncode, cmd, stderr=stderr_msg)
    return output_path


def extract_audio_cached(
    media_path: Path,
    workspace_dir: Path,
    sample_rate: int = 16000,
) -> tuple[Path, bool]:
    """Extract audio into <workspace_dir>/.cache/audio/. Returns (path, cache_hit)."""
    cache_dir = get_cache_dir(workspace_dir, "audio")
    key = file_key(media_path, sample_rate=sample_rate)
    cached_path = cache_dir / f"{key}.wav"

    if cached_path.is_file():
        return cached_path, True

    extract_audio(media_path, output_path=cached_path, sample_rate=sample_rate)
    return cached_path, False


def is_pcm_wav(path: Path, sample_rate: int) -> bool:
    """True if ``path`` is a 16-bit mono WAV at ``sample_rate``."""
    try:
        with wave.open(str(path), "rb") as wf:
            return (
                wf.getnchannels() == 1
                and wf.getsampwidth() == 2
                and wf.getframerate() == sample_rate
            )
    except (wave.Error, EOFError, OSError):
        return False


def read_wav(path: Path) -> tuple[np.ndarray, int]:
    """Read a 16-bit mono WAV file into (int16 samples, sample_rate)."""
    with wave.open(str(path), "rb") as wf:
        if wf.getsampwidth() != 2 or wf.getnchannels() != 1:
            raise ValueError(f"{path}: expected 16-bit mono PCM WAV")
        sample_rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())
    return np.frombuffer(frames, dtype="<i2").astype(np.int16), sample_rate


def to_int16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples in [-1, 1] to int16; int16 input passes through."""
    samples = np.asarray(samples)
    if samples.dtype == np.int16:
        return samples
    if np.issubdtype(samples.dtype, np.floating):
        clipped = np.clip(samples, -1.0, 1.0)
        return (clipped * 32767.0).astype(np.int16)
    return samples.astype(np.int16)


def slice_samples(samples: np.ndarray, sample_rate: int, start: float, end: float) -> np.ndarray:
    """Return the samples between ``start`` and ``end`` seconds."""
    first = max(0, int(round(start * sample_rate)))
    last = min(len(samples), int(round(end * sample_rate)))
    return samples[first:last]


def wav_bytes(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode int16 mono samples as an in-memory WAV file."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(to_int16(samples).astype("<i2").tobytes())
    return buf.getvalue()


def wav_duration(data: bytes) -> float:
    """Duration in seconds of an in-memory WAV file; 0.0 if unreadable."""
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            rate = wf.getframerate()
            return wf.getnframes() / rate if rate else 0.0
    except (wave.Error, EOFError):
        return 0.0

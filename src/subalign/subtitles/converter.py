"""Subtitle conversion utilities.

This module handles:
- Serializing a SubtitleDocument back to SRT / VTT / ASS
- Building a SubtitleDocument from transcript segments
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pysubs2

from subalign.core.models import Cue, SubtitleDocument, TranscriptSegment
from subalign.subtitles.parsers import ZERO_LENGTH_FIX


def _split_ms(seconds: float) -> tuple[int, int, int, int]:
    total_ms = int(round(seconds * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return h, m, s, ms


def format_srt_time(seconds: float) -> str:
    """Format seconds as SRT timestamp (HH:MM:SS,mmm)."""
    h, m, s, ms = _split_ms(seconds)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def format_vtt_time(seconds: float) -> str:
    """Format seconds as VTT timestamp (HH:MM:SS.mmm)."""
    h, m, s, ms = _split_ms(seconds)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def _to_ssafile(document: SubtitleDocument) -> pysubs2.SSAFile:
    subs = pysubs2.SSAFile()
    for cue in document:
        subs.events.append(
            pysubs2.SSAEvent(
                start=pysubs2.make_time(s=cue.start),
                end=pysubs2.make_time(s=cue.end),
                text="\\N".join(cue.lines),
            )
        )
    return subs


def to_srt(document: SubtitleDocument, bom: bool = True) -> str:
    """Render a document as SRT text, renumbering cues from 1.

    The UTF-8 byte-order mark is included by default; some Windows players
    need it to pick the right encoding. Inline markup is written as is.
    """
    body = _to_ssafile(document).to_string("srt", keep_ssa_tags=True)
    return ("\ufeff" + body) if bom else body


def to_vtt(document: SubtitleDocument) -> str:
    """Render a document as WebVTT text."""
    lines = ["WEBVTT", ""]
    for i, cue in enumerate(document, 1):
        lines.append(str(i))
        lines.append(f"{format_vtt_time(cue.start)} --> {format_vtt_time(cue.end)}")
        lines.extend(cue.lines)
        lines.append("")
    return "\n".join(lines)


def save_subtitles(document: SubtitleDocument, path: Path, fmt: str | None = None) -> Path:
    """Save a document to a subtitle file.

    Args:
        document: The subtitle document.
        path: Output file path.
        fmt: "srt", "vtt" or "ass"; taken from the extension when None.

    Returns:
        The path the file was written to.
    """
    path = Path(path)
    fmt = (fmt or path.suffix.lstrip(".")).lower()
    if fmt not in ("srt", "vtt", "ass", "ssa"):
        raise ValueError(f"Unsupported subtitle format: {fmt!r}")
    path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "vtt":
        path.write_text(to_vtt(document), encoding="utf-8")
    elif fmt == "srt":
        subs = _to_ssafile(document)
        subs.save(str(path), encoding="utf-8-sig", format_="srt", keep_ssa_tags=True)
    else:
        _to_ssafile(document).save(str(path), format_=fmt)

    return path


def transcript_to_document(
    segments: Iterable[TranscriptSegment],
    source: str | None = None,
    language: str | None = None,
) -> SubtitleDocument:
    """Build a subtitle document from transcript segments.

    Segments with empty text (silence, noise) are skipped.
    """
    cues = []
    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        end = segment.end
        if end <= segment.start:
            end = segment.start + ZERO_LENGTH_FIX
        cues.append(Cue(id=len(cues) + 1, start=segment.start, end=end, lines=(text,)))
    return SubtitleDocument.from_cues(cues, source=source, language=language)

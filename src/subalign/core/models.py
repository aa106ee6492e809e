"""Shared data models for subalign.

All times are float seconds. Models are frozen: a normalized document and
its cues never change after construction.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Iterator

from subalign.utils.language import detect_language

# HTML-ish tags (<i>, </font>) and ASS override blocks ({\an8}, {\i1}).
_FORMATTING_RE = re.compile(r"<[^>]*>|\{[^}]*\}")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_formatting(text: str) -> str:
    """Remove inline formatting markup and collapse whitespace."""
    text = _FORMATTING_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


@dataclass(frozen=True)
class Cue:
    """A timed span of subtitle text."""

    id: int
    start: float  # seconds
    end: float  # seconds
    lines: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise ValueError(f"Cue {self.id}: start ({self.start}) must be before end ({self.end})")
        if not isinstance(self.lines, tuple):
            object.__setattr__(self, "lines", tuple(self.lines))

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def text(self) -> str:
        return " ".join(self.lines)

    @property
    def plain_text(self) -> str:
        """Text with formatting tags removed, for matching and display."""
        return strip_formatting(self.text)


@dataclass(frozen=True)
class SubtitleDocument:
    """A normalized, ordered sequence of cues.

    Build instances with :meth:`from_cues` so that normalization is applied.
    """

    cues: tuple[Cue, ...] = ()
    source: str | None = None
    language: str | None = None

    @classmethod
    def from_cues(
        cls,
        cues: Iterable[Cue],
        source: str | None = None,
        language: str | None = None,
    ) -> SubtitleDocument:
        """Normalize cues into a document.

        Trims every line, drops empty lines and cues left without text,
        sorts by start time (stable) and merges cues with identical
        intervals.
        """
        trimmed: list[Cue] = []
        for cue in cues:
            lines = tuple(line.strip() for line in cue.lines if line.strip())
            if lines:
                trimmed.append(replace(cue, lines=lines))

        trimmed.sort(key=lambda c: c.start)

        merged: list[Cue] = []
        for cue in trimmed:
            prev = merged[-1] if merged else None
            if prev is not None and prev.start == cue.start and prev.end == cue.end:
                extra = tuple(line for line in cue.lines if line not in prev.lines)
                merged[-1] = replace(prev, lines=prev.lines + extra)
            else:
                merged.append(cue)

        return cls(cues=tuple(merged), source=source, language=language)

    def __len__(self) -> int:
        return len(self.cues)

    def __iter__(self) -> Iterator[Cue]:
        return iter(self.cues)

    def __getitem__(self, index: int) -> Cue:
        return self.cues[index]

    def find(self, cue_id: int) -> Cue | None:
        """Return the cue with the given id, or None."""
        for cue in self.cues:
            if cue.id == cue_id:
                return cue
        return None

    def detect_language(self) -> str | None:
        """Guess the language of the cue text as an ISO 639-1 code."""
        return detect_language("\n".join(cue.plain_text for cue in self.cues))


@dataclass(frozen=True)
class SpeechInterval:
    """A span of audio classified as speech."""

    start: float
    end: float
    confidence: float = 1.0

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class TranscriptSegment:
    """The transcript of one speech interval."""

    start: float
    end: float
    text: str
    source_hash: str

    def shifted(self, offset: float) -> TranscriptSegment:
        """Return a copy moved by ``offset`` seconds."""
        return replace(self, start=self.start + offset, end=self.end + offset)


@dataclass(frozen=True)
class CacheEntry:
    """A persisted transcript, keyed by (hash, engine_version)."""

    hash: str
    engine_version: str
    start: float
    end: float
    text: str
    created_at: datetime


@dataclass(frozen=True)
class AlignedPair:
    """One unit of the merged timeline.

    ``left`` only is a deletion (unmatched left cue), ``right`` only an
    insertion (unmatched right cue).
    """

    left: Cue | None = None
    right: Cue | None = None
    overlap_ratio: float = 0.0
    similarity_score: float = 0.0
    _start: float = field(init=False, repr=False, compare=False, default=0.0)

    def __post_init__(self) -> None:
        if self.left is None and self.right is None:
            raise ValueError("AlignedPair needs at least one side")
        starts = [c.start for c in (self.left, self.right) if c is not None]
        object.__setattr__(self, "_start", min(starts))

    @property
    def start(self) -> float:
        return self._start

    @property
    def is_match(self) -> bool:
        return self.left is not None and self.right is not None

    @property
    def is_deletion(self) -> bool:
        return self.right is None

    @property
    def is_insertion(self) -> bool:
        return self.left is None

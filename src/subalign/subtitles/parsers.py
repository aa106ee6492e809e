"""Subtitle format parsers.

One parser per concrete syntax (SRT, WebVTT, ASS/SSA), all behind
:func:`parse`, which decodes raw bytes to canonical text and dispatches on
:class:`SubtitleFormat`.

Recoverable noise (a block without a timing line, a cue with no text, an
inverted interval) is skipped with a warning. Structural corruption (an
unparseable timing line, a missing WEBVTT header, undecodable bytes) raises
:class:`ParseError` and aborts the document. ``strict=True`` turns every
warning into an error.
"""

from __future__ import annotations

import codecs
import enum
import re
import unicodedata
from dataclasses import replace
from pathlib import Path

import pysubs2
from charset_normalizer import from_bytes
from rich.markup import escape

from subalign.core.errors import ParseError
from subalign.core.models import Cue, SubtitleDocument
from subalign.utils.console import console

# Zero-length cues (some aligners emit them) are stretched by this much.
ZERO_LENGTH_FIX = 0.001

_TS = r"(\d+):(\d{1,2}):(\d{1,2})(?:[,.](\d{1,3}))?"
_SRT_TIMING_RE = re.compile(rf"^\s*{_TS}\s*-->\s*{_TS}(?:\s+.*)?$")

_VTT_TS = r"(?:(\d+):)?(\d{1,2}):(\d{1,2})[.,](\d{1,3})"
_VTT_TIMING_RE = re.compile(rf"^\s*{_VTT_TS}\s+-->\s+{_VTT_TS}(?:\s+.*)?$")
_VTT_SKIP_BLOCKS = ("NOTE", "STYLE", "REGION")

_BOMS = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


class SubtitleFormat(enum.Enum):
    SRT = "srt"
    VTT = "vtt"
    ASS = "ass"

    @classmethod
    def from_path(cls, path: Path) -> SubtitleFormat | None:
        """Pick a format from the file extension, or None if unknown."""
        return _EXTENSIONS.get(Path(path).suffix.lower())


_EXTENSIONS = {
    ".srt": SubtitleFormat.SRT,
    ".vtt": SubtitleFormat.VTT,
    ".ass": SubtitleFormat.ASS,
    ".ssa": SubtitleFormat.ASS,
}


def detect_format(text: str, source: str = "<string>") -> SubtitleFormat:
    """Sniff the subtitle format from decoded content."""
    head = text.lstrip()
    if head.startswith("WEBVTT"):
        return SubtitleFormat.VTT
    if head.startswith("[Script Info]") or "\n[Events]" in text:
        return SubtitleFormat.ASS
    if "-->" in text:
        return SubtitleFormat.SRT
    raise ParseError("unrecognized subtitle format", source=source)


def decode_bytes(data: bytes, encoding: str | None = None, source: str = "<string>") -> str:
    """Decode subtitle bytes and normalize to canonical text.

    An explicit ``encoding`` wins. Otherwise a byte-order mark is honoured,
    then strict UTF-8 is tried, then charset-normalizer guesses the legacy
    encoding. The result is NFC-normalized with ``\\n`` line endings and
    no trailing whitespace.
    """
    if encoding is not None:
        try:
            text = data.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            raise ParseError(f"cannot decode as {encoding}: {e}", source=source) from e
    else:
        text = _guess_decode(data, source)
    return normalize_text(text)


def _guess_decode(data: bytes, source: str) -> str:
    for bom, codec in _BOMS:
        if data.startswith(bom):
            try:
                return data.decode(codec)
            except UnicodeDecodeError as e:
                raise ParseError(f"invalid {codec} data: {e}", source=source) from e

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass

    best = from_bytes(data).best()
    if best is None:
        raise ParseError("unable to detect text encoding", source=source)
    console.print(f"[dim]{escape(source)}: detected encoding {best.encoding}[/dim]")
    return str(best)


def normalize_text(text: str) -> str:
    """Strip BOMs, unify line endings, trim trailing whitespace, NFC-normalize."""
    text = text.lstrip("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    return unicodedata.normalize("NFC", text)


def parse(
    data: bytes | str,
    encoding: str | None = None,
    fmt: SubtitleFormat | None = None,
    source: str = "<string>",
    strict: bool = False,
) -> SubtitleDocument:
    """Parse raw subtitle data into a normalized document.

    Args:
        data: Raw bytes, or already-decoded text.
        encoding: Explicit text encoding; detected when None.
        fmt: Subtitle format; sniffed from content when None.
        source: File identity used in error messages.
        strict: Raise on recoverable noise instead of skipping it.

    Raises:
        ParseError: On undecodable input or structural corruption.
    """
    text = decode_bytes(data, encoding, source) if isinstance(data, bytes) else normalize_text(data)
    if fmt is None:
        fmt = detect_format(text, source)

    if fmt is SubtitleFormat.SRT:
        cues = parse_srt(text, source, strict)
    elif fmt is SubtitleFormat.VTT:
        cues = parse_vtt(text, source, strict)
    else:
        cues = parse_ass(text, source, strict)

    return SubtitleDocument.from_cues(cues, source=source)


def load_subtitles(
    path: Path,
    encoding: str | None = None,
    strict: bool = False,
    language: str | None = None,
) -> SubtitleDocument:
    """Load a subtitle file; format from extension, sniffed if unknown.

    The document language is detected from its text unless given.
    """
    path = Path(path)
    data = path.read_bytes()
    document = parse(
        data,
        encoding=encoding,
        fmt=SubtitleFormat.from_path(path),
        source=str(path),
        strict=strict,
    )
    if language is None:
        language = document.detect_language()
    return replace(document, language=language)


def _noise(reason: str, source: str, line: int, strict: bool) -> None:
    """Report a recoverable problem: warn and continue, or raise when strict."""
    if strict:
        raise ParseError(reason, source=source, line=line)
    console.print(f"[yellow]{escape(source)}:{line}: {reason}, skipping cue[/yellow]")


def _blocks(text: str) -> list[tuple[int, list[str]]]:
    """Split text into runs of non-blank lines, with 1-based start line numbers."""
    blocks: list[tuple[int, list[str]]] = []
    current: list[str] = []
    start = 0
    for lineno, line in enumerate(text.split("\n"), 1):
        if line.strip():
            if not current:
                start = lineno
            current.append(line)
        elif current:
            blocks.append((start, current))
            current = []
    if current:
        blocks.append((start, current))
    return blocks


def _to_seconds(h: str | None, m: str, s: str, frac: str | None) -> float | None:
    """Convert timestamp fields to seconds; None if minutes/seconds are out of range."""
    minutes, seconds = int(m), int(s)
    if minutes >= 60 or seconds >= 60:
        return None
    millis = int((frac or "0").ljust(3, "0"))
    total_ms = (int(h or 0) * 3600 + minutes * 60 + seconds) * 1000 + millis
    return total_ms / 1000.0


def _make_cue(
    cue_id: int,
    start: float | None,
    end: float | None,
    lines: list[str],
    source: str,
    lineno: int,
    strict: bool,
) -> Cue | None:
    if start is None or end is None:
        _noise("timestamp field out of range", source, lineno, strict)
        return None
    if end < start:
        _noise("cue ends before it starts", source, lineno, strict)
        return None
    if not any(line.strip() for line in lines):
        _noise("cue has no text", source, lineno, strict)
        return None
    if end == start:
        end = round(start + ZERO_LENGTH_FIX, 3)
    return Cue(id=cue_id, start=start, end=end, lines=tuple(lines))


def _timing_index(block: list[str]) -> int | None:
    """Position of the timing line (first or second line of a block)."""
    for i in range(min(2, len(block))):
        if "-->" in block[i]:
            return i
    return None


def parse_srt(text: str, source: str = "<string>", strict: bool = False) -> list[Cue]:
    """Parse SRT text into cues (not yet normalized)."""
    cues: list[Cue] = []
    blocks = _blocks(text)

    for start_line, block in blocks:
        t = _timing_index(block)
        if t is None:
            _noise("no timing line in block", source, start_line, strict)
            continue

        timing_line = start_line + t
        match = _SRT_TIMING_RE.match(block[t])
        if match is None:
            raise ParseError(f"malformed timing line {block[t].strip()!r}", source, timing_line)

        g = match.groups()
        cue_id = int(block[0].strip()) if t == 1 and block[0].strip().isdigit() else len(cues) + 1
        cue = _make_cue(
            cue_id,
            _to_seconds(*g[0:4]),
            _to_seconds(*g[4:8]),
            block[t + 1 :],
            source,
            timing_line,
            strict,
        )
        if cue is not None:
            cues.append(cue)

    if blocks and not cues:
        raise ParseError("no subtitle cues found", source=source)
    return cues


def parse_vtt(text: str, source: str = "<string>", strict: bool = False) -> list[Cue]:
    """Parse WebVTT text into cues (not yet normalized)."""
    blocks = _blocks(text)
    if not blocks or not blocks[0][1][0].startswith("WEBVTT"):
        raise ParseError("missing WEBVTT header", source=source, line=1)

    cues: list[Cue] = []
    for start_line, block in blocks[1:]:
        if block[0].startswith(_VTT_SKIP_BLOCKS):
            continue

        t = _timing_index(block)
        if t is None:
            _noise("no timing line in block", source, start_line, strict)
            continue

        timing_line = start_line + t
        match = _VTT_TIMING_RE.match(block[t])
        if match is None:
            raise ParseError(f"malformed timing line {block[t].strip()!r}", source, timing_line)

        g = match.groups()
        cue_id = int(block[0].strip()) if t == 1 and block[0].strip().isdigit() else len(cues) + 1
        cue = _make_cue(
            cue_id,
            _to_seconds(*g[0:4]),
            _to_seconds(*g[4:8]),
            block[t + 1 :],
            source,
            timing_line,
            strict,
        )
        if cue is not None:
            cues.append(cue)

    return cues


def parse_ass(text: str, source: str = "<string>", strict: bool = False) -> list[Cue]:
    """Parse ASS/SSA text into cues via pysubs2 (comment events ignored)."""
    try:
        subs = pysubs2.SSAFile.from_string(text, format_="ass")
    except (pysubs2.exceptions.Pysubs2Error, ValueError, KeyError, IndexError) as e:
        raise ParseError(f"invalid ASS/SSA data: {e}", source=source) from e

    cues: list[Cue] = []
    for i, event in enumerate(subs.events, 1):
        if event.is_comment:
            continue
        cue = _make_cue(
            i,
            event.start / 1000.0,
            event.end / 1000.0,
            event.plaintext.split("\n"),
            source,
            0,
            strict,
        )
        if cue is not None:
            cues.append(cue)
    return cues

"""Exception types raised by subalign.

Every error carries the context needed to locate the problem (file, line,
cue id, content hash or segment index) and is raised at the point of
failure.
"""

from __future__ import annotations


class SubalignError(Exception):
    """Base class for all subalign errors."""


class ParseError(SubalignError):
    """A subtitle file could not be decoded or parsed."""

    def __init__(self, reason: str, source: str = "<string>", line: int = 0) -> None:
        self.reason = reason
        self.source = source
        self.line = line
        super().__init__(f"{source}:{line}: {reason}")


class AlignmentError(SubalignError):
    """Alignment input violates the ordering contract."""

    def __init__(self, reason: str, side: str | None = None, cue_id: int | None = None) -> None:
        self.reason = reason
        self.side = side
        self.cue_id = cue_id
        where = ""
        if side is not None:
            where = f"{side} track"
            if cue_id is not None:
                where += f", cue {cue_id}"
            where += ": "
        super().__init__(f"{where}{reason}")


class TranscriptionError(SubalignError):
    """Base class for transcription failures."""

    def __init__(
        self,
        reason: str,
        content_hash: str | None = None,
        segment_index: int | None = None,
        attempts: int = 0,
    ) -> None:
        self.reason = reason
        self.content_hash = content_hash
        self.segment_index = segment_index
        self.attempts = attempts
        super().__init__(reason)

    def __str__(self) -> str:
        parts = [self.reason]
        if self.segment_index is not None:
            parts.append(f"segment {self.segment_index}")
        if self.content_hash:
            parts.append(f"hash {self.content_hash[:12]}")
        if self.attempts:
            parts.append(f"after {self.attempts} attempt(s)")
        return " | ".join(parts)


class TransientTranscriptionError(TranscriptionError):
    """Retryable failure: network error, rate limit, timeout."""


class PermanentTranscriptionError(TranscriptionError):
    """Non-retryable failure: invalid input, authentication."""


class TranscriptionCancelled(TranscriptionError):
    """The run was cancelled before the request could complete."""


class CacheIOError(SubalignError):
    """The transcription cache storage is unavailable or corrupt."""

    def __init__(self, reason: str, path: str | None = None) -> None:
        self.reason = reason
        self.path = path
        super().__init__(f"{path}: {reason}" if path else reason)

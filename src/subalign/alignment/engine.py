"""Temporal alignment of two cue sequences.

A single sweep walks the left track in start order while a pool of right
cues follows it through time. Right cues enter the pool once they start
within ``window_seconds`` after the current left cue ends, and leave it
(as unmatched insertions) once they end more than ``window_seconds``
before it starts. Each left cue is paired with the pool member that has
the best overlap, using text similarity to separate close candidates.

Overlap ratio is intersection over the shorter of the two durations, so a
short cue fully inside a long one scores 1.0.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from subalign.alignment.differ import similarity
from subalign.core.config import AlignmentConfig
from subalign.core.errors import AlignmentError
from subalign.core.models import AlignedPair, Cue

# Decimal places kept when comparing combined scores; equal after rounding is a tie.
_SCORE_PRECISION = 9


def overlap_ratio(a: Cue, b: Cue) -> float:
    """Intersection duration divided by the shorter cue's duration."""
    intersection = min(a.end, b.end) - max(a.start, b.start)
    if intersection <= 0:
        return 0.0
    return intersection / min(a.duration, b.duration)


def _check_order(cues: Sequence[Cue], side: str) -> None:
    for prev, cue in zip(cues, cues[1:]):
        if cue.start < prev.start:
            raise AlignmentError(
                f"cue starts at {cue.start:.3f}s, before previous cue at {prev.start:.3f}s",
                side=side,
                cue_id=cue.id,
            )


def align(
    left: Iterable[Cue],
    right: Iterable[Cue],
    config: AlignmentConfig | None = None,
) -> list[AlignedPair]:
    """Merge two cue tracks into an ordered list of aligned pairs.

    Args:
        left: Cues of the first track (a SubtitleDocument or any cue sequence).
        right: Cues of the second track.
        config: Thresholds and weights; defaults apply when None.

    Returns:
        Pairs sorted by start time. Every input cue appears in exactly one
        pair; unmatched cues are emitted with the other side empty.

    Raises:
        AlignmentError: If either track is not sorted by start time.
    """
    config = config or AlignmentConfig()
    left = tuple(left)
    right = tuple(right)
    _check_order(left, "left")
    _check_order(right, "right")

    window = config.window_seconds
    pairs: list[AlignedPair] = []
    pool: list[int] = []  # indices into right, in insertion order
    next_right = 0

    for cue in left:
        while next_right < len(right) and right[next_right].start <= cue.end + window:
            pool.append(next_right)
            next_right += 1

        active = []
        for ri in pool:
            if right[ri].end < cue.start - window:
                pairs.append(AlignedPair(right=right[ri]))
            else:
                active.append(ri)
        pool = active

        candidates = []
        for ri in pool:
            if right[ri].start > cue.end + window:
                continue
            ratio = overlap_ratio(cue, right[ri])
            if ratio > 0 and ratio >= config.min_overlap_ratio:
                candidates.append((ri, ratio))

        if not candidates:
            pairs.append(AlignedPair(left=cue))
            continue

        chosen, ratio, score = _pick(cue, right, candidates, config)
        pairs.append(
            AlignedPair(left=cue, right=right[chosen], overlap_ratio=ratio, similarity_score=score)
        )

        pool.remove(chosen)

    for ri in pool:
        pairs.append(AlignedPair(right=right[ri]))
    for ri in range(next_right, len(right)):
        pairs.append(AlignedPair(right=right[ri]))

    pairs.sort(key=lambda pair: pair.start)
    return pairs


def _pick(
    cue: Cue,
    right: Sequence[Cue],
    candidates: list[tuple[int, float]],
    config: AlignmentConfig,
) -> tuple[int, float, float]:
    """Choose among candidates: best combined score, then earliest start, then index."""
    if len(candidates) == 1:
        ri, ratio = candidates[0]
        return ri, ratio, similarity(cue.text, right[ri].text)

    best_key = None
    best = None
    for ri, ratio in candidates:
        score = similarity(cue.text, right[ri].text)
        combined = config.overlap_weight * ratio + config.similarity_weight * score
        key = (-round(combined, _SCORE_PRECISION), right[ri].start, ri)
        if best_key is None or key < best_key:
            best_key = key
            best = (ri, ratio, score)
    return best

"""Tests for the temporal alignment engine."""

from pathlib import Path

import pytest

from subalign.alignment.engine import align, overlap_ratio
from subalign.core.config import AlignmentConfig
from subalign.core.errors import AlignmentError
from subalign.core.models import Cue
from subalign.subtitles.parsers import load_subtitles


def _cue(start: float, end: float, text: str, cue_id: int = 1) -> Cue:
    return Cue(id=cue_id, start=start, end=end, lines=(text,))


class TestOverlapRatio:
    def test_identical(self):
        assert overlap_ratio(_cue(0, 2, "a"), _cue(0, 2, "b")) == 1.0

    def test_contained_cue_scores_full(self):
        assert overlap_ratio(_cue(0, 10, "a"), _cue(2, 3, "b")) == 1.0

    def test_partial(self):
        assert overlap_ratio(_cue(0, 2, "a"), _cue(1, 3, "b")) == pytest.approx(0.5)

    def test_touching_and_disjoint(self):
        assert overlap_ratio(_cue(0, 1, "a"), _cue(1, 2, "b")) == 0.0
        assert overlap_ratio(_cue(0, 1, "a"), _cue(5, 6, "b")) == 0.0


class TestScenarios:
    def test_exact_match(self):
        left = [_cue(0, 2, "Hello")]
        right = [_cue(0, 2, "Bonjour")]
        pairs = align(left, right)
        assert len(pairs) == 1
        assert pairs[0].left is left[0]
        assert pairs[0].right is right[0]
        assert pairs[0].overlap_ratio == 1.0

    def test_earliest_overlapping_candidate_wins(self):
        left = [_cue(0, 2, "Hello")]
        right = [_cue(0, 1, "Bonjour", 1), _cue(1, 3, "monde", 2)]
        pairs = align(left, right, AlignmentConfig(min_overlap_ratio=0.2))
        assert len(pairs) == 2
        assert pairs[0].left is left[0]
        assert pairs[0].right is right[0]
        assert pairs[1].left is None
        assert pairs[1].right is right[1]

    def test_empty_right_track(self):
        left = [_cue(10, 12, "Goodbye")]
        pairs = align(left, [])
        assert len(pairs) == 1
        assert pairs[0].left is left[0]
        assert pairs[0].right is None


def test_both_empty():
    assert align([], []) == []


def test_empty_left_track():
    right = [_cue(0, 1, "a", 1), _cue(2, 3, "b", 2)]
    pairs = align([], right)
    assert [p.right for p in pairs] == right
    assert all(p.is_insertion for p in pairs)


def test_below_threshold_is_unmatched():
    left = [_cue(0, 10, "a")]
    right = [_cue(9.5, 20, "a")]
    pairs = align(left, right, AlignmentConfig(min_overlap_ratio=0.2))
    assert len(pairs) == 2
    assert pairs[0].is_deletion
    assert pairs[1].is_insertion


def test_outside_window_is_unmatched():
    left = [_cue(0, 1, "same")]
    right = [_cue(10, 11, "same")]
    pairs = align(left, right)
    assert [(p.left is not None, p.right is not None) for p in pairs] == [
        (True, False),
        (False, True),
    ]


def test_similarity_breaks_overlap_tie():
    left = [_cue(0, 4, "Hello world")]
    right = [_cue(0, 2, "Bonjour", 1), _cue(2, 4, "hello, world!", 2)]
    pairs = align(left, right)
    matched = [p for p in pairs if p.is_match]
    assert len(matched) == 1
    assert matched[0].right is right[1]
    assert matched[0].similarity_score == 1.0
    assert matched[0].overlap_ratio == 1.0
    assert any(p.right is right[0] and p.left is None for p in pairs)


def test_equal_scores_prefer_earliest_start():
    left = [_cue(0, 4, "x")]
    right = [_cue(1, 2, "y", 1), _cue(2, 3, "y", 2)]
    pairs = align(left, right)
    assert pairs[0].right is right[0]


def test_equal_start_prefers_lower_index():
    left = [_cue(0, 4, "x")]
    right = [_cue(1, 2, "y", 1), _cue(1, 2, "y", 2)]
    pairs = align(left, right)
    assert pairs[0].right is right[0]
    assert pairs[1].right is right[1]
    assert pairs[1].left is None


def test_passed_over_cue_stays_available():
    left = [_cue(0, 2, "hello", 1), _cue(1, 3, "bonjour", 2)]
    right = [_cue(0, 2, "bonjour", 1), _cue(0.5, 2.5, "hello", 2)]
    pairs = align(left, right)
    assert [(p.left.text, p.right.text) for p in pairs] == [
        ("hello", "hello"),
        ("bonjour", "bonjour"),
    ]
    assert pairs[1].overlap_ratio == pytest.approx(0.5)


def test_unsorted_input_raises():
    left = [_cue(5, 6, "b", 2), _cue(1, 2, "a", 1)]
    with pytest.raises(AlignmentError) as exc_info:
        align(left, [])
    assert exc_info.value.side == "left"
    assert exc_info.value.cue_id == 1

    with pytest.raises(AlignmentError) as exc_info:
        align([], left)
    assert exc_info.value.side == "right"


class TestFixtureTracks:
    @pytest.fixture
    def tracks(self, sample_fr_srt: Path, sample_en_srt: Path):
        return load_subtitles(sample_fr_srt), load_subtitles(sample_en_srt)

    def test_pairs(self, tracks):
        fr, en = tracks
        pairs = align(fr, en)
        assert len(pairs) == 4
        assert [p.is_match for p in pairs] == [True, True, True, False]
        assert pairs[1].left.lines == ("Comment allez-vous", "aujourd'hui ?")
        assert pairs[1].right.lines == ("How are you", "today?")
        assert pairs[3].right.text == "Goodbye!"

    def test_every_cue_appears_exactly_once(self, tracks):
        fr, en = tracks
        pairs = align(fr, en)
        lefts = [id(p.left) for p in pairs if p.left is not None]
        rights = [id(p.right) for p in pairs if p.right is not None]
        assert sorted(lefts) == sorted(id(c) for c in fr)
        assert sorted(rights) == sorted(id(c) for c in en)

    def test_output_is_ordered_by_start(self, tracks):
        fr, en = tracks
        starts = [p.start for p in align(fr, en)]
        assert starts == sorted(starts)

    def test_deterministic(self, tracks):
        fr, en = tracks
        assert align(fr, en) == align(fr, en)

    def test_swapping_sides(self, tracks):
        fr, en = tracks
        pairs = align(en, fr)
        assert [p.is_match for p in pairs] == [True, True, True, False]
        assert pairs[3].is_deletion

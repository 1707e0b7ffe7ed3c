"""Tests for segment scoring and selection."""
import pytest

from lyricclip.pipeline.segments import (
    SegmentCandidate,
    SegmentSource,
    SegmentWeights,
    normalize_loudness,
    rank_candidates,
    score_candidate,
    select_best_segment,
)


def _candidates():
    return [
        SegmentCandidate(start=0, end=20, energy=0.4, loudness=-8, confidence=0.7),
        SegmentCandidate(start=25, end=55, energy=0.9, loudness=-4, confidence=0.6),
        SegmentCandidate(start=60, end=90, energy=0.7, loudness=-12, confidence=0.9),
    ]


class TestScoreCandidate:
    """Tests for score_candidate."""

    def test_weighted_score(self):
        candidate = SegmentCandidate(start=25, end=55, energy=0.9, loudness=-4, confidence=0.6)
        expected = 0.45 * 0.9 + 0.25 * (56 / 60) + 0.20 * 0.6 + 0.10 * 1.0
        assert score_candidate(candidate, 30) == pytest.approx(expected)

    def test_out_of_bounds_is_none(self):
        candidate = SegmentCandidate(start=0, end=5, energy=1.0, loudness=0, confidence=1.0)
        assert score_candidate(candidate, 30) is None

    def test_bounds_are_inclusive(self):
        short = SegmentCandidate(start=0, end=24, energy=0.5, loudness=-30, confidence=0.5)
        long = SegmentCandidate(start=0, end=36, energy=0.5, loudness=-30, confidence=0.5)
        assert score_candidate(short, 30) is not None
        assert score_candidate(long, 30) is not None

    def test_explicit_bounds(self):
        candidate = SegmentCandidate(start=0, end=5, energy=1.0, loudness=0, confidence=1.0)
        assert score_candidate(candidate, 30, bounds=(1, 10)) is not None

    def test_duration_fit_decreases_with_distance(self):
        exact = SegmentCandidate(start=0, end=30, energy=0.5, loudness=-30, confidence=0.5)
        off = SegmentCandidate(start=0, end=35, energy=0.5, loudness=-30, confidence=0.5)
        assert score_candidate(exact, 30) > score_candidate(off, 30)

    def test_score_increases_with_energy(self):
        scores = [
            score_candidate(
                SegmentCandidate(start=0, end=30, energy=energy, loudness=-20, confidence=0.5), 30
            )
            for energy in (0.0, 0.25, 0.5, 0.75, 1.0)
        ]
        assert all(lower < higher for lower, higher in zip(scores, scores[1:]))

    def test_score_increases_with_confidence(self):
        scores = [
            score_candidate(
                SegmentCandidate(start=0, end=28, energy=0.5, loudness=-20, confidence=confidence), 30
            )
            for confidence in (0.0, 0.25, 0.5, 0.75, 1.0)
        ]
        assert all(lower < higher for lower, higher in zip(scores, scores[1:]))

    def test_custom_weights(self):
        candidate = SegmentCandidate(start=0, end=30, energy=0.8, loudness=-60, confidence=0.0)
        weights = SegmentWeights(energy=1.0, loudness=0.0, confidence=0.0, duration_fit=0.0)
        assert score_candidate(candidate, 30, weights=weights) == pytest.approx(0.8)

    def test_non_positive_target_raises(self):
        candidate = SegmentCandidate(start=0, end=30, energy=0.5, loudness=-30, confidence=0.5)
        with pytest.raises(ValueError):
            score_candidate(candidate, 0)


class TestNormalizeLoudness:
    """Tests for loudness normalization."""

    def test_range_and_clamping(self):
        assert normalize_loudness(-60) == 0.0
        assert normalize_loudness(0) == 1.0
        assert normalize_loudness(-30) == pytest.approx(0.5)
        assert normalize_loudness(-90) == 0.0
        assert normalize_loudness(6) == 1.0


class TestSelectBestSegment:
    """Tests for select_best_segment."""

    def test_picks_highest_score(self):
        result = select_best_segment(_candidates(), 30)
        assert result is not None
        assert (result.start, result.end) == (25, 55)
        assert result.source == SegmentSource.EXTERNAL

    def test_empty_is_none(self):
        assert select_best_segment([], 30) is None

    def test_nothing_in_bounds_is_none(self):
        candidates = [SegmentCandidate(start=0, end=5, energy=1, loudness=0, confidence=1)]
        assert select_best_segment(candidates, 30) is None

    def test_tie_keeps_first(self):
        first = SegmentCandidate(start=0, end=30, energy=0.5, loudness=-20, confidence=0.5)
        second = SegmentCandidate(start=40, end=70, energy=0.5, loudness=-20, confidence=0.5)
        result = select_best_segment([first, second], 30)
        assert result.start == 0

    def test_source_is_carried(self):
        result = select_best_segment(_candidates(), 30, source=SegmentSource.ANALYSIS)
        assert result.to_dict()["source"] == "analysis"

    def test_deterministic(self):
        assert select_best_segment(_candidates(), 30) == select_best_segment(_candidates(), 30)


def test_rank_candidates_orders_by_score():
    ranked = rank_candidates(_candidates(), 30)
    assert [c.start for c, _ in ranked] == [25, 60]
    assert ranked[0][1] >= ranked[1][1]

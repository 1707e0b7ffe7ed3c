"""Segment scoring and selection.

A segment candidate is a time window proposed as the highlight to export.
Candidates are scored against a target duration using weighted features and
the best in-bounds candidate wins.
"""
import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple


class SegmentSource(str, enum.Enum):
    """Where a candidate set came from."""
    EXTERNAL = "external"  # Third-party track metadata
    ANALYSIS = "analysis"  # Local audio analysis


@dataclass
class SegmentCandidate:
    """A candidate time window with its features."""
    start: float
    end: float
    energy: float  # 0..1
    loudness: float  # dB, typically negative
    confidence: float  # 0..1

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "energy": self.energy,
            "loudness": self.loudness,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SegmentCandidate":
        return cls(
            start=float(data["start"]),
            end=float(data["end"]),
            energy=float(data["energy"]),
            loudness=float(data["loudness"]),
            confidence=float(data["confidence"]),
        )


@dataclass
class SegmentSelectionResult:
    """The winning window and its score."""
    start: float
    end: float
    score: float
    source: SegmentSource

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "score": self.score,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class SegmentWeights:
    """Feature weights for candidate scoring."""
    energy: float = 0.45
    loudness: float = 0.25
    confidence: float = 0.20
    duration_fit: float = 0.10


DEFAULT_WEIGHTS = SegmentWeights()

LOUDNESS_FLOOR_DB = -60.0
LOUDNESS_CEILING_DB = 0.0


def normalize_loudness(
    value: float,
    min_db: float = LOUDNESS_FLOOR_DB,
    max_db: float = LOUDNESS_CEILING_DB,
) -> float:
    """Map a dB value from [min_db, max_db] onto [0, 1], clamping outside values."""
    clamped = min(max(value, min_db), max_db)
    return (clamped - min_db) / (max_db - min_db)


def default_bounds(target_duration: float) -> Tuple[float, float]:
    """Accepted duration range around a target: 80% to 120%."""
    return target_duration * 0.8, target_duration * 1.2


def score_candidate(
    candidate: SegmentCandidate,
    target_duration: float,
    weights: SegmentWeights = DEFAULT_WEIGHTS,
    bounds: Optional[Tuple[float, float]] = None,
) -> Optional[float]:
    """
    Score a candidate against a target duration.

    Args:
        candidate: Window to score
        target_duration: Desired clip length in seconds
        weights: Feature weights
        bounds: (minimum, maximum) accepted duration; defaults to 0.8x-1.2x target

    Returns:
        Weighted score, or None if the candidate's duration is out of bounds
    """
    if target_duration <= 0:
        raise ValueError("target_duration must be positive")

    minimum, maximum = bounds if bounds is not None else default_bounds(target_duration)
    duration = candidate.duration
    if duration < minimum or duration > maximum:
        return None

    duration_fit = 1 - min(1.0, abs(duration - target_duration) / target_duration)
    return (
        candidate.energy * weights.energy
        + normalize_loudness(candidate.loudness) * weights.loudness
        + candidate.confidence * weights.confidence
        + duration_fit * weights.duration_fit
    )


def select_best_segment(
    candidates: Iterable[SegmentCandidate],
    target_duration: float,
    bounds: Optional[Tuple[float, float]] = None,
    source: SegmentSource = SegmentSource.EXTERNAL,
    weights: SegmentWeights = DEFAULT_WEIGHTS,
) -> Optional[SegmentSelectionResult]:
    """
    Pick the highest scoring in-bounds candidate.

    Ties keep the earliest candidate in input order. Returns None when the
    list is empty or nothing falls within the duration bounds.
    """
    best: Optional[SegmentSelectionResult] = None

    for candidate in candidates:
        score = score_candidate(candidate, target_duration, weights, bounds)
        if score is None:
            continue
        if best is None or score > best.score:
            best = SegmentSelectionResult(
                start=candidate.start,
                end=candidate.end,
                score=score,
                source=source,
            )

    return best


def rank_candidates(
    candidates: Iterable[SegmentCandidate],
    target_duration: float,
    bounds: Optional[Tuple[float, float]] = None,
) -> List[Tuple[SegmentCandidate, float]]:
    """Score all in-bounds candidates, best first (stable for equal scores)."""
    scored = []
    for candidate in candidates:
        score = score_candidate(candidate, target_duration, bounds=bounds)
        if score is not None:
            scored.append((candidate, score))
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored

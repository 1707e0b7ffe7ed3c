"""Feature extraction from decoded mono PCM.

Derives the signals used for segment selection and lyric alignment:
- Peak waveform (fixed bin count)
- Beat timestamps from windowed RMS energy
- Tempo from mean inter-beat interval
- Aggregate energy
- Coarse 12-bin chroma
- Scored segment candidates
"""
import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from .config import AnalysisConfig, DEFAULT_ANALYSIS_CONFIG
from .segments import SegmentCandidate

logger = logging.getLogger(__name__)


@dataclass
class AudioFeatures:
    """Container for all features derived from one decode."""
    waveform: List[float]
    beats: List[float]
    tempo: float
    energy: float
    chroma: List[float]
    segments: List[SegmentCandidate] = field(default_factory=list)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def waveform_bin_count(duration: float, config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG) -> int:
    """Number of waveform bins for a track: 12 per second, capped at 720."""
    if duration <= 0:
        return 0
    return min(config.waveform_max_bins, math.ceil(duration * config.waveform_bins_per_second))


def build_waveform(samples: np.ndarray, bins: int) -> List[float]:
    """
    Peak magnitude per bin.

    Samples are split into `bins` consecutive bins of floor(len / bins)
    samples each (at least one); each value is the largest absolute sample in
    its bin, clamped to 1.
    """
    if bins <= 0:
        return []

    magnitudes = np.abs(np.asarray(samples, dtype=np.float32))
    total = len(magnitudes)
    bin_size = max(1, total // bins)

    waveform = []
    for i in range(bins):
        start = i * bin_size
        end = min(total, start + bin_size)
        if start >= end:
            waveform.append(0.0)
            continue
        waveform.append(min(1.0, float(magnitudes[start:end].max())))
    return waveform


def synthesize_beats(duration: float, bpm: float) -> List[float]:
    """Evenly spaced beat grid covering [0, duration)."""
    if duration <= 0 or bpm <= 0:
        return []
    spacing = 60.0 / bpm
    count = math.ceil(duration / spacing)
    return [i * spacing for i in range(count) if i * spacing < duration]


def detect_beats(
    samples: np.ndarray,
    sample_rate: int,
    duration: float,
    config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
) -> List[float]:
    """
    Detect beats from windowed RMS energy.

    A beat is registered at the start of each window whose RMS exceeds the
    threshold, provided enough time has passed since the previous beat. When
    nothing is detected a fixed-tempo grid is synthesized instead.
    """
    samples = np.asarray(samples, dtype=np.float32)
    window = max(1, int(sample_rate * config.beat_window_sec))

    beats: List[float] = []
    last_beat = None
    for offset in range(0, len(samples), window):
        chunk = samples[offset:offset + window].astype(np.float64)
        rms = float(np.sqrt(np.mean(chunk ** 2)))
        time = offset / sample_rate
        if rms > config.beat_rms_threshold and (
            last_beat is None or time - last_beat >= config.beat_min_spacing_sec
        ):
            beats.append(time)
            last_beat = time

    if not beats:
        beats = synthesize_beats(duration, config.fallback_bpm)
        logger.debug(f"No beats detected, synthesized {len(beats)} at {config.fallback_bpm:.0f} bpm")

    return beats


def estimate_tempo(beats: Sequence[float], config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG) -> float:
    """Tempo in bpm from the mean inter-beat interval (120 with fewer than 2 beats)."""
    if len(beats) < 2:
        return config.fallback_bpm
    average = float(np.mean(np.diff(np.asarray(beats, dtype=np.float64))))
    return float(_round_half_up(60.0 / max(average, config.min_beat_interval_sec)))


def compute_energy(waveform: Sequence[float]) -> float:
    """Mean of the waveform bins."""
    if not len(waveform):
        return 0.0
    return float(np.mean(waveform))


def estimate_chroma(
    samples: np.ndarray,
    sample_rate: int,
    bins: int = 12,
) -> List[float]:
    """
    Coarse pitch-class histogram.

    The sample stream is folded into `bins` equal windows of sample_rate/bins
    samples that repeat every `bins` windows; absolute amplitude is summed per
    window and the result divided by the largest bin (at least 1).
    """
    magnitudes = np.abs(np.asarray(samples, dtype=np.float64))
    window = max(1, sample_rate // bins)
    bucket = (np.arange(len(magnitudes)) % (window * bins)) // window
    sums = np.bincount(bucket, weights=magnitudes, minlength=bins)[:bins]
    peak = max(float(sums.max()) if len(sums) else 0.0, 1.0)
    return [float(value) for value in sums / peak]


def score_segments(
    waveform: Sequence[float],
    beats: Sequence[float],
    duration: float,
    target_duration: float,
    config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
) -> List[SegmentCandidate]:
    """
    Slide a target-length window over the waveform and keep the best windows.

    Each window gets its mean energy, a pseudo-loudness derived from its peak
    and a confidence equal to the share of expected half-second beats present.
    The top candidates by energy + confidence are returned, best first.
    """
    total = len(waveform)
    if total == 0 or duration <= 0 or target_duration <= 0:
        return []

    values = np.asarray(waveform, dtype=np.float64)
    beat_times = np.asarray(beats, dtype=np.float64)
    seconds_per_bin = duration / total
    window_bins = max(1, _round_half_up(target_duration / seconds_per_bin))
    hop = max(1, int(window_bins * config.segment_hop_fraction))
    expected_beats = target_duration / config.expected_beat_spacing_sec

    candidates = []
    start_bin = 0
    while start_bin + window_bins < total:
        end_bin = start_bin + window_bins
        window = values[start_bin:end_bin]
        start_time = start_bin * seconds_per_bin
        end_time = min(duration, end_bin * seconds_per_bin)
        in_window = int(np.count_nonzero((beat_times >= start_time) & (beat_times <= end_time)))
        candidates.append(SegmentCandidate(
            start=start_time,
            end=end_time,
            energy=float(window.sum()) / window_bins,
            loudness=-6.0 + float(window.max()) * -12.0,
            confidence=min(1.0, in_window / expected_beats),
        ))
        start_bin += hop

    candidates.sort(key=lambda c: c.energy + c.confidence, reverse=True)
    return candidates[:config.max_segment_candidates]


def extract_features(
    samples: np.ndarray,
    sample_rate: int,
    duration: float,
    target_duration: float,
    config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
) -> AudioFeatures:
    """
    Extract all features from decoded samples.

    This is the main entry point for feature extraction.
    """
    waveform = build_waveform(samples, waveform_bin_count(duration, config))
    beats = detect_beats(samples, sample_rate, duration, config)
    tempo = estimate_tempo(beats, config)
    energy = compute_energy(waveform)
    chroma = estimate_chroma(samples, sample_rate, config.chroma_bins)
    segments = score_segments(waveform, beats, duration, target_duration, config)

    logger.info(
        f"Extracted features: {len(waveform)} bins, {len(beats)} beats, "
        f"tempo {tempo:.0f} bpm, {len(segments)} segment candidates"
    )

    return AudioFeatures(
        waveform=waveform,
        beats=beats,
        tempo=tempo,
        energy=energy,
        chroma=chroma,
        segments=segments,
    )

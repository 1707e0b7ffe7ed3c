"""Tests for audio feature extraction."""
import numpy as np
import pytest

from lyricclip.pipeline.audio_features import (
    build_waveform,
    compute_energy,
    detect_beats,
    estimate_chroma,
    estimate_tempo,
    extract_features,
    score_segments,
    synthesize_beats,
    waveform_bin_count,
)
from lyricclip.pipeline.config import AnalysisConfig


class TestWaveform:
    """Tests for waveform binning."""

    def test_bin_count(self):
        assert waveform_bin_count(10) == 120
        assert waveform_bin_count(0.5) == 6
        assert waveform_bin_count(100) == 720
        assert waveform_bin_count(0) == 0

    def test_peak_per_bin_clamped(self):
        samples = np.array([0.1, -0.5, 0.3, 0.2, 2.0, 0.0], dtype=np.float32)
        waveform = build_waveform(samples, 3)
        assert waveform == pytest.approx([0.5, 0.3, 1.0])

    def test_more_bins_than_samples(self):
        samples = np.array([0.5, -0.25], dtype=np.float32)
        waveform = build_waveform(samples, 4)
        assert waveform == pytest.approx([0.5, 0.25, 0.0, 0.0])

    def test_values_in_unit_range(self):
        rng = np.random.default_rng(0)
        samples = rng.uniform(-3, 3, 1000).astype(np.float32)
        waveform = build_waveform(samples, 50)
        assert len(waveform) == 50
        assert all(0.0 <= v <= 1.0 for v in waveform)


class TestBeats:
    """Tests for beat detection and tempo."""

    def test_detects_loud_windows_with_spacing(self):
        # 10 Hz sample rate gives 5-sample (0.5 s) windows
        samples = np.array([1.0] * 5 + [0.0] * 5 + [1.0] * 5 + [1.0] * 5, dtype=np.float32)
        beats = detect_beats(samples, 10, 2.0)
        assert beats == pytest.approx([0.0, 1.0, 1.5])

    def test_min_spacing_suppresses_close_beats(self):
        config = AnalysisConfig(beat_min_spacing_sec=0.8)
        samples = np.ones(20, dtype=np.float32)
        beats = detect_beats(samples, 10, 2.0, config)
        assert beats == pytest.approx([0.0, 1.0])

    def test_silence_falls_back_to_grid(self):
        samples = np.zeros(16000 * 2, dtype=np.float32)
        beats = detect_beats(samples, 16000, 2.0)
        assert beats == pytest.approx([0.0, 0.5, 1.0, 1.5])

    def test_beats_strictly_increasing(self):
        rng = np.random.default_rng(1)
        samples = rng.uniform(-1, 1, 16000 * 5).astype(np.float32)
        beats = detect_beats(samples, 16000, 5.0)
        assert all(b > a for a, b in zip(beats, beats[1:]))

    def test_synthesize_beats(self):
        assert synthesize_beats(1.2, 120) == pytest.approx([0.0, 0.5, 1.0])
        assert synthesize_beats(0, 120) == []

    def test_tempo(self):
        assert estimate_tempo([0.0, 0.5, 1.0]) == 120
        assert estimate_tempo([0.0, 0.4]) == 150
        assert estimate_tempo([0.0, 0.7]) == 86

    def test_tempo_defaults_with_few_beats(self):
        assert estimate_tempo([]) == 120
        assert estimate_tempo([3.0]) == 120


class TestEnergyAndChroma:
    """Tests for energy and chroma."""

    def test_energy_is_waveform_mean(self):
        assert compute_energy([0.5, 0.3, 1.0]) == pytest.approx(0.6)
        assert compute_energy([]) == 0.0

    def test_chroma_normalized_by_peak(self):
        # 24 Hz with 12 bins gives 2-sample windows
        samples = np.array([2.0] * 2 + [1.0] * 22, dtype=np.float32)
        chroma = estimate_chroma(samples, 24)
        assert len(chroma) == 12
        assert chroma[0] == pytest.approx(1.0)
        assert chroma[1:] == pytest.approx([0.5] * 11)

    def test_chroma_quiet_signal_not_amplified(self):
        samples = np.full(24, 0.1, dtype=np.float32)
        chroma = estimate_chroma(samples, 24)
        assert chroma == pytest.approx([0.2] * 12)


class TestScoreSegments:
    """Tests for segment candidate generation."""

    def test_windows_and_features(self):
        waveform = [0, 0, 0, 0, 1, 1, 1, 1, 0, 0]
        candidates = score_segments(waveform, [], 10.0, 4.0)
        # Window of 4 bins, hop 1, while start + window < 10
        assert len(candidates) == 6
        best = candidates[0]
        assert (best.start, best.end) == pytest.approx((4.0, 8.0))
        assert best.energy == pytest.approx(1.0)
        assert best.loudness == pytest.approx(-18.0)
        assert best.confidence == 0.0

    def test_confidence_counts_beats(self):
        waveform = [0.5] * 10
        beats = [0.0, 0.5, 1.0, 1.5, 2.0]
        candidates = score_segments(waveform, beats, 10.0, 4.0)
        first = next(c for c in candidates if c.start == 0.0)
        assert first.confidence == pytest.approx(5 / 8)

    def test_keeps_top_eight(self):
        waveform = list(np.linspace(0, 1, 100))
        candidates = score_segments(waveform, [], 100.0, 10.0)
        assert len(candidates) == 8
        scores = [c.energy + c.confidence for c in candidates]
        assert scores == sorted(scores, reverse=True)

    def test_empty_inputs(self):
        assert score_segments([], [], 10.0, 4.0) == []
        assert score_segments([0.5] * 10, [], 10.0, 0) == []


def test_extract_features_on_silence():
    samples = np.zeros(16000 * 2, dtype=np.float32)
    features = extract_features(samples, 16000, 2.0, 1.0)
    assert len(features.waveform) == 24
    assert features.beats == pytest.approx([0.0, 0.5, 1.0, 1.5])
    assert features.tempo == 120
    assert features.energy == 0.0
    assert features.chroma == pytest.approx([0.0] * 12)
    assert len(features.segments) <= 8

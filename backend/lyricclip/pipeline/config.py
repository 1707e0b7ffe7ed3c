"""Analysis and alignment pipeline configuration."""
from dataclasses import dataclass


@dataclass
class AnalysisConfig:
    """Tuning constants for audio analysis and lyric alignment."""

    # Decoding
    sample_rate: int = 16000  # Mono PCM rate used for analysis

    # Probe fallbacks
    default_duration: float = 30.0
    default_sample_rate: int = 44100

    # Waveform
    waveform_bins_per_second: float = 12.0
    waveform_max_bins: int = 720

    # Beat detection
    beat_window_sec: float = 0.5
    beat_rms_threshold: float = 0.2
    beat_min_spacing_sec: float = 0.3
    fallback_bpm: float = 120.0

    # Tempo
    min_beat_interval_sec: float = 0.01

    # Chroma
    chroma_bins: int = 12

    # Segment candidates
    segment_hop_fraction: float = 0.25
    expected_beat_spacing_sec: float = 0.5
    max_segment_candidates: int = 8

    # Lyric alignment
    max_alignment_analysis_sec: float = 30.0
    transcript_default_confidence: float = 0.75
    beat_line_confidence: float = 0.6
    beat_word_confidence: float = 0.5
    word_slot_fill: float = 0.9  # Fraction of a word's slot it occupies
    min_line_span_sec: float = 0.25
    seconds_per_token: float = 0.4

    def to_dict(self) -> dict:
        """Convert config to dictionary for serialization."""
        return dict(self.__dict__)


# Default configuration instance
DEFAULT_ANALYSIS_CONFIG = AnalysisConfig()

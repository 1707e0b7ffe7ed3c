"""Cached audio analysis record."""
from dataclasses import dataclass, field
from typing import List

from lyricclip.pipeline.segments import SegmentCandidate


@dataclass
class AudioAnalysis:
    """Analysis of one upload's audio. Written once, then read from cache."""
    id: str
    upload_id: str
    created_at: str
    updated_at: str
    duration: float
    sample_rate: int
    waveform: List[float] = field(default_factory=list)
    beats: List[float] = field(default_factory=list)
    tempo: float = 120.0
    energy: float = 0.0
    chroma: List[float] = field(default_factory=list)
    segments: List[SegmentCandidate] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "upload_id": self.upload_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "duration": self.duration,
            "sample_rate": self.sample_rate,
            "waveform": list(self.waveform),
            "beats": list(self.beats),
            "tempo": self.tempo,
            "energy": self.energy,
            "chroma": list(self.chroma),
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AudioAnalysis":
        return cls(
            id=data["id"],
            upload_id=data["upload_id"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            duration=float(data["duration"]),
            sample_rate=int(data["sample_rate"]),
            waveform=[float(v) for v in data.get("waveform", [])],
            beats=[float(v) for v in data.get("beats", [])],
            tempo=float(data.get("tempo", 120.0)),
            energy=float(data.get("energy", 0.0)),
            chroma=[float(v) for v in data.get("chroma", [])],
            segments=[SegmentCandidate.from_dict(s) for s in data.get("segments", [])],
        )

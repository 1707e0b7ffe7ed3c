"""Cached lyric alignment record."""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from lyricclip.pipeline.alignment import AlignedLyricLine, AlignedLyricWord


class LyricModel(str, enum.Enum):
    """Which strategy produced an alignment."""
    BEATS = "beats"
    TRANSCRIPTION = "transcription"


@dataclass
class AlignmentResult:
    """What the aligner hands back to callers."""
    lines: List[AlignedLyricLine]
    words: List[AlignedLyricWord]
    duration: float
    model: LyricModel

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "words": [word.to_dict() for word in self.words],
            "duration": self.duration,
            "model": self.model.value,
        }


@dataclass
class LyricTranscript:
    """Alignment of one lyrics text against one upload."""
    id: str
    upload_id: str
    lyrics_hash: str
    created_at: str
    updated_at: str
    model: LyricModel
    duration: float
    source_checksum: str
    lines: List[AlignedLyricLine] = field(default_factory=list)
    words: List[AlignedLyricWord] = field(default_factory=list)

    @staticmethod
    def make_id(upload_id: str, lyrics_hash: str) -> str:
        return f"{upload_id}:{lyrics_hash}"

    def age_seconds(self, now: datetime) -> float:
        """Seconds since this transcript was created."""
        return (now - datetime.fromisoformat(self.created_at)).total_seconds()

    def to_result(self) -> AlignmentResult:
        return AlignmentResult(
            lines=list(self.lines),
            words=list(self.words),
            duration=self.duration,
            model=self.model,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "upload_id": self.upload_id,
            "lyrics_hash": self.lyrics_hash,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "model": self.model.value,
            "duration": self.duration,
            "source_checksum": self.source_checksum,
            "lines": [line.to_dict() for line in self.lines],
            "words": [word.to_dict() for word in self.words],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LyricTranscript":
        return cls(
            id=data["id"],
            upload_id=data["upload_id"],
            lyrics_hash=data["lyrics_hash"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            model=LyricModel(data["model"]),
            duration=float(data["duration"]),
            source_checksum=data["source_checksum"],
            lines=[AlignedLyricLine.from_dict(line) for line in data.get("lines", [])],
            words=[AlignedLyricWord.from_dict(word) for word in data.get("words", [])],
        )

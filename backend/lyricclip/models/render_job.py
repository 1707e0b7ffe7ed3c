"""Render job manifest."""
import enum
from dataclasses import dataclass, field
from typing import List, Optional

from lyricclip.models.upload import StoredFile


class RenderJobStatus(str, enum.Enum):
    """Render job status enumeration."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RenderSegment:
    """Source window to render, in seconds."""
    start: float
    end: float

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict) -> "RenderSegment":
        return cls(start=float(data["start"]), end=float(data["end"]))


@dataclass
class AutomationPoint:
    """Music gain in dB at a time (seconds from segment start)."""
    at: float
    gain_db: float

    def to_dict(self) -> dict:
        return {"at": self.at, "gain_db": self.gain_db}

    @classmethod
    def from_dict(cls, data: dict) -> "AutomationPoint":
        return cls(at=float(data["at"]), gain_db=float(data["gain_db"]))


@dataclass
class RenderJobOptions:
    """Output framing and mix options."""
    resolution: str = "1080p"  # 720p | 1080p
    aspect: str = "9:16"  # 9:16 | 1:1 | 16:9
    include_music: bool = True
    include_original: bool = True
    music_gain_db: float = 0.0
    ducking_db: float = 8.0
    fade_ms: int = 250
    music_automation: List[AutomationPoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "resolution": self.resolution,
            "aspect": self.aspect,
            "include_music": self.include_music,
            "include_original": self.include_original,
            "music_gain_db": self.music_gain_db,
            "ducking_db": self.ducking_db,
            "fade_ms": self.fade_ms,
            "music_automation": [p.to_dict() for p in self.music_automation],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RenderJobOptions":
        return cls(
            resolution=data.get("resolution", "1080p"),
            aspect=data.get("aspect", "9:16"),
            include_music=bool(data.get("include_music", True)),
            include_original=bool(data.get("include_original", True)),
            music_gain_db=float(data.get("music_gain_db", 0.0)),
            ducking_db=float(data.get("ducking_db", 8.0)),
            fade_ms=int(data.get("fade_ms", 250)),
            music_automation=[AutomationPoint.from_dict(p) for p in data.get("music_automation", [])],
        )


@dataclass
class RenderJobManifest:
    """Persisted description of a render job and its current state."""
    id: str
    upload_id: str
    created_at: str
    updated_at: str
    segment: RenderSegment
    options: RenderJobOptions
    status: RenderJobStatus = RenderJobStatus.QUEUED
    attempts: int = 0
    output: Optional[StoredFile] = None
    error: Optional[str] = None
    progress: float = 0.0

    def __repr__(self):
        return f"<RenderJobManifest(id={self.id}, status={self.status.value}, attempts={self.attempts})>"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "upload_id": self.upload_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "status": self.status.value,
            "segment": self.segment.to_dict(),
            "options": self.options.to_dict(),
            "attempts": self.attempts,
            "output": self.output.to_dict() if self.output else None,
            "error": self.error,
            "progress": self.progress,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RenderJobManifest":
        output = data.get("output")
        return cls(
            id=data["id"],
            upload_id=data["upload_id"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            status=RenderJobStatus(data["status"]),
            segment=RenderSegment.from_dict(data["segment"]),
            options=RenderJobOptions.from_dict(data.get("options", {})),
            attempts=int(data.get("attempts", 0)),
            output=StoredFile.from_dict(output) if output else None,
            error=data.get("error"),
            progress=float(data.get("progress", 0.0)),
        )

    def to_public(self, download_url: Optional[str]) -> dict:
        """
        Public view of the job.

        The output summary carries a download URL instead of its storage path.
        """
        output = None
        if self.output is not None:
            output = {
                "original_name": self.output.original_name,
                "checksum": self.output.checksum,
                "mime_type": self.output.mime_type,
                "size": self.output.size,
                "download_url": download_url,
            }
        return {
            "id": self.id,
            "upload_id": self.upload_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "status": self.status.value,
            "segment": self.segment.to_dict(),
            "options": self.options.to_dict(),
            "output": output,
            "error": self.error,
            "attempts": self.attempts,
            "progress": self.progress,
        }

"""Stored file and upload records."""
from dataclasses import dataclass
from typing import Optional


@dataclass
class StoredFile:
    """A file persisted by the storage service."""
    id: str
    path: str
    size: int
    original_name: str
    mime_type: str
    checksum: str  # sha256 hex digest
    storage: str = "local"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "path": self.path,
            "size": self.size,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "checksum": self.checksum,
            "storage": self.storage,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoredFile":
        return cls(
            id=data["id"],
            path=data["path"],
            size=int(data["size"]),
            original_name=data["original_name"],
            mime_type=data["mime_type"],
            checksum=data["checksum"],
            storage=data.get("storage", "local"),
        )


@dataclass
class StoredUpload:
    """A user upload: a video and an optional separate music track."""
    id: str
    created_at: str
    duration: float
    video: StoredFile
    audio: Optional[StoredFile] = None

    @property
    def analysis_source(self) -> Optional[StoredFile]:
        """The file audio analysis reads from: the music track, else the video."""
        return self.audio or self.video

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "duration": self.duration,
            "files": {
                "video": self.video.to_dict() if self.video else None,
                "audio": self.audio.to_dict() if self.audio else None,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoredUpload":
        files = data.get("files", {})
        video = files.get("video")
        audio = files.get("audio")
        return cls(
            id=data["id"],
            created_at=data["created_at"],
            duration=float(data["duration"]),
            video=StoredFile.from_dict(video) if video else None,
            audio=StoredFile.from_dict(audio) if audio else None,
        )

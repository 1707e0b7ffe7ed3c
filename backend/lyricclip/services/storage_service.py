"""Local-disk storage for uploads and generated outputs."""
import asyncio
import hashlib
import logging
import mimetypes
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from lyricclip.db.record_store import RecordStore
from lyricclip.models.upload import StoredFile, StoredUpload

logger = logging.getLogger(__name__)

UPLOADS_TABLE = "uploads"

# Cached records owned by an upload, removed with it
ANALYSIS_TABLE = "audio_analysis"
TRANSCRIPTS_TABLE = "lyric_transcripts"


class MissingMediaError(Exception):
    """An upload has no readable media file."""
    pass


def file_checksum(path: str | Path, chunk_size: int = 1024 * 1024) -> str:
    """sha256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


class StorageService:
    """Service for upload and output file operations."""

    def __init__(self, store: RecordStore, uploads_dir: Path):
        self.store = store
        self.uploads_dir = Path(uploads_dir)

    async def get_upload(self, upload_id: str) -> Optional[StoredUpload]:
        """Get an upload by ID."""
        data = await self.store.get(UPLOADS_TABLE, upload_id)
        return StoredUpload.from_dict(data) if data else None

    async def list_uploads(self) -> List[StoredUpload]:
        """List uploads, newest first."""
        uploads = [StoredUpload.from_dict(d) for d in await self.store.list(UPLOADS_TABLE)]
        return sorted(uploads, key=lambda u: u.created_at, reverse=True)

    async def _persist_file(self, source: Path, upload_id: str, role: str) -> StoredFile:
        if not source.exists():
            raise MissingMediaError(f"File not found: {source}")

        file_id = str(uuid.uuid4())
        destination = self.uploads_dir / upload_id / f"{role}-{file_id}{source.suffix}"
        destination.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copy2, source, destination)
        checksum = await self.compute_checksum(destination)

        return StoredFile(
            id=file_id,
            path=str(destination),
            size=destination.stat().st_size,
            original_name=source.name,
            mime_type=mimetypes.guess_type(source.name)[0] or "application/octet-stream",
            checksum=checksum,
        )

    async def create_upload(
        self,
        video_path: str | Path,
        duration: float,
        audio_path: Optional[str | Path] = None,
    ) -> StoredUpload:
        """
        Copy local media into storage and register an upload.

        Args:
            video_path: Source video file
            duration: Requested clip duration for the upload
            audio_path: Optional separate music track

        Returns:
            The stored upload
        """
        upload_id = str(uuid.uuid4())
        video = await self._persist_file(Path(video_path), upload_id, "video")
        audio = await self._persist_file(Path(audio_path), upload_id, "audio") if audio_path else None

        upload = StoredUpload(
            id=upload_id,
            created_at=datetime.utcnow().isoformat(),
            duration=duration,
            video=video,
            audio=audio,
        )
        await self.store.upsert(UPLOADS_TABLE, upload.id, upload.to_dict())
        logger.info(f"Created upload {upload.id} (audio track: {audio is not None})")
        return upload

    async def delete_upload(self, upload_id: str) -> bool:
        """Delete an upload, its files and the cached analysis derived from it."""
        upload = await self.get_upload(upload_id)
        if not upload:
            return False

        await self.store.remove(ANALYSIS_TABLE, upload_id)
        for transcript in await self.store.list(TRANSCRIPTS_TABLE):
            if transcript.get("upload_id") == upload_id:
                await self.store.remove(TRANSCRIPTS_TABLE, transcript["id"])

        upload_dir = self.uploads_dir / upload_id
        if upload_dir.exists():
            await asyncio.to_thread(shutil.rmtree, upload_dir, True)

        await self.store.remove(UPLOADS_TABLE, upload_id)
        logger.info(f"Deleted upload {upload_id}")
        return True

    async def resolve_local_path(self, stored: StoredFile) -> Path:
        """
        Locally readable path for a stored file.

        Raises:
            MissingMediaError: If the file is not on disk
        """
        path = Path(stored.path)
        if not path.exists():
            raise MissingMediaError(f"Stored file missing on disk: {stored.original_name}")
        return path

    async def compute_checksum(self, path: str | Path) -> str:
        """sha256 of a file, hashed off the event loop."""
        return await asyncio.to_thread(file_checksum, path)

    async def register_generated_output(
        self,
        path: str | Path,
        upload_id: str,
        original_name: str,
        mime_type: str,
    ) -> StoredFile:
        """Describe a generated file so it can be served later."""
        path = Path(path)
        if not path.exists():
            raise MissingMediaError(f"Generated file missing: {path}")

        checksum = await self.compute_checksum(path)
        logger.debug(f"Registered output for upload {upload_id}: {path}")
        return StoredFile(
            id=str(uuid.uuid4()),
            path=str(path),
            size=path.stat().st_size,
            original_name=original_name,
            mime_type=mime_type,
            checksum=checksum,
        )

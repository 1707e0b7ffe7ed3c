"""Lyric alignment service.

Aligns lyric text to an upload's audio, preferring a word-level transcript and
falling back to the beat grid, and caches the result per (upload, lyrics).
"""
import asyncio
import hashlib
import logging
import weakref
from datetime import datetime
from typing import List, Optional

from lyricclip.config import settings
from lyricclip.db.record_store import RecordStore
from lyricclip.models.analysis import AudioAnalysis
from lyricclip.models.lyrics import AlignmentResult, LyricModel, LyricTranscript
from lyricclip.models.upload import StoredUpload
from lyricclip.pipeline.alignment import (
    Alignment,
    align_with_beats,
    align_with_transcript,
    snap_to_beats,
    split_lyric_lines,
)
from lyricclip.pipeline.config import AnalysisConfig, DEFAULT_ANALYSIS_CONFIG
from lyricclip.services.analysis_service import AudioAnalyzer
from lyricclip.services.storage_service import MissingMediaError, StorageService, TRANSCRIPTS_TABLE
from lyricclip.services.transcription_service import AlignmentTranscriptionError, TranscriptionService

logger = logging.getLogger(__name__)


def lyrics_hash(lyrics: str) -> str:
    return hashlib.sha1(lyrics.encode("utf-8")).hexdigest()


class LyricAligner:
    """Produces and caches line and word timings for lyrics."""

    def __init__(
        self,
        store: RecordStore,
        storage: StorageService,
        analyzer: AudioAnalyzer,
        transcription: TranscriptionService,
        config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
        cache_ttl_seconds: float = settings.transcription_cache_ttl_seconds,
    ):
        self.store = store
        self.storage = storage
        self.analyzer = analyzer
        self.transcription = transcription
        self.config = config
        self.cache_ttl_seconds = cache_ttl_seconds
        # Entries vanish once no caller holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _load_valid(self, transcript_id: str, checksum: str) -> Optional[LyricTranscript]:
        data = await self.store.get(TRANSCRIPTS_TABLE, transcript_id)
        if not data:
            return None

        cached = LyricTranscript.from_dict(data)
        if cached.source_checksum != checksum:
            logger.info(f"Transcript cache miss for {transcript_id}: source changed")
            return None
        if (
            cached.model == LyricModel.TRANSCRIPTION
            and cached.age_seconds(datetime.utcnow()) > self.cache_ttl_seconds
        ):
            logger.info(f"Transcript cache miss for {transcript_id}: expired")
            return None

        logger.info(f"Transcript cache hit for {transcript_id}")
        return cached

    async def align(self, upload: StoredUpload, lyrics: str) -> AlignmentResult:
        """
        Align lyrics to an upload's audio.

        Args:
            upload: Upload whose music (or video audio) the lyrics belong to
            lyrics: Lyrics text, one line per line

        Returns:
            Snapped line and word timings with the model that produced them

        Raises:
            MissingMediaError: If the upload has no readable media
            DecodeError: If the audio cannot be decoded
        """
        source = upload.analysis_source
        if source is None:
            raise MissingMediaError(f"Upload {upload.id} has no media files")
        local_path = await self.storage.resolve_local_path(source)

        digest = lyrics_hash(lyrics)
        transcript_id = LyricTranscript.make_id(upload.id, digest)

        async with self._lock_for(transcript_id):
            checksum = await self.storage.compute_checksum(local_path)
            cached = await self._load_valid(transcript_id, checksum)
            if cached:
                return cached.to_result()

            target = min(upload.duration, self.config.max_alignment_analysis_sec)
            analysis = await self.analyzer.analyze(upload, target)

            lines = split_lyric_lines(lyrics)
            if not lines:
                model = LyricModel.TRANSCRIPTION if await self.transcription.ensure_loaded() else LyricModel.BEATS
                result = AlignmentResult(lines=[], words=[], duration=analysis.duration, model=model)
            else:
                result = await self._align_lines(upload, local_path, lines, analysis)

            await self._persist(upload.id, transcript_id, digest, checksum, result)
            return result

    async def _align_lines(
        self,
        upload: StoredUpload,
        local_path,
        lines: List[str],
        analysis: AudioAnalysis,
    ) -> AlignmentResult:
        beats = analysis.beats
        duration = analysis.duration

        aligned: Optional[Alignment] = None
        model = LyricModel.BEATS
        if await self.transcription.ensure_loaded():
            try:
                words = await self.transcription.transcribe(local_path)
                aligned = align_with_transcript(lines, words, beats, duration, self.config)
            except AlignmentTranscriptionError as e:
                logger.warning(f"Transcription failed for upload {upload.id}, using beats: {e}")
            if aligned is not None:
                model = LyricModel.TRANSCRIPTION

        if aligned is None:
            aligned = align_with_beats(lines, beats, duration, self.config)

        snapped_lines, snapped_words = snap_to_beats(aligned[0], aligned[1], beats)
        logger.info(
            f"Aligned {len(snapped_lines)} lines for upload {upload.id} using {model.value}"
        )
        return AlignmentResult(
            lines=snapped_lines,
            words=snapped_words,
            duration=duration,
            model=model,
        )

    async def _persist(
        self,
        upload_id: str,
        transcript_id: str,
        digest: str,
        checksum: str,
        result: AlignmentResult,
    ) -> None:
        now = datetime.utcnow().isoformat()
        transcript = LyricTranscript(
            id=transcript_id,
            upload_id=upload_id,
            lyrics_hash=digest,
            created_at=now,
            updated_at=now,
            model=result.model,
            duration=result.duration,
            source_checksum=checksum,
            lines=result.lines,
            words=result.words,
        )
        await self.store.upsert(TRANSCRIPTS_TABLE, transcript_id, transcript.to_dict())

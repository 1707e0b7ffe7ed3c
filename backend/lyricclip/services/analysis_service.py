"""Audio analysis service.

Decodes an upload's audio once, derives beat/energy/chroma features and
segment candidates, and caches the result per upload.
"""
import asyncio
import logging
import uuid
import weakref
from datetime import datetime
from typing import Awaitable, Callable, Optional, Tuple

import numpy as np

from lyricclip.db.record_store import RecordStore
from lyricclip.models.analysis import AudioAnalysis
from lyricclip.models.upload import StoredUpload
from lyricclip.pipeline.audio_features import extract_features
from lyricclip.pipeline.config import AnalysisConfig, DEFAULT_ANALYSIS_CONFIG
from lyricclip.services.storage_service import ANALYSIS_TABLE, MissingMediaError, StorageService
from lyricclip.utils import ffmpeg
from lyricclip.utils.ffmpeg import MediaInfo, ProbeError

logger = logging.getLogger(__name__)

ProbeFn = Callable[..., Awaitable[MediaInfo]]
DecodeFn = Callable[..., Awaitable[np.ndarray]]


class AudioAnalyzer:
    """Computes and caches one AudioAnalysis per upload."""

    def __init__(
        self,
        store: RecordStore,
        storage: StorageService,
        config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
        probe: Optional[ProbeFn] = None,
        decode: Optional[DecodeFn] = None,
    ):
        self.store = store
        self.storage = storage
        self.config = config
        self._probe = probe or ffmpeg.probe_media
        self._decode = decode or ffmpeg.decode_pcm
        # Entries vanish once no caller holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, upload_id: str) -> asyncio.Lock:
        lock = self._locks.get(upload_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[upload_id] = lock
        return lock

    async def get_cached(self, upload_id: str) -> Optional[AudioAnalysis]:
        """Get the stored analysis for an upload, if any."""
        data = await self.store.get(ANALYSIS_TABLE, upload_id)
        return AudioAnalysis.from_dict(data) if data else None

    async def analyze(self, upload: StoredUpload, target_duration: float) -> AudioAnalysis:
        """
        Analyze an upload's audio.

        Returns the cached record when one exists; concurrent first calls for
        the same upload wait on each other so the work happens once.

        Args:
            upload: Upload to analyze (its music track, else its video)
            target_duration: Clip length used to size segment candidates

        Returns:
            The analysis record

        Raises:
            MissingMediaError: If the upload has no readable media
            DecodeError: If ffmpeg cannot decode the source
        """
        cached = await self.get_cached(upload.id)
        if cached:
            return cached

        async with self._lock_for(upload.id):
            cached = await self.get_cached(upload.id)
            if cached:
                return cached
            analysis = await self._compute(upload, target_duration)
            await self.store.upsert(ANALYSIS_TABLE, upload.id, analysis.to_dict())
            return analysis

    async def _probe_metadata(self, path) -> Tuple[float, int]:
        """Duration and sample rate, falling back to defaults if probing fails."""
        try:
            info = await self._probe(path)
        except ProbeError as e:
            logger.warning(f"Probe failed for {path}, using defaults: {e}")
            return self.config.default_duration, self.config.default_sample_rate

        duration = info.duration or self.config.default_duration
        sample_rate = info.sample_rate or self.config.default_sample_rate
        return duration, sample_rate

    async def _compute(self, upload: StoredUpload, target_duration: float) -> AudioAnalysis:
        source = upload.analysis_source
        if source is None:
            raise MissingMediaError(f"Upload {upload.id} has no media files")
        local_path = await self.storage.resolve_local_path(source)

        logger.info(f"Analyzing audio for upload {upload.id} from {local_path.name}")
        duration, _source_rate = await self._probe_metadata(local_path)
        samples = await self._decode(local_path, self.config.sample_rate)

        features = extract_features(
            samples,
            self.config.sample_rate,
            duration,
            target_duration,
            self.config,
        )

        now = datetime.utcnow().isoformat()
        return AudioAnalysis(
            id=str(uuid.uuid4()),
            upload_id=upload.id,
            created_at=now,
            updated_at=now,
            duration=duration,
            sample_rate=self.config.sample_rate,
            waveform=features.waveform,
            beats=features.beats,
            tempo=features.tempo,
            energy=features.energy,
            chroma=features.chroma,
            segments=features.segments,
        )

"""Service wiring for the application."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from lyricclip.config import Settings, settings as default_settings
from lyricclip.db.database import async_session_maker
from lyricclip.db.record_store import RecordStore
from lyricclip.pipeline.config import AnalysisConfig
from lyricclip.services.analysis_service import AudioAnalyzer
from lyricclip.services.lyric_service import LyricAligner
from lyricclip.services.render_service import RenderScheduler
from lyricclip.services.storage_service import StorageService
from lyricclip.services.transcription_service import TranscriptionService
from lyricclip.workers.render_queue import RenderQueueBackend, create_render_queue


@dataclass
class ServiceContainer:
    """All long-lived services, built once per application."""
    store: RecordStore
    storage: StorageService
    analyzer: AudioAnalyzer
    transcription: TranscriptionService
    aligner: LyricAligner
    scheduler: RenderScheduler


def build_container(
    config: Settings = default_settings,
    session_maker: Optional[async_sessionmaker] = None,
    queue: Optional[RenderQueueBackend] = None,
    transcription: Optional[TranscriptionService] = None,
) -> ServiceContainer:
    """Build the service graph from settings."""
    store = RecordStore(session_maker or async_session_maker)
    storage = StorageService(store, config.uploads_dir)
    analysis_config = AnalysisConfig(sample_rate=config.analysis_sample_rate)
    analyzer = AudioAnalyzer(store, storage, analysis_config)

    if transcription is None:
        transcription = TranscriptionService(
            enabled=config.enable_transcription,
            model_name=config.transcription_model,
            device=config.transcription_device,
            compute_type=config.transcription_compute_type,
        )
    aligner = LyricAligner(
        store,
        storage,
        analyzer,
        transcription,
        config=analysis_config,
        cache_ttl_seconds=config.transcription_cache_ttl_seconds,
    )
    scheduler = RenderScheduler(
        store,
        storage,
        queue or create_render_queue(config),
        config.renders_dir,
        progress_interval=config.render_progress_interval,
    )
    return ServiceContainer(
        store=store,
        storage=storage,
        analyzer=analyzer,
        transcription=transcription,
        aligner=aligner,
        scheduler=scheduler,
    )

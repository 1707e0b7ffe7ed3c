"""Render job scheduling and execution.

Manifests are persisted in the record store; a queue backend feeds their ids
to `process_job` one at a time.
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from lyricclip.db.record_store import RecordStore
from lyricclip.models.render_job import (
    RenderJobManifest,
    RenderJobOptions,
    RenderJobStatus,
    RenderSegment,
)
from lyricclip.pipeline.filtergraph import build_mix_graph, resolve_output_dimensions
from lyricclip.services.storage_service import StorageService
from lyricclip.utils import ffmpeg
from lyricclip.workers.render_queue import ProgressReporter, RenderQueueBackend

logger = logging.getLogger(__name__)

RENDER_JOBS_TABLE = "render_jobs"
OUTPUT_FILENAME = "output.mp4"
OUTPUT_MIME_TYPE = "video/mp4"

RenderFn = Callable[..., Awaitable[Path]]


class RenderJobNotFoundError(Exception):
    """No render job with the given id."""
    pass


class InvalidJobStateError(ValueError):
    """The job's status does not allow the requested transition."""
    pass


class RenderPreconditionError(Exception):
    """A job cannot run with the inputs it references."""
    pass


def download_url(job_id: str) -> str:
    return f"/api/render/{job_id}/file"


class RenderScheduler:
    """Single-worker render scheduler."""

    def __init__(
        self,
        store: RecordStore,
        storage: StorageService,
        queue: RenderQueueBackend,
        renders_dir: Path,
        render: Optional[RenderFn] = None,
        progress_interval: float = 0.5,
    ):
        self.store = store
        self.storage = storage
        self.queue = queue
        self.renders_dir = Path(renders_dir)
        self._render = render or ffmpeg.render_mix
        self.progress_interval = progress_interval
        self._lock = asyncio.Lock()

    # ---- persistence ----

    async def _load(self, job_id: str) -> Optional[RenderJobManifest]:
        data = await self.store.get(RENDER_JOBS_TABLE, job_id)
        return RenderJobManifest.from_dict(data) if data else None

    async def _save(self, manifest: RenderJobManifest) -> None:
        manifest.updated_at = datetime.utcnow().isoformat()
        await self.store.upsert(RENDER_JOBS_TABLE, manifest.id, manifest.to_dict())

    async def _require(self, job_id: str) -> RenderJobManifest:
        manifest = await self._load(job_id)
        if manifest is None:
            raise RenderJobNotFoundError(f"Render job {job_id} not found")
        return manifest

    async def _fail(self, job_id: str, message: str) -> None:
        async with self._lock:
            manifest = await self._load(job_id)
            if manifest is None or manifest.status == RenderJobStatus.CANCELLED:
                return
            manifest.status = RenderJobStatus.FAILED
            manifest.error = message
            await self._save(manifest)
        logger.error(f"Render job {job_id} failed: {message}")

    # ---- lifecycle ----

    async def start(self) -> None:
        """Recover manifests from a previous run and start the queue worker."""
        resubmit: List[RenderJobManifest] = []
        async with self._lock:
            for data in await self.store.list(RENDER_JOBS_TABLE):
                manifest = RenderJobManifest.from_dict(data)
                if manifest.status == RenderJobStatus.PROCESSING:
                    manifest.status = RenderJobStatus.FAILED
                    manifest.error = "render interrupted"
                    await self._save(manifest)
                    logger.warning(f"Marked interrupted render job {manifest.id} as failed")
                elif manifest.status == RenderJobStatus.QUEUED and self.queue.volatile:
                    resubmit.append(manifest)

        await self.queue.start(self.process_job)
        for manifest in sorted(resubmit, key=lambda m: m.created_at):
            await self.queue.submit(manifest.id, manifest.attempts)
        if resubmit:
            logger.info(f"Resubmitted {len(resubmit)} queued render jobs")

    async def shutdown(self) -> None:
        await self.queue.shutdown()

    # ---- operations ----

    async def enqueue(
        self,
        upload_id: str,
        segment: RenderSegment,
        options: Optional[RenderJobOptions] = None,
    ) -> RenderJobManifest:
        """
        Persist a queued render job and hand it to the queue.

        Args:
            upload_id: Upload to render from
            segment: Source window in seconds
            options: Framing and mix options

        Returns:
            The queued manifest

        Raises:
            ValueError: If the segment or options are invalid
        """
        if segment.start < 0:
            raise ValueError("Segment start must be non-negative")
        if segment.end <= segment.start:
            raise ValueError("Segment end must be after its start")
        options = options or RenderJobOptions()
        resolve_output_dimensions(options.resolution, options.aspect)

        now = datetime.utcnow().isoformat()
        manifest = RenderJobManifest(
            id=str(uuid.uuid4()),
            upload_id=upload_id,
            created_at=now,
            updated_at=now,
            segment=segment,
            options=options,
        )
        async with self._lock:
            await self._save(manifest)
        await self.queue.submit(manifest.id, manifest.attempts)
        logger.info(f"Queued render job {manifest.id} for upload {upload_id}")
        return manifest

    async def get_job(self, job_id: str) -> Optional[dict]:
        """Public view of a job, or None."""
        manifest = await self._load(job_id)
        if manifest is None:
            return None
        return manifest.to_public(download_url(manifest.id) if manifest.output else None)

    async def list_jobs(self) -> List[dict]:
        """Public views of all jobs, newest first."""
        manifests = [RenderJobManifest.from_dict(d) for d in await self.store.list(RENDER_JOBS_TABLE)]
        manifests.sort(key=lambda m: m.created_at, reverse=True)
        return [m.to_public(download_url(m.id) if m.output else None) for m in manifests]

    async def retry(self, job_id: str) -> dict:
        """
        Requeue a failed job.

        Raises:
            RenderJobNotFoundError: If the job does not exist
            InvalidJobStateError: If the job is not failed
        """
        async with self._lock:
            manifest = await self._require(job_id)
            if manifest.status != RenderJobStatus.FAILED:
                raise InvalidJobStateError(
                    f"Only failed jobs can be retried (job is {manifest.status.value})"
                )
            manifest.status = RenderJobStatus.QUEUED
            manifest.attempts += 1
            manifest.error = None
            manifest.progress = 0.0
            await self._save(manifest)

        await self.queue.submit(manifest.id, manifest.attempts)
        logger.info(f"Retrying render job {job_id} (attempt {manifest.attempts})")
        return manifest.to_public(None)

    async def cancel(self, job_id: str) -> dict:
        """
        Cancel a queued or running job.

        Raises:
            RenderJobNotFoundError: If the job does not exist
            InvalidJobStateError: If the job already finished
        """
        async with self._lock:
            manifest = await self._require(job_id)
            if manifest.status not in (RenderJobStatus.QUEUED, RenderJobStatus.PROCESSING):
                raise InvalidJobStateError(
                    f"Only queued or processing jobs can be cancelled (job is {manifest.status.value})"
                )
            manifest.status = RenderJobStatus.CANCELLED
            await self._save(manifest)

        await self.queue.cancel(job_id)
        logger.info(f"Cancelled render job {job_id}")
        return manifest.to_public(None)

    async def output_path(self, job_id: str) -> Path:
        """
        Local path of a completed job's output.

        Raises:
            RenderJobNotFoundError: If the job does not exist or has no output
        """
        manifest = await self._require(job_id)
        if manifest.status != RenderJobStatus.COMPLETED or manifest.output is None:
            raise RenderJobNotFoundError(f"Render job {job_id} has no output")
        return await self.storage.resolve_local_path(manifest.output)

    # ---- worker ----

    async def _begin(self, job_id: str) -> Optional[RenderJobManifest]:
        """Check preconditions and move a queued job to processing."""
        async with self._lock:
            manifest = await self._load(job_id)
            if manifest is None:
                logger.warning(f"Render job {job_id} not found, skipping")
                return None
            if manifest.status != RenderJobStatus.QUEUED:
                logger.info(f"Render job {job_id} is {manifest.status.value}, skipping")
                return None

        upload = await self.storage.get_upload(manifest.upload_id)
        if upload is None:
            raise RenderPreconditionError("upload not found")
        if manifest.options.include_music and upload.audio is None:
            raise RenderPreconditionError(
                "Music was requested but the upload has no audio track"
            )

        async with self._lock:
            manifest = await self._load(job_id)
            if manifest is None or manifest.status != RenderJobStatus.QUEUED:
                return None
            manifest.status = RenderJobStatus.PROCESSING
            manifest.attempts += 1
            manifest.error = None
            manifest.progress = 0.0
            await self._save(manifest)
        return manifest

    def _progress_writer(self, job_id: str, on_progress: Optional[ProgressReporter]):
        last_write = 0.0

        async def write(fraction: float) -> None:
            nonlocal last_write
            if on_progress is not None:
                await on_progress(fraction)
            now = time.monotonic()
            if now - last_write < self.progress_interval:
                return
            last_write = now
            async with self._lock:
                manifest = await self._load(job_id)
                if manifest is None or manifest.status != RenderJobStatus.PROCESSING:
                    return
                manifest.progress = min(1.0, max(0.0, fraction))
                await self._save(manifest)

        return write

    async def process_job(self, job_id: str, on_progress: Optional[ProgressReporter] = None) -> None:
        """
        Run one render job to completion.

        Failures are recorded on the manifest and logged; only cancellation
        propagates.
        """
        try:
            manifest = await self._begin(job_id)
        except RenderPreconditionError as e:
            await self._fail(job_id, str(e))
            return
        except Exception as e:
            logger.exception(f"Render job {job_id} could not start")
            await self._fail(job_id, str(e))
            return
        if manifest is None:
            return

        logger.info(f"Rendering job {job_id} (attempt {manifest.attempts})")
        try:
            upload = await self.storage.get_upload(manifest.upload_id)
            if upload is None:
                raise RenderPreconditionError("upload not found")
            video_path = await self.storage.resolve_local_path(upload.video)
            music_path = None
            if manifest.options.include_music and upload.audio is not None:
                music_path = await self.storage.resolve_local_path(upload.audio)

            duration = manifest.segment.duration
            graph = build_mix_graph(manifest.options, duration, has_music=music_path is not None)
            output_path = self.renders_dir / job_id / OUTPUT_FILENAME

            await self._render(
                video_path,
                output_path,
                manifest.segment.start,
                duration,
                graph,
                music_path=music_path,
                progress_callback=self._progress_writer(job_id, on_progress),
            )
            stored = await self.storage.register_generated_output(
                output_path,
                manifest.upload_id,
                original_name=f"render-{job_id}.mp4",
                mime_type=OUTPUT_MIME_TYPE,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not isinstance(e, (ffmpeg.FFmpegError, RenderPreconditionError)):
                logger.exception(f"Unexpected error rendering job {job_id}")
            await self._fail(job_id, str(e))
            return

        async with self._lock:
            current = await self._load(job_id)
            if current is None or current.status == RenderJobStatus.CANCELLED:
                logger.info(f"Render job {job_id} finished after cancellation, keeping it cancelled")
                return
            current.status = RenderJobStatus.COMPLETED
            current.output = stored
            current.error = None
            current.progress = 1.0
            await self._save(current)
        logger.info(f"Render job {job_id} completed")

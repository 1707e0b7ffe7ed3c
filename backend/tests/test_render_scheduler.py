"""Tests for the render job scheduler and queue backends."""
import asyncio
import sys
import types
from datetime import datetime

import pytest
import pytest_asyncio

from lyricclip.models.render_job import (
    RenderJobManifest,
    RenderJobOptions,
    RenderJobStatus,
    RenderSegment,
)
from lyricclip.services.render_service import (
    InvalidJobStateError,
    RENDER_JOBS_TABLE,
    RenderJobNotFoundError,
    RenderScheduler,
)
from lyricclip.utils.ffmpeg import EncoderError
from lyricclip.workers.render_queue import BullRenderQueue, InMemoryRenderQueue, create_render_queue


class _RecordingQueue:
    """Queue backend that only records submissions."""

    volatile = True

    def __init__(self):
        self.submitted = []
        self.handler = None

    async def start(self, handler):
        self.handler = handler

    async def submit(self, job_id, attempt=0):
        self.submitted.append((job_id, attempt))

    async def cancel(self, job_id):
        return False

    async def shutdown(self):
        pass


class _FakeRender:
    """Stands in for render_mix: writes a small file and reports progress."""

    def __init__(self, error=None, before_finish=None):
        self.error = error
        self.before_finish = before_finish
        self.calls = []

    async def __call__(self, video_path, output_path, start_time, duration, graph,
                       music_path=None, progress_callback=None):
        self.calls.append({
            "video_path": video_path,
            "start_time": start_time,
            "duration": duration,
            "graph": graph,
            "music_path": music_path,
        })
        if progress_callback:
            await progress_callback(0.5)
        if self.before_finish:
            await self.before_finish()
        if self.error:
            raise self.error
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"rendered video")
        return output_path


@pytest.fixture
def queue():
    return _RecordingQueue()


@pytest.fixture
def render():
    return _FakeRender()


@pytest.fixture
def scheduler(store, storage, queue, render, tmp_path):
    return RenderScheduler(store, storage, queue, tmp_path / "renders", render=render, progress_interval=0)


@pytest_asyncio.fixture
async def upload(storage, media_files):
    video, audio = media_files
    return await storage.create_upload(video, 30.0, audio_path=audio)


@pytest_asyncio.fixture
async def video_only_upload(storage, media_files):
    video, _ = media_files
    return await storage.create_upload(video, 30.0)


def _segment():
    return RenderSegment(start=5.0, end=20.0)


# =============================================================================
# Enqueue
# =============================================================================

class TestEnqueue:
    """Tests for enqueueing render jobs."""

    @pytest.mark.asyncio
    async def test_enqueue_persists_and_submits(self, scheduler, queue, upload):
        manifest = await scheduler.enqueue(upload.id, _segment())

        assert manifest.status == RenderJobStatus.QUEUED
        assert manifest.attempts == 0
        assert queue.submitted == [(manifest.id, 0)]
        job = await scheduler.get_job(manifest.id)
        assert job["status"] == "queued"
        assert job["options"]["ducking_db"] == 8.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("segment", [
        RenderSegment(start=-1.0, end=5.0),
        RenderSegment(start=5.0, end=5.0),
        RenderSegment(start=6.0, end=5.0),
    ])
    async def test_invalid_segment(self, scheduler, queue, upload, segment):
        with pytest.raises(ValueError):
            await scheduler.enqueue(upload.id, segment)
        assert queue.submitted == []

    @pytest.mark.asyncio
    async def test_invalid_options(self, scheduler, upload):
        with pytest.raises(ValueError):
            await scheduler.enqueue(upload.id, _segment(), RenderJobOptions(resolution="4k"))

    @pytest.mark.asyncio
    async def test_list_jobs_newest_first(self, scheduler, upload):
        first = await scheduler.enqueue(upload.id, _segment())
        second = await scheduler.enqueue(upload.id, _segment())
        jobs = await scheduler.list_jobs()
        assert [j["id"] for j in jobs] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler):
        assert await scheduler.get_job("missing") is None


# =============================================================================
# Processing
# =============================================================================

class TestProcessJob:
    """Tests for the worker body."""

    @pytest.mark.asyncio
    async def test_success(self, scheduler, render, upload):
        manifest = await scheduler.enqueue(upload.id, _segment())

        await scheduler.process_job(manifest.id)

        job = await scheduler.get_job(manifest.id)
        assert job["status"] == "completed"
        assert job["progress"] == 1.0
        assert job["attempts"] == 1
        assert job["error"] is None
        assert job["output"]["download_url"] == f"/api/render/{manifest.id}/file"
        assert job["output"]["mime_type"] == "video/mp4"
        assert "path" not in job["output"]

        call = render.calls[0]
        assert call["start_time"] == 5.0
        assert call["duration"] == 15.0
        assert str(call["music_path"]) == upload.audio.path
        assert "sidechaincompress" in call["graph"].filter_complex

        path = await scheduler.output_path(manifest.id)
        assert path.read_bytes() == b"rendered video"

    @pytest.mark.asyncio
    async def test_music_without_audio_track_fails_before_processing(
        self, scheduler, store, render, video_only_upload, monkeypatch
    ):
        statuses = []
        original_upsert = store.upsert

        async def recording_upsert(table, record_id, payload):
            if table == RENDER_JOBS_TABLE:
                statuses.append(payload["status"])
            return await original_upsert(table, record_id, payload)

        monkeypatch.setattr(store, "upsert", recording_upsert)
        manifest = await scheduler.enqueue(video_only_upload.id, _segment())

        await scheduler.process_job(manifest.id)

        job = await scheduler.get_job(manifest.id)
        assert job["status"] == "failed"
        assert "audio track" in job["error"]
        assert job["attempts"] == 0
        assert "processing" not in statuses
        assert render.calls == []

    @pytest.mark.asyncio
    async def test_video_only_without_music(self, scheduler, render, video_only_upload):
        options = RenderJobOptions(include_music=False)
        manifest = await scheduler.enqueue(video_only_upload.id, _segment(), options)

        await scheduler.process_job(manifest.id)

        assert (await scheduler.get_job(manifest.id))["status"] == "completed"
        assert render.calls[0]["music_path"] is None

    @pytest.mark.asyncio
    async def test_missing_upload(self, scheduler, render):
        manifest = await scheduler.enqueue("no-such-upload", _segment())

        await scheduler.process_job(manifest.id)

        job = await scheduler.get_job(manifest.id)
        assert job["status"] == "failed"
        assert job["error"] == "upload not found"
        assert render.calls == []

    @pytest.mark.asyncio
    async def test_encoder_failure(self, store, storage, queue, upload, tmp_path):
        render = _FakeRender(error=EncoderError("Render failed: Invalid argument"))
        scheduler = RenderScheduler(store, storage, queue, tmp_path / "renders", render=render)
        manifest = await scheduler.enqueue(upload.id, _segment())

        await scheduler.process_job(manifest.id)

        job = await scheduler.get_job(manifest.id)
        assert job["status"] == "failed"
        assert job["error"] == "Render failed: Invalid argument"
        assert job["attempts"] == 1
        assert job["output"] is None

    @pytest.mark.asyncio
    async def test_skips_non_queued_jobs(self, scheduler, render, upload):
        manifest = await scheduler.enqueue(upload.id, _segment())
        await scheduler.process_job(manifest.id)
        await scheduler.process_job(manifest.id)
        await scheduler.process_job("unknown")
        assert len(render.calls) == 1

    @pytest.mark.asyncio
    async def test_progress_is_written_while_processing(self, store, storage, queue, upload, tmp_path):
        seen = []
        holder = {}

        async def inspect():
            seen.append(await holder["scheduler"].get_job(holder["id"]))

        render = _FakeRender(before_finish=inspect)
        scheduler = RenderScheduler(store, storage, queue, tmp_path / "renders", render=render, progress_interval=0)
        holder["scheduler"] = scheduler
        manifest = await scheduler.enqueue(upload.id, _segment())
        holder["id"] = manifest.id

        reported = []

        async def on_progress(fraction):
            reported.append(fraction)

        await scheduler.process_job(manifest.id, on_progress)

        assert seen[0]["status"] == "processing"
        assert seen[0]["progress"] == 0.5
        assert reported == [0.5]

    @pytest.mark.asyncio
    async def test_completion_after_cancel_stays_cancelled(self, store, storage, queue, upload, tmp_path):
        holder = {}

        async def cancel_midway():
            await holder["scheduler"].cancel(holder["id"])

        render = _FakeRender(before_finish=cancel_midway)
        scheduler = RenderScheduler(store, storage, queue, tmp_path / "renders", render=render)
        holder["scheduler"] = scheduler
        manifest = await scheduler.enqueue(upload.id, _segment())
        holder["id"] = manifest.id

        await scheduler.process_job(manifest.id)

        job = await scheduler.get_job(manifest.id)
        assert job["status"] == "cancelled"
        assert job["output"] is None


# =============================================================================
# Retry & Cancel
# =============================================================================

class TestRetryAndCancel:
    """Tests for operator transitions."""

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, store, storage, queue, upload, tmp_path):
        render = _FakeRender(error=EncoderError("boom"))
        scheduler = RenderScheduler(store, storage, queue, tmp_path / "renders", render=render)
        manifest = await scheduler.enqueue(upload.id, _segment())
        await scheduler.process_job(manifest.id)

        job = await scheduler.retry(manifest.id)

        assert job["status"] == "queued"
        assert job["attempts"] == 2
        assert job["error"] is None
        assert queue.submitted[-1] == (manifest.id, 2)

        render.error = None
        await scheduler.process_job(manifest.id)
        job = await scheduler.get_job(manifest.id)
        assert job["status"] == "completed"
        assert job["attempts"] == 3

    @pytest.mark.asyncio
    async def test_retry_requires_failed(self, scheduler, upload):
        manifest = await scheduler.enqueue(upload.id, _segment())
        with pytest.raises(InvalidJobStateError):
            await scheduler.retry(manifest.id)
        with pytest.raises(RenderJobNotFoundError):
            await scheduler.retry("missing")

    @pytest.mark.asyncio
    async def test_cancel_queued_job(self, scheduler, render, upload):
        manifest = await scheduler.enqueue(upload.id, _segment())

        job = await scheduler.cancel(manifest.id)
        await scheduler.process_job(manifest.id)

        assert job["status"] == "cancelled"
        assert (await scheduler.get_job(manifest.id))["status"] == "cancelled"
        assert render.calls == []

    @pytest.mark.asyncio
    async def test_cancel_finished_job(self, scheduler, upload):
        manifest = await scheduler.enqueue(upload.id, _segment())
        await scheduler.process_job(manifest.id)
        with pytest.raises(InvalidJobStateError):
            await scheduler.cancel(manifest.id)
        with pytest.raises(RenderJobNotFoundError):
            await scheduler.cancel("missing")

    @pytest.mark.asyncio
    async def test_output_path_requires_completion(self, scheduler, upload):
        manifest = await scheduler.enqueue(upload.id, _segment())
        with pytest.raises(RenderJobNotFoundError):
            await scheduler.output_path(manifest.id)


# =============================================================================
# Lifecycle & Queue Backends
# =============================================================================

class TestLifecycle:
    """Tests for startup recovery and the in-memory queue."""

    @pytest.mark.asyncio
    async def test_start_recovers_interrupted_and_queued_jobs(self, store, storage, render, upload, tmp_path):
        now = datetime.utcnow().isoformat()
        interrupted = RenderJobManifest(
            id="interrupted",
            upload_id=upload.id,
            created_at=now,
            updated_at=now,
            segment=_segment(),
            options=RenderJobOptions(),
            status=RenderJobStatus.PROCESSING,
            attempts=1,
        )
        pending = RenderJobManifest(
            id="pending",
            upload_id=upload.id,
            created_at=now,
            updated_at=now,
            segment=_segment(),
            options=RenderJobOptions(),
        )
        await store.upsert(RENDER_JOBS_TABLE, interrupted.id, interrupted.to_dict())
        await store.upsert(RENDER_JOBS_TABLE, pending.id, pending.to_dict())

        queue = InMemoryRenderQueue()
        scheduler = RenderScheduler(store, storage, queue, tmp_path / "renders", render=render)
        await scheduler.start()
        try:
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await scheduler.shutdown()

        recovered = await scheduler.get_job("interrupted")
        assert recovered["status"] == "failed"
        assert recovered["error"] == "render interrupted"
        assert (await scheduler.get_job("pending"))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_in_memory_queue_runs_jobs_in_order(self, store, storage, render, upload, tmp_path):
        queue = InMemoryRenderQueue()
        scheduler = RenderScheduler(store, storage, queue, tmp_path / "renders", render=render)
        await scheduler.start()
        try:
            first = await scheduler.enqueue(upload.id, RenderSegment(start=0.0, end=10.0))
            second = await scheduler.enqueue(upload.id, RenderSegment(start=10.0, end=20.0))
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await scheduler.shutdown()

        assert [c["start_time"] for c in render.calls] == [0.0, 10.0]
        assert (await scheduler.get_job(first.id))["status"] == "completed"
        assert (await scheduler.get_job(second.id))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, store, storage, upload, tmp_path):
        started = asyncio.Event()
        interrupted = []

        async def hang():
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                interrupted.append(True)
                raise

        render = _FakeRender(before_finish=hang)
        queue = InMemoryRenderQueue()
        scheduler = RenderScheduler(store, storage, queue, tmp_path / "renders", render=render)
        await scheduler.start()
        try:
            manifest = await scheduler.enqueue(upload.id, _segment())
            await asyncio.wait_for(started.wait(), timeout=5)
            assert (await scheduler.get_job(manifest.id))["status"] == "processing"

            await scheduler.cancel(manifest.id)
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await scheduler.shutdown()

        assert interrupted == [True]
        assert (await scheduler.get_job(manifest.id))["status"] == "cancelled"


def test_create_render_queue_without_redis():
    class _Config:
        redis_url = None
        render_queue_name = "renders"

    assert isinstance(create_render_queue(_Config()), InMemoryRenderQueue)


class _FakeBullQueue:
    def __init__(self, name, opts):
        self.name = name
        self.opts = opts
        self.added = []
        self.closed = False

    async def add(self, name, data, opts):
        self.added.append((name, data, opts))

    async def close(self):
        self.closed = True


class _FakeBullWorker:
    def __init__(self, name, processor, opts):
        self.name = name
        self.processor = processor
        self.opts = opts
        self.closed = False

    async def close(self):
        self.closed = True


class _FakeBullJob:
    def __init__(self, manifest_id):
        self.data = {"manifestId": manifest_id}
        self.progress = []

    async def updateProgress(self, value):
        self.progress.append(value)


@pytest.fixture
def fake_bullmq(monkeypatch):
    module = types.ModuleType("bullmq")
    module.Queue = _FakeBullQueue
    module.Worker = _FakeBullWorker
    monkeypatch.setitem(sys.modules, "bullmq", module)
    return module


class TestBullRenderQueue:
    """Tests for the bullmq-backed queue."""

    @pytest.mark.asyncio
    async def test_submit_uses_attempt_job_ids(self, fake_bullmq):
        queue = BullRenderQueue("redis://localhost:6379", "renders")

        await queue.submit("job-1")
        await queue.submit("job-1", attempt=2)

        assert queue._queue.opts == {"connection": "redis://localhost:6379"}
        assert [(name, data) for name, data, _ in queue._queue.added] == [
            ("render", {"manifestId": "job-1"}),
            ("render", {"manifestId": "job-1"}),
        ]
        assert [opts["jobId"] for _, _, opts in queue._queue.added] == ["job-1-0", "job-1-2"]
        assert all(opts["removeOnComplete"] and opts["removeOnFail"] for _, _, opts in queue._queue.added)

    @pytest.mark.asyncio
    async def test_worker_runs_handler_with_progress(self, fake_bullmq):
        handled = []

        async def handler(job_id, on_progress):
            handled.append(job_id)
            await on_progress(0.5)
            await on_progress(1.0)

        queue = BullRenderQueue("redis://localhost:6379", "renders")
        await queue.start(handler)
        assert queue._worker.opts == {"connection": "redis://localhost:6379", "concurrency": 1}

        job = _FakeBullJob("job-1")
        await queue._worker.processor(job, "token")

        assert handled == ["job-1"]
        assert job.progress == [50, 100]

        await queue.shutdown()
        assert queue._queue.closed

    @pytest.mark.asyncio
    async def test_cancel_active_job(self, fake_bullmq):
        started = asyncio.Event()

        async def handler(job_id, on_progress):
            started.set()
            await asyncio.Event().wait()

        queue = BullRenderQueue("redis://localhost:6379", "renders")
        await queue.start(handler)
        processing = asyncio.create_task(queue._worker.processor(_FakeBullJob("job-1"), "token"))
        await asyncio.wait_for(started.wait(), timeout=5)

        assert await queue.cancel("other") is False
        assert await queue.cancel("job-1") is True
        assert await asyncio.wait_for(processing, timeout=5) is None

    def test_create_render_queue_with_redis(self, fake_bullmq):
        class _Config:
            redis_url = "redis://localhost:6379"
            render_queue_name = "renders"

        assert isinstance(create_render_queue(_Config()), BullRenderQueue)

    def test_create_render_queue_falls_back(self, fake_bullmq):
        class _BrokenQueue:
            def __init__(self, name, opts):
                raise ConnectionError("redis unreachable")

        fake_bullmq.Queue = _BrokenQueue

        class _Config:
            redis_url = "redis://localhost:6379"
            render_queue_name = "renders"

        assert isinstance(create_render_queue(_Config()), InMemoryRenderQueue)

"""Render queue backends.

Both backends run at most one render at a time and hand each job id to the
scheduler's handler. The in-memory backend keeps pending ids in an asyncio
queue and is lost on restart; the Bull backend keeps them in Redis.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol, Tuple

from lyricclip.config import Settings

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[float], Awaitable[None]]
RenderHandler = Callable[[str, Optional[ProgressReporter]], Awaitable[None]]


class RenderQueueBackend(Protocol):
    """What the scheduler needs from a queue."""

    volatile: bool

    async def start(self, handler: RenderHandler) -> None: ...

    async def submit(self, job_id: str, attempt: int = 0) -> None: ...

    async def cancel(self, job_id: str) -> bool: ...

    async def shutdown(self) -> None: ...


class _ActiveRender:
    """Tracks the single in-flight render so it can be cancelled."""

    def __init__(self):
        self._active: Optional[Tuple[str, asyncio.Task]] = None
        self._cancelled: set = set()

    async def run(self, job_id: str, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._active = (job_id, task)
        try:
            await task
        except asyncio.CancelledError:
            # Operator cancellation ends the job, anything else stops the worker
            if job_id not in self._cancelled:
                raise
            logger.info(f"Render {job_id} cancelled")
        finally:
            self._active = None
            self._cancelled.discard(job_id)

    def cancel(self, job_id: str) -> bool:
        if self._active is None or self._active[0] != job_id:
            return False
        self._cancelled.add(job_id)
        self._active[1].cancel()
        return True


class InMemoryRenderQueue:
    """Single asyncio worker reading job ids from an in-process queue."""

    volatile = True

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._handler: Optional[RenderHandler] = None
        self._active = _ActiveRender()

    async def start(self, handler: RenderHandler) -> None:
        if self._worker is not None:
            logger.warning("Render queue already started")
            return
        self._handler = handler
        self._worker = asyncio.create_task(self._run())
        logger.info("In-memory render queue started")

    async def _run(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._active.run(job_id, self._handler(job_id, None))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Render handler crashed for {job_id}: {e}")
            finally:
                self._queue.task_done()

    async def submit(self, job_id: str, attempt: int = 0) -> None:
        await self._queue.put(job_id)

    async def cancel(self, job_id: str) -> bool:
        """Cancel the running render if it is this job."""
        return self._active.cancel(job_id)

    async def join(self) -> None:
        """Wait until every submitted job has been handled."""
        await self._queue.join()

    async def shutdown(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None
        logger.info("In-memory render queue stopped")


class BullRenderQueue:
    """bullmq queue and worker (concurrency 1) backed by Redis."""

    volatile = False

    def __init__(self, redis_url: str, queue_name: str):
        from bullmq import Queue

        self.redis_url = redis_url
        self.queue_name = queue_name
        self._queue = Queue(queue_name, {"connection": redis_url})
        self._worker = None
        self._handler: Optional[RenderHandler] = None
        self._active = _ActiveRender()

    async def start(self, handler: RenderHandler) -> None:
        from bullmq import Worker

        self._handler = handler
        self._worker = Worker(
            self.queue_name,
            self._process,
            {"connection": self.redis_url, "concurrency": 1},
        )
        logger.info(f"Bull render worker listening on {self.queue_name}")

    async def _process(self, job, job_token):
        manifest_id = job.data["manifestId"]

        async def report(fraction: float) -> None:
            await job.updateProgress(round(fraction * 100))

        await self._active.run(manifest_id, self._handler(manifest_id, report))
        return None

    async def submit(self, job_id: str, attempt: int = 0) -> None:
        # A distinct Bull id per attempt lets a retried manifest be queued again
        await self._queue.add(
            "render",
            {"manifestId": job_id},
            {"jobId": f"{job_id}-{attempt}", "removeOnComplete": True, "removeOnFail": True},
        )

    async def cancel(self, job_id: str) -> bool:
        return self._active.cancel(job_id)

    async def shutdown(self) -> None:
        if self._worker is not None:
            await self._worker.close()
            self._worker = None
        await self._queue.close()
        logger.info("Bull render queue closed")


def create_render_queue(config: Settings) -> RenderQueueBackend:
    """
    Pick the queue backend once at startup.

    Redis configured and bullmq importable gives the Bull backend; anything
    else, including a failing Bull setup, gives the in-memory backend.
    """
    if config.redis_url:
        try:
            return BullRenderQueue(config.redis_url, config.render_queue_name)
        except Exception as e:
            logger.warning(f"Bull render queue unavailable, using in-memory queue: {e}")
    return InMemoryRenderQueue()

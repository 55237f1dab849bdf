import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from reeltrack import runtime

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException], None]


class ShutdownError(RuntimeError):
    """Raised into jobs still queued or running when the queue stops."""


@dataclass
class _Job:
    name: str
    run: Callable[[], Awaitable[Any]]
    on_error: ErrorHandler | None
    future: asyncio.Future
    queued_at: float = field(default_factory=time.monotonic)


def _consume(fut: asyncio.Future) -> None:
    # Mark the exception retrieved; callers that care read it themselves.
    if not fut.cancelled():
        fut.exception()


class TaskQueue:
    """Background jobs drained by a fixed pool of worker tasks.

    Every job carries an error handler that runs when the job raises, so a
    failed job always leaves a terminal state behind instead of a lost
    exception.
    """

    def __init__(self, workers: int | None = None):
        self._size = workers or runtime.STAGE_WORKERS
        self._queue: asyncio.Queue[_Job] | None = None
        self._workers: list[asyncio.Task] = []
        self._stopped = False

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._stopped = False
        self._queue = asyncio.Queue()
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(self._size)]
        logger.info("Started %d stage workers", self._size)

    def submit(
        self, name: str, run: Callable[[], Awaitable[Any]], on_error: ErrorHandler | None = None,
    ) -> asyncio.Future:
        if self._stopped:
            raise ShutdownError(f"{name} submitted after the queue stopped")
        if not self._workers:
            self.start()
        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume)
        self._queue.put_nowait(_Job(name=name, run=run, on_error=on_error, future=fut))
        return fut

    def pending(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        self._stopped = True
        if not self._workers:
            return
        while not self._queue.empty():
            job = self._queue.get_nowait()
            self._fail(job, ShutdownError(f"{job.name} dropped at shutdown"))
            self._queue.task_done()
        for w in self._workers:
            w.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Stage workers stopped")

    def _fail(self, job: _Job, exc: BaseException) -> None:
        if job.on_error is not None:
            try:
                job.on_error(exc)
            except Exception:
                logger.exception("[%s] error handler failed", job.name)
        if not job.future.done():
            job.future.set_exception(exc)

    async def _worker(self, n: int) -> None:
        while True:
            job = await self._queue.get()
            waited = time.monotonic() - job.queued_at
            t0 = time.monotonic()
            try:
                result = await job.run()
            except asyncio.CancelledError:
                self._fail(job, ShutdownError(f"{job.name} interrupted at shutdown"))
                self._queue.task_done()
                raise
            except Exception as exc:
                logger.error("[%s] FAILED: %s: %s", job.name, type(exc).__name__, exc)
                self._fail(job, exc)
            else:
                logger.info(
                    "[%s] done in %.1fs (waited %.1fs, worker %d)",
                    job.name, time.monotonic() - t0, waited, n,
                )
                if not job.future.done():
                    job.future.set_result(result)
            self._queue.task_done()

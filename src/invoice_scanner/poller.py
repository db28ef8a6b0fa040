"""Cancellable background polling of OCR jobs.

``JobPoller.start()`` runs ``OcrRepository.poll`` inside its own asyncio task
and hands back a ``PollHandle``. The caller can iterate the snapshots, await
the final one, or cancel. Cancelling only stops further ticks; the remote job
keeps running on the worker.

At most one poll per job id is active per poller.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing

from invoice_scanner.errors import PollInProgressError
from invoice_scanner.logging_config import bind_job_id
from invoice_scanner.models import OcrJob
from invoice_scanner.repository import OcrRepository

logger = logging.getLogger(__name__)

_END = object()


class PollHandle:
    """Handle to one running poll loop.

    ``async for job in handle`` yields snapshots as they arrive (single
    consumer). ``await handle.wait()`` returns the terminal snapshot, or
    re-raises the error that ended the poll.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.latest: OcrJob | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None

    # -- called by JobPoller ---------------------------------------------

    def _publish(self, job: OcrJob) -> None:
        self.latest = job
        self._queue.put_nowait(job)

    def _close(self) -> None:
        self._queue.put_nowait(_END)

    # -- public ------------------------------------------------------------

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()

    def cancel(self) -> None:
        """Stop issuing ticks. Has no effect on the remote job."""
        if self._task is not None and not self._task.done():
            logger.info("Cancelling poll of OCR job %s", self.job_id)
            self._task.cancel()

    async def wait(self) -> OcrJob:
        """Wait for the poll to finish and return the terminal snapshot."""
        return await self._task

    async def __aiter__(self) -> AsyncIterator[OcrJob]:
        while True:
            item = await self._queue.get()
            if item is _END:
                break
            yield item
        # Surface the error that ended the poll, if any
        if self._task is None:
            return
        await asyncio.wait({self._task})
        if not self._task.cancelled() and self._task.exception() is not None:
            raise self._task.exception()


class JobPoller:
    """Starts poll loops and guards against polling the same job twice."""

    def __init__(self, repository: OcrRepository) -> None:
        self._repository = repository
        self._active: dict[str, PollHandle] = {}

    @property
    def active_jobs(self) -> list[str]:
        return [job_id for job_id, handle in self._active.items() if not handle.done]

    def is_polling(self, job_id: str) -> bool:
        handle = self._active.get(job_id)
        return handle is not None and not handle.done

    def start(
        self,
        job_id: str,
        interval: float | None = None,
        *,
        timeout: float | None = None,
        on_update: Callable[[OcrJob], None] | None = None,
    ) -> PollHandle:
        """Start polling ``job_id`` in a background task.

        Must be called from within a running event loop.

        Raises:
            PollInProgressError: If this poller is already polling ``job_id``.
        """
        if self.is_polling(job_id):
            raise PollInProgressError(job_id)

        handle = PollHandle(job_id)
        self._active[job_id] = handle
        handle._task = asyncio.create_task(
            self._run(handle, interval, timeout, on_update),
            name=f"poll-ocr-job-{job_id}",
        )
        # A done callback also fires for tasks cancelled before they ever ran
        handle._task.add_done_callback(lambda _task: self._finish(handle))
        return handle

    def cancel_all(self) -> None:
        for handle in list(self._active.values()):
            handle.cancel()

    def _finish(self, handle: PollHandle) -> None:
        handle._close()
        if self._active.get(handle.job_id) is handle:
            del self._active[handle.job_id]

    async def _run(
        self,
        handle: PollHandle,
        interval: float | None,
        timeout: float | None,
        on_update: Callable[[OcrJob], None] | None,
    ) -> OcrJob | None:
        with bind_job_id(handle.job_id):
            try:
                async with aclosing(
                    self._repository.poll(handle.job_id, interval, timeout=timeout)
                ) as snapshots:
                    async for job in snapshots:
                        handle._publish(job)
                        if on_update is not None:
                            on_update(job)
                return handle.latest
            except asyncio.CancelledError:
                logger.info("Poll of OCR job %s cancelled", handle.job_id)
                raise
            except Exception as exc:
                logger.error("Poll of OCR job %s failed: %s", handle.job_id, exc)
                raise

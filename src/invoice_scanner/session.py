# Scan session state
# Tracks one scan-to-text flow: upload, job creation, polling, result / error

import asyncio
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Optional

from invoice_scanner.models import OcrJob
from invoice_scanner.poller import JobPoller, PollHandle
from invoice_scanner.repository import DEFAULT_CONTENT_TYPE, OcrRepository

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "OCR processing failed"


@dataclass(frozen=True)
class ScanState:
    """Snapshot of a scan session. Replaced wholesale on every change."""

    is_uploading: bool = False
    is_processing: bool = False
    current_job: Optional[OcrJob] = None
    error: Optional[str] = None

    @property
    def is_busy(self) -> bool:
        return self.is_uploading or self.is_processing

    @property
    def is_completed(self) -> bool:
        return self.current_job is not None and self.current_job.is_completed

    @property
    def is_failed(self) -> bool:
        return self.current_job is not None and self.current_job.is_failed


Listener = Callable[[ScanState], None]


class ScanSession:
    """Drives a single scan flow and publishes ScanState changes to listeners.

    Errors never escape this class: they are logged and recorded in
    ``state.error`` so a caller can offer a retry.
    """

    def __init__(self, repository: OcrRepository, poller: JobPoller | None = None) -> None:
        self._repository = repository
        self._poller = poller or JobPoller(repository)
        self._state = ScanState()
        self._listeners: list[Listener] = []
        self._handle: PollHandle | None = None
        self._stop_requested = False

    @property
    def state(self) -> ScanState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_and_create_job(
        self,
        image: bytes | str | Path,
        name: str | None = None,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> OcrJob | None:
        """Upload ``image`` and create its OCR job. Ignored while busy."""
        if self._state.is_busy:
            logger.warning("Scan session busy, ignoring upload request")
            return None

        self._set(is_uploading=True, error=None)
        try:
            job = await self._repository.submit(image, name, content_type=content_type)
        except Exception as exc:
            logger.error("Upload failed: %s", exc)
            self._set(is_uploading=False, error=str(exc))
            return None

        self._set(is_uploading=False, current_job=job)
        logger.info("Scan session created OCR job %s", job.id)
        return job

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def start_polling(
        self, job_id: str | None = None, interval: float | None = None
    ) -> OcrJob | None:
        """Poll ``job_id`` (or the current job) until it finishes.

        Returns the terminal snapshot, or None when polling was skipped,
        stopped or failed.
        """
        if self._state.is_processing:
            logger.warning("Scan session already polling, ignoring request")
            return None

        if job_id is None:
            if self._state.current_job is None:
                self._set(error="No OCR job to poll")
                return None
            job_id = self._state.current_job.id

        self._set(is_processing=True, error=None)
        self._stop_requested = False
        try:
            self._handle = self._poller.start(
                job_id,
                interval,
                on_update=lambda job: self._set(current_job=job),
            )
            final = await self._handle.wait()
        except asyncio.CancelledError:
            self._set(is_processing=False)
            if self._stop_requested:
                return None
            if self._handle is not None:
                self._handle.cancel()
            raise
        except Exception as exc:
            logger.error("Polling error for OCR job %s: %s", job_id, exc)
            self._set(is_processing=False, error=str(exc))
            return None
        finally:
            self._handle = None

        if final is not None and final.is_failed:
            self._set(
                is_processing=False,
                error=final.error or DEFAULT_FAILURE_MESSAGE,
            )
        else:
            self._set(is_processing=False)
        return final

    def stop_polling(self) -> None:
        """Stop observing the current job; the worker keeps processing it."""
        if self._handle is not None:
            self._stop_requested = True
            self._handle.cancel()

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self.stop_polling()
        self._set(
            is_uploading=False,
            is_processing=False,
            current_job=None,
            error=None,
        )

    def clear_error(self) -> None:
        self._set(error=None)

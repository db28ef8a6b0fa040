"""OCR job repository — uploads invoice images and tracks their OCR jobs.

Handles:
  - image upload to Supabase Storage
  - job row creation in the ``ocr_jobs`` table
  - job status polling until the worker reports a terminal status
  - listing pending / recent jobs

The actual recognition work is done by an external worker that picks up
``pending`` rows; this module only creates jobs and observes them.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from pathlib import Path

from pydantic import ValidationError

from invoice_scanner.config import Settings, settings as default_settings
from invoice_scanner.errors import (
    JobFetchError,
    JobNotFoundError,
    PollTimeoutError,
    SubmissionError,
    SupabaseError,
)
from invoice_scanner.logging_config import bind_job_id
from invoice_scanner.models import OcrJob, OcrJobStatus, can_follow, utcnow
from invoice_scanner.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"

_MIME_MAP = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


def guess_content_type(path: str | Path) -> str:
    """Guess an image MIME type from the file extension (falls back to JPEG)."""
    return _MIME_MAP.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


class OcrRepository:
    """Creates OCR jobs and observes them through the Supabase REST API."""

    def __init__(
        self,
        client: SupabaseClient,
        *,
        bucket: str = "ocr-images",
        table: str = "ocr_jobs",
        poll_interval: float = 3.0,
        cleanup_orphans: bool = False,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.table = table
        self.poll_interval = poll_interval
        self.cleanup_orphans = cleanup_orphans

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def submit(
        self,
        image: bytes | str | Path,
        name: str | None = None,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> OcrJob:
        """Upload an image and create a ``pending`` OCR job for it.

        Args:
            image: Raw image bytes, or a path to read them from.
            name: Display name stored as ``image_name``. Defaults to the
                  file name for paths and ``scan_{millis}.jpg`` for bytes.
            content_type: MIME type sent with the upload.

        Returns:
            The freshly inserted job snapshot (status ``pending``).

        Raises:
            SubmissionError: If reading, uploading or inserting fails. Not
                idempotent — every call creates a new blob and a new row.
        """
        timestamp = int(time.time() * 1000)
        try:
            if isinstance(image, (str, Path)):
                path = Path(image)
                data = path.read_bytes()
                file_name = name or path.name
            else:
                data = bytes(image)
                file_name = name or f"scan_{timestamp}.jpg"
        except OSError as exc:
            logger.error("Cannot read image %s: %s", image, exc)
            raise SubmissionError(f"Cannot read image {image}: {exc}") from exc

        # The job id keeps keys unique when two uploads share a name and millisecond
        job_id = str(uuid.uuid4())
        storage_key = f"{timestamp}_{job_id[:8]}_{file_name}"
        logger.info("Uploading image %s as %s", file_name, storage_key)

        try:
            await self._client.upload(self.bucket, storage_key, data, content_type)
        except SupabaseError as exc:
            logger.error("Image upload failed for %s: %s", storage_key, exc)
            raise SubmissionError(f"Image upload failed: {exc}") from exc

        image_url = self._client.get_public_url(self.bucket, storage_key)
        job = OcrJob(
            id=job_id,
            image_url=image_url,
            image_name=file_name,
            status=OcrJobStatus.PENDING,
            created_at=utcnow(),
        )

        with bind_job_id(job.id):
            try:
                row = await self._client.insert(self.table, job.to_insert_row())
                created = OcrJob.from_row(row)
            except (SupabaseError, ValidationError) as exc:
                logger.error("Creating OCR job row failed: %s", exc)
                if self.cleanup_orphans:
                    await self._remove_orphan(storage_key)
                raise SubmissionError(f"Creating OCR job failed: {exc}") from exc

            logger.info("OCR job created", extra={"image_url": image_url})
        return created

    async def _remove_orphan(self, storage_key: str) -> None:
        try:
            await self._client.remove(self.bucket, [storage_key])
        except SupabaseError as exc:
            logger.warning("Could not remove orphaned image %s: %s", storage_key, exc)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def fetch(self, job_id: str) -> OcrJob:
        """Read the current snapshot of a job.

        Raises:
            JobNotFoundError: If no row has this id.
            JobFetchError: If the read fails or the row cannot be decoded.
        """
        logger.debug("Fetching OCR job %s", job_id)
        try:
            row = await self._client.select_single(self.table, "id", job_id)
        except SupabaseError as exc:
            raise JobFetchError(f"Fetching OCR job {job_id} failed: {exc}") from exc
        if row is None:
            raise JobNotFoundError(job_id)
        try:
            return OcrJob.from_row(row)
        except ValidationError as exc:
            raise JobFetchError(f"OCR job {job_id} has a malformed row: {exc}") from exc

    async def poll(
        self,
        job_id: str,
        interval: float | None = None,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[OcrJob]:
        """Yield job snapshots every ``interval`` seconds until a terminal status.

        Ticks are strictly sequential: fetch, yield, terminal check, sleep.
        The first fetch error ends the sequence by propagating. A snapshot
        whose status would move backwards is skipped, not yielded.

        With ``timeout=None`` polling is unbounded; otherwise PollTimeoutError
        is raised once ``timeout`` seconds have passed without a terminal status.
        """
        interval = self.poll_interval if interval is None else interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        previous: OcrJob | None = None
        tick = 0

        logger.info("Starting to poll OCR job %s", job_id, extra={"interval": interval})
        while True:
            job = await self.fetch(job_id)
            tick += 1

            if previous is not None and not can_follow(previous.status, job.status):
                logger.warning(
                    "OCR job %s status went from %s back to %s, ignoring snapshot",
                    job_id,
                    previous.status.value,
                    job.status.value,
                )
            else:
                previous = job
                logger.debug("OCR job %s tick %d status %s", job_id, tick, job.status.value)
                yield job
                if job.is_terminal:
                    logger.info(
                        "OCR job %s finished: %s after %d tick(s)",
                        job_id,
                        job.status.value,
                        tick,
                    )
                    return

            if deadline is not None and loop.time() >= deadline:
                raise PollTimeoutError(job_id, timeout)
            await asyncio.sleep(interval)

    async def list_pending(self) -> list[OcrJob]:
        """Return all ``pending`` jobs, oldest first."""
        return await self._list(
            filters={"status": OcrJobStatus.PENDING.value},
            order="created_at",
            ascending=True,
        )

    async def list_recent(self, limit: int = 10) -> list[OcrJob]:
        """Return the ``limit`` most recently created jobs, newest first."""
        return await self._list(order="created_at", ascending=False, limit=limit)

    async def _list(self, **query) -> list[OcrJob]:
        try:
            rows = await self._client.select(self.table, **query)
            return [OcrJob.from_row(row) for row in rows]
        except (SupabaseError, ValidationError) as exc:
            raise JobFetchError(f"Listing OCR jobs failed: {exc}") from exc


def build_repository(
    config: Settings | None = None,
    *,
    client: SupabaseClient | None = None,
) -> OcrRepository:
    """Wire a SupabaseClient and OcrRepository from settings."""
    config = config or default_settings
    if client is None:
        client = SupabaseClient(
            config.supabase_url,
            config.supabase_anon_key,
            timeout=config.request_timeout,
        )
    return OcrRepository(
        client,
        bucket=config.ocr_images_bucket,
        table=config.ocr_jobs_table,
        poll_interval=config.poll_interval,
        cleanup_orphans=config.cleanup_orphans,
    )

"""Shared fixtures: an in-memory stand-in for the Supabase project."""

from typing import Any

import pytest

from invoice_scanner.errors import SupabaseError
from invoice_scanner.repository import OcrRepository

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64

CREATED_AT = "2025-01-15T10:00:00+00:00"


def make_row(job_id: str = "job-1", status: str = "pending", **overrides: Any) -> dict[str, Any]:
    """Return a job-table row as the REST API would send it."""
    row = {
        "id": job_id,
        "image_url": f"https://test.supabase.co/storage/v1/object/public/ocr-images/{job_id}.jpg",
        "image_name": "invoice.jpg",
        "status": status,
        "result": None,
        "error": None,
        "created_at": CREATED_AT,
        "started_at": None,
        "completed_at": None,
    }
    if status in ("processing", "completed", "failed"):
        row["started_at"] = "2025-01-15T10:00:05+00:00"
    if status == "completed":
        row["result"] = "ACME Corp\nTotal: 42.00"
        row["completed_at"] = "2025-01-15T10:00:09+00:00"
    if status == "failed":
        row["error"] = "Could not read image"
        row["completed_at"] = "2025-01-15T10:00:09+00:00"
    row.update(overrides)
    return row


class FakeSupabaseClient:
    """In-memory Storage + job table with scripted worker behaviour.

    ``script(job_id, [...])`` queues statuses the "worker" reports on
    successive reads; once the script runs out the last row is repeated.
    ``fail_fetch_on(job_id, n)`` makes the n-th read (1-based) raise.
    """

    url = "https://test.supabase.co"

    def __init__(self) -> None:
        self.blobs: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.rows: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.fail_upload = False
        self.fail_insert = False
        self.fail_remove = False
        self._scripts: dict[str, list[dict[str, Any]]] = {}
        self._fetch_failures: dict[str, set[int]] = {}
        self.fetch_counts: dict[str, int] = {}

    # -- test helpers --------------------------------------------------

    def script(self, job_id: str, statuses: list[str]) -> None:
        self._scripts[job_id] = [make_row(job_id, status) for status in statuses]
        self.rows.setdefault(job_id, self._scripts[job_id][0])

    def fail_fetch_on(self, job_id: str, *reads: int) -> None:
        self._fetch_failures.setdefault(job_id, set()).update(reads)

    # -- storage -------------------------------------------------------

    async def upload(self, bucket, key, data, content_type, *, upsert=False):
        self.calls.append("upload")
        if self.fail_upload:
            raise SupabaseError("new row violates row-level security policy", status_code=403)
        if (bucket, key) in self.blobs and not upsert:
            raise SupabaseError("The resource already exists", status_code=409)
        self.blobs[(bucket, key)] = (data, content_type)
        return {"Key": f"{bucket}/{key}"}

    def get_public_url(self, bucket, key):
        return f"{self.url}/storage/v1/object/public/{bucket}/{key}"

    async def remove(self, bucket, keys):
        self.calls.append("remove")
        if self.fail_remove:
            raise SupabaseError("remove failed", status_code=500)
        for key in keys:
            self.blobs.pop((bucket, key), None)
        return [{"name": key} for key in keys]

    # -- tables --------------------------------------------------------

    async def insert(self, table, row):
        self.calls.append("insert")
        if self.fail_insert:
            raise SupabaseError("insert failed", status_code=500)
        stored = {
            **row,
            "result": None,
            "error": None,
            "started_at": None,
            "completed_at": None,
        }
        self.rows[row["id"]] = stored
        return dict(stored)

    async def select_single(self, table, column, value):
        self.calls.append("select_single")
        count = self.fetch_counts.get(value, 0) + 1
        self.fetch_counts[value] = count
        if count in self._fetch_failures.get(value, set()):
            raise SupabaseError("connection reset by peer")
        script = self._scripts.get(value)
        if script:
            self.rows[value] = script.pop(0) if len(script) > 1 else script[0]
        row = self.rows.get(value)
        return dict(row) if row is not None else None

    async def select(self, table, *, filters=None, order=None, ascending=True, limit=None):
        self.calls.append("select")
        rows = [dict(r) for r in self.rows.values()]
        for column, value in (filters or {}).items():
            rows = [r for r in rows if r.get(column) == value]
        if order:
            rows.sort(key=lambda r: r[order], reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return rows


@pytest.fixture
def fake_client() -> FakeSupabaseClient:
    return FakeSupabaseClient()


@pytest.fixture
def repository(fake_client: FakeSupabaseClient) -> OcrRepository:
    """Repository over the fake backend with a zero poll interval."""
    return OcrRepository(fake_client, bucket="ocr-images", table="ocr_jobs", poll_interval=0)

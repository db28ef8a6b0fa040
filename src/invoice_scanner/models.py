"""OCR job model — one row of the ``ocr_jobs`` table.

Status lifecycle (driven by the external OCR worker, only observed here):
    pending → processing → completed
                         ↘ failed

The row schema is a contract with the worker, so field names and status
values must stay exactly as they are on the wire.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)


class OcrJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @classmethod
    def from_wire(cls, value: Any) -> "OcrJobStatus":
        """Decode a wire status string.

        Matching is case-exact. Missing and unknown values (including
        ``"COMPLETED"``) fall back to ``pending`` so a new
        worker-side status keeps the client polling instead of crashing it.
        """
        if value is None or value == "":
            return cls.PENDING
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            logger.warning("Unknown OCR job status %r, treating as pending", value)
            return cls.PENDING


_TERMINAL_STATUSES = frozenset({OcrJobStatus.COMPLETED, OcrJobStatus.FAILED})

# Observed transitions. pending may jump straight to a terminal status when
# the worker finishes between two poll ticks.
_ALLOWED: dict[OcrJobStatus, set[OcrJobStatus]] = {
    OcrJobStatus.PENDING: {
        OcrJobStatus.PROCESSING,
        OcrJobStatus.COMPLETED,
        OcrJobStatus.FAILED,
    },
    OcrJobStatus.PROCESSING: {OcrJobStatus.COMPLETED, OcrJobStatus.FAILED},
    OcrJobStatus.COMPLETED: set(),
    OcrJobStatus.FAILED: set(),
}

# Columns written by the client on insert; everything else belongs to the worker.
INSERT_COLUMNS = ("id", "image_url", "image_name", "status", "created_at")


def can_follow(previous: OcrJobStatus, current: OcrJobStatus) -> bool:
    """Return True if ``current`` is a valid observation after ``previous``."""
    return current == previous or current in _ALLOWED.get(previous, set())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OcrJob(BaseModel):
    """Immutable snapshot of an OCR job row.

    Each poll tick produces a new instance; snapshots are never updated in
    place, so every observer sees a whole row.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    image_url: str
    image_name: str | None = None
    status: OcrJobStatus = OcrJobStatus.PENDING
    result: str | None = None
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _decode_status(cls, value: Any) -> OcrJobStatus:
        return OcrJobStatus.from_wire(value)

    # ------------------------------------------------------------------
    # Wire conversion
    # ------------------------------------------------------------------

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OcrJob":
        """Build a snapshot from a job-table row (Supabase response)."""
        return cls.model_validate(row)

    def to_row(self) -> dict[str, Any]:
        """Serialise to the full job-table row."""
        return {
            "id": self.id,
            "image_url": self.image_url,
            "image_name": self.image_name,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def to_insert_row(self) -> dict[str, Any]:
        """Serialise only the columns the client writes on creation."""
        row = self.to_row()
        return {k: row[k] for k in INSERT_COLUMNS}

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_completed(self) -> bool:
        return self.status == OcrJobStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == OcrJobStatus.FAILED

    def __str__(self) -> str:
        return f"OcrJob(id={self.id}, status={self.status.value}, image_name={self.image_name})"

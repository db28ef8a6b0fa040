"""Structured JSON logging for the invoice scanner client.

Call ``configure_logging()`` once at startup (the CLI does this). After that,
every ``logging.getLogger(__name__)`` call produces single-line JSON records
on stderr, leaving stdout free for command output.

``bind_job_id()`` binds an OCR job id to ``contextvars`` so all log records
emitted while submitting or polling that job automatically include
``job_id``. Each asyncio task gets its own copy of the context, so
concurrent polls never mix their ids.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# ── Context variable ──────────────────────────────────────────────────────────
_job_id_var: ContextVar[str] = ContextVar("job_id", default="")


def get_job_id() -> str:
    """Return the job id bound to the current context (empty string if none)."""
    return _job_id_var.get()


@contextmanager
def bind_job_id(job_id: str) -> Iterator[None]:
    """Attach ``job_id`` to every log record emitted inside the block."""
    token = _job_id_var.set(job_id)
    try:
        yield
    finally:
        _job_id_var.reset(token)


# ── JSON log formatter ────────────────────────────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects.

    Each record gets the standard fields plus ``job_id`` (when bound) and
    any extra key-value pairs passed as ``extra=`` to the logger call.
    """

    # Attributes every LogRecord carries on this interpreter; anything else
    # came in through ``extra=``.
    _SKIP_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message"}

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        payload: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        job_id = get_job_id()
        if job_id:
            payload["job_id"] = job_id

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._SKIP_ATTRS and not key.startswith("_"):
                payload[key] = value

        return json.dumps(payload, default=str)


# ── Public configuration entry-point ─────────────────────────────────────────


def configure_logging(level: str = "INFO") -> None:
    """Replace the root logger's handlers with a single JSON-to-stderr handler.

    Args:
        level: Logging level string — e.g. ``"INFO"``, ``"DEBUG"``, ``"WARNING"``.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # httpx logs every request at INFO; a poll loop would drown the output
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Structured JSON logging initialised",
        extra={"log_level": level.upper()},
    )

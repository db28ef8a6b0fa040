# Exception hierarchy for the OCR job client
# A worker-reported failure is a normal ``failed`` snapshot, not an exception.


class InvoiceScannerError(Exception):
    """Base class for all errors raised by invoice_scanner."""

    pass


class ConfigurationError(InvoiceScannerError):
    """Required settings (Supabase URL / key) are missing or invalid."""

    pass


class SupabaseError(InvoiceScannerError):
    """A Supabase REST call failed (HTTP error status or transport error)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubmissionError(InvoiceScannerError):
    """Uploading the image or inserting the job row failed."""

    pass


class JobFetchError(InvoiceScannerError):
    """Reading a job row failed; we lost contact with the job table."""

    pass


class JobNotFoundError(JobFetchError):
    """No job row exists for the requested id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"OCR job {job_id} not found")
        self.job_id = job_id


class PollTimeoutError(InvoiceScannerError):
    """A bounded poll did not observe a terminal status in time."""

    def __init__(self, job_id: str, timeout: float) -> None:
        super().__init__(f"OCR job {job_id} did not finish within {timeout}s")
        self.job_id = job_id
        self.timeout = timeout


class PollInProgressError(InvoiceScannerError):
    """A poll loop is already running for this job id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Already polling OCR job {job_id}")
        self.job_id = job_id

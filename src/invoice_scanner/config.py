from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from ``INVOICE_SCANNER_*`` environment variables."""

    # Supabase project
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Storage bucket and job table shared with the OCR worker
    ocr_images_bucket: str = "ocr-images"
    ocr_jobs_table: str = "ocr_jobs"

    # Seconds between poll ticks
    poll_interval: float = 3.0

    # Per-request HTTP timeout in seconds; unset means requests never time out
    request_timeout: float | None = None

    # Delete the uploaded blob when the job row insert fails
    cleanup_orphans: bool = False

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="INVOICE_SCANNER_",
        env_file=".env",
        extra="ignore",
    )


settings = Settings()

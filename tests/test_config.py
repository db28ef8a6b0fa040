# Tests for environment-driven settings

from invoice_scanner.config import Settings


def test_defaults(monkeypatch):
    for name in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "POLL_INTERVAL", "OCR_IMAGES_BUCKET"):
        monkeypatch.delenv(f"INVOICE_SCANNER_{name}", raising=False)

    config = Settings(_env_file=None)

    assert config.ocr_images_bucket == "ocr-images"
    assert config.ocr_jobs_table == "ocr_jobs"
    assert config.poll_interval == 3.0
    assert config.request_timeout is None
    assert config.cleanup_orphans is False


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("INVOICE_SCANNER_SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("INVOICE_SCANNER_SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("INVOICE_SCANNER_POLL_INTERVAL", "0.5")
    monkeypatch.setenv("INVOICE_SCANNER_CLEANUP_ORPHANS", "true")

    config = Settings(_env_file=None)

    assert config.supabase_url == "https://proj.supabase.co"
    assert config.supabase_anon_key == "anon"
    assert config.poll_interval == 0.5
    assert config.cleanup_orphans is True


def test_unprefixed_variables_are_ignored(monkeypatch):
    monkeypatch.delenv("INVOICE_SCANNER_SUPABASE_URL", raising=False)
    monkeypatch.setenv("SUPABASE_URL", "https://other.supabase.co")

    assert Settings(_env_file=None).supabase_url == ""

#!/usr/bin/env python3
# CLI entry point for the invoice scanner OCR client
# Submits invoice images as OCR jobs and watches them until the worker is done

import argparse
import asyncio
import json
import sys
from pathlib import Path

from invoice_scanner.config import settings
from invoice_scanner.errors import InvoiceScannerError
from invoice_scanner.logging_config import configure_logging
from invoice_scanner.models import OcrJob
from invoice_scanner.repository import OcrRepository, build_repository, guess_content_type


def _print_job(job: OcrJob) -> None:
    print(json.dumps(job.to_row(), ensure_ascii=False), flush=True)


async def _watch(
    repository: OcrRepository,
    job_id: str,
    interval: float | None,
    timeout: float | None,
) -> int:
    final: OcrJob | None = None
    async for job in repository.poll(job_id, interval, timeout=timeout):
        _print_job(job)
        final = job
    return 1 if final is not None and final.is_failed else 0


async def run_command(args: argparse.Namespace, repository: OcrRepository) -> int:
    """Execute one CLI command and return the process exit code."""
    if args.command == "submit":
        path = Path(args.image)
        content_type = args.content_type or guess_content_type(path)
        job = await repository.submit(path, args.name, content_type=content_type)
        _print_job(job)
        if args.watch:
            return await _watch(repository, job.id, args.interval, args.timeout)
        return 0

    if args.command == "status":
        job = await repository.fetch(args.job_id)
        _print_job(job)
        return 1 if job.is_failed else 0

    if args.command == "watch":
        return await _watch(repository, args.job_id, args.interval, args.timeout)

    if args.command == "pending":
        jobs = await repository.list_pending()
    else:
        jobs = await repository.list_recent(limit=args.limit)
    for job in jobs:
        _print_job(job)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invoice-scanner",
        description="Invoice Scanner - submit invoice images for OCR and track the jobs",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Logging level (default: {settings.log_level})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Upload an image and create an OCR job")
    submit.add_argument("image", help="Path to the invoice image")
    submit.add_argument("--name", help="Display name (default: the file name)")
    submit.add_argument(
        "--content-type",
        help="MIME type of the upload (default: guessed from the file extension)",
    )
    submit.add_argument(
        "--watch",
        action="store_true",
        help="Keep polling the new job until it completes or fails",
    )

    status = subparsers.add_parser("status", help="Show the current state of a job")
    status.add_argument("job_id")

    watch = subparsers.add_parser("watch", help="Poll a job until it completes or fails")
    watch.add_argument("job_id")

    for sub in (submit, watch):
        sub.add_argument(
            "--interval",
            type=float,
            default=None,
            help=f"Seconds between polls (default: {settings.poll_interval})",
        )
        sub.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Give up after this many seconds (default: poll until done)",
        )

    subparsers.add_parser("pending", help="List pending jobs, oldest first")

    recent = subparsers.add_parser("recent", help="List recent jobs, newest first")
    recent.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum number of jobs to list (default: 10)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or settings.log_level)

    if args.command == "submit" and not Path(args.image).is_file():
        print(f"Error: Image does not exist: {args.image}", file=sys.stderr)
        sys.exit(1)

    try:
        repository = build_repository()
        code = asyncio.run(run_command(args, repository))
    except InvoiceScannerError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        # Only the local poll stops; the worker keeps processing the job
        print("Interrupted", file=sys.stderr)
        sys.exit(130)

    sys.exit(code)


if __name__ == "__main__":
    main()

"""Command line entry point.

Usage:
  pingone-bulk serve [--host HOST] [--port PORT]
  pingone-bulk run import users.csv --server http://127.0.0.1:8000
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .batch.jobs import OPERATIONS, JobState
from .client.renderer import ProgressRenderer, Summary, format_elapsed, format_step
from .client.stream import DEFAULT_SERVER, BulkClient
from .core.config import REGIONS, ServiceConfig
from .core.errors import BulkOperationError
from .core.logging import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def read_records(path: str | Path) -> List[Dict[str, str]]:
    """Read CSV rows as dicts. Headers and cells are trimmed, blank rows skipped."""
    records = []
    with Path(path).open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames:
            reader.fieldnames = [name.strip() for name in reader.fieldnames]
        for row in reader:
            cleaned = {
                key: (value or "").strip()
                for key, value in row.items()
                if key
            }
            if any(cleaned.values()):
                records.append(cleaned)
    return records


def exit_code(summary: Optional[Summary]) -> int:
    if summary is None:
        return EXIT_FAILED
    if summary.state == JobState.COMPLETED.value:
        return EXIT_OK
    if summary.state == JobState.CANCELLED.value:
        return EXIT_CANCELLED
    return EXIT_FAILED


class ConsoleView:
    """Prints each resolved step once and keeps a one-line status."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self._printed_steps = 0

    def __call__(self, renderer: ProgressRenderer) -> None:
        resolved = [s for s in renderer.steps if s.status != "loading"]
        for step in resolved[self._printed_steps:]:
            self.stream.write("\r" + format_step(step) + "\n")
        self._printed_steps = len(resolved)

        suffix = " (cancelling)" if renderer.state == "cancelling" else ""
        self.stream.write(f"\r{renderer.progress_line()} | {format_elapsed(renderer.elapsed_seconds)}{suffix}")
        self.stream.flush()

    def finish(self, renderer: ProgressRenderer) -> None:
        self.stream.write("\n")
        for line in renderer.summary_lines():
            self.stream.write(line + "\n")
        self.stream.flush()


async def run_job(
    operation: str,
    records: List[Dict[str, str]],
    client: BulkClient,
    credentials: Optional[Dict[str, Optional[str]]] = None,
    view: Optional[ConsoleView] = None,
) -> Summary:
    """Submit a job and follow it to its end. Ctrl-C requests cancellation."""
    submitted = await client.submit(operation, records, credentials)
    renderer = ProgressRenderer(total=submitted.total, job_id=submitted.job_id, on_update=view)
    handle = renderer.attach(client.events(submitted.job_id), client.cancel)

    loop = asyncio.get_running_loop()
    cancel_tasks: List[asyncio.Task] = []

    def report_cancel(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error(f"Cancel request for job {submitted.job_id} crashed: {task.exception()}")
        elif handle.cancel_error is not None:
            print(f"\nCancel request failed: {handle.cancel_error}. Press Ctrl-C to retry.", file=sys.stderr)

    def on_sigint() -> None:
        task = asyncio.ensure_future(handle.cancel())
        task.add_done_callback(report_cancel)
        cancel_tasks.append(task)

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not supported; Ctrl-C will not cancel the job")

    try:
        summary = await handle.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        await asyncio.gather(*cancel_tasks, return_exceptions=True)

    if view:
        view.finish(renderer)
    return summary


async def _run(args: argparse.Namespace) -> int:
    records = read_records(args.csv)
    if not records:
        print(f"No records found in {args.csv}", file=sys.stderr)
        return EXIT_FAILED

    credentials = {
        "environmentId": args.environment_id,
        "clientId": args.client_id,
        "clientSecret": args.client_secret,
        "region": args.region,
    }
    async with BulkClient(args.server) as client:
        try:
            summary = await run_job(args.operation, records, client, credentials, ConsoleView())
        except BulkOperationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILED
    return exit_code(summary)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pingone-bulk", description="Bulk PingOne user operations")
    parser.add_argument("--log-level", default="WARNING", help="Console log level")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the bulk API server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    run = sub.add_parser("run", help="Run a bulk operation from a CSV file")
    run.add_argument("operation", choices=OPERATIONS)
    run.add_argument("csv", help="CSV file with one user per row")
    run.add_argument("--server", default=DEFAULT_SERVER, help="Bulk API base URL")
    run.add_argument("--environment-id", default=None)
    run.add_argument("--client-id", default=None)
    run.add_argument("--client-secret", default=None)
    run.add_argument("--region", choices=REGIONS, default=None)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn

        cfg = ServiceConfig.from_env()
        uvicorn.run(
            "pingone_bulk.api:app",
            host=args.host or cfg.host,
            port=args.port or cfg.port,
        )
        return EXIT_OK

    setup_logging(args.log_level.upper())
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())

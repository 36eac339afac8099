"""Tests for the command line helpers."""

from __future__ import annotations

import io

import pytest

from pingone_bulk.batch.jobs import EventKind, ProgressEvent
from pingone_bulk.cli import (
    EXIT_CANCELLED,
    EXIT_FAILED,
    EXIT_OK,
    ConsoleView,
    build_parser,
    main,
    exit_code,
    read_records,
    run_job,
)
from pingone_bulk.client.renderer import Summary
from pingone_bulk.client.stream import SubmitResult


def test_read_records(tmp_path):
    path = tmp_path / "users.csv"
    path.write_text(
        "\ufeff username , email ,firstName\n"
        "jdoe, jdoe@example.com ,John\n"
        ",,\n"
        "asmith,asmith@example.com,\n",
        encoding="utf-8",
    )

    records = read_records(path)

    assert records == [
        {"username": "jdoe", "email": "jdoe@example.com", "firstName": "John"},
        {"username": "asmith", "email": "asmith@example.com", "firstName": ""},
    ]


def summary(state):
    return Summary(state=state, success_count=0, failure_count=0, skipped_count=0, not_attempted=0, elapsed_seconds=0.0)


def test_exit_codes():
    assert exit_code(summary("completed")) == EXIT_OK
    assert exit_code(summary("cancelled")) == EXIT_CANCELLED
    assert exit_code(summary("failed")) == EXIT_FAILED
    assert exit_code(summary("interrupted")) == EXIT_FAILED
    assert exit_code(None) == EXIT_FAILED


def test_parser():
    args = build_parser().parse_args(["run", "delete", "users.csv", "--region", "eu"])
    assert args.command == "run"
    assert args.operation == "delete"
    assert args.region == "eu"

    with pytest.raises(SystemExit):
        build_parser().parse_args(["run", "rename", "users.csv"])


class FakeBulkClient:
    def __init__(self, events):
        self._events = events
        self.submitted = None
        self.cancelled = []

    async def submit(self, operation, records, credentials=None):
        self.submitted = (operation, records, credentials)
        return SubmitResult(
            job_id="import-1",
            operation=operation,
            state="running",
            total=len(records),
            events_url="/batch/jobs/import-1/events",
            cancel_url="/batch/jobs/import-1/cancel",
        )

    async def events(self, job_id):
        for event in self._events:
            yield event

    async def cancel(self, job_id):
        self.cancelled.append(job_id)


@pytest.mark.asyncio
async def test_run_job_prints_steps_and_summary():
    events = [
        ProgressEvent("import-1", 0, EventKind.STEP_START, {"recordId": "jdoe", "label": "jdoe", "index": 0}),
        ProgressEvent("import-1", 1, EventKind.STEP_SUCCESS,
                      {"recordId": "jdoe", "label": "jdoe", "index": 0, "message": "User created successfully"}),
        ProgressEvent("import-1", 2, EventKind.COMPLETED,
                      {"successCount": 1, "failureCount": 0, "skippedCount": 0, "notAttempted": 0}),
    ]
    client = FakeBulkClient(events)
    out = io.StringIO()

    result = await run_job("import", [{"username": "jdoe"}], client, {"region": "com"}, ConsoleView(out))

    assert result.state == "completed"
    assert client.submitted[0] == "import"
    assert client.cancelled == []
    text = out.getvalue()
    assert text.count("✅ jdoe - User created successfully") == 1
    assert "COMPLETED: 1 succeeded, 0 failed, 0 skipped, 0 not attempted" in text


def test_unreachable_server_exits_with_failure(tmp_path, capsys):
    path = tmp_path / "users.csv"
    path.write_text("username,email\njdoe,jdoe@example.com\n", encoding="utf-8")

    assert main(["run", "import", str(path), "--server", "http://127.0.0.1:1"]) == EXIT_FAILED
    assert "Failed to reach bulk API at http://127.0.0.1:1" in capsys.readouterr().err

"""Tests for the job controller, job registry and their progress streams."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from pingone_bulk.batch import (
    BatchJob,
    EventKind,
    JobController,
    JobRegistry,
    JobState,
    OperationResult,
)
from pingone_bulk.core.errors import (
    ChannelError,
    FatalJobError,
    InvalidInput,
    JobNotFound,
    RecordError,
)


def make_records(count):
    return [{"username": f"user{i + 1}"} for i in range(count)]


async def ok_operation(record):
    await asyncio.sleep(0)
    return OperationResult(message="User created successfully", user_id=f"id-{record['username']}")


async def collect(controller):
    return [event async for event in controller.channel.subscribe()]


@pytest_asyncio.fixture
async def registry(tmp_path):
    """Create a job registry writing summaries to a temporary file."""
    reg = JobRegistry(retention_seconds=60, summary_log=tmp_path / "jobs.jsonl")
    yield reg
    await reg.shutdown()


@pytest.mark.asyncio
async def test_all_records_succeed(registry):
    """Five good records produce ten step events and one completed event."""
    controller = await registry.start(make_records(5), ok_operation, "import")
    events = await collect(controller)

    assert [e.sequence for e in events] == list(range(11))
    kinds = [e.kind for e in events]
    assert kinds[:-1] == [EventKind.STEP_START, EventKind.STEP_SUCCESS] * 5
    assert kinds[-1] == EventKind.COMPLETED

    final = events[-1].payload
    assert final["successCount"] == 5
    assert final["failureCount"] == 0
    assert final["notAttempted"] == 0
    assert controller.job.state == JobState.COMPLETED
    assert controller.channel.closed


@pytest.mark.asyncio
async def test_failed_record_does_not_stop_job(registry):
    async def operation(record):
        if record["username"] == "user3":
            raise RecordError("User already exists", status_code=409)
        return OperationResult()

    controller = await registry.start(make_records(5), operation, "import")
    events = await collect(controller)

    failures = [e for e in events if e.kind == EventKind.STEP_FAILURE]
    assert len(failures) == 1
    assert failures[0].payload["recordId"] == "user3"
    assert failures[0].payload["error"] == "User already exists"

    assert events[-1].kind == EventKind.COMPLETED
    assert events[-1].payload["successCount"] == 4
    assert events[-1].payload["failureCount"] == 1


@pytest.mark.asyncio
async def test_unexpected_exception_is_a_record_failure(registry):
    async def operation(record):
        if record["username"] == "user1":
            raise KeyError("population")
        return OperationResult()

    controller = await registry.start(make_records(2), operation, "import")
    events = await collect(controller)

    assert events[2].kind == EventKind.STEP_FAILURE
    assert events[2].payload["error"].startswith("KeyError")
    assert events[-1].kind == EventKind.COMPLETED
    assert controller.job.success_count == 1


@pytest.mark.asyncio
async def test_cancel_between_records(registry):
    """Cancelling during the second record stops before the third starts."""
    holder = {}

    async def operation(record):
        if record["username"] == "user2":
            assert holder["controller"].request_cancel() is True
            assert holder["controller"].job.state == JobState.CANCELLING
        return OperationResult()

    controller = await registry.start(make_records(10), operation, "delete")
    holder["controller"] = controller
    events = await collect(controller)

    starts = [e for e in events if e.kind == EventKind.STEP_START]
    assert len(starts) == 2
    assert events[-1].kind == EventKind.CANCELLED
    assert events[-1].payload["message"] == "Operation cancelled by user"
    assert events[-1].payload["successCount"] == 2
    assert events[-1].payload["notAttempted"] == 8
    assert controller.job.state == JobState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_is_idempotent(registry):
    gate = asyncio.Event()

    async def operation(record):
        await gate.wait()
        return OperationResult()

    controller = await registry.start(make_records(3), operation, "modify")
    await asyncio.sleep(0)

    assert controller.request_cancel() is True
    assert controller.request_cancel() is False
    assert registry.request_cancel(controller.job_id) is False

    gate.set()
    job = await registry.wait(controller.job_id)
    assert job.state == JobState.CANCELLED
    assert job.success_count == 1
    assert controller.request_cancel() is False


@pytest.mark.asyncio
async def test_cancel_after_completion_is_noop(registry):
    controller = await registry.start(make_records(1), ok_operation, "import")
    job = await registry.wait(controller.job_id)

    assert job.state == JobState.COMPLETED
    assert controller.request_cancel() is False
    assert job.cancel_requested is False


@pytest.mark.asyncio
async def test_cancel_on_last_record_is_honoured(registry):
    holder = {}

    async def operation(record):
        holder["controller"].request_cancel()
        return OperationResult()

    controller = await registry.start(make_records(1), operation, "import")
    holder["controller"] = controller
    events = await collect(controller)

    assert events[-1].kind == EventKind.CANCELLED
    assert events[-1].payload["notAttempted"] == 0


@pytest.mark.asyncio
async def test_fatal_error_fails_job(registry):
    async def operation(record):
        if record["username"] == "user2":
            raise FatalJobError("PingOne API error (401): invalid client")
        return OperationResult()

    controller = await registry.start(make_records(5), operation, "import")
    events = await collect(controller)

    assert [e.kind for e in events] == [
        EventKind.STEP_START,
        EventKind.STEP_SUCCESS,
        EventKind.STEP_START,
        EventKind.STEP_FAILURE,
        EventKind.FAILED,
    ]
    final = events[-1].payload
    assert "invalid client" in final["error"]
    assert final["successCount"] == 1
    assert final["failureCount"] == 1
    assert final["notAttempted"] == 3
    assert controller.job.state == JobState.FAILED
    assert controller.job.error == "PingOne API error (401): invalid client"


@pytest.mark.asyncio
async def test_skipped_records_count_as_success(registry):
    async def operation(record):
        return OperationResult(message="No changes detected (skipped)", skipped=True)

    controller = await registry.start(make_records(2), operation, "modify")
    events = await collect(controller)

    assert events[1].payload["skipped"] is True
    assert events[-1].payload["successCount"] == 2
    assert events[-1].payload["skippedCount"] == 2


@pytest.mark.asyncio
async def test_late_subscriber_sees_whole_stream(registry):
    controller = await registry.start(make_records(3), ok_operation, "import")
    await registry.wait(controller.job_id)

    events = await collect(controller)
    assert [e.sequence for e in events] == list(range(7))
    assert events[-1].kind == EventKind.COMPLETED


@pytest.mark.asyncio
async def test_single_subscriber(registry):
    controller = await registry.start(make_records(1), ok_operation, "import")
    stream = controller.channel.subscribe()

    with pytest.raises(ChannelError):
        controller.channel.subscribe()

    await stream.aclose()


@pytest.mark.asyncio
async def test_detached_subscriber_does_not_stop_job(registry):
    controller = await registry.start(make_records(4), ok_operation, "import")
    stream = controller.channel.subscribe()

    first = await stream.__anext__()
    assert first.sequence == 0
    await stream.aclose()
    assert controller.channel.detached

    job = await registry.wait(controller.job_id)
    assert job.state == JobState.COMPLETED
    assert job.success_count == 4


@pytest.mark.asyncio
async def test_invalid_submissions(registry):
    with pytest.raises(InvalidInput):
        await registry.start([], ok_operation, "import")
    with pytest.raises(InvalidInput):
        await registry.start(make_records(1), ok_operation, "rename")
    with pytest.raises(InvalidInput):
        await registry.start(["user1"], ok_operation, "delete")
    with pytest.raises(InvalidInput):
        await registry.start("user1", ok_operation, "delete")
    assert registry.list_jobs() == []


@pytest.mark.asyncio
async def test_unknown_job(registry):
    with pytest.raises(JobNotFound):
        registry.get("import-missing")
    with pytest.raises(JobNotFound):
        registry.request_cancel("import-missing")


@pytest.mark.asyncio
async def test_list_jobs_and_stats(registry):
    first = await registry.start(make_records(2), ok_operation, "import")
    second = await registry.start(make_records(1), ok_operation, "delete")
    await registry.wait(first.job_id)
    await registry.wait(second.job_id)

    jobs = registry.list_jobs(JobState.COMPLETED)
    assert {j.id for j in jobs} == {first.job_id, second.job_id}
    assert registry.active_count == 0

    stats = registry.stats()
    assert stats["completed"] == 2
    assert stats["total"] == 2
    assert stats["history"]["count"] == 2
    assert stats["history"]["successful"] == 3


@pytest.mark.asyncio
async def test_finished_jobs_are_evicted():
    reg = JobRegistry(retention_seconds=0)
    controller = await reg.start(make_records(1), ok_operation, "import")
    await reg.wait(controller.job_id)
    await asyncio.sleep(0.01)

    with pytest.raises(JobNotFound):
        reg.get(controller.job_id)


@pytest.mark.asyncio
async def test_shutdown_interrupts_running_jobs():
    reg = JobRegistry()
    started = asyncio.Event()

    async def operation(record):
        started.set()
        await asyncio.sleep(10)
        return OperationResult()

    controller = await reg.start(make_records(2), operation, "import")
    await started.wait()
    await reg.shutdown()

    assert controller.job.state == JobState.FAILED
    assert controller.job.error == "Job interrupted by server shutdown"
    assert controller.channel.terminal_emitted


@pytest.mark.asyncio
async def test_controller_without_registry():
    """A controller can drive a job on its own."""
    job = BatchJob(id="import-local", operation="import", items=tuple(make_records(2)))
    finished = []
    controller = JobController(job, ok_operation, on_finished=finished.append)

    await controller.run()

    assert job.state == JobState.COMPLETED
    assert finished == [job]
    assert controller.channel.last_sequence == 4


@pytest.mark.asyncio
async def test_cancel_before_first_record(registry):
    controller = await registry.start(make_records(3), ok_operation, "import")
    assert registry.request_cancel(controller.job_id) is True

    events = await collect(controller)

    assert [e.kind for e in events] == [EventKind.CANCELLED]
    assert events[0].payload["successCount"] == 0
    assert events[0].payload["failureCount"] == 0
    assert events[0].payload["notAttempted"] == 3


@pytest.mark.asyncio
async def test_started_job_is_running_before_first_record(registry):
    controller = await registry.start(make_records(2), ok_operation, "import")

    assert controller.job.state == JobState.RUNNING
    assert controller.job.cursor == 0

    await registry.wait(controller.job_id)
    assert controller.job.state == JobState.COMPLETED


@pytest.mark.asyncio
async def test_shutdown_before_job_task_runs():
    reg = JobRegistry()
    controller = await reg.start(make_records(2), ok_operation, "import")

    await reg.shutdown()

    assert controller.job.state == JobState.FAILED
    assert controller.job.error == "Job interrupted by server shutdown"
    assert controller.channel.terminal_emitted

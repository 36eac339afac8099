"""Job controller driving one batch job, and the in-memory registry of jobs."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..core.errors import FatalJobError, InvalidInput, JobNotFound
from ..core.metrics import JobRecord, load_records, log_record, summarize_jobs
from .channel import ProgressChannel
from .executor import BatchExecutor, Operation, describe_record
from .jobs import (
    CANCELLED_MESSAGE,
    OPERATIONS,
    BatchJob,
    EventKind,
    JobState,
    new_job_id,
)

logger = logging.getLogger(__name__)


class JobController:
    """Owns one ``BatchJob`` for its lifetime.

    All counters live on the job and are only touched from ``run()``. The
    channel is used for output only.
    """

    def __init__(
        self,
        job: BatchJob,
        operation: Operation,
        executor: Optional[BatchExecutor] = None,
        on_finished: Optional[Callable[[BatchJob], None]] = None,
    ):
        self.job = job
        self.operation = operation
        self.executor = executor or BatchExecutor()
        self.channel = ProgressChannel(job.id)
        self._on_finished = on_finished

    @property
    def job_id(self) -> str:
        return self.job.id

    def request_cancel(self) -> bool:
        """Ask the job to stop at its next safe point.

        Returns:
            True if this call set the flag, False if it was already set or the
            job is finished.
        """
        job = self.job
        if job.cancel_requested or job.state.is_terminal:
            return False

        job.cancel_requested = True
        if job.state == JobState.RUNNING:
            job.transition(JobState.CANCELLING)
        logger.info(f"Cancel requested for job {job.id} at record {job.cursor}/{job.total}")
        return True

    async def run(self) -> BatchJob:
        """Process every record in order, honouring cancellation between records."""
        job = self.job
        if job.state == JobState.PENDING:
            job.transition(JobState.RUNNING)
        logger.info(f"Starting {job.operation} job {job.id} with {job.total} records")

        try:
            while True:
                if job.cancel_requested:
                    self._finish(JobState.CANCELLED, EventKind.CANCELLED, {"message": CANCELLED_MESSAGE})
                    break
                if job.cursor >= job.total:
                    self._finish(JobState.COMPLETED, EventKind.COMPLETED)
                    break
                await self._process_next()
        except FatalJobError as e:
            self._fail(str(e))
        except asyncio.CancelledError:
            self._fail("Job interrupted by server shutdown")
            raise
        except Exception as e:
            logger.exception(f"Job {job.id} crashed")
            self._fail(f"{type(e).__name__}: {e}")

        return job

    async def _process_next(self) -> None:
        job = self.job
        index = job.cursor
        record = job.items[index]
        record_id, label = describe_record(record, index)

        self.channel.emit(
            EventKind.STEP_START,
            {"recordId": record_id, "label": label, "index": index, "total": job.total},
        )

        try:
            outcome = await self.executor.execute(record, self.operation, index)
        except FatalJobError as e:
            # The record is resolved as failed so no step is left without an outcome.
            job.failure_count += 1
            job.cursor += 1
            self.channel.emit(
                EventKind.STEP_FAILURE,
                {"recordId": record_id, "label": label, "index": index, "total": job.total, "error": str(e)},
            )
            raise

        if outcome.success:
            job.success_count += 1
            if outcome.skipped:
                job.skipped_count += 1
        else:
            job.failure_count += 1
        job.cursor += 1

        payload = outcome.to_payload()
        payload["total"] = job.total
        self.channel.emit(EventKind.STEP_SUCCESS if outcome.success else EventKind.STEP_FAILURE, payload)

        if job.cursor % 10 == 0:
            logger.info(
                f"{job.operation} progress {job.id}: {job.cursor}/{job.total} "
                f"(ok={job.success_count}, failed={job.failure_count}, skipped={job.skipped_count})"
            )

    def abort(self, error: str) -> None:
        """End a job that cannot run any further, e.g. on server shutdown."""
        self._fail(error)

    def _fail(self, error: str) -> None:
        if self.job.state.is_terminal:
            return
        self.job.error = error
        logger.error(f"Job {self.job.id} failed: {error}")
        self._finish(JobState.FAILED, EventKind.FAILED, {"error": error})

    def _finish(self, state: JobState, kind: EventKind, extra: Optional[Dict[str, Any]] = None) -> None:
        job = self.job
        job.transition(state)
        payload = job.counts()
        payload.update(extra or {})
        self.channel.emit(kind, payload)
        logger.info(
            f"Job {job.id} {state.value}: {job.success_count} succeeded, {job.failure_count} failed, "
            f"{job.not_attempted} not attempted in {job.elapsed_seconds:.2f}s"
        )

        if self._on_finished:
            try:
                self._on_finished(job)
            except Exception:
                logger.exception(f"on_finished hook failed for job {job.id}")


class JobRegistry:
    """In-memory registry of batch jobs. No persistence across restarts."""

    def __init__(
        self,
        executor: Optional[BatchExecutor] = None,
        retention_seconds: float = 300.0,
        summary_log: Optional[str | Path] = None,
    ):
        """Initialize the registry.

        Args:
            executor: Executor shared by all jobs
            retention_seconds: How long finished jobs stay queryable
            summary_log: JSONL file receiving one record per finished job
        """
        self.executor = executor or BatchExecutor()
        self.retention_seconds = retention_seconds
        self.summary_log = Path(summary_log) if summary_log else None
        self._jobs: Dict[str, JobController] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start(
        self,
        items: Sequence[Mapping[str, Any]],
        operation: Operation,
        operation_name: str,
    ) -> JobController:
        """Validate a submission, create its job and start driving it.

        Args:
            items: Records to process, in order
            operation: Async single-record operation
            operation_name: One of ``import``, ``modify``, ``delete``

        Returns:
            The job's controller (job id, job state and progress channel)
        """
        if operation_name not in OPERATIONS:
            raise InvalidInput(f"Unknown operation {operation_name!r}; expected one of {', '.join(OPERATIONS)}")
        if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
            raise InvalidInput("records must be a list")
        if not items:
            raise InvalidInput("records must not be empty")
        for i, item in enumerate(items):
            if not isinstance(item, Mapping):
                raise InvalidInput(f"record {i + 1} is not an object")

        job = BatchJob(
            id=new_job_id(operation_name),
            operation=operation_name,
            items=tuple(dict(item) for item in items),
        )
        controller = JobController(job, operation, self.executor, on_finished=self._job_finished)
        self._jobs[job.id] = controller
        job.transition(JobState.RUNNING)

        task = asyncio.create_task(controller.run(), name=f"batch-job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))

        logger.info(f"Accepted {operation_name} job {job.id} ({job.total} records)")
        return controller

    def get(self, job_id: str) -> JobController:
        controller = self._jobs.get(job_id)
        if controller is None:
            raise JobNotFound(job_id)
        return controller

    def request_cancel(self, job_id: str) -> bool:
        return self.get(job_id).request_cancel()

    async def wait(self, job_id: str) -> BatchJob:
        """Wait for a job's drive loop to finish and return the job."""
        controller = self.get(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return controller.job

    def list_jobs(self, state: Optional[JobState] = None) -> List[BatchJob]:
        jobs = [c.job for c in self._jobs.values() if state is None or c.job.state == state]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    @property
    def active_count(self) -> int:
        return sum(1 for c in self._jobs.values() if not c.job.state.is_terminal)

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"total": 0}
        for controller in self._jobs.values():
            state = controller.job.state.value
            stats[state] = stats.get(state, 0) + 1
            stats["total"] += 1

        if self.summary_log:
            stats["history"] = summarize_jobs(load_records(self.summary_log))
        return stats

    async def shutdown(self) -> None:
        """Stop in-flight jobs (server shutdown)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for controller in self._jobs.values():
            if not controller.job.state.is_terminal:
                controller.abort("Job interrupted by server shutdown")
        logger.info(f"Job registry stopped ({len(tasks)} in-flight jobs interrupted)")

    def _job_finished(self, job: BatchJob) -> None:
        record = JobRecord(
            job_id=job.id,
            operation=job.operation,
            state=job.state.value,
            total=job.total,
            successful=job.success_count,
            failed=job.failure_count,
            skipped=job.skipped_count,
            not_attempted=job.not_attempted,
            duration_sec=job.elapsed_seconds,
        )
        logger.info(record.totals_line())
        if self.summary_log:
            log_record(record, self.summary_log)

        loop = asyncio.get_running_loop()
        loop.call_later(self.retention_seconds, self._evict, job.id)

    def _evict(self, job_id: str) -> None:
        if self._jobs.pop(job_id, None) is not None:
            logger.debug(f"Evicted finished job {job_id}")

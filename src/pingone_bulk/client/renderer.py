"""Client-side view of a job's progress built from its event stream."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from ..batch.jobs import CANCELLED_MESSAGE, EventKind, ProgressEvent
from ..batch.progress import ProgressTracker
from ..core.errors import BulkOperationError, ChannelError

logger = logging.getLogger(__name__)

CONNECTION_LOST_MESSAGE = "Connection lost; final outcome unknown"

RUNNING = "running"
CANCELLING = "cancelling"
INTERRUPTED = "interrupted"

_ICONS = {"loading": "🔄", "success": "✅", "failure": "❌"}


@dataclass
class Step:
    record_id: str
    label: str
    status: str = "loading"
    message: Optional[str] = None
    skipped: bool = False


@dataclass
class Summary:
    state: str
    success_count: int
    failure_count: int
    skipped_count: int
    not_attempted: int
    elapsed_seconds: float
    message: Optional[str] = None

    @property
    def resolved(self) -> int:
        return self.success_count + self.failure_count


def format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def format_step(step: Step) -> str:
    line = f"{_ICONS.get(step.status, '•')} {step.label}"
    if step.message:
        line += f" - {step.message}"
    return line


class ProgressRenderer:
    """Maintains steps, counters and the final summary for one job.

    Events are applied in sequence order. Redelivered events are ignored and
    a gap in the sequence raises ``ChannelError``. The summary only ever comes
    from a terminal event, or marks the outcome as unknown.
    """

    def __init__(
        self,
        total: int,
        job_id: str,
        clock: Callable[[], float] = time.monotonic,
        on_update: Optional[Callable[[ProgressRenderer], None]] = None,
    ):
        self.job_id = job_id
        self.tracker = ProgressTracker(total=total, clock=clock)
        self.on_update = on_update
        self.state = RUNNING
        self.steps: List[Step] = []
        self.summary: Optional[Summary] = None
        self.last_sequence = -1
        self._steps_by_key: Dict[Any, Step] = {}
        self._frozen_elapsed: Optional[float] = None

    @property
    def total(self) -> int:
        return self.tracker.total

    @property
    def percentage(self) -> int:
        return self.tracker.percentage

    @property
    def finished(self) -> bool:
        return self.summary is not None

    @property
    def elapsed_seconds(self) -> float:
        if self._frozen_elapsed is not None:
            return self._frozen_elapsed
        return self.tracker.elapsed_seconds

    def apply(self, event: ProgressEvent) -> bool:
        """Apply one event. Returns False when it was a duplicate or arrived after the end."""
        if event.job_id != self.job_id:
            raise ChannelError(f"Event for job {event.job_id} delivered to renderer of {self.job_id}")
        if self.finished or event.sequence <= self.last_sequence:
            return False
        if event.sequence != self.last_sequence + 1:
            raise ChannelError(
                f"Progress stream gap for job {self.job_id}: expected {self.last_sequence + 1}, got {event.sequence}"
            )
        if self.last_sequence == -1:
            self.tracker.start()
        self.last_sequence = event.sequence

        payload = event.payload
        if event.kind == EventKind.STEP_START:
            self._start_step(payload)
        elif event.kind in (EventKind.STEP_SUCCESS, EventKind.STEP_FAILURE):
            self._resolve_step(event.kind == EventKind.STEP_SUCCESS, payload)
        else:
            self._finish(event.kind, payload)

        self.refresh()
        return True

    def mark_cancelling(self) -> None:
        """Optimistic display after a cancel request; counts are left untouched."""
        if self.finished or self.state == CANCELLING:
            return
        self.state = CANCELLING
        self.refresh()

    def resume(self) -> None:
        """Undo ``mark_cancelling`` when the cancel request did not go through."""
        if self.finished or self.state != CANCELLING:
            return
        self.state = RUNNING
        self.refresh()

    def mark_interrupted(self, reason: Optional[str] = None) -> None:
        if self.finished:
            return
        if reason:
            logger.warning(f"Progress for job {self.job_id} interrupted: {reason}")
        self._frozen_elapsed = self.tracker.elapsed_seconds
        self.state = INTERRUPTED
        self.summary = Summary(
            state=INTERRUPTED,
            success_count=self.tracker.successful,
            failure_count=self.tracker.failed,
            skipped_count=self.tracker.skipped,
            not_attempted=max(0, self.total - self.tracker.processed),
            elapsed_seconds=self._frozen_elapsed,
            message=CONNECTION_LOST_MESSAGE,
        )
        self.refresh()

    def _step_key(self, payload: Dict[str, Any]) -> Any:
        return payload.get("index", payload.get("recordId"))

    def _start_step(self, payload: Dict[str, Any]) -> None:
        record_id = str(payload.get("recordId", len(self.steps) + 1))
        step = Step(record_id=record_id, label=str(payload.get("label") or record_id))
        self.steps.append(step)
        self._steps_by_key[self._step_key(payload)] = step
        self.tracker.current_item = step.label

    def _resolve_step(self, success: bool, payload: Dict[str, Any]) -> None:
        step = self._steps_by_key.get(self._step_key(payload))
        if step is None:
            record_id = str(payload.get("recordId", len(self.steps) + 1))
            step = Step(record_id=record_id, label=str(payload.get("label") or record_id))
            self.steps.append(step)

        skipped = bool(payload.get("skipped"))
        step.status = "success" if success else "failure"
        step.skipped = skipped
        step.message = payload.get("message") if success else payload.get("error")
        self.tracker.increment(success=success, skip=skipped, current_item=step.label)

    def _finish(self, kind: EventKind, payload: Dict[str, Any]) -> None:
        if kind == EventKind.CANCELLED:
            message = payload.get("message") or CANCELLED_MESSAGE
        elif kind == EventKind.FAILED:
            message = payload.get("error") or "Operation failed"
        else:
            message = payload.get("message")

        tracker = self.tracker
        tracker.successful = int(payload.get("successCount", tracker.successful))
        tracker.failed = int(payload.get("failureCount", tracker.failed))
        tracker.skipped = int(payload.get("skippedCount", tracker.skipped))
        tracker.processed = tracker.successful + tracker.failed

        self._frozen_elapsed = float(payload.get("elapsedSeconds", tracker.elapsed_seconds))
        self.state = kind.value
        self.summary = Summary(
            state=kind.value,
            success_count=tracker.successful,
            failure_count=tracker.failed,
            skipped_count=tracker.skipped,
            not_attempted=int(payload.get("notAttempted", max(0, self.total - tracker.processed))),
            elapsed_seconds=self._frozen_elapsed,
            message=message,
        )

    def refresh(self) -> None:
        """Push the current view to ``on_update``."""
        if self.on_update:
            self.on_update(self)

    def progress_line(self) -> str:
        tracker = self.tracker
        line = (
            f"Progress: {tracker.successful + tracker.failed}/{self.total} ({self.percentage}%) "
            f"✓{tracker.successful} ✗{tracker.failed} ⊘{tracker.skipped}"
        )
        if not self.finished and tracker.processed and tracker.items_per_second:
            line += (
                f" | {tracker.items_per_second:.1f}/s, "
                f"~{format_elapsed(tracker.estimated_remaining_seconds)} left"
            )
        return line

    def summary_lines(self) -> List[str]:
        summary = self.summary
        if summary is None:
            return []
        lines = [
            f"{summary.state.upper()}: {summary.success_count} succeeded, {summary.failure_count} failed, "
            f"{summary.skipped_count} skipped, {summary.not_attempted} not attempted"
        ]
        if summary.message:
            lines.append(summary.message)
        return lines

    def render_lines(self) -> List[str]:
        lines = [format_step(step) for step in self.steps]
        lines.append(self.progress_line())
        lines.append(f"Elapsed: {format_elapsed(self.elapsed_seconds)}")
        if self.state == CANCELLING:
            lines.append("Cancelling...")
        lines.extend(self.summary_lines())
        return lines

    def attach(
        self,
        events: AsyncIterator[ProgressEvent],
        request_cancel: Callable[[str], Awaitable[Any]],
        tick_seconds: float = 1.0,
    ) -> RenderHandle:
        """Start consuming ``events`` in the background."""
        return RenderHandle(self, events, request_cancel, tick_seconds)


class RenderHandle:
    """Running subscription of a renderer to an event stream."""

    def __init__(
        self,
        renderer: ProgressRenderer,
        events: AsyncIterator[ProgressEvent],
        request_cancel: Callable[[str], Awaitable[Any]],
        tick_seconds: float = 1.0,
    ):
        self.renderer = renderer
        self._events = events
        self._request_cancel = request_cancel
        self._tick_seconds = tick_seconds
        self._cancel_sent = False
        self.cancel_error: Optional[BulkOperationError] = None
        self._ticker = asyncio.create_task(self._tick(), name=f"render-tick-{renderer.job_id}")
        self._consumer = asyncio.create_task(self._consume(), name=f"render-{renderer.job_id}")

    @property
    def cancel_sent(self) -> bool:
        return self._cancel_sent

    async def cancel(self) -> bool:
        """Ask the server to cancel the job.

        Returns True once the request was accepted. Further calls after that
        send nothing. A failed request is kept in ``cancel_error``, the view
        goes back to running and the cancel can be retried.
        """
        if self._cancel_sent or self.renderer.finished:
            return False
        self._cancel_sent = True
        self.cancel_error = None
        self.renderer.mark_cancelling()
        try:
            await self._request_cancel(self.renderer.job_id)
        except BulkOperationError as e:
            logger.warning(f"Cancel request for job {self.renderer.job_id} failed: {e}")
            self._cancel_sent = False
            self.cancel_error = e
            self.renderer.resume()
            return False
        return True

    async def wait(self) -> Summary:
        await self._consumer
        return self.renderer.summary

    async def _consume(self) -> None:
        renderer = self.renderer
        try:
            async for event in self._events:
                renderer.apply(event)
                if renderer.finished:
                    break
        except BulkOperationError as e:
            renderer.mark_interrupted(str(e))
        finally:
            self._ticker.cancel()
            aclose = getattr(self._events, "aclose", None)
            if aclose is not None:
                await aclose()

        if not renderer.finished:
            renderer.mark_interrupted("stream ended before a terminal event")

    async def _tick(self) -> None:
        while not self.renderer.finished:
            await asyncio.sleep(self._tick_seconds)
            if not self.renderer.finished:
                self.renderer.refresh()

"""Batch job and progress event data model."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


OPERATIONS = ("import", "modify", "delete")

CANCELLED_MESSAGE = "Operation cancelled by user"


class JobState(str, Enum):
    """Job state enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.CANCELLED, JobState.COMPLETED, JobState.FAILED})

_TRANSITIONS = {
    JobState.PENDING: {JobState.RUNNING},
    JobState.RUNNING: {JobState.CANCELLING, JobState.CANCELLED, JobState.COMPLETED, JobState.FAILED},
    JobState.CANCELLING: {JobState.CANCELLED, JobState.FAILED},
}


class EventKind(str, Enum):
    """Progress event kinds. The last three end the stream."""

    STEP_START = "step-start"
    STEP_SUCCESS = "step-success"
    STEP_FAILURE = "step-failure"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_KINDS


TERMINAL_KINDS = frozenset({EventKind.CANCELLED, EventKind.COMPLETED, EventKind.FAILED})


def new_job_id(operation: str) -> str:
    return f"{operation}-{uuid.uuid4().hex[:12]}"


@dataclass
class BatchJob:
    """One bulk import/modify/delete request spanning multiple records.

    Owned by exactly one ``JobController``; nothing else mutates it.
    """

    id: str
    operation: str
    items: Tuple[Mapping[str, Any], ...]
    state: JobState = JobState.PENDING
    cursor: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    cancel_requested: bool = False
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def not_attempted(self) -> int:
        return self.total - self.cursor

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at if self.completed_at is not None else time.time()
        return max(0.0, end - self.started_at)

    def transition(self, new_state: JobState) -> None:
        """Move to ``new_state``, refusing transitions the state machine does not allow."""
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal job transition {self.state.value} -> {new_state.value} ({self.id})")

        self.state = new_state
        if new_state == JobState.RUNNING:
            self.started_at = time.time()
        elif new_state.is_terminal:
            self.completed_at = time.time()

    def counts(self) -> Dict[str, Any]:
        return {
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "skippedCount": self.skipped_count,
            "notAttempted": self.not_attempted,
            "total": self.total,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
        }

    def snapshot(self) -> Dict[str, Any]:
        """Status view of the job for the idempotent status query."""
        return {
            "job_id": self.id,
            "operation": self.operation,
            "state": self.state.value,
            "total": self.total,
            "cursor": self.cursor,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "not_attempted": self.not_attempted,
            "cancel_requested": self.cancel_requested,
            "error": self.error,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """One message on a job's progress stream."""

    job_id: str
    sequence: int
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "sequence": self.sequence,
            "kind": self.kind.value,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProgressEvent:
        return cls(
            job_id=data["jobId"],
            sequence=int(data["sequence"]),
            kind=EventKind(data["kind"]),
            payload=dict(data.get("payload") or {}),
        )

    def to_sse(self) -> str:
        """Encode as one Server-Sent Events message."""
        return f"id: {self.sequence}\nevent: {self.kind.value}\ndata: {json.dumps(self.to_dict())}\n\n"

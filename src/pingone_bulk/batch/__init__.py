"""Batch job subsystem for pingone-bulk.

Provides:
- Job controller driving one bulk operation record by record
- Cooperative cancellation checked between records
- Ordered progress channel feeding a single SSE subscriber
- Job registry with status queries and job summaries
"""

from __future__ import annotations

from .channel import ProgressChannel
from .controller import JobController, JobRegistry
from .executor import BatchExecutor, OperationResult, RecordOutcome
from .jobs import OPERATIONS, BatchJob, EventKind, JobState, ProgressEvent
from .progress import ProgressTracker

__all__ = [
    "OPERATIONS",
    "BatchJob",
    "JobState",
    "EventKind",
    "ProgressEvent",
    "ProgressChannel",
    "BatchExecutor",
    "OperationResult",
    "RecordOutcome",
    "JobController",
    "JobRegistry",
    "ProgressTracker",
]

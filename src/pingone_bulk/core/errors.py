"""Exceptions shared by the job, channel and PingOne layers."""

from __future__ import annotations

from typing import Any, Optional


class BulkOperationError(Exception):
    """Base class for bulk operation errors."""


class InvalidInput(BulkOperationError):
    """Batch submission rejected before a job was created."""


class JobNotFound(BulkOperationError):
    """Unknown or expired job identifier."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class RecordError(BulkOperationError):
    """A single record's operation failed. Never aborts the job."""

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.record_id = record_id
        self.status_code = status_code
        self.details = details


class ChannelError(BulkOperationError):
    """Progress stream misuse or transport loss before a terminal event."""


class FatalJobError(BulkOperationError):
    """Failure not attributable to one record, e.g. PingOne unreachable."""

"""Per-record execution of a bulk operation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from ..core.errors import FatalJobError, RecordError
from ..core.metrics import Timer

logger = logging.getLogger(__name__)

_ID_KEYS = ("userId", "id", "username", "email")
_LABEL_KEYS = ("username", "email", "userId", "id")


@dataclass
class OperationResult:
    """What a single-record operation reports back on success."""

    message: str = "OK"
    user_id: Optional[str] = None
    skipped: bool = False
    details: Dict[str, Any] = field(default_factory=dict)


Operation = Callable[[Mapping[str, Any]], Awaitable[Optional[OperationResult]]]


@dataclass
class RecordOutcome:
    """Resolved outcome of one record. Counting is left to the job controller."""

    index: int
    record_id: str
    label: str
    success: bool
    skipped: bool = False
    message: Optional[str] = None
    error: Optional[str] = None
    user_id: Optional[str] = None
    duration_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "recordId": self.record_id,
            "label": self.label,
            "index": self.index,
            "durationMs": round(self.duration_ms, 1),
        }
        if self.success:
            payload["message"] = self.message
            if self.skipped:
                payload["skipped"] = True
            if self.user_id:
                payload["userId"] = self.user_id
        else:
            payload["error"] = self.error
        if self.details:
            payload["details"] = self.details
        return payload


def _first_value(record: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = record.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def describe_record(record: Mapping[str, Any], index: int) -> Tuple[str, str]:
    """Return ``(record_id, label)`` used to key the record in progress events."""
    record_id = _first_value(record, _ID_KEYS) or f"record-{index + 1}"
    label = _first_value(record, _LABEL_KEYS) or record_id
    return record_id, label


class BatchExecutor:
    """Run one record through an operation and turn the result into an outcome.

    Record-level failures become failed outcomes; ``FatalJobError`` propagates so
    the controller can abort the job. No retries happen here.
    """

    async def execute(
        self,
        record: Mapping[str, Any],
        operation: Operation,
        index: int = 0,
    ) -> RecordOutcome:
        record_id, label = describe_record(record, index)
        result: Optional[OperationResult] = None
        error: Optional[str] = None
        details: Dict[str, Any] = {}

        with Timer() as timer:
            try:
                result = await operation(record)
            except FatalJobError:
                raise
            except RecordError as e:
                error = e.message
                if isinstance(e.details, dict):
                    details = e.details
            except Exception as e:
                logger.exception(f"Unexpected error processing record {record_id}")
                error = f"{type(e).__name__}: {e}"

        if error is not None:
            logger.info(f"Record {label} failed: {error}")
            return RecordOutcome(
                index=index,
                record_id=record_id,
                label=label,
                success=False,
                error=error,
                duration_ms=timer.seconds * 1000,
                details=details,
            )

        result = result or OperationResult()
        return RecordOutcome(
            index=index,
            record_id=record_id,
            label=label,
            success=True,
            skipped=result.skipped,
            message=result.message,
            user_id=result.user_id,
            duration_ms=timer.seconds * 1000,
            details=dict(result.details),
        )

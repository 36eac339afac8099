"""Job summary records appended as JSONL once a batch job finishes."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from statistics import mean, median
from typing import Iterable, List, Dict, Any
import json
import time


@dataclass
class JobRecord:
    job_id: str
    operation: str
    state: str
    total: int
    successful: int
    failed: int
    skipped: int = 0
    not_attempted: int = 0
    duration_sec: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "operation": self.operation,
            "state": self.state,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "not_attempted": self.not_attempted,
            "duration_sec": round(self.duration_sec, 3),
        }

    def totals_line(self) -> str:
        return (
            f"{self.operation.upper()} TOTALS: Total={self.total}, Succeeded={self.successful}, "
            f"Failed={self.failed}, Skipped={self.skipped}, NotAttempted={self.not_attempted}, "
            f"Duration={int(self.duration_sec * 1000)}ms"
        )


def log_record(record: JobRecord, path: Path) -> None:
    """Append a single job record to a JSONL file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(record.to_dict()) + "\n")


def load_records(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    records = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records


def summarize_jobs(records: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Aggregate job records.

    Expects dictionaries shaped like ``JobRecord.to_dict()``.
    Missing keys are treated as zero.
    """

    recs: List[Dict[str, Any]] = list(records)
    if not recs:
        return {
            "count": 0,
            "by_state": {},
            "records": 0,
            "successful": 0,
            "failed": 0,
            "success_rate": 0.0,
            "avg_duration_sec": 0.0,
            "median_duration_sec": 0.0,
        }

    by_state: Dict[str, int] = {}
    for r in recs:
        state = str(r.get("state", "unknown"))
        by_state[state] = by_state.get(state, 0) + 1

    durations = [float(r.get("duration_sec", 0.0)) for r in recs]
    successful = sum(int(r.get("successful", 0)) for r in recs)
    failed = sum(int(r.get("failed", 0)) for r in recs)
    resolved = successful + failed

    return {
        "count": len(recs),
        "by_state": by_state,
        "records": sum(int(r.get("total", 0)) for r in recs),
        "successful": successful,
        "failed": failed,
        "success_rate": round(successful / resolved, 3) if resolved else 0.0,
        "avg_duration_sec": round(mean(durations), 3),
        "median_duration_sec": round(median(durations), 3),
    }


class Timer:
    """Simple context manager to measure wall-clock duration."""

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.end = time.perf_counter()
        self.duration = self.end - self.start

    @property
    def seconds(self) -> float:
        return getattr(self, "duration", 0.0)

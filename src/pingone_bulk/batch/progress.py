"""Local progress counters rebuilt from a job's event stream."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class ProgressTracker:
    """Tracks progress of one batch job as seen by a subscriber."""

    total: int
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    started_at: float = field(default=-1.0)
    current_item: Optional[str] = None

    def __post_init__(self) -> None:
        if self.started_at < 0:
            self.started_at = self.clock()

    @property
    def percentage(self) -> int:
        """Whole-number completion percentage, rounded down."""
        if self.total <= 0:
            return 100
        return min(100, ((self.successful + self.failed) * 100) // self.total)

    def start(self) -> None:
        """Restart the elapsed clock, e.g. when the first event of a job arrives."""
        self.started_at = self.clock()

    @property
    def elapsed_seconds(self) -> float:
        return max(0.0, self.clock() - self.started_at)

    @property
    def items_per_second(self) -> float:
        elapsed = self.elapsed_seconds
        if elapsed == 0:
            return 0.0
        return self.processed / elapsed

    @property
    def estimated_remaining_seconds(self) -> float:
        if self.processed == 0:
            return 0.0
        rate = self.items_per_second
        if rate == 0:
            return 0.0
        return (self.total - self.processed) / rate

    def increment(
        self,
        success: bool = True,
        skip: bool = False,
        current_item: Optional[str] = None,
    ) -> None:
        """Count one resolved record.

        Args:
            success: Whether the record succeeded
            skip: Whether a successful record was a no-op (counted as success too)
            current_item: Label of the record
        """
        self.processed += 1

        if success:
            self.successful += 1
            if skip:
                self.skipped += 1
        else:
            self.failed += 1

        if current_item:
            self.current_item = current_item

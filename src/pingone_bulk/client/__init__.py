"""Client side of the bulk API: submission, SSE progress stream and rendering."""

from __future__ import annotations

from .renderer import ProgressRenderer, RenderHandle, Step, Summary
from .stream import BulkClient, SubmitResult, parse_sse

__all__ = [
    "BulkClient",
    "SubmitResult",
    "parse_sse",
    "ProgressRenderer",
    "RenderHandle",
    "Step",
    "Summary",
]

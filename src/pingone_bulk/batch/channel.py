"""Single-producer single-consumer progress stream for one batch job."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Dict, Optional

from ..core.errors import ChannelError
from .jobs import EventKind, ProgressEvent

logger = logging.getLogger(__name__)


class ProgressChannel:
    """Ordered event stream from a job controller to exactly one subscriber.

    Events are numbered from 0 and buffered until the subscriber reads them, so a
    subscriber that attaches late still sees the full sequence. The channel closes
    for good once the terminal event has been handed to the subscriber. If the
    subscriber goes away first, the channel is *detached*: the producer keeps
    emitting (the job runs on) but nothing is buffered any more.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._next_sequence = 0
        self._terminal_emitted = False
        self._subscribed = False
        self._detached = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    @property
    def terminal_emitted(self) -> bool:
        return self._terminal_emitted

    @property
    def last_sequence(self) -> int:
        """Sequence number of the last emitted event, -1 before the first."""
        return self._next_sequence - 1

    def emit(self, kind: EventKind | str, payload: Optional[Dict[str, Any]] = None) -> ProgressEvent:
        """Append an event. Only the owning job controller calls this."""
        if self._terminal_emitted:
            raise ChannelError(f"Channel for job {self.job_id} already carried its terminal event")

        event = ProgressEvent(
            job_id=self.job_id,
            sequence=self._next_sequence,
            kind=EventKind(kind),
            payload=dict(payload or {}),
        )
        self._next_sequence += 1
        if event.is_terminal:
            self._terminal_emitted = True

        if self._detached:
            logger.debug(f"Dropping event {event.sequence} ({event.kind.value}) for detached job {self.job_id}")
        else:
            self._queue.put_nowait(event)
        return event

    def subscribe(self) -> AsyncGenerator[ProgressEvent, None]:
        """Claim the channel and return its event iterator. Allowed once."""
        if self._subscribed:
            raise ChannelError(f"Job {self.job_id} already has a progress subscriber")
        self._subscribed = True
        return self._iterate()

    def detach(self) -> None:
        """Mark the subscriber as gone before the terminal event arrived."""
        if self._closed or self._detached:
            return
        self._detached = True
        dropped = self._queue.qsize()
        while not self._queue.empty():
            self._queue.get_nowait()
        logger.info(f"Progress subscriber for job {self.job_id} detached ({dropped} buffered events dropped)")

    async def _iterate(self) -> AsyncGenerator[ProgressEvent, None]:
        try:
            while True:
                event = await self._queue.get()
                if event.is_terminal:
                    self._closed = True
                    yield event
                    return
                yield event
        finally:
            if not self._closed:
                self.detach()

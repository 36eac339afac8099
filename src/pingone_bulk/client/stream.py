"""HTTP client for the bulk API, including the SSE progress stream."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

import httpx

from ..batch.jobs import ProgressEvent
from ..core.errors import BulkOperationError, ChannelError, InvalidInput, JobNotFound

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "http://127.0.0.1:8000"


@dataclass
class SubmitResult:
    job_id: str
    operation: str
    state: str
    total: int
    events_url: str
    cancel_url: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SubmitResult:
        return cls(
            job_id=data["job_id"],
            operation=data["operation"],
            state=data["state"],
            total=int(data["total"]),
            events_url=data["events_url"],
            cancel_url=data["cancel_url"],
        )


class SSEParser:
    """Incremental Server-Sent Events parser yielding ``ProgressEvent`` objects."""

    def __init__(self) -> None:
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[ProgressEvent]:
        """Consume one line; returns an event when a blank line ends a message."""
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        # id and event are repeated inside the JSON body
        return None

    def _dispatch(self) -> Optional[ProgressEvent]:
        if not self._data:
            return None
        data = "\n".join(self._data)
        self._data = []
        try:
            return ProgressEvent.from_dict(json.loads(data))
        except (ValueError, KeyError) as e:
            raise ChannelError(f"Malformed progress event: {e}") from e


def parse_sse(lines: Iterable[str]) -> Iterator[ProgressEvent]:
    """Turn SSE lines into progress events. Comment lines are ignored."""
    parser = SSEParser()
    for line in lines:
        event = parser.feed(line)
        if event is not None:
            yield event
    event = parser.feed("")
    if event is not None:
        yield event


def _raise_for_status(response: httpx.Response, job_id: Optional[str] = None) -> None:
    if not response.is_error:
        return

    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    message = str(detail or response.reason_phrase)

    if response.status_code == 404 and job_id:
        raise JobNotFound(job_id)
    if response.status_code in (400, 404, 422):
        raise InvalidInput(message)
    if response.status_code == 409:
        raise ChannelError(message)
    raise BulkOperationError(f"Bulk API error ({response.status_code}): {message}")


class BulkClient:
    """Async client for submitting bulk jobs and following their progress."""

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BulkClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, job_id: Optional[str] = None, **kwargs: Any) -> httpx.Response:
        """Send one request; transport failures become ``ChannelError``."""
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ChannelError(f"Failed to reach bulk API at {self.base_url}: {e}") from e
        _raise_for_status(response, job_id)
        return response

    async def submit(
        self,
        operation: str,
        records: Sequence[Mapping[str, Any]],
        credentials: Optional[Mapping[str, Optional[str]]] = None,
    ) -> SubmitResult:
        """Submit records for ``operation``; returns the accepted job."""
        body: Dict[str, Any] = {k: v for k, v in (credentials or {}).items() if v}
        body["records"] = [dict(r) for r in records]

        response = await self._request("POST", f"/batch/{operation}", json=body)
        result = SubmitResult.from_dict(response.json())
        logger.info(f"Submitted {operation} job {result.job_id} ({result.total} records)")
        return result

    async def events(self, job_id: str) -> AsyncIterator[ProgressEvent]:
        """Follow a job's progress stream until its terminal event.

        Raises:
            ChannelError: the stream ended or broke before a terminal event
        """
        client = await self._get_client()
        parser = SSEParser()
        try:
            async with client.stream(
                "GET",
                f"/batch/jobs/{job_id}/events",
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.is_error:
                    await response.aread()
                    _raise_for_status(response, job_id)

                async for line in response.aiter_lines():
                    event = parser.feed(line)
                    if event is None:
                        continue
                    yield event
                    if event.is_terminal:
                        return

                event = parser.feed("")
                if event is not None:
                    yield event
                    if event.is_terminal:
                        return
        except httpx.HTTPError as e:
            raise ChannelError(f"Progress stream for job {job_id} lost: {e}") from e

        raise ChannelError(f"Progress stream for job {job_id} ended before a terminal event")

    async def cancel(self, job_id: str) -> Dict[str, Any]:
        response = await self._request("POST", f"/batch/jobs/{job_id}/cancel", job_id)
        return response.json()

    async def status(self, job_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/batch/jobs/{job_id}", job_id)
        return response.json()

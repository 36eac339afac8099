"""HTTP API for bulk PingOne user operations with streamed progress.

Endpoints (high level):
- GET    /health                      : basic liveness + active job count.
- POST   /batch/{operation}           : submit records for import/modify/delete.
- GET    /batch/jobs/{id}/events      : Server-Sent Events progress stream (one subscriber).
- DELETE /batch/jobs/{id}             : request cooperative cancellation.
- POST   /batch/jobs/{id}/cancel      : same as DELETE, for clients without DELETE.
- GET    /batch/jobs/{id}             : job status snapshot.
- GET    /batch/jobs                  : list retained jobs.
- GET    /batch/stats                 : counts by state + job history summary.
- POST   /token/test                  : check PingOne worker credentials.
- GET    /logs                        : tail of the service log file.

Run:
  pingone-bulk-api
Then open http://127.0.0.1:8000/docs
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .batch import OPERATIONS, JobRegistry, JobState
from .batch.executor import Operation
from .core.config import ServiceConfig
from .core.errors import ChannelError, FatalJobError, InvalidInput, JobNotFound
from .core.logging import read_log_tail, setup_logging
from .pingone import PingOneClient, build_operation

logger = logging.getLogger(__name__)

app = FastAPI(title="PingOne Bulk API", version="0.1.0")

# Global service state
config: Optional[ServiceConfig] = None
registry: Optional[JobRegistry] = None
_clients: Dict[Tuple[str, str, str, str], PingOneClient] = {}


class Credentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    environment_id: Optional[str] = Field(default=None, alias="environmentId")
    client_id: Optional[str] = Field(default=None, alias="clientId")
    client_secret: Optional[str] = Field(default=None, alias="clientSecret")
    region: Optional[str] = None


class BatchRequest(Credentials):
    records: List[Union[Dict[str, Any], str]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("records", "users", "userIds"),
    )


class JobResponse(BaseModel):
    """Accepted job. ``state`` is ``running``: the job starts before the response is sent."""

    job_id: str
    operation: str
    state: str
    total: int
    created_at: float
    events_url: str
    cancel_url: str
    status_url: str


class JobStatusResponse(BaseModel):
    job_id: str
    operation: str
    state: str
    total: int
    cursor: int
    success_count: int
    failure_count: int
    skipped_count: int
    not_attempted: int
    cancel_requested: bool
    error: Optional[str] = None
    created_at: float
    started_at: Optional[float] = None
    completed_at: Optional[float] = None


class JobListResponse(BaseModel):
    jobs: List[JobStatusResponse]
    total: int


class CancelResponse(BaseModel):
    status: str
    job_id: str
    state: str
    changed: bool


class StatsResponse(BaseModel):
    stats: Dict[str, Any]


def get_config() -> ServiceConfig:
    """Get or load the service config from the environment."""
    global config
    if config is None:
        config = ServiceConfig.from_env()
    return config


def get_registry() -> JobRegistry:
    """Get or create the job registry."""
    global registry
    if registry is None:
        cfg = get_config()
        registry = JobRegistry(
            retention_seconds=cfg.job_retention_seconds,
            summary_log=cfg.summary_log,
        )
    return registry


def get_client_factory(cfg: ServiceConfig = Depends(get_config)) -> Callable[[Credentials], PingOneClient]:
    """Return a function resolving request credentials to a (shared) PingOne client."""

    def client_for(credentials: Credentials) -> PingOneClient:
        environment_id = credentials.environment_id or cfg.environment_id
        client_id = credentials.client_id or cfg.client_id
        client_secret = credentials.client_secret or cfg.client_secret
        region = (credentials.region or cfg.region).lower()

        if not (environment_id and client_id and client_secret):
            raise InvalidInput("Missing required PingOne credentials")

        key = (region, environment_id, client_id, client_secret)
        client = _clients.get(key)
        if client is None:
            client = PingOneClient.from_config(
                cfg,
                environment_id=environment_id,
                client_id=client_id,
                client_secret=client_secret,
                region=region,
            )
            _clients[key] = client
        return client

    return client_for


def get_operation_factory(
    client_for: Callable[[Credentials], PingOneClient] = Depends(get_client_factory),
) -> Callable[[str, Credentials], Operation]:
    def operation_for(name: str, credentials: Credentials) -> Operation:
        return build_operation(name, client_for(credentials))

    return operation_for


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return _error_response(400, exc)


@app.exception_handler(JobNotFound)
async def job_not_found_handler(request: Request, exc: JobNotFound):
    return _error_response(404, exc)


@app.exception_handler(ChannelError)
async def channel_error_handler(request: Request, exc: ChannelError):
    return _error_response(409, exc)


@app.exception_handler(FatalJobError)
async def fatal_error_handler(request: Request, exc: FatalJobError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(502, exc)


@app.on_event("startup")
async def startup_event():
    """Configure logging and create the job registry."""
    cfg = get_config()
    setup_logging(cfg.log_level, cfg.log_file)
    get_registry()
    logger.info(f"PingOne bulk API started (region={cfg.region}, credentials configured={cfg.has_credentials})")


@app.on_event("shutdown")
async def shutdown_event():
    """Interrupt in-flight jobs and close PingOne clients."""
    if registry:
        await registry.shutdown()
    for client in list(_clients.values()):
        await client.aclose()
    _clients.clear()


@app.get("/health")
async def health(registry: JobRegistry = Depends(get_registry)):
    return {"status": "ok", "jobs": registry.active_count}


@app.post("/batch/{operation}", response_model=JobResponse, status_code=202)
async def submit_batch(
    operation: str,
    req: BatchRequest,
    registry: JobRegistry = Depends(get_registry),
    operation_for: Callable[[str, Credentials], Operation] = Depends(get_operation_factory),
):
    """Submit records for a bulk operation; progress is streamed from ``events_url``.

    Example request body:
    ```json
    {
        "records": [
            {"username": "jdoe", "email": "jdoe@example.com", "firstName": "John"},
            {"username": "asmith", "email": "asmith@example.com"}
        ],
        "environmentId": "...",
        "clientId": "...",
        "clientSecret": "..."
    }
    ```
    """
    if operation not in OPERATIONS:
        raise InvalidInput(f"Unknown operation {operation!r}; expected one of {', '.join(OPERATIONS)}")

    records: List[Dict[str, Any]] = [
        {"userId": r} if isinstance(r, str) else r for r in req.records
    ]

    controller = await registry.start(records, operation_for(operation, req), operation)
    job = controller.job
    return JobResponse(
        job_id=job.id,
        operation=job.operation,
        state=job.state.value,
        total=job.total,
        created_at=job.created_at,
        events_url=f"/batch/jobs/{job.id}/events",
        cancel_url=f"/batch/jobs/{job.id}/cancel",
        status_url=f"/batch/jobs/{job.id}",
    )


@app.get("/batch/jobs/{job_id}/events")
async def stream_job_events(job_id: str, registry: JobRegistry = Depends(get_registry)):
    """Stream a job's progress events as Server-Sent Events.

    SSE Format:
        id: 0
        event: step-start
        data: {"jobId": "...", "sequence": 0, "kind": "step-start", "payload": {...}}

    The stream ends after a ``completed``, ``cancelled`` or ``failed`` event.
    """
    controller = registry.get(job_id)
    events = controller.channel.subscribe()
    logger.info(f"Progress subscriber attached to job {job_id}")

    async def event_generator():
        try:
            async for event in events:
                yield event.to_sse()
        finally:
            await events.aclose()
            if not controller.channel.closed:
                logger.warning(f"Progress stream for job {job_id} dropped before its terminal event")
                controller.channel.detach()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def _cancel(job_id: str, registry: JobRegistry) -> CancelResponse:
    controller = registry.get(job_id)
    changed = controller.request_cancel()
    return CancelResponse(
        status="cancel_requested",
        job_id=job_id,
        state=controller.job.state.value,
        changed=changed,
    )


@app.delete("/batch/jobs/{job_id}", response_model=CancelResponse)
async def cancel_batch_job(job_id: str, registry: JobRegistry = Depends(get_registry)):
    """Cancel a running batch job at its next record boundary."""
    return _cancel(job_id, registry)


@app.post("/batch/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_batch_job_post(job_id: str, registry: JobRegistry = Depends(get_registry)):
    return _cancel(job_id, registry)


@app.get("/batch/jobs/{job_id}", response_model=JobStatusResponse)
async def get_batch_job(job_id: str, registry: JobRegistry = Depends(get_registry)):
    """Get status and counters of a batch job."""
    controller = registry.get(job_id)
    return JobStatusResponse(**controller.job.snapshot())


@app.get("/batch/jobs", response_model=JobListResponse)
async def list_batch_jobs(state: Optional[str] = None, registry: JobRegistry = Depends(get_registry)):
    """List retained batch jobs, newest first."""
    try:
        job_state = JobState(state) if state else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown job state: {state}")

    jobs = [JobStatusResponse(**job.snapshot()) for job in registry.list_jobs(job_state)]
    return JobListResponse(jobs=jobs, total=len(jobs))


@app.get("/batch/stats", response_model=StatsResponse)
async def get_batch_stats(registry: JobRegistry = Depends(get_registry)):
    return StatsResponse(stats=registry.stats())


@app.post("/token/test")
async def test_token(
    credentials: Credentials,
    client_for: Callable[[Credentials], PingOneClient] = Depends(get_client_factory),
):
    """Request a fresh worker token with the given (or configured) credentials."""
    client = client_for(credentials)
    await client.test_credentials()
    return {"status": "ok", "environment_id": client.environment_id}


@app.get("/logs")
async def get_logs(lines: int = 200, cfg: ServiceConfig = Depends(get_config)):
    """Return the last lines of the service log file."""
    if not cfg.log_file:
        raise HTTPException(status_code=404, detail="File logging is disabled")

    return {"log_file": cfg.log_file, "lines": read_log_tail(cfg.log_file, lines)}


def main() -> None:
    import uvicorn

    cfg = get_config()
    uvicorn.run(
        "pingone_bulk.api:app",
        host=cfg.host,
        port=cfg.port,
        reload=False,
    )

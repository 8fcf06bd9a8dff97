"""API routes for Briefly."""

from datetime import UTC, datetime

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from briefly import __version__
from briefly.api.models import (
    EnqueueRequest,
    HealthResponse,
    JobKindInfo,
    JobListResponse,
    JobResponse,
)
from briefly.jobs.queue import JobKind, UnknownJobKindError
from briefly.runtime import Runtime
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["api"])


def get_runtime(request: Request) -> Runtime:
    """Return the runtime opened by the application lifespan."""
    runtime: Runtime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime not started")
    return runtime


@router.get("/health", response_model=HealthResponse)
async def health(runtime: Runtime = Depends(get_runtime)) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy", version=__version__, workers_running=runtime.queue.running
    )


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(runtime: Runtime = Depends(get_runtime)) -> JobListResponse:
    """List job kinds with their schedules and queue depth."""
    now = datetime.now(UTC)
    schedules = {s.kind: s for s in runtime.scheduler.schedules}
    jobs = []
    for kind in JobKind:
        schedule = schedules.get(kind)
        jobs.append(
            JobKindInfo(
                kind=kind.value,
                queue=kind.queue,
                cron=schedule.cron if schedule else None,
                next_run=schedule.next_run(now) if schedule else None,
                pending=runtime.queue.pending(kind.queue),
            )
        )
    return JobListResponse(scheduler_enabled=runtime.settings.scheduler_enabled, jobs=jobs)


@router.post("/jobs/{kind}", response_model=JobResponse, status_code=202)
async def enqueue_job(
    kind: str,
    body: EnqueueRequest | None = Body(default=None),
    runtime: Runtime = Depends(get_runtime),
) -> JobResponse:
    """Enqueue a manual run of a job kind.

    Args:
        kind: Job kind, e.g. ``ingestion:fetchArticles``.
        body: Optional identifier payload, e.g. a briefing ID for delivery.

    Returns:
        JobResponse describing the queued job.
    """
    payload = body.payload if body else {}
    logger.info("Manual job requested", kind=kind)
    try:
        job = await runtime.queue.enqueue(kind, payload)
    except UnknownJobKindError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return JobResponse(id=job.id, kind=job.kind.value, queue=job.queue, state=job.state.value)

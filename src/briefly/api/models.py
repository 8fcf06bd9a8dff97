"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(description="Health status")
    version: str = Field(description="Application version")
    workers_running: bool = Field(description="Whether the job workers are running")


class JobKindInfo(BaseModel):
    """A job kind and, for recurring kinds, its schedule."""

    kind: str = Field(description="Job kind, <queue>:<job>")
    queue: str = Field(description="Queue the kind runs on")
    cron: str | None = Field(default=None, description="Cron expression, UTC")
    next_run: datetime | None = Field(default=None, description="Next scheduled run")
    pending: int = Field(description="Jobs waiting on this kind's queue")


class JobListResponse(BaseModel):
    """Response model for the job listing endpoint."""

    scheduler_enabled: bool = Field(description="Whether cron producers are running")
    jobs: list[JobKindInfo]


class EnqueueRequest(BaseModel):
    """Optional identifier payload for a manual run."""

    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")


class JobResponse(BaseModel):
    """Response model for an enqueued job."""

    id: str = Field(description="Job ID")
    kind: str = Field(description="Job kind")
    queue: str = Field(description="Queue the job was placed on")
    state: str = Field(description="Job state at enqueue time")

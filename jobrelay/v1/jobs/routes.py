"""
Job routes: provider-facing worker endpoints and the read-only execution API.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from jobrelay.config.settings import Settings, SettingsDep
from jobrelay.v1.core.exceptions import NotFoundError, create_success_response
from jobrelay.v1.core.registries import JobConfigRegistry, JobHandlerRegistry
from jobrelay.v1.jobs.schemas import JobExecutionListResponse, JobExecutionResponse
from jobrelay.v1.jobs.store import JobExecutionStore, get_job_execution_store
from jobrelay.v1.jobs.types import JobType
from jobrelay.v1.jobs.worker import create_job_worker

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs/executions", tags=["jobs"])


def build_worker_router(
    handlers: JobHandlerRegistry, configs: JobConfigRegistry
) -> APIRouter:
    """
    Mount one POST route per handled job type at its registry endpoint.

    Endpoints in the registry are absolute paths, so this router is included
    without a prefix.
    """
    worker_router = APIRouter(tags=["job-workers"])

    for name in handlers.list():
        config = configs.get_config(name)
        worker_router.add_api_route(
            config.endpoint,
            create_job_worker(config.type, handlers.get(name)),
            methods=["POST"],
            summary=config.description,
        )
        logger.info(
            "Job worker route mounted",
            extra={"type": name, "endpoint": config.endpoint},
        )

    return worker_router


def _listing(executions: list, limit: int) -> dict[str, Any]:
    response = JobExecutionListResponse(
        executions=[JobExecutionResponse.model_validate(e) for e in executions],
        count=len(executions),
        limit=limit,
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_executions(
    job_type: JobType = Query(alias="type", description="Job type to list"),
    limit: int | None = Query(default=None, ge=1, le=1000, description="Maximum results"),
    store: JobExecutionStore = Depends(get_job_execution_store),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List recent executions of one job type, newest first."""
    limit = limit or settings.job_list_default_limit
    executions = await store.list_by_type(job_type, limit=limit)
    return _listing(executions, limit)


@router.get("/failed", response_model=dict)
async def list_failed_executions(
    limit: int | None = Query(default=None, ge=1, le=1000, description="Maximum results"),
    store: JobExecutionStore = Depends(get_job_execution_store),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List recent failed executions for operator review."""
    limit = limit or settings.job_list_default_limit
    executions = await store.list_failed(limit=limit)
    return _listing(executions, limit)


@router.get("/{job_id}", response_model=dict)
async def get_execution(
    job_id: str,
    store: JobExecutionStore = Depends(get_job_execution_store),
) -> dict[str, Any]:
    """Get the execution record of one job."""
    execution = await store.get_by_job_id(job_id)
    if execution is None:
        raise NotFoundError("Job execution not found", details={"job_id": job_id})

    data = JobExecutionResponse.model_validate(execution).model_dump(mode="json")
    data["duration_seconds"] = execution.duration_seconds()
    return create_success_response(data=data)

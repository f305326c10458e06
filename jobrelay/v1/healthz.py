from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.config.logging import get_logger
from jobrelay.config.settings import Settings, SettingsDep
from jobrelay.infra.database import get_session
from jobrelay.v1.core.exceptions import PersistenceError, create_success_response
from jobrelay.v1.jobs.models import JobExecutionStatus
from jobrelay.v1.jobs.store import JobExecutionStore, get_job_execution_store

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class ExecutionHealth(BaseModel):
    """Execution record counts by status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    """Service health: the database decides ok, execution counts are informational."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    executions: ExecutionHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep,
    session: AsyncSession = Depends(get_session),
    store: JobExecutionStore = Depends(get_job_execution_store),
):
    """Health check with database connectivity and execution counts."""

    db_health = await _check_database_health(session)

    executions = None
    if db_health.connected:
        try:
            counts = await store.count_by_status()
            executions = ExecutionHealth(
                **{s.value: counts.get(s.value, 0) for s in JobExecutionStatus}
            )
        except PersistenceError as e:
            # Counts are informational; connectivity decides health
            logger.warning("Execution counts unavailable", error=e.message)

    health = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        database=db_health,
        executions=executions,
    )
    return create_success_response(data=health.model_dump())


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return DatabaseHealth(connected=False, error=str(e))

    response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
    return DatabaseHealth(connected=True, response_time_ms=round(response_time_ms, 2))

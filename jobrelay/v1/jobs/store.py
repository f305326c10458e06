"""
Execution record store for dispatched jobs.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from fastapi import Depends

from jobrelay.config.logging import get_logger
from jobrelay.infra.database import Database, get_database
from jobrelay.v1.core.exceptions import PersistenceError
from jobrelay.v1.jobs.models import JobExecution, JobExecutionStatus
from jobrelay.v1.jobs.types import JobType

logger = get_logger(__name__)

# Store calls can fail below SQLAlchemy, e.g. a refused connection
STORE_ERRORS = (SQLAlchemyError, OSError)


class JobExecutionStore:
    """
    Persistence for job execution records.

    Every operation opens its own session so that concurrent deliveries of
    the same job never share transactional state.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        job_id: UUID | str,
        job_type: JobType | str,
        payload: dict[str, Any],
        status: JobExecutionStatus = JobExecutionStatus.PENDING,
        user_id: str | None = None,
        organization_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> JobExecution:
        """
        Insert a new execution record.

        Raises:
            PersistenceError: If the record could not be stored, including a
                duplicate job_id
        """
        execution = self._build(
            job_id, job_type, payload, status, user_id, organization_id, idempotency_key
        )

        try:
            async with self._session_factory() as session:
                session.add(execution)
                await session.commit()
                await session.refresh(execution)
        except STORE_ERRORS as e:
            logger.error(
                "Failed to create job execution",
                job_id=str(job_id),
                type=execution.job_type,
                error=str(e),
            )
            raise PersistenceError(
                "Failed to create job execution record",
                details={"job_id": str(job_id)},
            ) from e

        return execution

    async def create_if_missing(
        self,
        job_id: UUID | str,
        job_type: JobType | str,
        payload: dict[str, Any],
        user_id: str | None = None,
        organization_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> JobExecution | None:
        """
        Insert a pending record unless one already exists for job_id.

        Returns:
            The new record, or None when another writer created it first
        """
        execution = self._build(
            job_id,
            job_type,
            payload,
            JobExecutionStatus.PENDING,
            user_id,
            organization_id,
            idempotency_key,
        )

        try:
            async with self._session_factory() as session:
                session.add(execution)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return None
                await session.refresh(execution)
        except STORE_ERRORS as e:
            raise PersistenceError(
                "Failed to create job execution record",
                details={"job_id": str(job_id)},
            ) from e

        return execution

    async def transition(
        self,
        job_id: UUID | str,
        status: JobExecutionStatus | str,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Move an execution to a new status in a single UPDATE.

        Entering processing increments retry_count in SQL, so concurrent
        redeliveries never lose an increment.

        Returns:
            True if a record was updated, False if none exists for job_id

        Raises:
            ValueError: For a transition back to pending
            PersistenceError: If the store is unavailable
        """
        status = JobExecutionStatus(status)
        if status == JobExecutionStatus.PENDING:
            raise ValueError("Job executions cannot transition back to pending")

        now = datetime.now(UTC)
        values: dict[str, Any] = {"status": status.value, "updated_at": now}

        if status == JobExecutionStatus.PROCESSING:
            values.update(
                retry_count=JobExecution.retry_count + 1,
                started_at=now,
                completed_at=None,
            )
        elif status == JobExecutionStatus.COMPLETED:
            values.update(result=result, error=None, completed_at=now)
        elif status == JobExecutionStatus.FAILED:
            values.update(error=error, completed_at=now)

        stmt = (
            update(JobExecution)
            .where(JobExecution.job_id == str(job_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_factory() as session:
                outcome = await session.execute(stmt)
                await session.commit()
        except STORE_ERRORS as e:
            logger.error(
                "Failed to transition job execution",
                job_id=str(job_id),
                status=status.value,
                error=str(e),
            )
            raise PersistenceError(
                "Failed to update job execution record",
                details={"job_id": str(job_id), "status": status.value},
            ) from e

        return outcome.rowcount > 0

    async def get_by_job_id(self, job_id: UUID | str) -> JobExecution | None:
        """Get an execution record by its job id."""
        return await self._scalar_one_or_none(
            select(JobExecution).where(JobExecution.job_id == str(job_id))
        )

    async def list_by_type(
        self, job_type: JobType | str, limit: int = 50
    ) -> list[JobExecution]:
        """Recent executions of one job type, newest first."""
        return await self._scalars(
            select(JobExecution)
            .where(JobExecution.job_type == JobType(job_type).value)
            .order_by(desc(JobExecution.created_at), desc(JobExecution.id))
            .limit(limit)
        )

    async def list_failed(self, limit: int = 50) -> list[JobExecution]:
        """Recent failed executions, newest first, for operator review."""
        return await self._scalars(
            select(JobExecution)
            .where(JobExecution.status == JobExecutionStatus.FAILED.value)
            .order_by(desc(JobExecution.created_at), desc(JobExecution.id))
            .limit(limit)
        )

    async def find_completed_by_idempotency_key(
        self, idempotency_key: str, exclude_job_id: UUID | str | None = None
    ) -> JobExecution | None:
        """Find a completed execution of the same logical event, if any."""
        query = select(JobExecution).where(
            JobExecution.idempotency_key == idempotency_key,
            JobExecution.status == JobExecutionStatus.COMPLETED.value,
        )
        if exclude_job_id is not None:
            query = query.where(JobExecution.job_id != str(exclude_job_id))

        return await self._scalar_one_or_none(query.limit(1))

    async def count_by_status(self) -> dict[str, int]:
        """Number of executions per status."""
        try:
            async with self._session_factory() as session:
                rows = await session.execute(
                    select(JobExecution.status, func.count(JobExecution.id)).group_by(
                        JobExecution.status
                    )
                )
                return {status: count for status, count in rows.all()}
        except STORE_ERRORS as e:
            raise PersistenceError("Failed to count job executions") from e

    @staticmethod
    def _build(
        job_id: UUID | str,
        job_type: JobType | str,
        payload: dict[str, Any],
        status: JobExecutionStatus,
        user_id: str | None,
        organization_id: str | None,
        idempotency_key: str | None,
    ) -> JobExecution:
        now = datetime.now(UTC)
        return JobExecution(
            job_id=str(job_id),
            job_type=JobType(job_type).value,
            status=JobExecutionStatus(status).value,
            payload=payload,
            retry_count=0,
            user_id=user_id,
            organization_id=organization_id,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )

    async def _scalar_one_or_none(self, query) -> JobExecution | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return result.scalar_one_or_none()
        except STORE_ERRORS as e:
            raise PersistenceError("Failed to read job execution records") from e

    async def _scalars(self, query) -> list[JobExecution]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except STORE_ERRORS as e:
            raise PersistenceError("Failed to read job execution records") from e


def get_job_execution_store(
    database: Database = Depends(get_database),
) -> JobExecutionStore:
    """Dependency injection function for the execution record store."""
    return JobExecutionStore(database.SessionLocal)

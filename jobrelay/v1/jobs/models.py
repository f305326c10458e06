"""
Job execution record model.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from jobrelay.infra.database import Base

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class JobExecutionStatus(str, Enum):
    """Job execution status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobExecutionStatus.COMPLETED, JobExecutionStatus.FAILED})


class JobExecution(Base):
    """
    Persisted lifecycle of one dispatched job.

    Created as pending by the dispatcher; only the worker wrapper moves it
    through processing to completed or failed. Rows are never deleted here.
    """

    __tablename__ = "job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, comment="Dispatcher-assigned job UUID"
    )
    job_type: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="Job type identifier"
    )
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=JobExecutionStatus.PENDING.value,
        comment="Execution status: pending|processing|completed|failed",
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONVariant, nullable=False, comment="Envelope snapshot at enqueue time"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSONVariant, nullable=True, comment="Handler result"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last handler error"
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Number of deliveries received",
    )

    # Attribution and deduplication
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    organization_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Event-derived key stable across retries"
    )

    # Timestamps
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="job_executions_status_check",
        ),
        Index("ix_job_executions_type_created_at", "job_type", "created_at"),
        Index("ix_job_executions_status_created_at", "status", "created_at"),
        Index("ix_job_executions_idempotency_key", "idempotency_key"),
    )

    def is_terminal(self) -> bool:
        """Check if the execution reached completed or failed."""
        return self.status in {s.value for s in TERMINAL_STATUSES}

    def duration_seconds(self) -> float | None:
        """Seconds between the last delivery start and completion, if both are known."""
        if not self.started_at or not self.completed_at:
            return None
        return (self.completed_at - self.started_at).total_seconds()

import os

# Worker routes need signing keys; settings are read once at import
os.environ.setdefault("QSTASH_TOKEN", "qstash_test_token")
os.environ.setdefault(
    "QSTASH_CURRENT_SIGNING_KEY", "sig_current_4f1d2c3b5a6e7f8091a2b3c4d5e6f708"
)
os.environ.setdefault(
    "QSTASH_NEXT_SIGNING_KEY", "sig_next_9e8d7c6b5a4f3e2d1c0b9a8f7e6d5c4b3a"
)
os.environ.setdefault("BASE_URL", "http://localhost:8000")

from collections.abc import AsyncGenerator, Callable, Generator  # noqa: E402
from datetime import UTC, datetime  # noqa: E402
from typing import Any  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jobrelay.config.settings import settings  # noqa: E402
from jobrelay.infra.database import Base  # noqa: E402
from jobrelay.v1.core.exceptions import DeliveryError, PersistenceError  # noqa: E402
from jobrelay.v1.core.signing import SignatureVerifier, sign_delivery  # noqa: E402
from jobrelay.v1.jobs.models import JobExecution, JobExecutionStatus  # noqa: E402
from jobrelay.v1.jobs.provider import PublishRequest, ScheduleRequest  # noqa: E402
from jobrelay.v1.jobs.registry_init import build_job_config_registry  # noqa: E402
from jobrelay.v1.jobs.store import JobExecutionStore  # noqa: E402
from jobrelay.v1.jobs.types import JobType  # noqa: E402


# Execution record store backed by a real database


@pytest.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine."""
    database_url = os.getenv("DATABASE_URL")

    if database_url and "postgresql" in database_url:
        # Use the CI PostgreSQL database
        engine = create_async_engine(database_url, echo=False)
    else:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'jobrelay.db'}", echo=False
        )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.execute(text("DELETE FROM job_executions"))
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> JobExecutionStore:
    """Execution record store on the test database."""
    return JobExecutionStore(session_factory)


# In-memory fakes


class FakeExecutionStore:
    """In-memory stand-in for JobExecutionStore."""

    def __init__(self):
        self.records: dict[str, JobExecution] = {}
        self.transitions: list[tuple[str, str]] = []
        self.fail_create = False
        self.fail_transition = False

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
        if self.fail_create:
            raise PersistenceError("Failed to create job execution record")
        if str(job_id) in self.records:
            raise PersistenceError("Failed to create job execution record")

        now = datetime.now(UTC)
        record = JobExecution(
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
        self.records[record.job_id] = record
        return record

    async def create_if_missing(self, job_id, job_type, payload, **metadata):
        if str(job_id) in self.records:
            return None
        return await self.create(job_id, job_type, payload, **metadata)

    async def transition(self, job_id, status, result=None, error=None) -> bool:
        if self.fail_transition:
            raise PersistenceError("Failed to update job execution record")
        status = JobExecutionStatus(status)
        if status == JobExecutionStatus.PENDING:
            raise ValueError("Job executions cannot transition back to pending")

        record = self.records.get(str(job_id))
        if record is None:
            return False

        now = datetime.now(UTC)
        record.status = status.value
        record.updated_at = now
        if status == JobExecutionStatus.PROCESSING:
            record.retry_count += 1
            record.started_at = now
            record.completed_at = None
        elif status == JobExecutionStatus.COMPLETED:
            record.result = result
            record.error = None
            record.completed_at = now
        else:
            record.error = error
            record.completed_at = now

        self.transitions.append((str(job_id), status.value))
        return True

    async def get_by_job_id(self, job_id) -> JobExecution | None:
        return self.records.get(str(job_id))

    async def list_by_type(self, job_type, limit: int = 50) -> list[JobExecution]:
        records = [r for r in self.records.values() if r.job_type == JobType(job_type).value]
        return list(reversed(records))[:limit]

    async def list_failed(self, limit: int = 50) -> list[JobExecution]:
        records = [
            r for r in self.records.values() if r.status == JobExecutionStatus.FAILED.value
        ]
        return list(reversed(records))[:limit]

    async def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.records.values():
            counts[record.status] = counts.get(record.status, 0) + 1
        return counts

    async def find_completed_by_idempotency_key(self, idempotency_key, exclude_job_id=None):
        for record in self.records.values():
            if (
                record.idempotency_key == idempotency_key
                and record.status == JobExecutionStatus.COMPLETED.value
                and record.job_id != str(exclude_job_id)
            ):
                return record
        return None


class FakeDeliveryProvider:
    """Records publishes and schedules instead of calling the provider."""

    def __init__(self):
        self.published: list[PublishRequest] = []
        self.schedules: dict[str, ScheduleRequest] = {}
        self.fail = False

    async def publish(self, request: PublishRequest) -> str:
        if self.fail:
            raise DeliveryError("Delivery provider returned 500")
        self.published.append(request)
        return f"msg_{len(self.published)}"

    async def create_schedule(self, request: ScheduleRequest) -> str:
        if self.fail:
            raise DeliveryError("Delivery provider returned 500")
        self.schedules[request.schedule_id] = request
        return request.schedule_id


@pytest.fixture
def fake_store() -> FakeExecutionStore:
    return FakeExecutionStore()


@pytest.fixture
def fake_provider() -> FakeDeliveryProvider:
    return FakeDeliveryProvider()


# Registry and signing


@pytest.fixture
def job_config_registry():
    return build_job_config_registry()


@pytest.fixture
def base_url() -> str:
    return settings.normalized_base_url


@pytest.fixture
def current_signing_key() -> str:
    return settings.qstash_current_signing_key


@pytest.fixture
def next_signing_key() -> str:
    return settings.qstash_next_signing_key


@pytest.fixture
def verifier(current_signing_key, next_signing_key) -> SignatureVerifier:
    return SignatureVerifier(current_signing_key, next_signing_key)


@pytest.fixture
def sign(current_signing_key) -> Callable[..., str]:
    """Sign a delivery body for a URL the way the provider does."""

    def _sign(body: bytes, url: str, key: str | None = None, **kwargs: Any) -> str:
        return sign_delivery(key or current_signing_key, body, url, **kwargs)

    return _sign


# Payloads


@pytest.fixture
def email_payload() -> dict[str, Any]:
    return {
        "template": "welcome",
        "to": "ada@example.com",
        "data": {"recipientName": "Ada", "dashboardUrl": "https://app.example.com"},
    }


# Application


@pytest.fixture
def app():
    """Create a test FastAPI application."""
    from jobrelay.main import create_app

    app = create_app()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client."""
    with TestClient(app) as test_client:
        yield test_client

import pytest
from sqlalchemy.exc import OperationalError

from jobrelay.infra.database import get_session
from jobrelay.v1.jobs.models import JobExecution, JobExecutionStatus
from jobrelay.v1.jobs.store import get_job_execution_store


class StubSession:
    def __init__(self, error: Exception | None = None):
        self.error = error

    async def execute(self, statement):
        if self.error:
            raise self.error
        return None


@pytest.fixture
def health_client(app, client, fake_store):
    def use_session(session):
        async def _session():
            yield session

        app.dependency_overrides[get_session] = _session

    app.dependency_overrides[get_job_execution_store] = lambda: fake_store
    client.use_session = use_session
    return client


def test_healthy(health_client, fake_store):
    health_client.use_session(StubSession())
    fake_store.records["6f1c1f0e"] = JobExecution(status=JobExecutionStatus.FAILED.value)

    response = health_client.get("/v1/healthz")

    assert response.status_code == 200
    assert "X-Request-ID" in response.headers
    data = response.json()["data"]
    assert data["ok"] is True
    assert data["version"] == "1.0.0"
    assert data["database"]["connected"] is True
    assert data["executions"] == {"pending": 0, "processing": 0, "completed": 0, "failed": 1}


def test_database_unreachable(health_client):
    health_client.use_session(
        StubSession(OperationalError("SELECT 1", {}, Exception("connection refused")))
    )

    response = health_client.get("/v1/healthz")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["ok"] is False
    assert data["database"]["connected"] is False
    assert "connection refused" in data["database"]["error"]
    assert data["executions"] is None

import json
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from jobrelay.v1.core.signing import get_signature_verifier
from jobrelay.v1.jobs.models import JobExecution, JobExecutionStatus
from jobrelay.v1.jobs.store import get_job_execution_store

EMAIL_URL = "http://localhost:8000/v1/jobs/email"
REPORT_URL = "http://localhost:8000/v1/jobs/report"


@pytest.fixture
def api(app, client, fake_store):
    app.dependency_overrides[get_job_execution_store] = lambda: fake_store
    return client


def _seed(fake_store, job_type="send-email", status=JobExecutionStatus.PENDING, **fields):
    now = datetime.now(UTC)
    record = JobExecution(
        job_id=str(uuid.uuid4()),
        job_type=job_type,
        status=status.value,
        payload={"type": job_type},
        retry_count=0,
        created_at=now,
        updated_at=now,
        **fields,
    )
    fake_store.records[record.job_id] = record
    return record


def _envelope(job_type: str, payload: dict, job_id: str | None = None) -> bytes:
    return json.dumps(
        {
            "jobId": job_id or str(uuid.uuid4()),
            "type": job_type,
            "payload": payload,
            "metadata": {"createdAt": datetime.now(UTC).isoformat()},
        }
    ).encode()


class TestWorkerRoutes:
    def test_signed_delivery_completes(self, api, fake_store, sign, email_payload):
        record = _seed(fake_store)
        body = _envelope("send-email", email_payload, job_id=record.job_id)

        response = api.post(
            "/v1/jobs/email",
            content=body,
            headers={
                "Upstash-Signature": sign(body, EMAIL_URL),
                "Upstash-Message-Id": "msg_1",
                "Upstash-Retried": "0",
            },
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "completed"
        assert data["result"]["status"] == "sent"
        assert record.status == JobExecutionStatus.COMPLETED.value
        assert record.retry_count == 1

    def test_unsigned_delivery_rejected(self, api, fake_store, email_payload):
        record = _seed(fake_store)
        body = _envelope("send-email", email_payload, job_id=record.job_id)

        response = api.post("/v1/jobs/email", content=body)

        assert response.status_code == 401
        assert response.json()["ok"] is False
        assert record.status == JobExecutionStatus.PENDING.value

    def test_wrong_type_for_endpoint_is_non_retryable(self, api, fake_store, sign):
        body = _envelope(
            "process-webhook", {"source": "custom", "event": "ping", "data": {}}
        )

        response = api.post(
            "/v1/jobs/email",
            content=body,
            headers={"Upstash-Signature": sign(body, EMAIL_URL)},
        )

        assert response.status_code == 400
        assert response.headers["Upstash-NonRetryable-Error"] == "true"
        assert fake_store.records == {}

    def test_permanent_failure_status(self, api, fake_store, sign):
        record = _seed(fake_store, job_type="generate-report")
        body = _envelope(
            "generate-report",
            {
                "reportType": "billing",
                "dateRange": {"from": "2026-02-01T00:00:00Z", "to": "2026-02-28T00:00:00Z"},
                "recipients": ["finance@example.com"],
                "format": "pdf",
            },
            job_id=record.job_id,
        )

        response = api.post(
            "/v1/jobs/report",
            content=body,
            headers={"Upstash-Signature": sign(body, REPORT_URL)},
        )

        assert response.status_code == 489
        assert response.headers["Upstash-NonRetryable-Error"] == "true"
        assert record.status == JobExecutionStatus.FAILED.value

    def test_unhandled_job_types_have_no_route(self, api):
        response = api.post("/v1/jobs/export", content=b"{}")

        assert response.status_code in (404, 405)

    def test_verifier_can_be_overridden(self, app, api, fake_store, email_payload):
        class AcceptAll:
            def verify(self, signature, body, url=None):
                return {}

        app.dependency_overrides[get_signature_verifier] = lambda: AcceptAll()
        body = _envelope("send-email", email_payload)

        response = api.post("/v1/jobs/email", content=body)

        assert response.status_code == 200


class TestExecutionRoutes:
    def test_get_execution(self, api, fake_store):
        started = datetime.now(UTC)
        record = _seed(
            fake_store,
            status=JobExecutionStatus.COMPLETED,
            result={"status": "sent"},
            started_at=started,
            completed_at=started + timedelta(seconds=2),
        )

        response = api.get(f"/v1/jobs/executions/{record.job_id}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["job_id"] == record.job_id
        assert data["status"] == "completed"
        assert data["result"] == {"status": "sent"}
        assert data["duration_seconds"] == 2.0

    def test_get_unknown_execution(self, api):
        response = api.get(f"/v1/jobs/executions/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Job execution not found"

    def test_list_by_type(self, api, fake_store):
        first = _seed(fake_store)
        second = _seed(fake_store)
        _seed(fake_store, job_type="generate-report")

        response = api.get("/v1/jobs/executions", params={"type": "send-email", "limit": 5})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["count"] == 2
        assert data["limit"] == 5
        assert [e["job_id"] for e in data["executions"]] == [second.job_id, first.job_id]

    def test_list_requires_type(self, api):
        response = api.get("/v1/jobs/executions")

        assert response.status_code == 422

    def test_list_rejects_unknown_type(self, api):
        response = api.get("/v1/jobs/executions", params={"type": "send-sms"})

        assert response.status_code == 422

    def test_list_failed(self, api, fake_store):
        failed = _seed(fake_store, status=JobExecutionStatus.FAILED, error="boom")
        _seed(fake_store, status=JobExecutionStatus.COMPLETED)

        response = api.get("/v1/jobs/executions/failed")

        data = response.json()["data"]
        assert [e["job_id"] for e in data["executions"]] == [failed.job_id]
        assert data["executions"][0]["error"] == "boom"
        assert data["limit"] == 50

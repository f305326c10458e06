import uuid

import pytest

from jobrelay.v1.core.exceptions import (
    ConfigurationError,
    DeliveryError,
    PersistenceError,
    ValidationError,
)
from jobrelay.v1.jobs.dispatcher import EnqueueOptions, JobDispatcher
from jobrelay.v1.jobs.models import JobExecutionStatus


@pytest.fixture
def dispatcher(job_config_registry, fake_store, fake_provider, base_url):
    return JobDispatcher(job_config_registry, fake_store, fake_provider, base_url)


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_records_pending_and_publishes(
        self, dispatcher, fake_store, fake_provider, email_payload
    ):
        job_id = await dispatcher.enqueue(
            "send-email", email_payload, {"userId": "u1", "organizationId": "o1"}
        )

        assert uuid.UUID(job_id).version == 4

        record = fake_store.records[job_id]
        assert record.status == JobExecutionStatus.PENDING.value
        assert record.user_id == "u1"
        assert record.organization_id == "o1"

        request = fake_provider.published[0]
        assert request.url == "http://localhost:8000/v1/jobs/email"
        assert request.retries == 3
        assert request.body == record.payload
        assert request.body["jobId"] == job_id
        assert request.body["type"] == "send-email"
        assert request.body["payload"]["to"] == "ada@example.com"
        assert request.body["metadata"]["userId"] == "u1"
        assert "createdAt" in request.body["metadata"]

    @pytest.mark.asyncio
    async def test_each_enqueue_gets_a_new_job_id(self, dispatcher, email_payload):
        first = await dispatcher.enqueue("send-email", email_payload)
        second = await dispatcher.enqueue("send-email", email_payload)

        assert first != second

    @pytest.mark.asyncio
    async def test_options_override_registry(self, dispatcher, fake_provider, email_payload):
        await dispatcher.enqueue(
            "send-email",
            email_payload,
            options=EnqueueOptions(
                retries=0,
                delay=30,
                callback="https://example.com/cb",
                failure_callback="https://example.com/failed",
                headers={"X-Trace": "abc"},
            ),
        )

        request = fake_provider.published[0]
        assert request.retries == 0
        assert request.delay == 30
        assert request.callback == "https://example.com/cb"
        assert request.failure_callback == "https://example.com/failed"
        assert request.headers == {"X-Trace": "abc"}

    @pytest.mark.asyncio
    async def test_caller_cannot_supply_created_at(self, dispatcher, email_payload):
        with pytest.raises(ValidationError):
            await dispatcher.enqueue(
                "send-email", email_payload, {"createdAt": "2020-01-01T00:00:00Z"}
            )

    @pytest.mark.asyncio
    async def test_invalid_payload_never_reaches_store_or_provider(
        self, dispatcher, fake_store, fake_provider, email_payload
    ):
        with pytest.raises(ValidationError):
            await dispatcher.enqueue("send-email", {**email_payload, "to": "nope"})

        assert fake_store.records == {}
        assert fake_provider.published == []

    @pytest.mark.asyncio
    async def test_store_failure_aborts_before_publish(
        self, dispatcher, fake_store, fake_provider, email_payload
    ):
        fake_store.fail_create = True

        with pytest.raises(PersistenceError):
            await dispatcher.enqueue("send-email", email_payload)

        assert fake_provider.published == []

    @pytest.mark.asyncio
    async def test_publish_failure_leaves_record_pending(
        self, dispatcher, fake_store, fake_provider, email_payload
    ):
        fake_provider.fail = True

        with pytest.raises(DeliveryError):
            await dispatcher.enqueue("send-email", email_payload)

        [record] = fake_store.records.values()
        assert record.status == JobExecutionStatus.PENDING.value
        assert fake_store.transitions == []

    @pytest.mark.asyncio
    async def test_unknown_type_is_configuration_error(self, dispatcher, email_payload):
        with pytest.raises(ConfigurationError):
            await dispatcher.enqueue("send-sms", email_payload)

    @pytest.mark.asyncio
    async def test_base_url_trailing_slash(
        self, job_config_registry, fake_store, fake_provider, email_payload
    ):
        dispatcher = JobDispatcher(
            job_config_registry, fake_store, fake_provider, "https://jobs.example.com/"
        )
        await dispatcher.enqueue("send-email", email_payload)

        assert fake_provider.published[0].url == "https://jobs.example.com/v1/jobs/email"


class TestSchedule:
    REPORT = {
        "reportType": "usage",
        "dateRange": {"from": "2026-01-01T00:00:00Z", "to": "2026-01-31T00:00:00Z"},
        "recipients": ["ops@example.com"],
        "format": "pdf",
    }

    @pytest.mark.asyncio
    async def test_schedule_creates_no_record(self, dispatcher, fake_store, fake_provider):
        schedule_id = await dispatcher.schedule("generate-report", "0 6 * * 1", self.REPORT)

        assert fake_store.records == {}
        request = fake_provider.schedules[schedule_id]
        assert request.destination == "http://localhost:8000/v1/jobs/report"
        assert request.cron == "0 6 * * 1"
        assert request.body["metadata"]["scheduleId"] == schedule_id
        assert request.body["payload"]["dateRange"]["from"].startswith("2026-01-01")

    @pytest.mark.asyncio
    async def test_same_type_and_cron_updates_schedule(self, dispatcher, fake_provider):
        first = await dispatcher.schedule("generate-report", "0 6 * * 1", self.REPORT)
        second = await dispatcher.schedule("generate-report", "0  6 * * 1", self.REPORT)
        other = await dispatcher.schedule("generate-report", "0 7 * * 1", self.REPORT)

        assert first == second
        assert first != other
        assert len(fake_provider.schedules) == 2

    @pytest.mark.asyncio
    async def test_invalid_cron_rejected(self, dispatcher, fake_provider):
        with pytest.raises(ValidationError):
            await dispatcher.schedule("generate-report", "every monday", self.REPORT)

        assert fake_provider.schedules == {}

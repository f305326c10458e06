"""
Job dispatcher: validates, records and publishes jobs.

Enqueueing is synchronous from the caller's point of view. A job that fails
validation never reaches the store, and a job whose record could not be
written never reaches the provider. A publish failure leaves the record
pending and propagates; nothing is re-published automatically.
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fastapi import Depends
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from jobrelay.config.settings import Settings, get_settings
from jobrelay.v1.core.exceptions import ValidationError
from jobrelay.v1.core.registries import JobConfigRegistry
from jobrelay.v1.jobs.provider import (
    DeliveryProvider,
    PublishRequest,
    ScheduleRequest,
    get_delivery_provider,
)
from jobrelay.v1.jobs.registry_init import get_job_config_registry
from jobrelay.v1.jobs.schemas import JobMetadata, JobMetadataInput, validate_payload
from jobrelay.v1.jobs.store import JobExecutionStore, get_job_execution_store
from jobrelay.v1.jobs.types import JobType

logger = logging.getLogger(__name__)


@dataclass
class EnqueueOptions:
    """Per-call overrides of the registry's delivery settings."""

    retries: int | None = None
    delay: int | None = None
    callback: str | None = None
    failure_callback: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


class JobDispatcher:
    """Enqueues jobs with the delivery provider and records them as pending."""

    def __init__(
        self,
        registry: JobConfigRegistry,
        store: JobExecutionStore,
        provider: DeliveryProvider,
        base_url: str,
    ):
        self.registry = registry
        self.store = store
        self.provider = provider
        self.base_url = base_url.rstrip("/")

    def endpoint_url(self, job_type: JobType | str) -> str:
        """Absolute worker URL for a job type."""
        return f"{self.base_url}{self.registry.get_config(job_type).endpoint}"

    async def enqueue(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | BaseModel,
        metadata: JobMetadataInput | dict[str, Any] | None = None,
        options: EnqueueOptions | None = None,
    ) -> str:
        """
        Enqueue a job for delivery.

        Args:
            job_type: Registered job type
            payload: Raw payload or payload model, validated against the type
            metadata: Optional user/organization attribution and idempotency key
            options: Optional overrides for retries, delay, callbacks and headers

        Returns:
            The generated job_id

        Raises:
            ConfigurationError: If the job type is not registered
            ValidationError: If the payload or metadata is invalid
            PersistenceError: If the pending record could not be written
            DeliveryError: If the provider rejected the publish
        """
        config = self.registry.get_config(job_type)
        job_type = JobType(config.type)
        validated = validate_payload(job_type, payload)

        job_id = uuid.uuid4()
        job_metadata = self._stamp_metadata(metadata)
        envelope = self._build_envelope(job_id, job_type, validated, job_metadata)

        await self.store.create(
            job_id=job_id,
            job_type=job_type,
            payload=envelope,
            user_id=job_metadata.user_id,
            organization_id=job_metadata.organization_id,
            idempotency_key=job_metadata.idempotency_key,
        )

        options = options or EnqueueOptions()
        request = PublishRequest(
            url=f"{self.base_url}{config.endpoint}",
            body=envelope,
            retries=config.retries if options.retries is None else options.retries,
            delay=options.delay,
            callback=options.callback,
            failure_callback=options.failure_callback,
            headers=dict(options.headers),
        )

        try:
            message_id = await self.provider.publish(request)
        except Exception as e:
            logger.error(
                "Job publish failed, execution left pending",
                extra={"job_id": str(job_id), "type": job_type.value, "error": str(e)},
            )
            raise

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job_id),
                "type": job_type.value,
                "message_id": message_id,
                "retries": request.retries,
                "delay": request.delay,
                "idempotency_key": job_metadata.idempotency_key,
            },
        )
        return str(job_id)

    async def schedule(
        self,
        job_type: JobType | str,
        cron: str,
        payload: dict[str, Any] | BaseModel,
        metadata: JobMetadataInput | dict[str, Any] | None = None,
    ) -> str:
        """
        Register a recurring delivery of a job.

        No execution record is created here; each firing is recorded by the
        worker when it arrives. Registering the same type and cron again
        updates the existing schedule.

        Returns:
            The schedule id
        """
        config = self.registry.get_config(job_type)
        job_type = JobType(config.type)
        cron = self._check_cron(cron)
        validated = validate_payload(job_type, payload)

        schedule_id = self.schedule_id_for(job_type, cron)
        job_metadata = self._stamp_metadata(metadata, schedule_id=schedule_id)
        # Firings share this envelope; the worker derives a job_id per firing
        job_id = uuid.uuid5(uuid.NAMESPACE_URL, schedule_id)
        envelope = self._build_envelope(job_id, job_type, validated, job_metadata)

        result = await self.provider.create_schedule(
            ScheduleRequest(
                destination=f"{self.base_url}{config.endpoint}",
                cron=cron,
                body=envelope,
                schedule_id=schedule_id,
                retries=config.retries,
            )
        )

        logger.info(
            "Job scheduled",
            extra={"schedule_id": result, "type": job_type.value, "cron": cron},
        )
        return result

    @staticmethod
    def schedule_id_for(job_type: JobType | str, cron: str) -> str:
        """Deterministic schedule id for a job type and cron expression."""
        job_type = JobType(job_type)
        digest = hashlib.sha256(f"{job_type.value}|{cron}".encode()).hexdigest()[:16]
        return f"{job_type.value}-{digest}"

    @staticmethod
    def _check_cron(cron: str) -> str:
        cron = " ".join(cron.split())
        if len(cron.split(" ")) not in (5, 6):
            raise ValidationError(
                "Invalid cron expression", details={"cron": cron}
            )
        return cron

    @staticmethod
    def _stamp_metadata(
        metadata: JobMetadataInput | dict[str, Any] | None,
        schedule_id: str | None = None,
    ) -> JobMetadata:
        try:
            if metadata is None:
                metadata = JobMetadataInput()
            elif not isinstance(metadata, JobMetadataInput):
                metadata = JobMetadataInput.model_validate(metadata)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid job metadata",
                details={"errors": json.loads(e.json(include_url=False))},
            ) from e

        return JobMetadata(
            user_id=metadata.user_id,
            organization_id=metadata.organization_id,
            idempotency_key=metadata.idempotency_key,
            created_at=datetime.now(UTC),
            schedule_id=schedule_id,
        )

    @staticmethod
    def _build_envelope(
        job_id: uuid.UUID,
        job_type: JobType,
        payload: BaseModel,
        metadata: JobMetadata,
    ) -> dict[str, Any]:
        return {
            "jobId": str(job_id),
            "type": job_type.value,
            "payload": payload.model_dump(mode="json", by_alias=True),
            "metadata": metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
        }


def get_job_dispatcher(
    registry: JobConfigRegistry = Depends(get_job_config_registry),
    store: JobExecutionStore = Depends(get_job_execution_store),
    provider: DeliveryProvider = Depends(get_delivery_provider),
    settings: Settings = Depends(get_settings),
) -> JobDispatcher:
    """Dependency injection function for the job dispatcher."""
    return JobDispatcher(registry, store, provider, settings.normalized_base_url)

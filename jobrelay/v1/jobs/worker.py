"""
Worker wrapper for provider-pushed job deliveries.

Each delivery is handled as one request:

1. verify the provider signature (401 on failure, nothing recorded)
2. parse the envelope and its typed payload (400, non-retryable)
3. move the execution record to processing
4. run the handler within the job type's timeout
5. record completed (200) or failed (500 to retry, 489 to stop retrying)

Handler errors never escape the wrapper; they are recorded, logged and
turned into the status code the provider acts on. The provider may deliver a
job more than once, so handlers must be idempotent with respect to job_id and
the metadata idempotency key. The wrapper cannot enforce that.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from jobrelay.config.logging import bind_job_context, get_logger
from jobrelay.config.settings import Settings, get_settings
from jobrelay.v1.core.exceptions import (
    NON_RETRYABLE_STATUS,
    AuthenticityError,
    PermanentProcessingError,
    PersistenceError,
    ValidationError,
    create_error_response,
    create_success_response,
)
from jobrelay.v1.core.registries import JobConfigRegistry, JobHandler
from jobrelay.v1.core.signing import (
    SIGNATURE_HEADER,
    SignatureVerifier,
    get_signature_verifier,
)
from jobrelay.v1.jobs.models import JobExecutionStatus
from jobrelay.v1.jobs.registry_init import get_job_config_registry
from jobrelay.v1.jobs.schemas import JobEnvelope, JobMetadata, parse_envelope
from jobrelay.v1.jobs.store import JobExecutionStore, get_job_execution_store
from jobrelay.v1.jobs.types import JobConfig, JobType

logger = get_logger(__name__)

NON_RETRYABLE_HEADER = "Upstash-NonRetryable-Error"
MESSAGE_ID_HEADER = "Upstash-Message-Id"
RETRIED_HEADER = "Upstash-Retried"


@dataclass
class JobExecutionContext:
    """Delivery context passed to handlers alongside the typed payload."""

    job_id: str
    job_type: JobType
    envelope: JobEnvelope
    config: JobConfig
    store: JobExecutionStore
    attempt: int = 0
    message_id: str | None = None
    recorded: bool = True
    # Status the record had before this delivery, None when it had no record
    previous_status: JobExecutionStatus | None = None

    @property
    def metadata(self) -> JobMetadata:
        return self.envelope.metadata

    @property
    def idempotency_key(self) -> str | None:
        return self.envelope.metadata.idempotency_key

    @property
    def already_completed(self) -> bool:
        """True when this is a redelivery of a job that already completed."""
        return self.previous_status == JobExecutionStatus.COMPLETED


@dataclass
class WorkerResponse:
    """Status, body and headers returned to the provider."""

    status_code: int
    content: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


class JobWorker:
    """Runs one job type's handler for provider deliveries."""

    def __init__(
        self,
        job_type: JobType | str,
        handler: JobHandler,
        registry: JobConfigRegistry,
        store: JobExecutionStore,
        verifier: SignatureVerifier,
        base_url: str,
    ):
        self.config = registry.get_config(job_type)
        self.job_type = JobType(self.config.type)
        self.handler = handler
        self.store = store
        self.verifier = verifier
        self.destination_url = f"{base_url.rstrip('/')}{self.config.endpoint}"

    async def process(
        self,
        body: bytes,
        signature: str | None,
        message_id: str | None = None,
        retried: int = 0,
    ) -> WorkerResponse:
        """Process one delivery and decide the response the provider sees."""
        log = logger.bind(type=self.job_type.value, message_id=message_id)

        try:
            self.verifier.verify(signature, body, self.destination_url)
        except AuthenticityError as e:
            log.warning(
                "Job delivery rejected: invalid signature",
                reason=e.details.get("reason", e.message),
            )
            return WorkerResponse(
                status.HTTP_401_UNAUTHORIZED,
                create_error_response(status.HTTP_401_UNAUTHORIZED, e.message),
            )

        try:
            envelope = parse_envelope(body, expected_type=self.job_type)
        except ValidationError as e:
            log.warning(
                "Job delivery rejected: invalid payload",
                error=e.message,
                details=e.details,
            )
            return WorkerResponse(
                status.HTTP_400_BAD_REQUEST,
                create_error_response(status.HTTP_400_BAD_REQUEST, e.message, e.details),
                {NON_RETRYABLE_HEADER: "true"},
            )

        job_id = self._resolve_job_id(envelope, message_id)
        log = log.bind(job_id=job_id)
        # Handler logs emitted through the stdlib pick these up as well
        bind_job_context(job_id, self.job_type.value, message_id=message_id)
        context = JobExecutionContext(
            job_id=job_id,
            job_type=self.job_type,
            envelope=envelope,
            config=self.config,
            store=self.store,
            attempt=retried,
            message_id=message_id,
        )

        context.recorded = await self._mark_processing(context, log)
        log.info("Job processing started", attempt=retried)

        try:
            result = await asyncio.wait_for(
                self.handler(envelope.payload, context),
                timeout=self.config.timeout_seconds,
            )
        except PermanentProcessingError as e:
            log.error("Job failed permanently", error=e.message, details=e.details)
            await self._record(context, JobExecutionStatus.FAILED, error=e.message, log=log)
            return WorkerResponse(
                NON_RETRYABLE_STATUS,
                create_error_response(
                    NON_RETRYABLE_STATUS,
                    e.message,
                    {"job_id": job_id, "recorded": context.recorded},
                ),
                {NON_RETRYABLE_HEADER: "true"},
            )
        except asyncio.TimeoutError:
            error = f"Handler timed out after {self.config.timeout_seconds}s"
            log.error("Job timed out", timeout_seconds=self.config.timeout_seconds)
            return await self._retryable_failure(context, error, log)
        except Exception as e:
            log.error("Job failed", error=str(e), exc_info=True)
            return await self._retryable_failure(context, str(e) or type(e).__name__, log)

        result = jsonable_encoder(result) if result is not None else None
        await self._record(context, JobExecutionStatus.COMPLETED, result=result, log=log)
        log.info("Job completed", execution_recorded=context.recorded)

        return WorkerResponse(
            status.HTTP_200_OK,
            create_success_response(
                data={
                    "job_id": job_id,
                    "status": JobExecutionStatus.COMPLETED.value,
                    "recorded": context.recorded,
                    "result": result,
                }
            ),
        )

    @staticmethod
    def _resolve_job_id(envelope: JobEnvelope, message_id: str | None) -> str:
        # Every firing of a schedule carries the same envelope
        schedule_id = envelope.metadata.schedule_id
        if schedule_id and message_id:
            return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{schedule_id}:{message_id}"))
        return str(envelope.job_id)

    async def _mark_processing(self, context: JobExecutionContext, log) -> bool:
        """Move the record to processing, adopting the delivery if no record exists."""
        try:
            existing = await self.store.get_by_job_id(context.job_id)
            if existing is not None:
                context.previous_status = JobExecutionStatus(existing.status)

            if await self.store.transition(context.job_id, JobExecutionStatus.PROCESSING):
                return True

            log.warning(
                "Execution record missing, adopting delivery",
                anomaly="execution_record_missing",
                scheduled=context.metadata.schedule_id is not None,
            )
            metadata = context.metadata
            await self.store.create_if_missing(
                job_id=context.job_id,
                job_type=self.job_type,
                payload=context.envelope.model_dump(
                    mode="json", by_alias=True, exclude_none=True
                ),
                user_id=metadata.user_id,
                organization_id=metadata.organization_id,
                idempotency_key=metadata.idempotency_key,
            )
            return await self.store.transition(
                context.job_id, JobExecutionStatus.PROCESSING
            )
        except PersistenceError as e:
            log.error(
                "Execution record unavailable, processing anyway",
                execution_recorded=False,
                error=e.message,
            )
            return False

    async def _record(
        self,
        context: JobExecutionContext,
        new_status: JobExecutionStatus,
        log,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        try:
            updated = await self.store.transition(
                context.job_id, new_status, result=result, error=error
            )
        except PersistenceError as e:
            log.error(
                "Failed to record job outcome",
                status=new_status.value,
                execution_recorded=False,
                error=e.message,
            )
            context.recorded = False
            return

        if not updated:
            context.recorded = False

    async def _retryable_failure(
        self, context: JobExecutionContext, error: str, log
    ) -> WorkerResponse:
        await self._record(context, JobExecutionStatus.FAILED, error=error, log=log)
        return WorkerResponse(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            create_error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error,
                {"job_id": context.job_id, "recorded": context.recorded},
            ),
        )


def _parse_retried(value: str | None) -> int:
    try:
        return max(int(value), 0) if value else 0
    except ValueError:
        return 0


def create_job_worker(job_type: JobType | str, handler: JobHandler):
    """
    Build a FastAPI endpoint that runs a handler for one job type.

    The raw body is read unparsed so the signature's body hash can be checked
    against the exact bytes the provider sent.
    """
    job_type = JobType(job_type)

    async def handle_delivery(
        request: Request,
        registry: JobConfigRegistry = Depends(get_job_config_registry),
        store: JobExecutionStore = Depends(get_job_execution_store),
        verifier: SignatureVerifier = Depends(get_signature_verifier),
        settings: Settings = Depends(get_settings),
    ) -> JSONResponse:
        body = await request.body()
        worker = JobWorker(
            job_type, handler, registry, store, verifier, settings.normalized_base_url
        )
        response = await worker.process(
            body,
            request.headers.get(SIGNATURE_HEADER),
            message_id=request.headers.get(MESSAGE_ID_HEADER),
            retried=_parse_retried(request.headers.get(RETRIED_HEADER)),
        )
        return JSONResponse(
            status_code=response.status_code,
            content=response.content,
            headers=response.headers,
        )

    handle_delivery.__name__ = f"handle_{job_type.name.lower()}"
    return handle_delivery

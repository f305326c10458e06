"""
Job envelope and payload schemas.

Every job travels as an envelope (jobId, type, payload, metadata). Each job
type narrows the envelope with a literal ``type`` and its own payload model,
so a payload can never be paired with the wrong type tag.
"""

import json
from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from jobrelay.v1.core.exceptions import ValidationError
from jobrelay.v1.jobs.types import JobType


class WireModel(BaseModel):
    """Base for models exchanged with callers and the delivery provider."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# Metadata


class JobMetadataInput(WireModel):
    """Attribution metadata a caller may attach when enqueueing."""

    user_id: str | None = Field(default=None, min_length=1)
    organization_id: str | None = Field(default=None, min_length=1)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)


class JobMetadata(JobMetadataInput):
    """Metadata carried by every envelope; created_at is stamped by the dispatcher."""

    created_at: datetime
    schedule_id: str | None = None


# Envelope


class JobEnvelope(WireModel):
    """Envelope shared by all job payloads."""

    job_id: UUID
    type: JobType
    payload: dict[str, Any]
    metadata: JobMetadata


# Payloads

EmailTemplate = Literal[
    "welcome",
    "passwordReset",
    "passwordChanged",
    "emailChange",
    "teamInvitation",
    "subscriptionCreated",
    "paymentFailed",
]


class SendEmailPayload(WireModel):
    """Transactional email request; template data is passed through untouched."""

    template: EmailTemplate
    to: EmailStr
    data: dict[str, Any]


class ProcessWebhookPayload(WireModel):
    source: Literal["stripe", "resend", "custom"]
    event: str = Field(min_length=1)
    data: dict[str, Any]
    signature: str | None = None


class StripeWebhookPayload(WireModel):
    """Essential Stripe event data, processed outside the webhook request."""

    event_type: str = Field(min_length=1)
    event_id: str = Field(min_length=1)
    event_data: dict[str, Any]
    customer_id: str | None = None
    subscription_id: str | None = None
    ip_address: str | None = None


NotificationType = Literal[
    "system.maintenance",
    "system.update",
    "security.password_changed",
    "security.login_new_device",
    "security.two_factor_enabled",
    "billing.payment_success",
    "billing.payment_failed",
    "billing.subscription_created",
    "billing.subscription_canceled",
    "billing.trial_ending",
    "team.invitation_received",
    "team.invitation_accepted",
    "team.member_added",
    "team.member_removed",
    "team.role_changed",
    "activity.comment_mention",
    "activity.task_assigned",
    "product.feature_released",
    "product.announcement",
]
NotificationCategory = Literal[
    "system", "security", "billing", "team", "activity", "product"
]
NotificationPriority = Literal["critical", "important", "info"]


class NotificationEvent(WireModel):
    """Notification content without its recipient."""

    type: NotificationType
    category: NotificationCategory | None = None
    priority: NotificationPriority = "info"
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1, max_length=1000)
    metadata: dict[str, Any] | None = None
    expires_at: datetime | None = None

    @model_validator(mode="after")
    def derive_category(self) -> "NotificationEvent":
        # Category defaults to the type's prefix, e.g. "billing.trial_ending"
        if self.category is None:
            self.category = self.type.split(".", 1)[0]
        return self


class CreateNotificationPayload(NotificationEvent):
    user_id: str = Field(min_length=1)


class CreateBulkNotificationPayload(WireModel):
    user_ids: list[Annotated[str, Field(min_length=1)]] = Field(min_length=1)
    event: NotificationEvent


NotificationJobPayload = Union[CreateNotificationPayload, CreateBulkNotificationPayload]


class DateRange(WireModel):
    from_: datetime = Field(alias="from")
    to: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.from_ > self.to:
            raise ValueError("dateRange.from must not be after dateRange.to")
        return self


class GenerateReportPayload(WireModel):
    report_type: Literal["analytics", "usage", "billing", "custom"]
    date_range: DateRange
    recipients: list[EmailStr]
    format: Literal["pdf", "html", "json"]


class ExportDataPayload(WireModel):
    dataset: str = Field(min_length=1)
    format: Literal["csv", "xlsx"]
    filters: dict[str, Any] = Field(default_factory=dict)
    notify_email: EmailStr | None = None


class CleanupOldDataPayload(WireModel):
    targets: list[
        Literal["activity_logs", "notifications", "temporary_files", "expired_invitations"]
    ] = Field(min_length=1)
    older_than_days: int = Field(ge=1, strict=True)


# Typed envelopes


class SendEmailJob(JobEnvelope):
    type: Literal["send-email"]
    payload: SendEmailPayload


class ProcessWebhookJob(JobEnvelope):
    type: Literal["process-webhook"]
    payload: ProcessWebhookPayload


class StripeWebhookJob(JobEnvelope):
    type: Literal["process-stripe-webhook"]
    payload: StripeWebhookPayload


class CreateNotificationJob(JobEnvelope):
    type: Literal["create-notification"]
    payload: NotificationJobPayload


class ExportDataJob(JobEnvelope):
    type: Literal["export-data"]
    payload: ExportDataPayload


class GenerateReportJob(JobEnvelope):
    type: Literal["generate-report"]
    payload: GenerateReportPayload


class CleanupOldDataJob(JobEnvelope):
    type: Literal["cleanup-old-data"]
    payload: CleanupOldDataPayload


AnyJobEnvelope = Annotated[
    Union[
        SendEmailJob,
        ProcessWebhookJob,
        StripeWebhookJob,
        CreateNotificationJob,
        ExportDataJob,
        GenerateReportJob,
        CleanupOldDataJob,
    ],
    Field(discriminator="type"),
]

ENVELOPE_MODELS: dict[JobType, type[JobEnvelope]] = {
    JobType.SEND_EMAIL: SendEmailJob,
    JobType.PROCESS_WEBHOOK: ProcessWebhookJob,
    JobType.PROCESS_STRIPE_WEBHOOK: StripeWebhookJob,
    JobType.CREATE_NOTIFICATION: CreateNotificationJob,
    JobType.EXPORT_DATA: ExportDataJob,
    JobType.GENERATE_REPORT: GenerateReportJob,
    JobType.CLEANUP_OLD_DATA: CleanupOldDataJob,
}

PAYLOAD_ADAPTERS: dict[JobType, TypeAdapter] = {
    JobType.SEND_EMAIL: TypeAdapter(SendEmailPayload),
    JobType.PROCESS_WEBHOOK: TypeAdapter(ProcessWebhookPayload),
    JobType.PROCESS_STRIPE_WEBHOOK: TypeAdapter(StripeWebhookPayload),
    JobType.CREATE_NOTIFICATION: TypeAdapter(NotificationJobPayload),
    JobType.EXPORT_DATA: TypeAdapter(ExportDataPayload),
    JobType.GENERATE_REPORT: TypeAdapter(GenerateReportPayload),
    JobType.CLEANUP_OLD_DATA: TypeAdapter(CleanupOldDataPayload),
}

any_envelope_adapter: TypeAdapter = TypeAdapter(AnyJobEnvelope)


def _error_details(exc: PydanticValidationError) -> dict[str, Any]:
    return {"errors": json.loads(exc.json(include_url=False))}


def validate_payload(job_type: JobType, raw: Any) -> BaseModel:
    """
    Validate a job payload against its type's schema.

    Accepts a dict or an already-built payload model; models are re-validated
    so that a model built for another job type is rejected.

    Raises:
        ValidationError: If the payload does not match the schema
    """
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)

    try:
        return PAYLOAD_ADAPTERS[JobType(job_type)].validate_python(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid payload for job type {JobType(job_type).value}",
            details=_error_details(e),
        ) from e


def parse_envelope(
    body: bytes | str, expected_type: JobType | None = None
) -> JobEnvelope:
    """
    Parse a delivered envelope: base envelope first, then the typed payload.

    Raises:
        ValidationError: On malformed JSON, a type mismatch or an invalid payload
    """
    try:
        base = JobEnvelope.model_validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError("Invalid job envelope", details=_error_details(e)) from e

    if expected_type is not None and base.type != expected_type:
        raise ValidationError(
            "Job type does not match this endpoint",
            details={"expected": expected_type.value, "received": base.type.value},
        )

    try:
        return ENVELOPE_MODELS[base.type].model_validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid payload for job type {base.type.value}",
            details=_error_details(e),
        ) from e


# Execution record API schemas


class JobExecutionResponse(BaseModel):
    """Schema for execution record API responses."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    job_type: str
    status: str
    payload: dict[str, Any]
    result: dict[str, Any] | None = None
    error: str | None = None
    retry_count: int
    user_id: str | None = None
    organization_id: str | None = None
    idempotency_key: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class JobExecutionListResponse(BaseModel):
    """Schema for execution list API response."""

    executions: list[JobExecutionResponse]
    count: int
    limit: int

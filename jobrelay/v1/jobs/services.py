"""
Domain job services.

Thin enqueue helpers that fix the job type and delivery options for a domain
so callers do not touch the dispatcher directly.
"""

import json
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from jobrelay.v1.core.exceptions import ValidationError
from jobrelay.v1.core.idempotency import derive_idempotency_key
from jobrelay.v1.jobs.dispatcher import EnqueueOptions, JobDispatcher
from jobrelay.v1.jobs.schemas import (
    CreateBulkNotificationPayload,
    CreateNotificationPayload,
    EmailTemplate,
    JobMetadataInput,
    StripeWebhookPayload,
    WireModel,
    validate_payload,
)
from jobrelay.v1.jobs.types import JobType

Metadata = JobMetadataInput | dict[str, Any] | None


def _validate_as(model: type[WireModel], payload: dict[str, Any] | BaseModel) -> WireModel:
    # Each helper accepts exactly one of the job type's payload shapes
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details={"errors": json.loads(e.json(include_url=False))},
        ) from e


def _with_idempotency_key(metadata: Metadata, key: str) -> JobMetadataInput:
    # A caller-supplied key wins over a derived one
    if metadata is None:
        metadata = JobMetadataInput()
    elif not isinstance(metadata, JobMetadataInput):
        try:
            metadata = JobMetadataInput.model_validate(metadata)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid job metadata",
                details={"errors": json.loads(e.json(include_url=False))},
            ) from e

    if metadata.idempotency_key:
        return metadata
    return metadata.model_copy(update={"idempotency_key": key})


async def enqueue_email_job(
    payload: dict[str, Any] | BaseModel,
    metadata: Metadata = None,
    *,
    dispatcher: JobDispatcher,
) -> str:
    """Enqueue a transactional email with 3 retries and no delay."""
    return await dispatcher.enqueue(
        JobType.SEND_EMAIL, payload, metadata, EnqueueOptions(retries=3, delay=0)
    )


async def enqueue_notification_job(
    payload: dict[str, Any] | CreateNotificationPayload,
    metadata: Metadata = None,
    *,
    dispatcher: JobDispatcher,
) -> str:
    """Enqueue a notification for a single user."""
    validated = _validate_as(CreateNotificationPayload, payload)
    return await dispatcher.enqueue(
        JobType.CREATE_NOTIFICATION, validated, metadata, EnqueueOptions(retries=3, delay=0)
    )


async def enqueue_bulk_notification_job(
    payload: dict[str, Any] | CreateBulkNotificationPayload,
    metadata: Metadata = None,
    *,
    dispatcher: JobDispatcher,
) -> str:
    """Enqueue the same notification for many users."""
    validated = _validate_as(CreateBulkNotificationPayload, payload)
    return await dispatcher.enqueue(
        JobType.CREATE_NOTIFICATION, validated, metadata, EnqueueOptions(retries=3, delay=0)
    )


async def enqueue_stripe_webhook_job(
    payload: dict[str, Any] | StripeWebhookPayload,
    metadata: Metadata = None,
    *,
    dispatcher: JobDispatcher,
) -> str:
    """
    Enqueue a Stripe event for processing outside the webhook request.

    The idempotency key is derived from the Stripe event id, so Stripe's own
    webhook retries map to the same key.
    """
    validated = validate_payload(JobType.PROCESS_STRIPE_WEBHOOK, payload)
    key = derive_idempotency_key(
        JobType.PROCESS_STRIPE_WEBHOOK.value, validated.event_id
    )
    return await dispatcher.enqueue(
        JobType.PROCESS_STRIPE_WEBHOOK,
        validated,
        _with_idempotency_key(metadata, key),
    )


# Email helpers


def resolve_recipient_email(to: str | list[str]) -> str:
    """Pick the address to send to from a single address or a recipient list."""
    if isinstance(to, str):
        recipient = to.strip()
    else:
        recipient = next((address.strip() for address in to if address.strip()), "")

    if not recipient:
        raise ValidationError("Email recipient is required")
    return recipient


async def enqueue_email(
    template: EmailTemplate,
    params: dict[str, Any],
    metadata: Metadata = None,
    *,
    dispatcher: JobDispatcher,
    event_id: str | None = None,
) -> str:
    """
    Enqueue a templated email from dispatcher-style params.

    ``params`` holds ``to`` plus the template data. When ``event_id`` names
    the domain event that triggered the email, an idempotency key is derived
    from the template, recipient and event id.
    """
    data = dict(params)
    if "to" not in data:
        raise ValidationError("Email recipient is required")
    recipient = resolve_recipient_email(data.pop("to"))

    if event_id is not None:
        metadata = _with_idempotency_key(
            metadata,
            derive_idempotency_key(JobType.SEND_EMAIL.value, template, recipient, event_id),
        )

    return await enqueue_email_job(
        {"template": template, "to": recipient, "data": data},
        metadata,
        dispatcher=dispatcher,
    )


async def send_welcome_email_async(
    params: dict[str, Any], metadata: Metadata = None, *, dispatcher: JobDispatcher, **kwargs
) -> str:
    return await enqueue_email("welcome", params, metadata, dispatcher=dispatcher, **kwargs)


async def send_password_reset_email_async(
    params: dict[str, Any], metadata: Metadata = None, *, dispatcher: JobDispatcher, **kwargs
) -> str:
    return await enqueue_email(
        "passwordReset", params, metadata, dispatcher=dispatcher, **kwargs
    )


async def send_password_changed_email_async(
    params: dict[str, Any], metadata: Metadata = None, *, dispatcher: JobDispatcher, **kwargs
) -> str:
    return await enqueue_email(
        "passwordChanged", params, metadata, dispatcher=dispatcher, **kwargs
    )


async def send_email_change_confirmation_email_async(
    params: dict[str, Any], metadata: Metadata = None, *, dispatcher: JobDispatcher, **kwargs
) -> str:
    return await enqueue_email(
        "emailChange", params, metadata, dispatcher=dispatcher, **kwargs
    )


async def send_team_invitation_email_async(
    params: dict[str, Any], metadata: Metadata = None, *, dispatcher: JobDispatcher, **kwargs
) -> str:
    return await enqueue_email(
        "teamInvitation", params, metadata, dispatcher=dispatcher, **kwargs
    )


async def send_subscription_created_email_async(
    params: dict[str, Any], metadata: Metadata = None, *, dispatcher: JobDispatcher, **kwargs
) -> str:
    return await enqueue_email(
        "subscriptionCreated", params, metadata, dispatcher=dispatcher, **kwargs
    )


async def send_payment_failed_email_async(
    params: dict[str, Any], metadata: Metadata = None, *, dispatcher: JobDispatcher, **kwargs
) -> str:
    return await enqueue_email(
        "paymentFailed", params, metadata, dispatcher=dispatcher, **kwargs
    )

"""
Job handlers invoked by the worker routes.

Each handler implements the JobHandler protocol: it receives the validated
payload model and the delivery context, and returns a JSON-serializable
result or raises. Side effects go through small sink protocols so that
applications can plug in their email provider, notification storage, billing
logic and report renderer. The defaults only log.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from jobrelay.v1.core.exceptions import PermanentProcessingError
from jobrelay.v1.core.registries import JobHandlerRegistry
from jobrelay.v1.jobs.schemas import (
    CreateBulkNotificationPayload,
    CreateNotificationPayload,
    GenerateReportPayload,
    NotificationEvent,
    ProcessWebhookPayload,
    SendEmailPayload,
    StripeWebhookPayload,
)
from jobrelay.v1.jobs.types import JobType
from jobrelay.v1.jobs.worker import JobExecutionContext

logger = logging.getLogger(__name__)

STRIPE_HANDLED_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "invoice.payment_failed",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    }
)


# Sink protocols


class EmailSender(Protocol):
    async def send(self, template: str, to: str, data: dict[str, Any]) -> str | None:
        """Send a templated email and return the provider's message id, if any."""
        ...


class NotificationSink(Protocol):
    async def create(self, user_ids: list[str], event: NotificationEvent) -> int:
        """Store a notification for each user and return how many were created."""
        ...


class BillingEventSink(Protocol):
    async def handle_event(self, payload: StripeWebhookPayload) -> dict[str, Any] | None:
        """Apply a Stripe event to local billing state."""
        ...


class ReportGenerator(Protocol):
    async def generate(self, payload: GenerateReportPayload) -> dict[str, Any]:
        """Build a report and deliver it to its recipients."""
        ...


WebhookProcessor = Callable[[ProcessWebhookPayload], Awaitable[dict[str, Any] | None]]


class LoggingEmailSender:
    async def send(self, template: str, to: str, data: dict[str, Any]) -> str | None:
        logger.info("Email send requested", extra={"template": template, "to": to})
        return None


class LoggingNotificationSink:
    async def create(self, user_ids: list[str], event: NotificationEvent) -> int:
        logger.info(
            "Notifications created",
            extra={"notification_type": event.type, "user_count": len(user_ids)},
        )
        return len(user_ids)


class LoggingBillingEventSink:
    async def handle_event(self, payload: StripeWebhookPayload) -> dict[str, Any] | None:
        logger.info(
            "Billing event received",
            extra={
                "event_type": payload.event_type,
                "event_id": payload.event_id,
                "customer_id": payload.customer_id,
            },
        )
        return None


# Handlers


class EmailJobHandler:
    """
    Sends transactional emails.

    A redelivery of a job that already completed is skipped, and so is a
    delivery whose idempotency key already has a completed execution under
    another job_id, so a double enqueue of the same event sends one email.
    """

    def __init__(self, sender: EmailSender | None = None):
        self.sender = sender or LoggingEmailSender()

    async def __call__(
        self, payload: SendEmailPayload, context: JobExecutionContext
    ) -> dict[str, Any]:
        if context.already_completed:
            logger.info(
                "Email job already completed, skipping redelivery",
                extra={"job_id": context.job_id, "attempt": context.attempt},
            )
            return {
                "status": "skipped",
                "reason": "already_completed",
                "duplicate_of": context.job_id,
            }

        if context.idempotency_key:
            duplicate = await context.store.find_completed_by_idempotency_key(
                context.idempotency_key, exclude_job_id=context.job_id
            )
            if duplicate is not None:
                logger.info(
                    "Email already sent for idempotency key, skipping",
                    extra={
                        "job_id": context.job_id,
                        "idempotency_key": context.idempotency_key,
                        "duplicate_of": duplicate.job_id,
                    },
                )
                return {
                    "status": "skipped",
                    "reason": "duplicate",
                    "duplicate_of": duplicate.job_id,
                }

        message_id = await self.sender.send(payload.template, str(payload.to), payload.data)

        logger.info(
            "Email job processed",
            extra={"job_id": context.job_id, "template": payload.template},
        )
        return {"status": "sent", "template": payload.template, "message_id": message_id}


class WebhookJobHandler:
    """Processes third-party webhook events routed by their source."""

    def __init__(self, processors: dict[str, WebhookProcessor] | None = None):
        self.processors = processors or {}

    async def __call__(
        self, payload: ProcessWebhookPayload, context: JobExecutionContext
    ) -> dict[str, Any]:
        logger.info(
            "Processing webhook job",
            extra={"job_id": context.job_id, "source": payload.source, "event": payload.event},
        )

        processor = self.processors.get(payload.source)
        if processor is None:
            return {"status": "acknowledged", "source": payload.source, "event": payload.event}

        result = await processor(payload)
        return {
            "status": "processed",
            "source": payload.source,
            "event": payload.event,
            "result": result,
        }


class StripeWebhookJobHandler:
    """Applies Stripe billing events outside the webhook request."""

    def __init__(self, sink: BillingEventSink | None = None):
        self.sink = sink or LoggingBillingEventSink()

    async def __call__(
        self, payload: StripeWebhookPayload, context: JobExecutionContext
    ) -> dict[str, Any]:
        if payload.event_type not in STRIPE_HANDLED_EVENTS:
            logger.info(
                "Unhandled Stripe event type",
                extra={"job_id": context.job_id, "event_type": payload.event_type},
            )
            return {"status": "ignored", "event_type": payload.event_type}

        result = await self.sink.handle_event(payload)
        return {
            "status": "processed",
            "event_type": payload.event_type,
            "event_id": payload.event_id,
            "result": result,
        }


class NotificationJobHandler:
    """Creates in-app notifications for one user or many."""

    def __init__(self, sink: NotificationSink | None = None):
        self.sink = sink or LoggingNotificationSink()

    async def __call__(
        self,
        payload: CreateNotificationPayload | CreateBulkNotificationPayload,
        context: JobExecutionContext,
    ) -> dict[str, Any]:
        if isinstance(payload, CreateBulkNotificationPayload):
            user_ids = list(dict.fromkeys(payload.user_ids))
            event = payload.event
        else:
            user_ids = [payload.user_id]
            event = NotificationEvent.model_validate(
                payload.model_dump(exclude={"user_id"})
            )

        created = await self.sink.create(user_ids, event)
        return {"status": "created", "type": event.type, "count": created}


class ReportJobHandler:
    """Generates reports through the configured generator."""

    def __init__(self, generator: ReportGenerator | None = None):
        self.generator = generator

    async def __call__(
        self, payload: GenerateReportPayload, context: JobExecutionContext
    ) -> dict[str, Any]:
        if self.generator is None:
            # Retrying cannot help until a generator is deployed
            raise PermanentProcessingError(
                "Report generation is not configured",
                details={"report_type": payload.report_type},
            )

        return await self.generator.generate(payload)


def build_job_handler_registry(
    email_sender: EmailSender | None = None,
    notification_sink: NotificationSink | None = None,
    billing_sink: BillingEventSink | None = None,
    report_generator: ReportGenerator | None = None,
    webhook_processors: dict[str, WebhookProcessor] | None = None,
) -> JobHandlerRegistry:
    """Build the frozen registry of handlers that get a worker route."""
    registry = JobHandlerRegistry()
    registry.register(JobType.SEND_EMAIL.value, EmailJobHandler(email_sender))
    registry.register(JobType.PROCESS_WEBHOOK.value, WebhookJobHandler(webhook_processors))
    registry.register(
        JobType.PROCESS_STRIPE_WEBHOOK.value, StripeWebhookJobHandler(billing_sink)
    )
    registry.register(
        JobType.CREATE_NOTIFICATION.value, NotificationJobHandler(notification_sink)
    )
    registry.register(JobType.GENERATE_REPORT.value, ReportJobHandler(report_generator))
    registry.freeze()

    logger.info("Job handlers registered", extra={"job_types": registry.list()})
    return registry

"""
Job type registry initialization.

Builds the frozen registry of delivery configurations shared by the
dispatcher and the worker routes.
"""

import logging
from functools import lru_cache

from jobrelay.v1.core.registries import JobConfigRegistry
from jobrelay.v1.jobs.types import JobConfig, JobType

logger = logging.getLogger(__name__)

JOB_CONFIGS: tuple[JobConfig, ...] = (
    JobConfig(
        type=JobType.SEND_EMAIL,
        endpoint="/v1/jobs/email",
        retries=3,
        timeout_seconds=30,
        description="Send transactional emails",
    ),
    JobConfig(
        type=JobType.PROCESS_WEBHOOK,
        endpoint="/v1/jobs/webhook",
        retries=5,
        timeout_seconds=60,
        description="Process incoming webhooks from third-party services",
    ),
    JobConfig(
        type=JobType.PROCESS_STRIPE_WEBHOOK,
        endpoint="/v1/jobs/stripe-webhook",
        retries=5,
        timeout_seconds=60,
        description="Process Stripe billing events outside the webhook request",
    ),
    JobConfig(
        type=JobType.CREATE_NOTIFICATION,
        endpoint="/v1/jobs/notifications",
        retries=3,
        timeout_seconds=30,
        description="Create in-app notifications for one or many users",
    ),
    JobConfig(
        type=JobType.EXPORT_DATA,
        endpoint="/v1/jobs/export",
        retries=2,
        timeout_seconds=300,
        description="Generate and export data files (CSV, Excel)",
    ),
    JobConfig(
        type=JobType.GENERATE_REPORT,
        endpoint="/v1/jobs/report",
        retries=2,
        timeout_seconds=180,
        description="Generate analytics and business reports",
    ),
    JobConfig(
        type=JobType.CLEANUP_OLD_DATA,
        endpoint="/v1/jobs/cleanup",
        retries=1,
        timeout_seconds=600,
        description="Clean up old data and temporary files",
    ),
)


def build_job_config_registry(
    configs: tuple[JobConfig, ...] = JOB_CONFIGS,
) -> JobConfigRegistry:
    """Build a complete, frozen job config registry."""
    registry = JobConfigRegistry()
    for config in configs:
        registry.register_config(config)

    registry.ensure_complete()
    registry.freeze()

    logger.info(
        "Job configs registered", extra={"job_types": registry.list()}
    )
    return registry


@lru_cache
def get_job_config_registry() -> JobConfigRegistry:
    """Dependency injection function for the shared job config registry."""
    return build_job_config_registry()

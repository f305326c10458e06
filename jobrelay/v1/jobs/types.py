"""
Job type identifiers and their delivery configuration.
"""

from dataclasses import dataclass
from enum import Enum


class JobType(str, Enum):
    """Canonical list of supported job types."""

    SEND_EMAIL = "send-email"
    PROCESS_WEBHOOK = "process-webhook"
    PROCESS_STRIPE_WEBHOOK = "process-stripe-webhook"
    CREATE_NOTIFICATION = "create-notification"
    EXPORT_DATA = "export-data"
    GENERATE_REPORT = "generate-report"
    CLEANUP_OLD_DATA = "cleanup-old-data"


@dataclass(frozen=True)
class JobConfig:
    """Declarative delivery configuration for a job type."""

    type: JobType
    endpoint: str
    retries: int
    timeout_seconds: int
    description: str

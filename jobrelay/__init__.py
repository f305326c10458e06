"""Job Relay: push-delivered background jobs with persisted execution tracking."""

__version__ = "1.0.0"

"""
Push-delivered job dispatch and execution tracking.

This package provides:
- A frozen registry of job types and their delivery configuration
- Typed envelope and payload schemas per job type
- A persisted execution record for every enqueued job
- A dispatcher that records and publishes jobs to the delivery provider
- A worker wrapper that verifies, tracks and runs each delivery
"""

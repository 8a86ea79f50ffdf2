"""
Database utilities for the press clipping engine.

This module provides database connection and job queue management.
Currently supports both real PostgreSQL and a mock in-memory implementation
for development/testing.
"""

from utils.db.connection import get_db_connection, init_db
from utils.db.job_queue import (
    create_job,
    get_job,
    claim_job,
    update_job_progress,
    complete_job,
    fail_job,
    get_pending_jobs,
    JobStatus,
)

__all__ = [
    "get_db_connection",
    "init_db",
    "create_job",
    "get_job",
    "claim_job",
    "update_job_progress",
    "complete_job",
    "fail_job",
    "get_pending_jobs",
    "JobStatus",
]

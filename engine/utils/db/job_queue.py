"""
Job state management for press document processing.

schema
- press_processing_jobs: id, status, progress, file_path, compressed_file_path,
  publication_name, owner, error, document_summary, created_at, updated_at

State machine: pending -> processing -> completed | error.
Progress never decreases and terminal jobs are never mutated again.
"""

import uuid
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from utils.db.connection import get_db_connection, is_mock, _mock_db, _mock_lock
from utils.core.log import get_logger


class JobStatus(str, Enum):
    """Processing job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = {JobStatus.COMPLETED.value, JobStatus.ERROR.value}


def _generate_id() -> str:
    return str(uuid.uuid4())


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _clamp(progress: int) -> int:
    return max(0, min(100, int(progress)))


def create_job(
    file_path: str,
    publication_name: Optional[str] = None,
    *,
    compressed_file_path: Optional[str] = None,
    owner: Optional[str] = None,
    job_id: Optional[str] = None,
) -> str:
    """
    Register an uploaded document as a pending job.

    Returns:
        job_id: UUID string of the created job
    """
    log = get_logger()
    job_id = job_id or _generate_id()
    now = _utcnow_naive()

    if is_mock():
        with _mock_lock:
            _mock_db["jobs"][job_id] = {
                "id": job_id,
                "status": JobStatus.PENDING.value,
                "progress": 0,
                "file_path": file_path,
                "compressed_file_path": compressed_file_path,
                "publication_name": publication_name,
                "owner": owner,
                "error": None,
                "document_summary": None,
                "created_at": now.isoformat(),
                "updated_at": now.isoformat(),
            }
        log.debug(f"Created mock job {job_id} for {file_path}")
        return job_id

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO press_processing_jobs
                    (id, status, progress, file_path, compressed_file_path,
                     publication_name, owner, created_at, updated_at)
                VALUES (%s, %s, 0, %s, %s, %s, %s, %s, %s)
                """,
                (
                    job_id,
                    JobStatus.PENDING.value,
                    file_path,
                    compressed_file_path,
                    publication_name,
                    owner,
                    now,
                    now,
                ),
            )
        conn.commit()
        log.debug(f"Created job {job_id} for {file_path}")
        return job_id
    except Exception as e:
        conn.rollback()
        log.error(f"Failed to create job: {e}")
        raise
    finally:
        conn.close()


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    """Job dict or None if not found."""
    if is_mock():
        with _mock_lock:
            job = _mock_db["jobs"].get(job_id)
            return dict(job) if job else None

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT * FROM press_processing_jobs WHERE id = %s", (job_id,))
            row = cur.fetchone()
            return dict(row) if row else None
    except Exception as e:
        get_logger().error(f"Failed to get job {job_id}: {e}")
        raise
    finally:
        conn.close()


def claim_job(job_id: str, progress: int = 5) -> Optional[Dict[str, Any]]:
    """
    Atomically move a job from pending to processing.

    Returns the updated job, or None when the job does not exist or is not
    pending (already claimed by another caller, or terminal).
    """
    now = _utcnow_naive()
    progress = _clamp(progress)

    if is_mock():
        with _mock_lock:
            job = _mock_db["jobs"].get(job_id)
            if not job or job["status"] != JobStatus.PENDING.value:
                return None
            job["status"] = JobStatus.PROCESSING.value
            job["progress"] = max(job.get("progress") or 0, progress)
            job["error"] = None
            job["updated_at"] = now.isoformat()
            return dict(job)

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE press_processing_jobs
                SET status = %s, progress = GREATEST(progress, %s), error = NULL, updated_at = %s
                WHERE id = %s AND status = %s
                RETURNING *
                """,
                (JobStatus.PROCESSING.value, progress, now, job_id, JobStatus.PENDING.value),
            )
            row = cur.fetchone()
        conn.commit()
        return dict(row) if row else None
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def update_job_progress(job_id: str, progress: int) -> bool:
    """
    Raise a processing job's progress. Lower values are ignored.

    Returns True if the stored job is processing (whether or not the value moved).
    """
    now = _utcnow_naive()
    progress = _clamp(progress)

    if is_mock():
        with _mock_lock:
            job = _mock_db["jobs"].get(job_id)
            if not job or job["status"] != JobStatus.PROCESSING.value:
                return False
            job["progress"] = max(job.get("progress") or 0, progress)
            job["updated_at"] = now.isoformat()
            return True

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE press_processing_jobs
                SET progress = GREATEST(progress, %s), updated_at = %s
                WHERE id = %s AND status = %s
                """,
                (progress, now, job_id, JobStatus.PROCESSING.value),
            )
            updated = cur.rowcount
        conn.commit()
        return updated > 0
    except Exception as e:
        conn.rollback()
        get_logger().error(f"Failed to update progress for job {job_id}: {e}")
        raise
    finally:
        conn.close()


def _finish_job(
    job_id: str,
    status: JobStatus,
    *,
    error: Optional[str],
    document_summary: Optional[str],
    progress: Optional[int],
) -> bool:
    now = _utcnow_naive()

    if is_mock():
        with _mock_lock:
            job = _mock_db["jobs"].get(job_id)
            if not job or job["status"] in TERMINAL_STATUSES:
                return False
            job["status"] = status.value
            if progress is not None:
                job["progress"] = max(job.get("progress") or 0, _clamp(progress))
            job["error"] = error
            if document_summary is not None:
                job["document_summary"] = document_summary
            job["updated_at"] = now.isoformat()
            return True

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE press_processing_jobs
                SET status = %s,
                    progress = GREATEST(progress, COALESCE(%s::int, progress)),
                    error = %s,
                    document_summary = COALESCE(%s::text, document_summary),
                    updated_at = %s
                WHERE id = %s AND status NOT IN ('completed', 'error')
                """,
                (status.value, progress, error, document_summary, now, job_id),
            )
            updated = cur.rowcount
        conn.commit()
        return updated > 0
    except Exception as e:
        conn.rollback()
        get_logger().error(f"Failed to finalize job {job_id}: {e}")
        raise
    finally:
        conn.close()


def complete_job(
    job_id: str, *, document_summary: Optional[str], note: Optional[str] = None
) -> bool:
    """Terminal success. `note` explains partial results and is stored in `error`."""
    return _finish_job(
        job_id,
        JobStatus.COMPLETED,
        error=note,
        document_summary=document_summary,
        progress=100,
    )


def fail_job(job_id: str, error: str) -> bool:
    """Terminal failure; progress is left where processing stopped."""
    return _finish_job(
        job_id, JobStatus.ERROR, error=error or "Unknown error", document_summary=None, progress=None
    )


def get_pending_jobs(limit: int = 10) -> List[Dict[str, Any]]:
    """Oldest pending jobs first."""
    if is_mock():
        with _mock_lock:
            jobs = [
                dict(j) for j in _mock_db["jobs"].values()
                if j["status"] == JobStatus.PENDING.value
            ]
        jobs.sort(key=lambda j: j.get("created_at", ""))
        return jobs[:limit]

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM press_processing_jobs
                WHERE status = %s
                ORDER BY created_at ASC
                LIMIT %s
                """,
                (JobStatus.PENDING.value, limit),
            )
            return [dict(row) for row in cur.fetchall()]
    except Exception as e:
        get_logger().error(f"Failed to get pending jobs: {e}")
        raise
    finally:
        conn.close()

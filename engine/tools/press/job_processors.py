"""
Job processor for press clipping jobs.
"""

from typing import Any, Dict, Optional

from utils.db.job_queue import fail_job, get_job, update_job_progress, JobStatus
from utils.core.log import pid_tool_logger, set_logger, get_logger
from utils.core.errors import _make_error_payload


async def process_press_job(
    job_id: str, job: Optional[Dict[str, Any]] = None, *, deps=None, settings=None
) -> Dict[str, Any]:
    """
    Run one claimed job to a terminal state.

    Anything the workflow raises (download failure, registry read failure,
    unhandled bugs) ends the job in `error`; nothing propagates to the caller.
    """
    from tools.press.press_clipping import _do_press_workflow

    job = job or get_job(job_id) or {}

    worker_logger = pid_tool_logger(job_id, "press_clipping")
    set_logger(
        worker_logger,
        tool_name="press_clipping_worker",
        job_id=job_id,
        request_type="WORKER",
        user_name=job.get("owner") or "unknown",
    )
    log = get_logger()

    if job.get("status") != JobStatus.PROCESSING.value:
        log.debug(f"Skipping job {job_id}: status is {job.get('status')!r}, not processing")
        return {"skipped": True, "reason": "not_processing"}

    def progress_callback(progress: int):
        update_job_progress(job_id, progress)

    try:
        result = await _do_press_workflow(
            job, deps=deps, settings=settings, progress_callback=progress_callback
        )
        log.debug(f"Job {job_id} completed successfully")
        return result
    except Exception as e:
        error_msg = str(e) or type(e).__name__
        log.exception(f"Job {job_id} failed: {error_msg}")
        fail_job(job_id, error_msg)
        return {"jobId": job_id, **_make_error_payload("press_workflow", error_msg)}

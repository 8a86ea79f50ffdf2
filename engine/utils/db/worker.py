"""
Background execution for press clipping jobs.

Two ways to run jobs:
- JobSupervisor: in-process. One daemon thread owns an asyncio loop; the API
  submits claimed job ids and returns immediately.
- worker_loop / run_worker: standalone process polling for pending jobs,
  claiming each one atomically before running it.
"""

import sys
import signal
import asyncio
import threading
from concurrent.futures import Future
from typing import Any, Awaitable, Callable, Dict, Optional

from utils.db.job_queue import claim_job, get_pending_jobs
from utils.db.connection import init_db, DB_TYPE
from utils.core.log import setup_logging, pid_tool_logger, set_logger, get_logger
from utils.core.warnings_config import configure_warning_filters

WORKER_POLL_INTERVAL = 5
WORKER_BATCH_SIZE = 5

JobProcessor = Callable[..., Awaitable[Dict[str, Any]]]


def _default_processor() -> JobProcessor:
    from tools.press.job_processors import process_press_job

    return process_press_job


class JobSupervisor:
    """
    Owns the lifetime of background jobs.

    Jobs run as tasks on a private event loop, so they outlive the request
    that started them and run concurrently with each other.
    """

    def __init__(self, processor: Optional[JobProcessor] = None):
        self._processor = processor or _default_processor()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="press-job-supervisor", daemon=True
        )
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._thread.start()

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def submit(self, job_id: str, job: Optional[Dict[str, Any]] = None) -> Future:
        with self._lock:
            if self._closed:
                raise RuntimeError("JobSupervisor is shut down")
            future = asyncio.run_coroutine_threadsafe(self._processor(job_id, job), self._loop)
            self._futures[job_id] = future
        future.add_done_callback(lambda f, jid=job_id: self._on_done(jid, f))
        return future

    def _on_done(self, job_id: str, future: Future):
        with self._lock:
            self._futures.pop(job_id, None)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger = pid_tool_logger(job_id, "supervisor")
            logger.error(f"Background job {job_id} raised: {exc!r}", exc_info=exc)

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        with self._lock:
            self._closed = True
            pending = list(self._futures.values())
        if wait:
            for future in pending:
                try:
                    future.result(timeout)
                except Exception:
                    # already logged by _on_done
                    pass
        else:
            for future in pending:
                future.cancel()
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)


async def worker_loop(shutdown_event: asyncio.Event, processor: Optional[JobProcessor] = None):
    """
    Poll for pending jobs, claim and process them.
    Exits when shutdown_event is set (e.g. by SIGINT/SIGTERM).
    """
    processor = processor or _default_processor()
    set_logger(pid_tool_logger("SYSTEM", "worker"), tool_name="worker", request_type="WORKER")
    log = get_logger()
    log.info("Worker loop started")

    while not shutdown_event.is_set():
        try:
            pending_jobs = get_pending_jobs(limit=WORKER_BATCH_SIZE)

            if not pending_jobs:
                for _ in range(WORKER_POLL_INTERVAL):
                    if shutdown_event.is_set():
                        break
                    await asyncio.sleep(1)
                continue

            log.info(f"Found {len(pending_jobs)} pending jobs")

            claimed = []
            for job in pending_jobs:
                job = claim_job(job["id"])
                if job:
                    claimed.append(job)
                else:
                    log.debug("Skipping job: claimed by another worker")

            results = await asyncio.gather(
                *[processor(job["id"], job) for job in claimed], return_exceptions=True
            )
            for job, result in zip(claimed, results):
                if isinstance(result, BaseException):
                    log.error(f"Job {job['id']} raised: {result!r}")

        except asyncio.CancelledError:
            break
        except Exception as e:
            log.exception(f"Error in worker loop: {e}")
            for _ in range(WORKER_POLL_INTERVAL):
                if shutdown_event.is_set():
                    break
                await asyncio.sleep(1)

    log.info("Worker loop stopped")


def run_worker():
    """
    Run the worker as a standalone process.
    """
    setup_logging()
    configure_warning_filters()
    set_logger(pid_tool_logger("SYSTEM", "worker"))
    log = get_logger()

    if DB_TYPE == "postgres":
        log.info("Initializing database...")
        init_db()

    log.info("Starting press clipping worker process")

    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        log.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(worker_loop(shutdown_event))
    except KeyboardInterrupt:
        log.info("Worker interrupted by user")
    except Exception as e:
        log.exception(f"Worker crashed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run_worker()

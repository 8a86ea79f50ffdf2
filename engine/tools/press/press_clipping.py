"""
Press clipping job orchestration.

- start_press_job: validate and claim a pending job, hand it to the supervisor
- _do_press_workflow: fetch -> classify -> chunk loop -> relevance ->
  index -> summary, reporting progress at fixed checkpoints
- get_press_job_status / search_clippings: read side used by the API

Per-page failures never fail the job; only a failed download or an unhandled
exception does (see job_processors.process_press_job).
"""

from __future__ import annotations

import time
import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from utils.core.errors import DeadlineExceeded, DownloadError, JobNotFoundError, JobStateError
from utils.core.log import pid_tool_logger, set_logger, get_logger
from utils.core.slack import SlackActivityMeta, fmt_dur, open_activity, safe_done, safe_error, safe_sub
from utils.db.clients import list_categories, list_clients
from utils.db.clippings import get_clippings_for_job, insert_clipping, match_clippings
from utils.db.job_queue import JobStatus, claim_job, complete_job, get_job
from utils.llm.LLM import call_llm_async, embed_text
from utils.storage.bucket import PRESS_BUCKET, download_bytes
from utils.vault import secrets
from tools.press.chunk_loop import ChunkLoopResult, ChunkRetryController, Clock, Deadline, Sleep
from tools.press.classifier import SplitPages, build_chunks, classify_document, detect_mime_type, split_pdf_pages
from tools.press.extraction import ExtractFn, VisionExtractor
from tools.press.indexer import EmbedFn, InsertFn, index_clippings
from tools.press.press_models import ClientProfile, JobContext, PipelineSettings
from tools.press.relevance import filter_relevant
from tools.press.summary import SummarizeFn, generate_document_summary

ProgressCallback = Optional[Callable[[int], None]]

PROGRESS_CLAIMED = 5
PROGRESS_FETCHED = 10
PROGRESS_EXTRACTED = 80
PROGRESS_FILTERED = 85
PROGRESS_INDEXED = 95


@dataclass
class PipelineDeps:
    """External collaborators of one job run. Tests swap any of them for fakes."""

    fetch: Callable[[Optional[str], str], bytes] = download_bytes
    list_clients: Callable[[], List[Dict[str, Any]]] = list_clients
    list_categories: Callable[[], List[str]] = list_categories
    extract: ExtractFn = field(default_factory=VisionExtractor)
    embed: EmbedFn = embed_text
    insert: InsertFn = insert_clipping
    summarize: SummarizeFn = call_llm_async
    split_pages: SplitPages = split_pdf_pages
    sleep: Sleep = asyncio.sleep
    clock: Clock = time.monotonic
    bucket: Optional[str] = PRESS_BUCKET


def load_settings() -> PipelineSettings:
    """Defaults with the deadline and retry counts overridable from Vault/env."""
    base = PipelineSettings()
    return replace(
        base,
        soft_deadline_s=secrets.get_float("press_deadline_seconds", default=base.soft_deadline_s),
        max_chunk_retries=secrets.get_int("press_max_chunk_retries", default=base.max_chunk_retries),
        max_page_retries=secrets.get_int("press_max_page_retries", default=base.max_page_retries),
    )


def _emit_progress(progress_callback: ProgressCallback, progress: int) -> None:
    if progress_callback:
        progress_callback(progress)


def chunk_progress(done: int, total: int) -> int:
    """Progress share of the chunk loop, 10..80."""
    if total <= 0:
        return PROGRESS_EXTRACTED
    span = PROGRESS_EXTRACTED - PROGRESS_FETCHED
    return PROGRESS_FETCHED + (span * done) // total


async def fetch_document(job: Dict[str, Any], deps: PipelineDeps) -> Tuple[bytes, str]:
    """
    Source bytes for a job, preferring the pre-compressed variant.

    Raises:
        DownloadError: neither the compressed nor the original file could be read.
    """
    logger = get_logger()
    compressed = job.get("compressed_file_path")
    original = job.get("file_path") or ""

    if compressed:
        try:
            return await asyncio.to_thread(deps.fetch, deps.bucket, compressed), compressed
        except DownloadError as e:
            logger.warning(f"Compressed file unavailable ({e}); falling back to original")

    return await asyncio.to_thread(deps.fetch, deps.bucket, original), original


def _page_list(result: ChunkLoopResult) -> str:
    return ", ".join(str(f.page_number) for f in result.unrecovered)


def completion_note(result: ChunkLoopResult) -> Optional[str]:
    """Human-readable note stored on a completed job whose results are partial."""
    total = result.stats.total_pages
    if result.deadline_hit:
        note = str(DeadlineExceeded(result.pages_attempted, total))
        if result.unrecovered:
            note += f"; {len(result.unrecovered)} page(s) not recovered (pages {_page_list(result)})"
        return note

    failed = len(result.unrecovered)
    if not failed:
        return None
    if failed >= total:
        return f"All {total} page(s) failed extraction"
    pages = _page_list(result)
    return f"{failed} of {total} page(s) could not be extracted (pages {pages})"


async def _build_context(
    job: Dict[str, Any], deps: PipelineDeps, settings: PipelineSettings
) -> JobContext:
    rows = await asyncio.to_thread(deps.list_clients)
    categories = await asyncio.to_thread(deps.list_categories)
    return JobContext(
        job_id=job["id"],
        file_path=job.get("file_path") or "",
        publication_name=job.get("publication_name") or "",
        owner=job.get("owner"),
        registry=[ClientProfile.from_row(r) for r in rows],
        categories=categories,
        settings=settings,
        compressed_file_path=job.get("compressed_file_path"),
    )


async def _do_press_workflow(
    job: Dict[str, Any],
    *,
    deps: PipelineDeps | None = None,
    settings: PipelineSettings | None = None,
    progress_callback: ProgressCallback = None,
) -> Dict[str, Any]:
    logger = get_logger()
    deps = deps or PipelineDeps()
    settings = settings or load_settings()
    start_t = time.perf_counter()
    deadline = Deadline(settings.soft_deadline_s, clock=deps.clock)
    job_id = job["id"]

    wact = open_activity(
        SlackActivityMeta(
            job_id=job_id,
            tool="PRESS",
            user=job.get("owner") or "unknown",
            publication=job.get("publication_name"),
        ),
        logger,
    )
    safe_sub(logger, wact, "Starting press clipping extraction")

    try:
        ctx = await _build_context(job, deps, settings)
        logger.info(
            f"Job {job_id}: {len(ctx.registry)} tracked client(s), "
            f"{len(ctx.categories)} categories"
        )

        data, used_path = await fetch_document(job, deps)
        mime_type = detect_mime_type(used_path, data)
        plan = classify_document(len(data), settings)
        chunks = build_chunks(
            data,
            mime_type=mime_type,
            plan=plan,
            source_reference=used_path,
            split_pages=deps.split_pages,
        )
        _emit_progress(progress_callback, PROGRESS_FETCHED)
        logger.info(
            f"Fetched {used_path} ({len(data)} bytes, {mime_type}): "
            f"mode={plan.mode.value}, ~{plan.estimated_pages} page(s), {len(chunks)} chunk(s)"
        )
        safe_sub(logger, wact, f"Fetched {len(data)} bytes, {plan.mode.value} mode, {len(chunks)} chunk(s)")

        controller = ChunkRetryController(
            deps.extract,
            ctx,
            deadline=deadline,
            sleep=deps.sleep,
            on_chunk_done=lambda done, total: _emit_progress(
                progress_callback, chunk_progress(done, total)
            ),
        )
        result = await controller.run(chunks)
        _emit_progress(progress_callback, PROGRESS_EXTRACTED)
        safe_sub(
            logger,
            wact,
            f"Chunk loop: {len(result.clippings)} clipping(s), "
            f"{result.stats.failed_initial} failed, {result.stats.recovered} recovered"
            + (" (deadline reached)" if result.deadline_hit else ""),
        )

        relevant = filter_relevant(result.clippings, ctx.registry)
        _emit_progress(progress_callback, PROGRESS_FILTERED)

        report = await index_clippings(relevant, ctx, embed=deps.embed, insert=deps.insert)
        _emit_progress(progress_callback, PROGRESS_INDEXED)

        summary = await generate_document_summary(
            relevant,
            publication_name=ctx.publication_name,
            stats=result.stats,
            summarize=deps.summarize,
        )
        note = completion_note(result)
        complete_job(job_id, document_summary=summary, note=note)

        if note:
            logger.warning(f"Job {job_id} completed with partial results: {note}")
        logger.info(
            f"Job {job_id} completed in {fmt_dur(time.perf_counter() - start_t)}: "
            f"{report.persisted_count} clipping(s) stored"
        )
        safe_done(
            logger,
            wact,
            f"DONE in {fmt_dur(time.perf_counter() - start_t)}: "
            f"{report.persisted_count} clipping(s) stored" + (f" ({note})" if note else ""),
        )

        return {
            "jobId": job_id,
            "status": JobStatus.COMPLETED.value,
            "clippings": report.persisted_count,
            "skipped": report.skipped,
            "retryStats": result.stats.as_dict(),
            "note": note,
        }
    except Exception as exc:
        safe_error(
            logger,
            wact,
            f"Press clipping failed after {fmt_dur(time.perf_counter() - start_t)}: {exc}",
        )
        raise


def start_press_job(job_id: str, supervisor) -> Dict[str, Any]:
    """
    Claim a pending job and schedule it in the background. Returns immediately.

    Raises:
        JobNotFoundError: no job with this id.
        JobStateError: the job is not pending.
    """
    logger = get_logger()
    job = get_job(job_id)
    if not job:
        raise JobNotFoundError(f"Job {job_id} not found")
    if job["status"] != JobStatus.PENDING.value:
        raise JobStateError(job_id, job["status"])

    claimed = claim_job(job_id, progress=PROGRESS_CLAIMED)
    if not claimed:
        current = get_job(job_id) or {}
        raise JobStateError(job_id, current.get("status"))

    supervisor.submit(job_id)
    logger.info(f"Job {job_id} claimed and scheduled")
    return {"success": True, "jobId": job_id, "status": JobStatus.PROCESSING.value, "error": ""}


def get_press_job_status(job_id: str) -> Dict[str, Any]:
    job = get_job(job_id)
    if not job:
        raise JobNotFoundError(f"Job {job_id} not found")

    response: Dict[str, Any] = {
        "jobId": job_id,
        "status": job["status"],
        "progress": job.get("progress") or 0,
        "publicationName": job.get("publication_name"),
        "documentSummary": job.get("document_summary"),
        "error": job.get("error") or "",
    }
    if job["status"] == JobStatus.COMPLETED.value:
        response["clippings"] = get_clippings_for_job(job_id)
    return response


async def search_clippings(
    query: str,
    *,
    match_threshold: float = 0.7,
    match_count: int = 5,
    embed: Optional[EmbedFn] = None,
) -> List[Dict[str, Any]]:
    """Semantic search over stored clippings."""
    embed = embed or embed_text
    query = (query or "").strip()
    if not query:
        raise ValueError("query is required")
    vector = await embed(query)
    return await asyncio.to_thread(
        match_clippings, vector, match_threshold=match_threshold, match_count=match_count
    )


def press_clipping_main(
    *,
    request_method: str | None,
    job_id: str | None,
    supervisor=None,
    remote_ip: str | None = None,
    user_name: str | None = None,
) -> Dict[str, Any]:
    base_logger = pid_tool_logger(job_id or "no_job", "press_clipping")
    set_logger(
        base_logger,
        tool_name="press_clipping_main",
        job_id=job_id or "unknown",
        ip_address=remote_ip or "no_ip",
        request_type=request_method or "N/A",
        user_name=user_name or "unknown",
    )

    if not job_id:
        raise ValueError("jobId is required")

    if request_method == "GET":
        return get_press_job_status(job_id)
    if request_method == "POST":
        if supervisor is None:
            raise ValueError("No background supervisor configured")
        return start_press_job(job_id, supervisor)

    raise ValueError(f"Unsupported request method: {request_method}")

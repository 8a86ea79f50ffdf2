"""
Chunk loop with layered retries and a soft deadline.

Layers (outermost last):
    1. transport retry   inside each model call (utils.llm.LLM._retry_policy)
    2. chunk retry       up to max_chunk_retries extra attempts per page,
                         backoff min(base_delay * attempt, max_backoff)
    3. second pass       failed pages retried max_page_retries more times after
                         the first pass, each try after a fixed longer delay

Pages run strictly one after another. A page that never succeeds yields no
clippings and is recorded as a FailedPageRecord; it never stops the loop.
The soft deadline is checked before every chunk and before every second-pass
page. When it trips, clippings gathered so far are returned as-is.
"""

from __future__ import annotations

import time
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from utils.core.log import get_logger
from tools.press.extraction import ExtractFn, ExtractionOutcome, OutcomeKind, to_clipping_records
from tools.press.press_models import (
    ClippingRecord,
    FailedPageRecord,
    JobContext,
    PageChunk,
    RetryStats,
)
from tools.press.repair import repair_truncated_records

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]
ChunkProgress = Callable[[int, int], None]


class Deadline:
    """Soft wall-clock budget measured on a monotonic clock."""

    def __init__(self, seconds: float, clock: Clock = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self.started = clock()

    def elapsed(self) -> float:
        return self._clock() - self.started

    def expired(self) -> bool:
        return self.elapsed() >= self.seconds


@dataclass
class PageAttempt:
    clippings: List[ClippingRecord] = field(default_factory=list)
    failure_reason: Optional[str] = None
    retryable: bool = True
    repaired: bool = False

    @property
    def ok(self) -> bool:
        return self.failure_reason is None


@dataclass
class ChunkLoopResult:
    clippings: List[ClippingRecord]
    stats: RetryStats
    failed_pages: List[FailedPageRecord]
    pages_attempted: int
    deadline_hit: bool = False

    @property
    def unrecovered(self) -> List[FailedPageRecord]:
        return [f for f in self.failed_pages if not f.recovered]


class ChunkRetryController:
    """Drives the first and second retry passes over a job's chunks."""

    def __init__(
        self,
        extract: ExtractFn,
        ctx: JobContext,
        *,
        deadline: Deadline,
        sleep: Sleep = asyncio.sleep,
        on_chunk_done: Optional[ChunkProgress] = None,
    ):
        self.extract = extract
        self.ctx = ctx
        self.settings = ctx.settings
        self.deadline = deadline
        self.sleep = sleep
        self.on_chunk_done = on_chunk_done
        self._by_chunk: Dict[int, List[ClippingRecord]] = {}

    async def attempt_page(self, chunk: PageChunk) -> PageAttempt:
        """One extraction call, with truncation repair, mapped to a PageAttempt."""
        logger = get_logger()
        outcome: ExtractionOutcome = await self.extract(chunk, self.ctx)

        if outcome.kind is OutcomeKind.SUCCESS:
            return PageAttempt(clippings=to_clipping_records(outcome.records, chunk, self.ctx))

        if outcome.kind is OutcomeKind.TRUNCATED:
            recovered = repair_truncated_records(outcome.raw_text)
            if recovered:
                logger.info(
                    f"Page {chunk.page_number}: repaired {len(recovered)} record(s) "
                    f"from {outcome.reason} output"
                )
                return PageAttempt(
                    clippings=to_clipping_records(recovered, chunk, self.ctx), repaired=True
                )
            return PageAttempt(failure_reason=f"truncated_unrepairable:{outcome.reason}")

        if outcome.kind is OutcomeKind.BLOCKED:
            return PageAttempt(failure_reason=f"blocked:{outcome.reason}", retryable=False)

        if outcome.kind is OutcomeKind.EMPTY:
            return PageAttempt(failure_reason=f"empty:{outcome.reason}")

        return PageAttempt(failure_reason=f"transport_error:{outcome.reason}")

    async def _first_pass_chunk(self, chunk: PageChunk) -> Optional[FailedPageRecord]:
        logger = get_logger()
        max_attempts = self.settings.max_chunk_retries + 1
        attempt = PageAttempt(failure_reason="not_attempted")
        attempts = 0

        for attempts in range(1, max_attempts + 1):
            attempt = await self.attempt_page(chunk)
            if attempt.ok:
                self._by_chunk[chunk.chunk_index] = attempt.clippings
                return None
            logger.warning(
                f"Page {chunk.page_number} attempt {attempts}/{max_attempts} failed: "
                f"{attempt.failure_reason}"
            )
            if not attempt.retryable:
                break
            if attempts < max_attempts:
                await self.sleep(self.settings.chunk_backoff(attempts))

        return FailedPageRecord(
            chunk_index=chunk.chunk_index,
            page_number=chunk.page_number,
            source_reference=chunk.source_reference,
            failure_reason=attempt.failure_reason or "unknown",
            attempt_count=attempts,
            blocked=not attempt.retryable,
        )

    async def run_first_pass(self, chunks: List[PageChunk]) -> tuple[List[FailedPageRecord], int, bool]:
        """Returns (failed pages, chunks attempted, deadline hit)."""
        logger = get_logger()
        failed: List[FailedPageRecord] = []
        total = len(chunks)

        for done, chunk in enumerate(chunks):
            if self.deadline.expired():
                logger.warning(
                    f"Soft deadline of {self.settings.soft_deadline_s:.0f}s reached "
                    f"after {done} of {total} pages"
                )
                return failed, done, True

            record = await self._first_pass_chunk(chunk)
            if record:
                failed.append(record)
                logger.error(
                    f"Page {record.page_number} queued for second pass after "
                    f"{record.attempt_count} attempt(s): {record.failure_reason}"
                )
            if self.on_chunk_done:
                self.on_chunk_done(done + 1, total)

        return failed, total, False

    async def run_second_pass(
        self, failed: List[FailedPageRecord], chunks_by_index: Dict[int, PageChunk]
    ) -> tuple[int, bool]:
        """Returns (pages recovered, deadline hit)."""
        logger = get_logger()
        recovered = 0

        for record in failed:
            if self.deadline.expired():
                logger.warning("Soft deadline reached during second pass")
                return recovered, True

            chunk = chunks_by_index[record.chunk_index]
            retries = 1 if record.blocked else self.settings.max_page_retries
            for _ in range(retries):
                await self.sleep(self.settings.second_pass_delay_s)
                record.attempt_count += 1
                attempt = await self.attempt_page(chunk)
                if attempt.ok:
                    record.recovered = True
                    self._by_chunk[chunk.chunk_index] = attempt.clippings
                    recovered += 1
                    logger.info(
                        f"Page {record.page_number} recovered on second pass "
                        f"({len(attempt.clippings)} clipping(s))"
                    )
                    break
                record.failure_reason = attempt.failure_reason or record.failure_reason

            if not record.recovered:
                logger.error(
                    f"Page {record.page_number} failed permanently after "
                    f"{record.attempt_count} attempt(s): {record.failure_reason}"
                )

        return recovered, False

    async def run(self, chunks: List[PageChunk]) -> ChunkLoopResult:
        logger = get_logger()
        self._by_chunk = {}
        stats = RetryStats(total_pages=len(chunks))

        failed, attempted, deadline_hit = await self.run_first_pass(chunks)
        stats.failed_initial = len(failed)

        if failed and not deadline_hit and self.settings.max_page_retries > 0:
            logger.info(f"Second pass over {len(failed)} failed page(s)")
            by_index = {c.chunk_index: c for c in chunks}
            stats.recovered, deadline_hit = await self.run_second_pass(failed, by_index)

        stats.not_attempted = len(chunks) - attempted
        stats.deadline_hit = deadline_hit

        clippings: List[ClippingRecord] = []
        for chunk in chunks:
            clippings.extend(self._by_chunk.get(chunk.chunk_index, []))

        return ChunkLoopResult(
            clippings=clippings,
            stats=stats,
            failed_pages=failed,
            pages_attempted=attempted,
            deadline_hit=deadline_hit,
        )

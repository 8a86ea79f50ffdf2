"""
Embedding and persistence of accepted clippings.

Every clipping is handled on its own: one embedding call, one insert. A
failure on one clipping is logged and skipped; the rest still get stored.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Sequence

import httpx
from google.genai import errors as gerrors

from utils.core.log import get_logger
from utils.db.clippings import insert_clipping
from utils.llm.LLM import EmptyLLMResponseError, embed_text
from tools.press.press_models import ClippingRecord, JobContext

EmbedFn = Callable[[str], Awaitable[List[float]]]
InsertFn = Callable[..., str]

_EMBED_ERRORS = (httpx.HTTPError, gerrors.APIError, EmptyLLMResponseError, ValueError)


@dataclass
class IndexReport:
    persisted: List[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def persisted_count(self) -> int:
        return len(self.persisted)


def clipping_row(clip: ClippingRecord, ctx: JobContext) -> dict[str, Any]:
    row = clip.model_dump()
    row["publication_name"] = ctx.publication_name
    return row


async def index_clippings(
    clippings: Sequence[ClippingRecord],
    ctx: JobContext,
    *,
    embed: EmbedFn = embed_text,
    insert: InsertFn = insert_clipping,
) -> IndexReport:
    logger = get_logger()
    report = IndexReport()
    budget = ctx.settings.embedding_text_budget

    for clip in clippings:
        label = f"'{clip.title[:60]}' (page {clip.page_number})"
        try:
            vector = await embed(clip.embedding_text(budget))
        except _EMBED_ERRORS as e:
            report.skipped += 1
            logger.error(f"Embedding failed for {label}: {type(e).__name__}: {e}")
            continue

        try:
            clipping_id = await asyncio.to_thread(
                insert,
                clipping_row(clip, ctx),
                embedding=vector,
                job_id=ctx.job_id,
                owner=ctx.owner,
            )
        except Exception as e:
            report.skipped += 1
            logger.error(f"Insert failed for {label}: {type(e).__name__}: {e}")
            continue

        report.persisted.append(clipping_id)

    logger.info(
        f"Indexed {report.persisted_count} of {len(clippings)} clipping(s)"
        + (f", {report.skipped} skipped" if report.skipped else "")
    )
    return report

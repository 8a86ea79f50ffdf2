"""
Document summary: one text-model call over the accepted clippings, plus a
retry diagnostics block when any page failed on the first pass or the
soft deadline cut the job short.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Sequence

import httpx
from google.genai import errors as gerrors

from utils.core.log import get_logger
from utils.llm.LLM import EmptyLLMResponseError, MODEL_DEFAULT, call_llm_async
from tools.press.press_models import ClippingRecord, RetryStats
from tools.press.prompts_press import SUMMARY_SYSTEM_INSTRUCTION, build_summary_prompt

SummarizeFn = Callable[..., Awaitable[str]]


def fallback_summary(publication_name: str, clipping_count: int) -> str:
    name = publication_name or "the publication"
    if clipping_count == 0:
        return f"No client-relevant clippings were found in {name}."
    noun = "clipping" if clipping_count == 1 else "clippings"
    return f"{clipping_count} client-relevant {noun} extracted from {name}."


def diagnostics_block(stats: RetryStats) -> str:
    d = stats.as_dict()
    return (
        "\n\n[Processing diagnostics]\n"
        f"failed_initial: {d['failed_initial']}\n"
        f"recovered: {d['recovered']}\n"
        + (f"not_attempted: {d['not_attempted']}\n" if stats.not_attempted else "")
        + f"final_success_rate: {d['final_success_rate']}"
    )


async def generate_document_summary(
    clippings: Sequence[ClippingRecord],
    *,
    publication_name: str,
    stats: RetryStats,
    summarize: SummarizeFn = call_llm_async,
) -> str:
    logger = get_logger()
    summary = ""

    if clippings:
        try:
            summary = await summarize(
                [build_summary_prompt(publication_name, clippings)],
                model=MODEL_DEFAULT,
                system_instruction=SUMMARY_SYSTEM_INSTRUCTION,
                cfg={"temperature": 0.3, "max_output_tokens": 1024},
                debug_caller="press_summary",
            )
        except (httpx.HTTPError, gerrors.APIError, EmptyLLMResponseError) as e:
            logger.warning(f"Summary call failed, using fallback: {type(e).__name__}: {e}")
            summary = ""

    summary = (summary or "").strip() or fallback_summary(publication_name, len(clippings))

    if stats.failed_initial > 0 or stats.deadline_hit:
        summary += diagnostics_block(stats)
    return summary

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from utils.llm.LLM import EmptyLLMResponseError
from tools.press.press_models import ClippingRecord, RetryStats
from tools.press.summary import fallback_summary, generate_document_summary


def _clips(n: int):
    return [
        ClippingRecord(title=f"Acme {i}", content="c", category="ECONOMIA & NEGOCIOS", page_number=i + 1)
        for i in range(n)
    ]


@pytest.mark.unit
class TestDocumentSummary:

    async def test_single_model_call_without_diagnostics(self):
        summarize = AsyncMock(return_value="  Resumen ejecutivo.  ")
        out = await generate_document_summary(
            _clips(3), publication_name="El Diario", stats=RetryStats(total_pages=3), summarize=summarize
        )

        assert out == "Resumen ejecutivo."
        summarize.assert_awaited_once()
        prompt = summarize.await_args.args[0][0]
        assert "Acme 0" in prompt and "El Diario" in prompt

    async def test_diagnostics_appended_when_pages_failed(self):
        stats = RetryStats(total_pages=12, failed_initial=2, recovered=1)
        out = await generate_document_summary(
            _clips(2), publication_name="El Diario", stats=stats,
            summarize=AsyncMock(return_value="Resumen."),
        )

        assert out.startswith("Resumen.")
        assert "failed_initial: 2" in out
        assert "recovered: 1" in out
        assert "final_success_rate: 92%" in out

    async def test_model_failure_uses_fallback(self):
        summarize = AsyncMock(side_effect=EmptyLLMResponseError("LLM returned empty text"))
        out = await generate_document_summary(
            _clips(2), publication_name="El Diario", stats=RetryStats(total_pages=2), summarize=summarize
        )
        assert out == fallback_summary("El Diario", 2)

    async def test_no_clippings_skips_model_call(self):
        summarize = AsyncMock()
        out = await generate_document_summary(
            [], publication_name="El Diario", stats=RetryStats(total_pages=4), summarize=summarize
        )
        summarize.assert_not_awaited()
        assert out == "No client-relevant clippings were found in El Diario."

    async def test_diagnostics_appended_when_deadline_hit(self):
        stats = RetryStats(total_pages=12, not_attempted=7, deadline_hit=True)
        out = await generate_document_summary(
            _clips(5), publication_name="El Diario", stats=stats,
            summarize=AsyncMock(return_value="Resumen."),
        )

        assert "failed_initial: 0" in out
        assert "not_attempted: 7" in out
        assert "final_success_rate: 42%" in out

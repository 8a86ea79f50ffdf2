from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from utils.db.clippings import get_clippings_for_job, insert_clipping
from tools.press.indexer import index_clippings
from tools.press.press_models import ClippingRecord


def _clip(title: str, page: int = 1, content: str = "Acme analysis.") -> ClippingRecord:
    return ClippingRecord(title=title, content=content, page_number=page, client_relevance=["Acme Energía"])


@pytest.mark.unit
class TestIndexClippings:

    async def test_persists_each_clipping_with_job_metadata(self, make_ctx, embed):
        ctx = make_ctx(job_id="job-idx")
        report = await index_clippings([_clip("A", 2), _clip("B", 1)], ctx, embed=embed, insert=insert_clipping)

        assert report.persisted_count == 2
        rows = get_clippings_for_job("job-idx")
        assert [r["title"] for r in rows] == ["B", "A"]
        assert rows[0]["publication_name"] == "El Diario"
        assert rows[0]["owner"] == "analyst@example.com"
        assert "embedding" not in rows[0]

    async def test_embedding_failure_skips_only_that_clipping(self, make_ctx, embed):
        async def flaky(text):
            if text.startswith("Broken"):
                raise httpx.ConnectError("embedding endpoint down")
            return await embed(text)

        insert = MagicMock(return_value="row-id")
        report = await index_clippings(
            [_clip("A"), _clip("Broken"), _clip("C")], make_ctx(), embed=flaky, insert=insert
        )

        assert report.persisted_count == 2
        assert report.skipped == 1
        assert insert.call_count == 2

    async def test_insert_failure_is_isolated(self, make_ctx, embed):
        insert = MagicMock(side_effect=[RuntimeError("deadlock detected"), "row-2"])
        report = await index_clippings([_clip("A"), _clip("B")], make_ctx(), embed=embed, insert=insert)

        assert report.persisted == ["row-2"]
        assert report.skipped == 1

    async def test_embedding_text_is_budgeted(self, make_ctx):
        embed = AsyncMock(return_value=[0.1] * 768)
        long_clip = _clip("Title", content="x" * 20_000)
        await index_clippings([long_clip], make_ctx(), embed=embed, insert=MagicMock(return_value="id"))

        text = embed.await_args.args[0]
        assert len(text) == 8000
        assert text.startswith("Title\n\n")

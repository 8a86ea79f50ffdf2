"""
Unit Tests - client registry and clipping store (mock backend)
"""

from __future__ import annotations

import pytest

from utils.db.clients import DEFAULT_CATEGORIES, add_client, list_categories, list_clients
from utils.db.clippings import get_clippings_for_job, insert_clipping, match_clippings
from utils.db.connection import _mock_db


@pytest.mark.unit
class TestClientRegistry:

    def test_rows_are_normalized(self):
        add_client("  Acme Energía ", "ENERGIA", ["acme", "  ", " planta solar "])
        add_client("", "X", ["ignored"])
        _mock_db["clients"].append({"name": "Banco Popular", "category": "", "keywords": "banco, popular"})

        clients = list_clients()

        assert clients == [
            {"name": "Acme Energía", "category": "ENERGIA", "keywords": ["acme", "planta solar"]},
            {"name": "Banco Popular", "category": None, "keywords": ["banco", "popular"]},
        ]

    def test_categories_fall_back_to_defaults(self):
        assert list_categories() == DEFAULT_CATEGORIES
        assert "OTRAS" in DEFAULT_CATEGORIES

    def test_configured_categories_win(self):
        _mock_db["categories"].extend(["DEPORTES", " ", "SALUD"])
        assert list_categories() == ["DEPORTES", "SALUD"]


@pytest.mark.unit
class TestClippingStore:

    def test_rows_are_job_scoped_and_page_ordered(self):
        for page in (5, 2, None):
            insert_clipping(
                {"title": f"p{page}", "content": "c", "page_number": page, "keywords": None},
                embedding=[1.0, 0.0], job_id="job-a", owner="analyst@example.com",
            )
        insert_clipping({"title": "other", "content": "c"}, embedding=[1.0, 0.0], job_id="job-b", owner=None)

        rows = get_clippings_for_job("job-a")

        assert [r["title"] for r in rows] == ["pNone", "p2", "p5"]
        assert all("embedding" not in r for r in rows)
        assert rows[0]["keywords"] == []
        assert rows[0]["owner"] == "analyst@example.com"

    def test_match_respects_threshold_and_count(self):
        insert_clipping({"title": "same"}, embedding=[1.0, 0.0], job_id="j", owner=None)
        insert_clipping({"title": "close"}, embedding=[0.9, 0.1], job_id="j", owner=None)
        insert_clipping({"title": "orthogonal"}, embedding=[0.0, 1.0], job_id="j", owner=None)

        hits = match_clippings([1.0, 0.0], match_threshold=0.7, match_count=5)
        assert [h["title"] for h in hits] == ["same", "close"]
        assert hits[0]["similarity"] == pytest.approx(1.0)

        assert [h["title"] for h in match_clippings([1.0, 0.0], match_threshold=0.7, match_count=1)] == ["same"]

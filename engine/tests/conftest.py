"""
Root conftest.py - Shared fixtures for ALL tests (unit + integration)

Environment strategy:
  - db_type=mock: every test runs against the in-memory job/clipping store,
    reset before each test.
  - Vault and Slack are disabled; configuration comes from env vars only.
  - Per-job log files go to a temporary process_log_dir.
  - No test touches the network: model calls, uploads, embeddings and storage
    are replaced by the fakes below or by httpx.MockTransport.

How to run:
  pytest                 # all tests
  pytest -m unit         # unit tests only
  pytest -m integration  # workflow + API tests (still no network)
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

# ─────────────────────────────────────────────────────────────────────────────
# Environment BEFORE any engine imports so module-level config reads it
# ─────────────────────────────────────────────────────────────────────────────

os.environ["DB_TYPE"] = "mock"
os.environ["PROCESS_LOG_DIR"] = tempfile.mkdtemp(prefix="press-test-logs-")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
for _var in ("VAULT_ADDR", "SLACK_TOKEN", "CHANNEL_ID"):
    os.environ.pop(_var, None)

from utils.core.log import pid_tool_logger, set_logger  # noqa: E402
from utils.db.clients import DEFAULT_CATEGORIES  # noqa: E402
from utils.db.connection import reset_mock_db  # noqa: E402
from tools.press.extraction import ExtractionOutcome  # noqa: E402
from tools.press.press_models import (  # noqa: E402
    ClientProfile,
    JobContext,
    PipelineSettings,
)


# ─────────────────────────────────────────────────────────────────────────────
# Autouse: clean store, job logger in context
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def mock_store():
    reset_mock_db()
    yield
    reset_mock_db()


@pytest.fixture(autouse=True)
def job_logger():
    logger = pid_tool_logger("test-job", "press_test")
    set_logger(logger, tool_name="press_test", job_id="test-job", request_type="TEST")
    return logger


# ─────────────────────────────────────────────────────────────────────────────
# Time: recorded sleeps and a controllable monotonic clock
# ─────────────────────────────────────────────────────────────────────────────

class SleepRecorder:
    """Async drop-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ─────────────────────────────────────────────────────────────────────────────
# Domain builders
# ─────────────────────────────────────────────────────────────────────────────

def record(title: str, content: Optional[str] = None, **fields) -> dict:
    """Raw record as the model would return it."""
    out = {"title": title, "content": content or f"Analysis of: {title}", "category": "ECONOMIA & NEGOCIOS"}
    out.update(fields)
    return out


@pytest.fixture
def registry() -> List[ClientProfile]:
    return [
        ClientProfile(name="Acme Energía", category="ENERGIA", keywords=("acme", "planta solar")),
        ClientProfile(name="Banco Popular", category="FINANZAS", keywords=("banco popular",)),
        ClientProfile(name="Tribunal Supremo", category="TRIBUNALES"),
    ]


@pytest.fixture
def make_ctx(registry):
    def _build(
        *,
        settings: Optional[PipelineSettings] = None,
        clients: Optional[List[ClientProfile]] = None,
        job_id: str = "job-123",
    ) -> JobContext:
        return JobContext(
            job_id=job_id,
            file_path="press/el-diario.pdf",
            publication_name="El Diario",
            owner="analyst@example.com",
            registry=registry if clients is None else clients,
            categories=list(DEFAULT_CATEGORIES),
            settings=settings or PipelineSettings(),
        )

    return _build


def make_response(
    text: Optional[str] = None,
    *,
    finish_reason: Optional[str] = "STOP",
    block_reason: Optional[str] = None,
    candidates: bool = True,
):
    """Duck-typed generate_content response."""
    parts = [SimpleNamespace(text=text, thought=False)] if text is not None else []
    cands = (
        [SimpleNamespace(finish_reason=finish_reason, content=SimpleNamespace(parts=parts))]
        if candidates
        else []
    )
    return SimpleNamespace(
        prompt_feedback=SimpleNamespace(block_reason=block_reason) if block_reason else None,
        candidates=cands,
        text=text,
    )


class ScriptedExtractor:
    """
    Fake vision client. `script[page_number]` is a list of outcomes returned on
    successive calls for that page; the last one repeats. Pages without a
    script succeed with one record mentioning the first tracked client.
    """

    def __init__(self, script: Optional[Dict[int, List[ExtractionOutcome]]] = None, on_call=None):
        self.script = script or {}
        self.calls: List[int] = []
        self.on_call = on_call

    def default(self, page: int) -> ExtractionOutcome:
        return ExtractionOutcome.success([record(f"Acme amplía su planta, página {page}")])

    async def __call__(self, chunk, ctx) -> ExtractionOutcome:
        self.calls.append(chunk.page_number)
        if self.on_call:
            self.on_call(chunk)
        outcomes = self.script.get(chunk.page_number)
        if not outcomes:
            return self.default(chunk.page_number)
        n = self.calls.count(chunk.page_number)
        return outcomes[min(n, len(outcomes)) - 1]

    def count(self, page: int) -> int:
        return self.calls.count(page)


async def fake_embed(text: str) -> List[float]:
    """Deterministic 768-d vector derived from the text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [((digest[i % len(digest)] + i) % 97) / 97.0 + 0.01 for i in range(768)]


@pytest.fixture
def embed():
    return fake_embed


def make_pdf(pages: int) -> bytes:
    import fitz

    doc = fitz.open()
    try:
        for i in range(pages):
            page = doc.new_page()
            page.insert_text((72, 72), f"Página {i + 1}")
        return doc.tobytes()
    finally:
        doc.close()

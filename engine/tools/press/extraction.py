"""
Vision extraction client.

Uploads a chunk through the Files API, asks the vision model for clipping
records and turns the raw response into an `ExtractionOutcome`. The outcome
kind is decided here, once; retry logic downstream only looks at `kind`.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import httpx
from pydantic import ValidationError
from google.genai import errors as gerrors

from utils.core.errors import UploadError
from utils.core.jsonval import parse_json_payload
from utils.core.log import get_logger
from utils.llm.LLM import Part, EmptyLLMResponseError, VISION_MODEL, generate_content
from utils.llm.files import RemoteFile, upload_file
from tools.press.press_models import ClippingRecord, JobContext, PageChunk
from tools.press.prompts_press import EXTRACTION_SYSTEM_INSTRUCTION, build_extraction_prompt


BLOCK_FINISH_REASONS = {
    "SAFETY",
    "RECITATION",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "IMAGE_SAFETY",
}
_UNSET_BLOCK_REASONS = {"", "NONE", "BLOCKED_REASON_UNSPECIFIED", "BLOCK_REASON_UNSPECIFIED"}


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    TRUNCATED = "truncated"
    BLOCKED = "blocked"
    EMPTY = "empty"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class ExtractionOutcome:
    kind: OutcomeKind
    records: tuple = ()
    raw_text: str = ""
    reason: str = ""

    @classmethod
    def success(cls, records: Iterable[dict]) -> "ExtractionOutcome":
        return cls(OutcomeKind.SUCCESS, records=tuple(records))

    @classmethod
    def truncated(cls, raw_text: str, reason: str = "max_tokens") -> "ExtractionOutcome":
        return cls(OutcomeKind.TRUNCATED, raw_text=raw_text, reason=reason)

    @classmethod
    def blocked(cls, reason: str) -> "ExtractionOutcome":
        return cls(OutcomeKind.BLOCKED, reason=reason)

    @classmethod
    def empty(cls, reason: str = "no_text") -> "ExtractionOutcome":
        return cls(OutcomeKind.EMPTY, reason=reason)

    @classmethod
    def transport_error(cls, detail: str) -> "ExtractionOutcome":
        return cls(OutcomeKind.TRANSPORT_ERROR, reason=detail)


ExtractFn = Callable[[PageChunk, JobContext], Awaitable[ExtractionOutcome]]


def _enum_name(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "name", value)).upper()


def _response_text(resp: Any) -> str:
    candidates = getattr(resp, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        parts = getattr(content, "parts", None) or []
        texts = [
            p.text for p in parts
            if isinstance(getattr(p, "text", None), str) and not getattr(p, "thought", False)
        ]
        if texts:
            return "".join(texts)
    text = getattr(resp, "text", None)
    return text if isinstance(text, str) else ""


def records_from_payload(data: Any) -> Optional[List[dict]]:
    """Accepts {"records": [...]}, a bare list, or a single record object."""
    if isinstance(data, dict):
        if isinstance(data.get("records"), list):
            return [r for r in data["records"] if isinstance(r, dict)]
        if "title" in data:
            return [data]
        return None
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    return None


def classify_response(resp: Any) -> ExtractionOutcome:
    """Map a raw generate_content response onto the closed outcome set."""
    feedback = getattr(resp, "prompt_feedback", None)
    block_reason = _enum_name(getattr(feedback, "block_reason", None))
    if block_reason not in _UNSET_BLOCK_REASONS:
        return ExtractionOutcome.blocked(block_reason)

    candidates = getattr(resp, "candidates", None) or []
    if not candidates:
        return ExtractionOutcome.empty("no_candidates")

    finish = _enum_name(getattr(candidates[0], "finish_reason", None))
    if finish in BLOCK_FINISH_REASONS:
        return ExtractionOutcome.blocked(finish)

    text = _response_text(resp)
    if not text.strip():
        return ExtractionOutcome.empty(finish.lower() or "no_text")

    if finish == "MAX_TOKENS":
        return ExtractionOutcome.truncated(text, "max_tokens")

    data, err = parse_json_payload(text, label="press_extract")
    records = records_from_payload(data) if err is None else None
    if records is None:
        return ExtractionOutcome.truncated(text, "parse_error")
    return ExtractionOutcome.success(records)


def to_clipping_records(
    raw_records: Iterable[dict], chunk: PageChunk, ctx: JobContext
) -> List[ClippingRecord]:
    """
    Validate raw model records, pin page numbers and categories, cap per page.
    Invalid records are dropped.
    """
    logger = get_logger()
    allowed = {c.upper() for c in ctx.categories}
    cap = ctx.settings.max_records_per_page
    per_page: Counter = Counter()
    out: List[ClippingRecord] = []

    for raw in raw_records:
        try:
            rec = ClippingRecord.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Dropping invalid record on {chunk.source_reference}: {e.errors()[:2]}")
            continue

        if not chunk.whole_document or rec.page_number is None:
            rec.page_number = chunk.page_number
        if allowed and rec.category not in allowed:
            rec.category = "OTRAS"

        if per_page[rec.page_number] >= cap:
            continue
        per_page[rec.page_number] += 1
        out.append(rec)

    return out


class VisionExtractor:
    """
    Callable extraction client: ``outcome = await extractor(chunk, ctx)``.

    The uploader and generator are injectable so the client can run against
    fakes in tests.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        upload: Callable[..., Awaitable[RemoteFile]] = upload_file,
        generate: Callable[..., Awaitable[Any]] = generate_content,
    ):
        self.model = model or VISION_MODEL
        self._upload = upload
        self._generate = generate

    async def _ensure_uploaded(self, chunk: PageChunk, ctx: JobContext) -> RemoteFile:
        if chunk.remote_file is None:
            chunk.remote_file = await self._upload(
                chunk.data,
                chunk.mime_type,
                display_name=f"{ctx.job_id}-p{chunk.page_number}",
            )
        return chunk.remote_file

    async def __call__(self, chunk: PageChunk, ctx: JobContext) -> ExtractionOutcome:
        return await self.extract(chunk, ctx)

    async def extract(self, chunk: PageChunk, ctx: JobContext) -> ExtractionOutcome:
        logger = get_logger()
        prompt = build_extraction_prompt(
            publication_name=ctx.publication_name,
            page_number=chunk.page_number,
            registry=ctx.registry,
            categories=ctx.categories,
            max_records=ctx.settings.max_records_per_page,
            whole_document=chunk.whole_document,
        )
        try:
            remote = await self._ensure_uploaded(chunk, ctx)
            resp = await self._generate(
                [Part.from_uri(file_uri=remote.uri, mime_type=remote.mime_type or chunk.mime_type), prompt],
                model=self.model,
                system_instruction=EXTRACTION_SYSTEM_INSTRUCTION,
                cfg={
                    "temperature": 0.1,
                    "max_output_tokens": ctx.settings.max_output_tokens,
                    "response_mime_type": "application/json",
                },
                debug_caller=f"press_extract:p{chunk.page_number}",
            )
        except (UploadError, httpx.HTTPError, gerrors.APIError, EmptyLLMResponseError) as e:
            # remote file may have expired or never become usable
            chunk.remote_file = None
            logger.warning(f"Transport failure on {chunk.source_reference}: {type(e).__name__}: {e}")
            return ExtractionOutcome.transport_error(f"{type(e).__name__}: {e}")

        outcome = classify_response(resp)
        logger.debug(
            f"Page {chunk.page_number}: outcome={outcome.kind.value} "
            f"records={len(outcome.records)} reason={outcome.reason or '-'}"
        )
        return outcome

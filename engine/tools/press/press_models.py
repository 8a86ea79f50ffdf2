"""
Data models for the press clipping pipeline.

- ClippingRecord: one article as returned by the vision model (validated)
- ClientProfile: a tracked client and its keywords
- PageChunk: one unit of work sent to the model
- FailedPageRecord / RetryStats: retry bookkeeping for diagnostics
- PipelineSettings: tunables for classification, retries and deadline
- JobContext: everything a single job run needs, built once and passed down
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from utils.llm.files import RemoteFile


SUMMARY_FIELDS = (
    "summary_who",
    "summary_what",
    "summary_when",
    "summary_where",
    "summary_why",
)


def _clean_str_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    out: List[str] = []
    seen = set()
    for item in value:
        s = str(item).strip()
        if s and s.lower() not in seen:
            seen.add(s.lower())
            out.append(s)
    return out


class ClippingRecord(BaseModel):
    """
    One press article extracted from a page.

    Unknown keys from the model are ignored; title and content are required.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(min_length=1, description="Headline of the article")
    content: str = Field(min_length=1, description="Short synthesized analysis, not an OCR dump")
    category: str = Field(default="OTRAS")
    keywords: List[str] = Field(default_factory=list)
    client_relevance: List[str] = Field(default_factory=list)
    page_number: Optional[int] = Field(default=None, ge=1)

    summary_who: Optional[str] = None
    summary_what: Optional[str] = None
    summary_when: Optional[str] = None
    summary_where: Optional[str] = None
    summary_why: Optional[str] = None

    @field_validator("keywords", "client_relevance", mode="before")
    @classmethod
    def _lists(cls, v):
        return _clean_str_list(v)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v):
        s = str(v or "").strip().upper()
        return s or "OTRAS"

    @field_validator("page_number", mode="before")
    @classmethod
    def _page(cls, v):
        if v in (None, ""):
            return None
        try:
            n = int(v)
        except (TypeError, ValueError):
            return None
        return n if n >= 1 else None

    def matching_text(self) -> str:
        """Lower-cased text searched by the relevance filter."""
        pieces = [self.title, self.content, " ".join(self.keywords)]
        pieces.extend(getattr(self, f) or "" for f in SUMMARY_FIELDS)
        return "\n".join(pieces).lower()

    def embedding_text(self, budget: int) -> str:
        return f"{self.title}\n\n{self.content}"[:budget]


@dataclass(frozen=True)
class ClientProfile:
    name: str
    category: Optional[str] = None
    keywords: tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: dict) -> "ClientProfile":
        return cls(
            name=row["name"],
            category=row.get("category"),
            keywords=tuple(row.get("keywords") or ()),
        )

    def match_terms(self) -> tuple[str, ...]:
        """Keywords, or the client name when none are configured."""
        terms = [k for k in self.keywords if k.strip()] or [self.name]
        return tuple(t.strip().lower() for t in terms)


@dataclass
class PageChunk:
    chunk_index: int
    page_number: int
    data: bytes
    mime_type: str
    source_reference: str
    # direct path: one chunk carries every page of the document
    whole_document: bool = False
    # uploaded once, reused across retries of this chunk
    remote_file: Optional["RemoteFile"] = None


@dataclass
class FailedPageRecord:
    chunk_index: int
    page_number: int
    source_reference: str
    failure_reason: str
    attempt_count: int
    blocked: bool = False
    recovered: bool = False


@dataclass
class RetryStats:
    total_pages: int = 0
    failed_initial: int = 0
    recovered: int = 0
    # pages never reached before the soft deadline; they count as failures
    not_attempted: int = 0
    deadline_hit: bool = False

    @property
    def final_success_rate(self) -> float:
        if self.total_pages <= 0:
            return 0.0
        succeeded = self.total_pages - self.not_attempted - self.failed_initial + self.recovered
        return succeeded / self.total_pages

    def as_dict(self) -> dict:
        return {
            "total_pages": self.total_pages,
            "failed_initial": self.failed_initial,
            "recovered": self.recovered,
            "not_attempted": self.not_attempted,
            "final_success_rate": f"{self.final_success_rate:.0%}",
        }


@dataclass(frozen=True)
class PipelineSettings:
    large_file_bytes: int = 10 * 1024 * 1024
    page_size_estimate_bytes: int = 500 * 1024
    max_direct_pages: int = 10
    max_chunk_retries: int = 2
    max_page_retries: int = 1
    base_delay_s: float = 2.0
    max_backoff_s: float = 10.0
    second_pass_delay_s: float = 5.0
    soft_deadline_s: float = 480.0
    max_records_per_page: int = 8
    max_output_tokens: int = 8192
    embedding_text_budget: int = 8000

    def chunk_backoff(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return min(self.base_delay_s * attempt, self.max_backoff_s)


@dataclass
class JobContext:
    job_id: str
    file_path: str
    publication_name: str
    owner: Optional[str]
    registry: List[ClientProfile]
    categories: List[str]
    settings: PipelineSettings = field(default_factory=PipelineSettings)
    compressed_file_path: Optional[str] = None

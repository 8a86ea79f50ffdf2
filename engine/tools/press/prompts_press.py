"""
Prompt templates for press page extraction and document summaries.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, List, Sequence

from tools.press.press_models import ClientProfile, ClippingRecord


EXTRACTION_SYSTEM_INSTRUCTION = (
    "You are a press monitoring analyst. You read scanned newspaper and magazine "
    "pages and produce structured clipping records. Respond with JSON only."
)

RECORD_SCHEMA_TEXT = """{
  "records": [
    {
      "title": "headline as printed",
      "content": "2-4 sentence analysis of the article, in the article's language",
      "category": "one of the allowed categories",
      "keywords": ["up to 8 salient terms"],
      "client_relevance": ["exact names of tracked clients the article concerns"],
      "page_number": 1,
      "summary_who": "who is involved",
      "summary_what": "what happened",
      "summary_when": "when it happened",
      "summary_where": "where it happened",
      "summary_why": "why it matters"
    }
  ]
}"""


def format_client_registry(registry: Sequence[ClientProfile]) -> str:
    """Clients grouped by category, one line per client with its keywords."""
    groups: "OrderedDict[str, List[ClientProfile]]" = OrderedDict()
    for client in registry:
        groups.setdefault(client.category or "GENERAL", []).append(client)

    lines: List[str] = []
    for category, clients in groups.items():
        lines.append(f"{category}:")
        for c in clients:
            kws = [k for k in c.keywords if k.strip()]
            if kws:
                lines.append(f"- {c.name} (keywords: {', '.join(kws)})")
            else:
                lines.append(f"- {c.name} (keywords: {c.name})")
    return "\n".join(lines)


def build_extraction_prompt(
    *,
    publication_name: str,
    page_number: int | None,
    registry: Sequence[ClientProfile],
    categories: Iterable[str],
    max_records: int,
    whole_document: bool = False,
) -> str:
    if registry:
        scope = (
            "TRACKED CLIENTS (grouped by category):\n"
            f"{format_client_registry(registry)}\n\n"
            "Extract ONLY articles that mention a tracked client or one of its keywords. "
            "Put the exact client names in client_relevance. Skip articles with no client match."
        )
    else:
        scope = (
            "No clients are configured. Extract ALL articles on the page exhaustively "
            "and leave client_relevance empty."
        )

    if whole_document:
        location = (
            "The attached file is the complete document. Set page_number to the page "
            "where each article appears."
        )
    else:
        location = f"The attached file is page {page_number} of the document. Set page_number to {page_number}."

    return (
        f"Publication: {publication_name or 'Unknown publication'}\n"
        f"{location}\n\n"
        f"{scope}\n\n"
        f"ALLOWED CATEGORIES: {', '.join(categories)}\n"
        "Use OTRAS when no category fits.\n\n"
        f"Return at most {max_records} records"
        f"{' per page' if whole_document else ''}, the most relevant first. "
        "Keep content concise; never transcribe the full article text.\n"
        "If there is nothing to extract return {\"records\": []}.\n\n"
        f"Respond with JSON in exactly this shape:\n{RECORD_SCHEMA_TEXT}"
    )


SUMMARY_SYSTEM_INSTRUCTION = (
    "You write short executive summaries of press monitoring results for "
    "communications teams. Plain text, no markdown headings."
)


def build_summary_prompt(publication_name: str, clippings: Sequence[ClippingRecord]) -> str:
    listing = "\n".join(
        f"- [{c.category}] {c.title}"
        + (f" (clients: {', '.join(c.client_relevance)})" if c.client_relevance else "")
        for c in clippings
    )
    return (
        f"Publication: {publication_name or 'Unknown publication'}\n"
        f"{len(clippings)} relevant clippings were extracted:\n"
        f"{listing}\n\n"
        "Write an executive summary of 3 to 5 sentences covering the main themes "
        "and which clients appear most. Use the language of the clipping titles."
    )

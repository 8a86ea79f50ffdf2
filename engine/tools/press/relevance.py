"""
Client relevance filter.

Relevance is recomputed locally from client keywords (case-insensitive
containment in title, content, keywords and 5W summary) and unioned with the
client names the model reported. Model-reported names only count when they
name a tracked client. Clippings whose union is empty are dropped.

With an empty registry nothing can be matched and the pipeline runs in
exhaustive mode, so every clipping is kept.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from utils.core.log import get_logger
from tools.press.press_models import ClientProfile, ClippingRecord


def keyword_matches(clipping: ClippingRecord, registry: Sequence[ClientProfile]) -> List[str]:
    """Names of clients with at least one term contained in the clipping text."""
    text = clipping.matching_text()
    return [c.name for c in registry if any(term and term in text for term in c.match_terms())]


def reported_matches(clipping: ClippingRecord, registry: Sequence[ClientProfile]) -> List[str]:
    """Model-reported names mapped onto canonical tracked client names."""
    canonical: Dict[str, str] = {c.name.strip().lower(): c.name for c in registry}
    out: List[str] = []
    for name in clipping.client_relevance:
        hit = canonical.get(name.strip().lower())
        if hit:
            out.append(hit)
    return out


def resolve_relevance(clipping: ClippingRecord, registry: Sequence[ClientProfile]) -> List[str]:
    """Union of local and reported matches, in registry order."""
    hits = set(keyword_matches(clipping, registry)) | set(reported_matches(clipping, registry))
    return [c.name for c in registry if c.name in hits]


def filter_relevant(
    clippings: Sequence[ClippingRecord], registry: Sequence[ClientProfile]
) -> List[ClippingRecord]:
    logger = get_logger()
    if not registry:
        logger.info(f"No tracked clients; keeping all {len(clippings)} clipping(s)")
        return list(clippings)

    kept: List[ClippingRecord] = []
    for clip in clippings:
        names = resolve_relevance(clip, registry)
        if not names:
            logger.debug(f"Dropping '{clip.title[:60]}' (page {clip.page_number}): no client match")
            continue
        kept.append(clip.model_copy(update={"client_relevance": names}))

    logger.info(f"Relevance filter kept {len(kept)} of {len(clippings)} clipping(s)")
    return kept

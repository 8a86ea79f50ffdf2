"""
Press clipping persistence and similarity search.

Each insert is its own transaction; no write spans more than one clipping.
"""

import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from utils.db.connection import get_db_connection, is_mock, _mock_db, _mock_lock
from utils.core.log import get_logger

CLIPPING_COLUMNS = (
    "title",
    "content",
    "category",
    "keywords",
    "client_relevance",
    "page_number",
    "publication_name",
    "summary_who",
    "summary_what",
    "summary_when",
    "summary_where",
    "summary_why",
)


def _vector_literal(values: Sequence[float]) -> str:
    return "[" + ",".join(f"{float(v):.8f}" for v in values) + "]"


def _cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


def insert_clipping(
    clipping: Dict[str, Any],
    *,
    embedding: Sequence[float],
    job_id: Optional[str],
    owner: Optional[str],
) -> str:
    """Append one clipping with its embedding. Returns the new row id."""
    clipping_id = str(uuid.uuid4())
    row = {k: clipping.get(k) for k in CLIPPING_COLUMNS}
    row["keywords"] = list(row.get("keywords") or [])
    row["client_relevance"] = list(row.get("client_relevance") or [])

    if is_mock():
        with _mock_lock:
            _mock_db["clippings"][clipping_id] = {
                "id": clipping_id,
                "job_id": job_id,
                "owner": owner,
                "embedding": [float(v) for v in embedding],
                "created_at": datetime.now(timezone.utc).replace(tzinfo=None).isoformat(),
                **row,
            }
        return clipping_id

    columns = ["id", "job_id", "owner", "embedding", *CLIPPING_COLUMNS]
    placeholders = ["%s", "%s", "%s", "%s::vector", *(["%s"] * len(CLIPPING_COLUMNS))]
    values = [clipping_id, job_id, owner, _vector_literal(embedding)]
    values.extend(row[k] for k in CLIPPING_COLUMNS)

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO press_clippings ({', '.join(columns)}) "
                f"VALUES ({', '.join(placeholders)})",
                values,
            )
        conn.commit()
        return clipping_id
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_clippings_for_job(job_id: str) -> List[Dict[str, Any]]:
    """Persisted clippings of a job ordered by page number, without embeddings."""
    if is_mock():
        with _mock_lock:
            rows = [
                {k: v for k, v in c.items() if k != "embedding"}
                for c in _mock_db["clippings"].values()
                if c.get("job_id") == job_id
            ]
        rows.sort(key=lambda r: (r.get("page_number") or 0, r.get("created_at") or ""))
        return rows

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, job_id, owner, created_at, {', '.join(CLIPPING_COLUMNS)}
                FROM press_clippings
                WHERE job_id = %s
                ORDER BY page_number ASC NULLS LAST, created_at ASC
                """,
                (job_id,),
            )
            return [dict(r) for r in cur.fetchall()]
    except Exception as e:
        get_logger().error(f"Failed to list clippings for job {job_id}: {e}")
        raise
    finally:
        conn.close()


def match_clippings(
    query_embedding: Sequence[float],
    *,
    match_threshold: float = 0.7,
    match_count: int = 5,
) -> List[Dict[str, Any]]:
    """Clippings with cosine similarity >= threshold, best first."""
    match_count = max(1, int(match_count))

    if is_mock():
        with _mock_lock:
            scored = []
            for c in _mock_db["clippings"].values():
                sim = _cosine_similarity(query_embedding, c.get("embedding") or [])
                if sim >= match_threshold:
                    row = {k: v for k, v in c.items() if k != "embedding"}
                    row["similarity"] = sim
                    scored.append(row)
        scored.sort(key=lambda r: r["similarity"], reverse=True)
        return scored[:match_count]

    vec = _vector_literal(query_embedding)
    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, job_id, owner, created_at, {', '.join(CLIPPING_COLUMNS)},
                       1 - (embedding <=> %s::vector) AS similarity
                FROM press_clippings
                WHERE embedding IS NOT NULL
                  AND 1 - (embedding <=> %s::vector) >= %s
                ORDER BY embedding <=> %s::vector
                LIMIT %s
                """,
                (vec, vec, match_threshold, vec, match_count),
            )
            return [dict(r) for r in cur.fetchall()]
    except Exception as e:
        get_logger().error(f"Clipping similarity search failed: {e}")
        raise
    finally:
        conn.close()

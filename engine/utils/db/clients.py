"""
Client / keyword registry and press category reads.
"""

from typing import Any, Dict, List

import psycopg2

from utils.db.connection import get_db_connection, is_mock, _mock_db, _mock_lock
from utils.core.log import get_logger

DEFAULT_CATEGORIES = [
    "ACCIDENTES",
    "AGENCIAS DE GOBIERNO",
    "AMBIENTE",
    "AMBIENTE & EL TIEMPO",
    "CIENCIA & TECNOLOGIA",
    "COMUNIDAD",
    "CRIMEN",
    "DEPORTES",
    "ECONOMIA & NEGOCIOS",
    "EDUCACION & CULTURA",
    "EE.UU. & INTERNACIONALES",
    "ENTRETENIMIENTO",
    "GOBIERNO",
    "OTRAS",
    "POLITICA",
    "RELIGION",
    "SALUD",
    "TRIBUNALES",
]


def _normalize_client_row(row: Dict[str, Any]) -> Dict[str, Any]:
    keywords = row.get("keywords") or []
    if isinstance(keywords, str):
        keywords = [k.strip() for k in keywords.split(",")]
    return {
        "name": (row.get("name") or "").strip(),
        "category": (row.get("category") or "").strip() or None,
        "keywords": [k.strip() for k in keywords if k and k.strip()],
    }


def list_clients() -> List[Dict[str, Any]]:
    """
    All tracked clients as {name, category, keywords}.

    Failures propagate: a job must not run against a silently empty registry.
    """
    if is_mock():
        with _mock_lock:
            rows = [dict(r) for r in _mock_db["clients"]]
    else:
        conn = get_db_connection()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT name, category, keywords FROM clients ORDER BY name ASC")
                rows = [dict(r) for r in cur.fetchall()]
        finally:
            conn.close()

    clients = [_normalize_client_row(r) for r in rows]
    return [c for c in clients if c["name"]]


def add_client(name: str, category: str | None = None, keywords: List[str] | None = None) -> None:
    if is_mock():
        with _mock_lock:
            _mock_db["clients"].append(
                {"name": name, "category": category, "keywords": list(keywords or [])}
            )
        return

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO clients (name, category, keywords) VALUES (%s, %s, %s)",
                (name, category, list(keywords or [])),
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def list_categories() -> List[str]:
    """Configured category names, falling back to DEFAULT_CATEGORIES."""
    log = get_logger()

    if is_mock():
        with _mock_lock:
            names = list(_mock_db["categories"])
    else:
        try:
            conn = get_db_connection()
        except (psycopg2.Error, ValueError) as e:
            log.warning(f"Categories unavailable, using defaults: {e}")
            return list(DEFAULT_CATEGORIES)
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT name FROM categories ORDER BY name ASC")
                names = [r["name"] for r in cur.fetchall()]
        except psycopg2.Error as e:
            log.warning(f"Categories unavailable, using defaults: {e}")
            return list(DEFAULT_CATEGORIES)
        finally:
            conn.close()

    names = [n.strip() for n in names if n and n.strip()]
    return names or list(DEFAULT_CATEGORIES)

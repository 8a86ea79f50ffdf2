"""
Database connection management for the press clipping engine.

Supports PostgreSQL (via psycopg2, with pgvector for clipping embeddings) and
a mock in-memory store selected with db_type=mock.
Config from Vault.
"""

import threading
from urllib.parse import urlparse, unquote
from typing import Any, Dict

import psycopg2
from psycopg2.extras import RealDictCursor

from utils.vault import secrets
from utils.core.log import pid_tool_logger, set_logger, get_logger

DB_TYPE = (secrets.get("db_type", default="postgres") or "postgres").strip().lower()
DATABASE_URL = secrets.get("postgres_url", default="") or ""
EMBEDDING_DIMENSIONS = 768

# Mock database storage (in-memory)
_mock_db: Dict[str, Any] = {
    "jobs": {},
    "clippings": {},
    "clients": [],
    "categories": [],
}
# Guards check-and-set sequences on _mock_db across the API thread and job loop
_mock_lock = threading.RLock()


def is_mock() -> bool:
    return DB_TYPE == "mock"


def reset_mock_db() -> None:
    with _mock_lock:
        _mock_db["jobs"] = {}
        _mock_db["clippings"] = {}
        _mock_db["clients"] = []
        _mock_db["categories"] = []


def _parse_postgres_url(url: str) -> Dict[str, Any]:
    """
    Parse postgresql:// or postgres:// URL into connection kwargs.
    Component-based so a password containing %, & or @ needs no encoding in Vault.
    """
    parsed = urlparse(url)
    netloc = parsed.netloc or ""
    path = (parsed.path or "").strip("/") or "postgres"

    at = netloc.rfind("@")
    userinfo, hostport = (netloc[:at], netloc[at + 1 :]) if at >= 0 else ("", netloc)

    user = password = ""
    if userinfo:
        user, _, password = userinfo.partition(":")
        user, password = unquote(user), unquote(password)

    host, port = "localhost", 5432
    if hostport:
        if ":" in hostport:
            host, port_str = hostport.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                port = 5432
        else:
            host = hostport

    return {
        "host": host or "localhost",
        "port": port,
        "user": user,
        "password": password,
        "dbname": path,
    }


def get_db_connection():
    """psycopg2 connection using RealDictCursor rows."""
    if is_mock():
        raise RuntimeError("get_db_connection() called while db_type=mock")
    if not DATABASE_URL:
        raise ValueError("postgres_url is required when db_type=postgres")

    try:
        conn = psycopg2.connect(
            cursor_factory=RealDictCursor,
            **_parse_postgres_url(DATABASE_URL),
        )
    except psycopg2.Error as e:
        get_logger().error(f"Failed to connect to PostgreSQL: {e}")
        raise
    get_logger().debug("Connected to PostgreSQL database")
    return conn


def init_db():
    """
    Create tables if they don't exist (postgres) or reset the in-memory store (mock).
    """
    set_logger(pid_tool_logger("SYSTEM", "db_init"), tool_name="db_init")
    log = get_logger()

    if is_mock():
        reset_mock_db()
        log.debug("Mock database mode - in-memory store reset")
        return

    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute("CREATE EXTENSION IF NOT EXISTS vector;")
            cur.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

            cur.execute("""
                CREATE TABLE IF NOT EXISTS press_processing_jobs (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    status VARCHAR(20) NOT NULL DEFAULT 'pending',
                    progress INTEGER NOT NULL DEFAULT 0,
                    file_path TEXT NOT NULL,
                    compressed_file_path TEXT,
                    publication_name TEXT,
                    owner VARCHAR(255),
                    error TEXT,
                    document_summary TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CHECK (progress BETWEEN 0 AND 100),
                    CHECK (status IN ('pending', 'processing', 'completed', 'error'))
                );
            """)

            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS press_clippings (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    job_id UUID REFERENCES press_processing_jobs(id) ON DELETE SET NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    category VARCHAR(100),
                    keywords TEXT[] DEFAULT '{{}}',
                    client_relevance TEXT[] DEFAULT '{{}}',
                    page_number INTEGER,
                    publication_name TEXT,
                    summary_who TEXT,
                    summary_what TEXT,
                    summary_when TEXT,
                    summary_where TEXT,
                    summary_why TEXT,
                    embedding vector({EMBEDDING_DIMENSIONS}),
                    owner VARCHAR(255),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS clients (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    name TEXT NOT NULL,
                    category VARCHAR(100),
                    keywords TEXT[] DEFAULT '{}',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    name VARCHAR(100) UNIQUE NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)

            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_press_jobs_status
                ON press_processing_jobs(status) WHERE status IN ('pending', 'processing');
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_press_clippings_job
                ON press_clippings(job_id, page_number);
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_press_clippings_embedding
                ON press_clippings USING hnsw (embedding vector_cosine_ops);
            """)

            conn.commit()
            log.info("Database tables initialized successfully")
    except psycopg2.Error as e:
        conn.rollback()
        log.error(f"Failed to initialize database: {e}")
        raise
    finally:
        conn.close()

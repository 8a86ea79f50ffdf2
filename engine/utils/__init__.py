"""
Press Clipping Utils - Modular utility functions.

Submodules:
- core: Logging, errors, Slack activity and JSON helpers
- llm: Gemini client (vision, text, embeddings) and Files API uploads
- storage: MinIO storage operations (S3-compatible)
- db: PostgreSQL / mock persistence, job queue and background worker
"""

from utils import core
from utils import llm
from utils import storage
from utils import db

__all__ = [
    "core",
    "llm",
    "storage",
    "db",
]

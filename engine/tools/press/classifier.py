"""
Size/page classification and chunk construction.

Page count is estimated from byte size alone (ceil(size / 500KB)); the PDF is
only opened when the chunked path is selected, to split it into one
single-page PDF per chunk.
"""

from __future__ import annotations

import math
import threading
from enum import Enum
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, List

import fitz  # PyMuPDF

from utils.core.errors import UnsupportedDocumentError
from utils.core.log import get_logger
from tools.press.press_models import PageChunk, PipelineSettings

SUPPORTED_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

# PyMuPDF is not thread-safe across documents
_pymupdf_lock = threading.Lock()

SplitPages = Callable[[bytes], List[bytes]]


class ProcessingMode(str, Enum):
    DIRECT = "direct"
    CHUNKED = "chunked"


@dataclass(frozen=True)
class ProcessingPlan:
    mode: ProcessingMode
    byte_size: int
    estimated_pages: int

    @property
    def chunked(self) -> bool:
        return self.mode is ProcessingMode.CHUNKED


def estimate_page_count(byte_size: int, settings: PipelineSettings | None = None) -> int:
    settings = settings or PipelineSettings()
    return math.ceil(max(0, byte_size) / settings.page_size_estimate_bytes)


def classify_document(byte_size: int, settings: PipelineSettings | None = None) -> ProcessingPlan:
    settings = settings or PipelineSettings()
    pages = estimate_page_count(byte_size, settings)
    if byte_size > settings.large_file_bytes or pages > settings.max_direct_pages:
        mode = ProcessingMode.CHUNKED
    else:
        mode = ProcessingMode.DIRECT
    return ProcessingPlan(mode=mode, byte_size=byte_size, estimated_pages=pages)


def detect_mime_type(path: str, data: bytes | None = None) -> str:
    """
    MIME type from the file extension, or from the PDF magic number when the
    path carries no extension.

    Raises:
        UnsupportedDocumentError: not a PDF or a JPG/JPEG/PNG/WEBP image.
    """
    suffix = PurePosixPath(path or "").suffix.lower()
    if suffix in SUPPORTED_TYPES:
        return SUPPORTED_TYPES[suffix]
    if not suffix and data and data[:5] == b"%PDF-":
        return "application/pdf"
    raise UnsupportedDocumentError(
        f"Unsupported file type '{suffix or 'unknown'}'. Allowed: pdf, jpg, jpeg, png, webp"
    )


def split_pdf_pages(data: bytes) -> List[bytes]:
    """Split a PDF into one standalone single-page PDF per page."""
    pages: List[bytes] = []
    with _pymupdf_lock:
        src = fitz.open(stream=data, filetype="pdf")
        try:
            for i in range(src.page_count):
                out = fitz.open()
                try:
                    out.insert_pdf(src, from_page=i, to_page=i)
                    pages.append(out.tobytes(garbage=3, deflate=True))
                finally:
                    out.close()
        finally:
            src.close()
    return pages


def build_chunks(
    data: bytes,
    *,
    mime_type: str,
    plan: ProcessingPlan,
    source_reference: str,
    split_pages: SplitPages = split_pdf_pages,
) -> List[PageChunk]:
    """
    Units of work for the chunk loop.

    Direct plans and images yield one chunk holding the whole file. Chunked
    PDFs yield one chunk per page; a PDF that cannot be split is sent whole.
    """
    logger = get_logger()
    whole = [
        PageChunk(
            0, 1, data, mime_type, source_reference,
            whole_document=mime_type == "application/pdf",
        )
    ]

    if not plan.chunked or mime_type != "application/pdf":
        return whole

    try:
        pages = split_pages(data)
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Could not split {source_reference} into pages ({e}); sending whole file")
        return whole

    if not pages:
        logger.warning(f"{source_reference} has no pages after split; sending whole file")
        return whole

    logger.debug(f"Split {source_reference} into {len(pages)} single-page chunks")
    return [
        PageChunk(
            chunk_index=i,
            page_number=i + 1,
            data=page,
            mime_type="application/pdf",
            source_reference=f"{source_reference}#page={i + 1}",
        )
        for i, page in enumerate(pages)
    ]

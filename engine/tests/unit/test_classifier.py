"""
Unit Tests - size/page classifier and chunk construction
"""

from __future__ import annotations

import fitz
import pytest

from utils.core.errors import UnsupportedDocumentError
from tools.press.classifier import (
    ProcessingMode,
    build_chunks,
    classify_document,
    detect_mime_type,
    estimate_page_count,
    split_pdf_pages,
)
from tools.press.press_models import PipelineSettings
from tests.conftest import make_pdf

KIB = 1024
MIB = 1024 * KIB


@pytest.mark.unit
class TestClassifyDocument:

    def test_page_estimate_rounds_up(self):
        assert estimate_page_count(1) == 1
        assert estimate_page_count(500 * KIB) == 1
        assert estimate_page_count(500 * KIB + 1) == 2
        assert estimate_page_count(0) == 0

    @pytest.mark.parametrize("size", [1, 100 * KIB, 10 * 500 * KIB])
    def test_at_or_below_threshold_is_direct(self, size):
        plan = classify_document(size)
        assert plan.mode is ProcessingMode.DIRECT
        assert not plan.chunked

    def test_more_than_ten_estimated_pages_is_chunked(self):
        plan = classify_document(10 * 500 * KIB + 1)
        assert plan.estimated_pages == 11
        assert plan.chunked

    def test_above_large_file_size_is_chunked(self):
        settings = PipelineSettings(max_direct_pages=1000)
        assert classify_document(10 * MIB + 1, settings).chunked
        assert not classify_document(10 * MIB, settings).chunked


@pytest.mark.unit
class TestDetectMimeType:

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("a/b/paper.PDF", "application/pdf"),
            ("scan.jpg", "image/jpeg"),
            ("scan.jpeg", "image/jpeg"),
            ("scan.png", "image/png"),
            ("scan.webp", "image/webp"),
        ],
    )
    def test_by_extension(self, path, expected):
        assert detect_mime_type(path) == expected

    def test_pdf_magic_without_extension(self):
        assert detect_mime_type("uploads/abc123", b"%PDF-1.7 ...") == "application/pdf"

    def test_unsupported_type(self):
        with pytest.raises(UnsupportedDocumentError):
            detect_mime_type("notes.docx", b"PK..")


@pytest.mark.unit
class TestBuildChunks:

    def test_direct_pdf_is_one_whole_document_chunk(self):
        data = make_pdf(3)
        chunks = build_chunks(
            data,
            mime_type="application/pdf",
            plan=classify_document(len(data)),
            source_reference="press/a.pdf",
        )
        assert len(chunks) == 1
        assert chunks[0].whole_document is True
        assert chunks[0].data == data

    def test_image_is_always_one_chunk(self):
        plan = classify_document(20 * MIB)
        chunks = build_chunks(b"\x89PNG...", mime_type="image/png", plan=plan, source_reference="x.png")
        assert len(chunks) == 1
        assert chunks[0].whole_document is False
        assert chunks[0].page_number == 1

    def test_chunked_pdf_splits_into_single_pages(self):
        data = make_pdf(3)
        plan = classify_document(20 * MIB)
        chunks = build_chunks(data, mime_type="application/pdf", plan=plan, source_reference="p.pdf")

        assert [c.page_number for c in chunks] == [1, 2, 3]
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert chunks[1].source_reference == "p.pdf#page=2"
        for chunk in chunks:
            doc = fitz.open(stream=chunk.data, filetype="pdf")
            try:
                assert doc.page_count == 1
            finally:
                doc.close()

    def test_split_failure_falls_back_to_whole_file(self):
        def broken(_data):
            raise RuntimeError("cannot open broken document")

        plan = classify_document(20 * MIB)
        chunks = build_chunks(
            b"%PDF-garbage", mime_type="application/pdf", plan=plan, source_reference="bad.pdf",
            split_pages=broken,
        )
        assert len(chunks) == 1
        assert chunks[0].whole_document is True

    def test_split_pdf_pages_counts(self):
        assert len(split_pdf_pages(make_pdf(4))) == 4

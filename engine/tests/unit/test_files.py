"""
Unit Tests - Files API resumable upload
═══════════════════════════════════════
Runs the real httpx code against httpx.MockTransport; no network.
"""

from __future__ import annotations

from typing import List

import httpx
import pytest

from utils.core.errors import UploadError
from utils.llm.files import RemoteFile, poll_delay, upload_file

SESSION_URL = "https://upload.test/session/1"


def _file_resource(state: str) -> dict:
    return {
        "file": {
            "name": "files/abc123",
            "uri": "https://generativelanguage.googleapis.com/v1beta/files/abc123",
            "mimeType": "application/pdf",
            "state": state,
        }
    }


class FakeFilesApi:
    """Scripted Files API: start -> finalize -> N polls."""

    def __init__(self, poll_states: List[str], *, initial_state: str = "PROCESSING", upload_url: bool = True):
        self.poll_states = list(poll_states)
        self.initial_state = initial_state
        self.upload_url = upload_url
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if request.method == "POST" and url.endswith("/upload/v1beta/files"):
            headers = {"x-goog-upload-url": SESSION_URL} if self.upload_url else {}
            return httpx.Response(200, headers=headers, json={})
        if request.method == "POST" and url == SESSION_URL:
            return httpx.Response(200, json=_file_resource(self.initial_state))
        if request.method == "GET" and url.endswith("/v1beta/files/abc123"):
            state = self.poll_states.pop(0) if self.poll_states else "PROCESSING"
            return httpx.Response(200, json=_file_resource(state))
        return httpx.Response(404, json={"error": "unexpected request"})


async def _upload(api: FakeFilesApi, sleep, **kw) -> RemoteFile:
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        return await upload_file(
            b"%PDF-1.7 page", "application/pdf",
            display_name="job-p1", client=client, api_key="k", sleep=sleep, **kw,
        )


@pytest.mark.unit
class TestUploadFile:

    async def test_polls_until_active(self, sleep_recorder):
        api = FakeFilesApi(["PROCESSING", "ACTIVE"])
        remote = await _upload(api, sleep_recorder)

        assert remote.state == "ACTIVE"
        assert remote.name == "files/abc123"
        assert remote.mime_type == "application/pdf"
        assert sleep_recorder.delays == [1.0, 2.0]

        start = api.requests[0]
        assert start.headers["X-Goog-Upload-Command"] == "start"
        assert start.headers["X-Goog-Upload-Header-Content-Length"] == str(len(b"%PDF-1.7 page"))
        finalize = api.requests[1]
        assert finalize.headers["X-Goog-Upload-Command"] == "upload, finalize"
        assert finalize.content == b"%PDF-1.7 page"

    async def test_already_active_needs_no_poll(self, sleep_recorder):
        remote = await _upload(FakeFilesApi([], initial_state="ACTIVE"), sleep_recorder)
        assert remote.state == "ACTIVE"
        assert sleep_recorder.delays == []

    async def test_failed_state_raises(self, sleep_recorder):
        with pytest.raises(UploadError, match="failed processing"):
            await _upload(FakeFilesApi(["FAILED"]), sleep_recorder)

    async def test_never_active_is_bounded(self, sleep_recorder):
        with pytest.raises(UploadError, match="not ACTIVE after 3 polls"):
            await _upload(FakeFilesApi([]), sleep_recorder, poll_attempts=3)
        assert sleep_recorder.delays == [1.0, 2.0, 4.0]

    async def test_missing_upload_url_raises(self, sleep_recorder):
        with pytest.raises(UploadError, match="upload URL"):
            await _upload(FakeFilesApi([], upload_url=False), sleep_recorder)

    async def test_empty_content_rejected(self, sleep_recorder):
        with pytest.raises(UploadError):
            await upload_file(b"", "application/pdf", display_name="x", api_key="k", sleep=sleep_recorder)

    def test_poll_delay_doubles_and_caps(self):
        assert [poll_delay(i) for i in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

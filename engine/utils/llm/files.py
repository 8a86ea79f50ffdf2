"""
Gemini Files API upload (resumable protocol).

Sequence:
    1. POST upload/v1beta/files with X-Goog-Upload-Command: start
       -> response header x-goog-upload-url
    2. POST <upload url> with the bytes and "upload, finalize"
       -> file resource (name, uri, state)
    3. GET v1beta/files/{id} until state == ACTIVE (bounded, exponential wait)

The returned `RemoteFile.uri` can then be referenced from a model call with
`Part.from_uri`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx
import tenacity

from utils.core.errors import UploadError
from utils.core.log import get_logger
from utils.llm.LLM import get_api_key

GEMINI_API_BASE = "https://generativelanguage.googleapis.com"
UPLOAD_POLL_ATTEMPTS = 10
POLL_BASE_WAIT_S = 1.0
POLL_MAX_WAIT_S = 8.0
HTTP_TIMEOUT_S = 120.0

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RemoteFile:
    name: str
    uri: str
    mime_type: str
    state: str

    @classmethod
    def from_resource(cls, data: dict) -> "RemoteFile":
        info = data.get("file", data)
        name = info.get("name")
        if not name:
            raise UploadError(f"Upload response has no file name: {data}")
        return cls(
            name=name,
            uri=info.get("uri", ""),
            mime_type=info.get("mimeType", ""),
            state=(info.get("state") or "STATE_UNSPECIFIED").upper(),
        )


def _is_retriable_http(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code >= 500 or code == 429
    return False


_http_retry = tenacity.retry(
    retry=tenacity.retry_if_exception(_is_retriable_http),
    wait=tenacity.wait_exponential(multiplier=1, min=1, max=8),
    stop=tenacity.stop_after_attempt(3),
    reraise=True,
)


def poll_delay(attempt: int) -> float:
    """Wait before poll `attempt` (0-based): 1, 2, 4, 8, 8, ..."""
    return min(POLL_BASE_WAIT_S * (2 ** attempt), POLL_MAX_WAIT_S)


@_http_retry
async def _start_session(
    client: httpx.AsyncClient, api_key: str, size: int, mime_type: str, display_name: str
) -> str:
    resp = await client.post(
        f"{GEMINI_API_BASE}/upload/v1beta/files",
        headers={
            "x-goog-api-key": api_key,
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Header-Content-Length": str(size),
            "X-Goog-Upload-Header-Content-Type": mime_type,
        },
        json={"file": {"display_name": display_name}},
    )
    resp.raise_for_status()
    upload_url = resp.headers.get("x-goog-upload-url")
    if not upload_url:
        raise UploadError("Upload session did not return an upload URL")
    return upload_url


@_http_retry
async def _send_bytes(client: httpx.AsyncClient, upload_url: str, data: bytes) -> dict:
    resp = await client.post(
        upload_url,
        headers={
            "Content-Length": str(len(data)),
            "X-Goog-Upload-Offset": "0",
            "X-Goog-Upload-Command": "upload, finalize",
        },
        content=data,
    )
    resp.raise_for_status()
    return resp.json()


@_http_retry
async def _get_file(client: httpx.AsyncClient, api_key: str, name: str) -> RemoteFile:
    resp = await client.get(
        f"{GEMINI_API_BASE}/v1beta/{name}",
        headers={"x-goog-api-key": api_key},
    )
    resp.raise_for_status()
    return RemoteFile.from_resource(resp.json())


async def wait_until_active(
    remote: RemoteFile,
    *,
    client: httpx.AsyncClient,
    api_key: str,
    sleep: Sleep = asyncio.sleep,
    attempts: int = UPLOAD_POLL_ATTEMPTS,
) -> RemoteFile:
    """
    Poll until the file is ACTIVE.

    Raises:
        UploadError: the file reached FAILED or stayed in processing too long.
    """
    logger = get_logger()
    for attempt in range(attempts + 1):
        if remote.state == "ACTIVE":
            return remote
        if remote.state == "FAILED":
            raise UploadError(f"Remote file {remote.name} failed processing")
        if attempt == attempts:
            break
        delay = poll_delay(attempt)
        logger.debug(f"{remote.name} is {remote.state}; polling again in {delay:.1f}s")
        await sleep(delay)
        remote = await _get_file(client, api_key, remote.name)

    raise UploadError(
        f"Remote file {remote.name} not ACTIVE after {attempts} polls (state={remote.state})"
    )


async def upload_file(
    data: bytes,
    mime_type: str,
    *,
    display_name: str,
    client: Optional[httpx.AsyncClient] = None,
    api_key: Optional[str] = None,
    sleep: Sleep = asyncio.sleep,
    poll_attempts: int = UPLOAD_POLL_ATTEMPTS,
) -> RemoteFile:
    """
    Upload bytes with the resumable protocol and wait until usable.

    Raises:
        UploadError: protocol violation or the file never became ACTIVE.
        httpx.HTTPError: transport/HTTP failure after retries.
    """
    logger = get_logger()
    if not data:
        raise UploadError("Refusing to upload empty content")
    api_key = api_key or get_api_key()

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_S)
    try:
        upload_url = await _start_session(client, api_key, len(data), mime_type, display_name)
        remote = RemoteFile.from_resource(await _send_bytes(client, upload_url, data))
        logger.debug(f"Uploaded {display_name} as {remote.name} ({len(data)} bytes, {remote.state})")
        return await wait_until_active(
            remote, client=client, api_key=api_key, sleep=sleep, attempts=poll_attempts
        )
    finally:
        if owns_client:
            await client.aclose()

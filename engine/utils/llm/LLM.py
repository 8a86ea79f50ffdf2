"""Centralised Gemini helper utilities.

Shared interface for calling Gemini models from the press pipeline. Client
creation, rate limiting, transport retries and call logging live here so that
tools only deal with prompts and responses.

## Key Features

- One process-wide `genai.Client` authenticated with the Gemini API key from
  Vault (`gemini_api_key`); the same key authorises the Files API upload in
  `utils.llm.files`.

- Per-minute sliding window limiter (`RateLimiter`) shared by every call,
  budgeting both requests and estimated tokens.

- Tenacity-backed exponential retries for transient faults only (5xx, 429/499,
  connection errors). Anything else propagates to the caller on first failure.

- `generate_content()` returns the raw SDK response so callers can classify
  finish reasons and safety blocks themselves; `call_llm_async()` returns text.

- `embed_text()` returns one embedding vector for a text.

Import pattern for tools:
```python
from utils.llm.LLM import Part, generate_content, call_llm_async, embed_text
```
"""

from __future__ import annotations

import time
import random
import asyncio
import threading
from collections import deque
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import httpx
import tenacity
from google import genai
from google.genai import types
from google.genai.types import Part
from google.genai import errors as gerrors

from utils.vault import secrets
from utils.core.log import get_logger


__all__ = [
    "Part",
    "RateLimiter",
    "EmptyLLMResponseError",
    "get_api_key",
    "get_client",
    "to_parts",
    "estimate_tokens",
    "generate_content",
    "call_llm_async",
    "embed_text",
]

# Configuration

VISION_MODEL = secrets.get("gemini_vision_model", default="gemini-2.5-flash")
MODEL_DEFAULT = secrets.get("gemini_text_model", default="gemini-2.5-flash")
EMBEDDING_MODEL = secrets.get("gemini_embedding_model", default="text-embedding-004")
REQUESTS_PER_MINUTE = secrets.get_int("gemini_requests_per_minute", default=60)
TOKENS_PER_MINUTE = secrets.get_int("gemini_tokens_per_minute", default=1_000_000)
REQUEST_TIMEOUT_S = 180.0
FILE_PART_TOKEN_ESTIMATE = 1_500  # one scanned page
_RETRIABLE_CLIENT_CODES = {429, 499}

_CLIENT = None
_LOCK = threading.Lock()


class EmptyLLMResponseError(Exception):
    """Raised when a text call returns no output."""


def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient faults we want to retry."""
    if isinstance(exc, EmptyLLMResponseError):
        return True
    if isinstance(exc, gerrors.ServerError):  # 5xx
        return True
    if isinstance(exc, gerrors.ClientError):  # 4xx
        return getattr(exc, "code", None) in _RETRIABLE_CLIENT_CODES
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return True
    return False


_retry_policy = tenacity.retry(
    retry=tenacity.retry_if_exception(_is_retriable),
    wait=tenacity.wait_exponential(multiplier=1, min=1, max=8),
    stop=tenacity.stop_after_attempt(3),
    reraise=True,
)


def _finish_reason_name(resp: Any) -> str:
    candidates = getattr(resp, "candidates", None) or []
    if not candidates:
        return "NO_CANDIDATES"
    fr = getattr(candidates[0], "finish_reason", None)
    if fr is None:
        return "UNSPECIFIED"
    return str(getattr(fr, "name", fr)).upper()


def _wrap_sdk_call(fn, *args, _log_model=None, _debug_meta: Mapping[str, str] | None = None, **kwargs):
    """Run an SDK call and emit a structured log line for it."""
    logger = get_logger()
    t0 = time.perf_counter()
    meta = dict(_debug_meta or {})
    caller = meta.get("caller", "unknown")
    callee = getattr(fn, "__name__", repr(fn))

    try:
        resp = fn(*args, **kwargs)
    except gerrors.APIError as e:
        logger.error(
            "LLM APIError | caller=%s | callee=%s | model=%s | code=%s | err=%s",
            caller, callee, _log_model, getattr(e, "code", None), e,
        )
        raise
    except httpx.HTTPError as e:
        logger.error(
            "LLM TransportError | caller=%s | callee=%s | model=%s | err=%s",
            caller, callee, _log_model, e,
        )
        raise

    latency_ms = int((time.perf_counter() - t0) * 1000)
    usage = getattr(resp, "usage_metadata", None)
    prompt_tok = getattr(usage, "prompt_token_count", -1) if usage else -1
    total_tok = getattr(usage, "total_token_count", -1) if usage else -1

    base_msg = (
        f"LLM Call OK | caller={caller} | model={_log_model} | latency={latency_ms}ms | "
        f"prompt_tokens={prompt_tok} | total_tokens={total_tok}"
    )
    if callee == "embed_content":
        logger.debug(base_msg)
        return resp

    finish = _finish_reason_name(resp)
    if finish != "STOP":  # safety-stop, max-tokens, etc.
        logger.warning(base_msg + f" | finish_reason={finish}")
    else:
        logger.debug(base_msg)
    return resp


def get_api_key() -> str:
    key = (secrets.get("gemini_api_key", default="") or "").strip()
    if not key:
        raise RuntimeError("gemini_api_key is not configured (Vault or env)")
    return key


def _create_client() -> genai.Client:
    http_options = types.HttpOptions(
        client_args={
            "limits": httpx.Limits(
                max_keepalive_connections=20,
                max_connections=50,
                keepalive_expiry=60.0,
            ),
            "timeout": httpx.Timeout(REQUEST_TIMEOUT_S),
        },
    )
    return genai.Client(api_key=get_api_key(), http_options=http_options)


def get_client() -> genai.Client:
    global _CLIENT
    if _CLIENT is None:
        with _LOCK:
            if _CLIENT is None:
                _CLIENT = _create_client()
    return _CLIENT


# Rate limiter
class RateLimiter:
    """Token/request budget over minute-long sliding windows (thread- and loop-safe)."""

    def __init__(
        self, req_pm: int = REQUESTS_PER_MINUTE, tok_pm: int = TOKENS_PER_MINUTE
    ):
        self.req_pm = req_pm
        self.tok_pm = tok_pm
        self._mtx = threading.Lock()
        self._req: deque[float] = deque()
        self._tok: deque[tuple[float, int]] = deque()

    def _try_consume(self, tokens: int) -> float:
        """Consume budget and return 0, or return seconds to wait."""
        now = time.time()
        window_start = now - 60.0
        with self._mtx:
            while self._req and self._req[0] < window_start:
                self._req.popleft()
            while self._tok and self._tok[0][0] < window_start:
                self._tok.popleft()

            used_tokens = sum(t for _, t in self._tok)
            can_req = len(self._req) < self.req_pm
            # a single oversized request is admitted into an empty window
            can_tok = (used_tokens + tokens) <= self.tok_pm or not self._tok

            if can_req and can_tok:
                self._req.append(now)
                self._tok.append((now, tokens))
                return 0.0

            waits = []
            if self._req:
                waits.append(self._req[0] + 60.0 - now)
            if self._tok:
                waits.append(self._tok[0][0] + 60.0 - now)
            positive = [w for w in waits if w > 0]
            return max(0.001, min(positive) if positive else 0.05)

    async def acquire(self, tokens: int = 0) -> None:
        tokens = max(0, int(tokens))
        while True:
            wait = self._try_consume(tokens)
            if wait == 0.0:
                return
            await asyncio.sleep(wait)


_GLOBAL_LIMITER = RateLimiter()


# Misc helpers
def to_parts(content: Sequence[Part | str | bytes]) -> List[Part]:
    "makes content gemini safe by converting to parts"
    parts: List[Part] = []
    for item in content:
        if isinstance(item, Part):
            parts.append(item)
        elif isinstance(item, str):
            parts.append(Part.from_text(text=item))
        elif isinstance(item, (bytes, bytearray)):
            parts.append(
                Part.from_bytes(data=bytes(item), mime_type="application/octet-stream")
            )
        else:
            raise TypeError(f"Unsupported Part type: {type(item)}")
    return parts


def estimate_tokens(parts: Iterable[Part]) -> int:
    """Cheap local estimate (4 chars/token, fixed cost per file part)."""
    total = 0
    for p in parts:
        text = getattr(p, "text", None)
        if isinstance(text, str):
            total += len(text) // 4 + 1
        elif getattr(p, "file_data", None) is not None or getattr(p, "inline_data", None) is not None:
            total += FILE_PART_TOKEN_ESTIMATE
    return total


def _build_config(
    cfg: Optional[Mapping[str, Any]], system_instruction: Optional[str]
) -> types.GenerateContentConfig:
    data = dict(cfg or {})
    if system_instruction:
        data["system_instruction"] = system_instruction
    return types.GenerateContentConfig(**data)


async def generate_content(
    prompt_parts: Sequence[Part | str],
    *,
    model: str | None = None,
    system_instruction: str | None = None,
    cfg: Mapping[str, Any] | None = None,
    limiter: RateLimiter | None = None,
    debug_caller: str | None = None,
) -> types.GenerateContentResponse:
    """
    One model call returning the raw SDK response.

    Transient transport faults are retried (3 attempts, 1..8s backoff); the
    response itself is not inspected, so truncation and safety blocks reach
    the caller untouched.
    """
    model = model or VISION_MODEL
    parts = to_parts(prompt_parts)
    limiter = limiter or _GLOBAL_LIMITER
    config = _build_config(cfg, system_instruction)
    meta = {"caller": debug_caller or "generate_content"}

    await limiter.acquire(estimate_tokens(parts))

    @_retry_policy
    def _blocking_with_retry():
        client = get_client()
        return _wrap_sdk_call(
            client.models.generate_content,
            model=model,
            contents=parts,
            config=config,
            _log_model=model,
            _debug_meta=meta,
        )

    return await asyncio.to_thread(_blocking_with_retry)


async def call_llm_async(
    prompt_parts: Sequence[Part | str],
    *,
    model: str | None = None,
    system_instruction: str | None = None,
    cfg: Mapping[str, Any] | None = None,
    limiter: RateLimiter | None = None,
    debug_caller: str | None = None,
) -> str:
    """
    Text call. Empty output counts as transient and is retried with a
    perturbed temperature/seed.

    Raises:
        EmptyLLMResponseError: every attempt returned no text.
    """
    logger = get_logger()
    model = model or MODEL_DEFAULT
    base_cfg = dict(cfg or {"temperature": 0.2, "max_output_tokens": 2048})
    limiter = limiter or _GLOBAL_LIMITER
    parts = to_parts(prompt_parts)
    meta = {"caller": debug_caller or "call_llm_async"}

    await limiter.acquire(estimate_tokens(parts))

    attempt_state = {"attempt": 0}

    @_retry_policy
    def _blocking_with_retry() -> str:
        attempt_state["attempt"] += 1
        attempt = attempt_state["attempt"]

        this_cfg = dict(base_cfg)
        if attempt > 1:
            this_cfg["temperature"] = round(random.uniform(0.2, 0.7), 2)
            this_cfg["seed"] = random.randint(1, 10_000)

        client = get_client()
        resp = _wrap_sdk_call(
            client.models.generate_content,
            model=model,
            contents=parts,
            config=_build_config(this_cfg, system_instruction),
            _log_model=model,
            _debug_meta=meta,
        )
        result = getattr(resp, "text", None)
        if not result or not result.strip():
            logger.warning(f"[call_llm_async] Attempt {attempt}: empty text (cfg={this_cfg})")
            raise EmptyLLMResponseError("LLM returned empty text")
        return result

    return await asyncio.to_thread(_blocking_with_retry)


async def embed_text(
    text: str,
    *,
    model: str | None = None,
    limiter: RateLimiter | None = None,
) -> List[float]:
    """Embedding vector for one text."""
    model = model or EMBEDDING_MODEL
    limiter = limiter or _GLOBAL_LIMITER
    if not text or not text.strip():
        raise ValueError("Cannot embed empty text")

    await limiter.acquire(len(text) // 4 + 1)

    @_retry_policy
    def _blocking_with_retry() -> List[float]:
        client = get_client()
        resp = _wrap_sdk_call(
            client.models.embed_content,
            model=model,
            contents=text,
            _log_model=model,
            _debug_meta={"caller": "embed_text"},
        )
        embeddings = getattr(resp, "embeddings", None) or []
        if not embeddings or not embeddings[0].values:
            raise EmptyLLMResponseError("Embedding response had no values")
        return list(embeddings[0].values)

    return await asyncio.to_thread(_blocking_with_retry)

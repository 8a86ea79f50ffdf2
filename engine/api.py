import inspect
import asyncio
import logging
import os
import threading
import time
from flask import Flask, request, jsonify
from utils.core.log import setup_logging
from utils.core.warnings_config import configure_warning_filters
from utils.core.errors import JobNotFoundError, JobStateError
from utils.core.slack import SlackActivityMeta, open_activity, safe_done, safe_sub

configure_warning_filters()

from utils.db.worker import JobSupervisor
from tools.press.press_clipping import press_clipping_main, search_clippings

app = Flask(__name__)
setup_logging()
logger = logging.getLogger("PressClippingAPI")

"""
API for the press clipping engine

pip install flask
"""


_LAST = {"status": None, "t": 0.0}
GET_INFO_EVERY_SEC = 300

_SUPERVISOR = None
_SUPERVISOR_LOCK = threading.Lock()

# exception type -> HTTP status; anything else is a 500
_ERROR_STATUS = (
    (JobNotFoundError, 404),
    (JobStateError, 409),
    (ValueError, 400),
)


def get_supervisor() -> JobSupervisor:
    global _SUPERVISOR
    with _SUPERVISOR_LOCK:
        if _SUPERVISOR is None:
            _SUPERVISOR = JobSupervisor()
        return _SUPERVISOR


def _should_log_get(current_status: str) -> bool:
    now = time.monotonic()
    if _LAST["status"] != current_status or now - _LAST["t"] >= GET_INFO_EVERY_SEC:
        _LAST["status"] = current_status
        _LAST["t"] = now
        return True
    return False


def _status_for(exc: Exception) -> int:
    for exc_type, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code
    return 500


def handle(tool_func=None, *args, **kwargs):
    """
    Universal wrapper for all endpoint tools.

    - Routes pass every parameter the tool needs through *args / **kwargs.
    - Builds the response envelope {success, jobId, status, error, toolData}.
    - Known pipeline errors map to 400/404/409, anything else to 500.
      A job that was just scheduled replies 202.
    """
    req_json = kwargs.pop("request_body", {})
    remote_ip = request.remote_addr
    tool_name = tool_func.__name__ if tool_func else "unknown_tool"
    job_id = req_json.get("jobId", "") or ""
    user_name = req_json.get("userName", "")
    method = request.method

    context = {
        "tool_name": tool_name,
        "ip_address": remote_ip,
        "job_id": job_id or "N/A",
        "request_type": method,
        "user_name": user_name,
    }
    logger = logging.LoggerAdapter(logging.getLogger("PressClippingAPI"), context)

    if method == "POST":
        logger.info("Process started")

    response = {
        "success": False,
        "jobId": job_id,
        "status": "",
        "error": "",
        "toolData": {},
    }

    call_kwargs = dict(kwargs)
    sig = inspect.signature(tool_func) if tool_func else None
    if sig:
        if "remote_ip" in sig.parameters:
            call_kwargs["remote_ip"] = remote_ip
        if "request_method" in sig.parameters:
            call_kwargs["request_method"] = method

    try:
        if inspect.iscoroutinefunction(tool_func):
            result = asyncio.run(tool_func(*args, **call_kwargs))
        else:
            result = tool_func(*args, **call_kwargs)

    except Exception as exc:
        code = _status_for(exc)
        if code == 500:
            logger.exception(f"{tool_name} crashed")
        else:
            logger.info(f"{tool_name} rejected: {exc}")
        response["status"] = "error"
        response["error"] = str(exc)
        return jsonify(response), code

    # Tools return a dict; status/error/jobId/success are lifted into the
    # envelope and everything else becomes toolData.
    result = dict(result or {})
    response["status"] = result.pop("status", "done")
    response["error"] = result.pop("error", "") or ""
    response["jobId"] = result.pop("jobId", job_id)
    response["success"] = bool(result.pop("success", response["status"] != "error"))
    response["toolData"] = result

    if method == "GET":
        if _should_log_get(response["status"]):
            logger.info("Status check: %s", response["status"])

    http_status = 202 if method == "POST" and response["status"] == "processing" else 200
    return jsonify(response), http_status


def bad_request(msg: str, job_id: str = ""):
    envelope = {
        "success": False,
        "jobId": job_id,
        "status": "error",
        "error": msg,
        "toolData": {},
    }
    return jsonify(envelope), 400


def get_payload() -> dict:
    """
    Return the request payload as a dict.
    - POST   - accept plaintext JSON.
    - GET    - flat query params.
    """
    if request.method == "GET":
        return request.args.to_dict(flat=True) if request.args else {}

    return request.get_json(force=True, silent=True) or {}


def ping_status_tool(
    request_method: str | None = None,
    remote_ip: str | None = None,
    user_name: str | None = None,
) -> dict:
    """
    Healthcheck tool. Replies pong and posts a Slack activity line when
    Slack is configured.
    """
    from utils.core.log import pid_tool_logger, get_logger, set_logger

    base_logger = pid_tool_logger(None, "ping")
    set_logger(
        base_logger,
        tool_name="ping",
        ip_address=remote_ip or "no_ip",
        request_type=request_method or "N/A",
    )
    logger = get_logger()
    logger.info("Ping received; replying with pong")

    act = open_activity(
        SlackActivityMeta(job_id="-", tool="PING", user=user_name or "unknown"), logger
    )
    safe_sub(logger, act, "PONG")
    safe_done(logger, act, "pong")

    return {"status": "pong"}


async def press_search_tool(
    query: str,
    match_threshold: float = 0.7,
    match_count: int = 5,
    request_method: str | None = None,
    remote_ip: str | None = None,
) -> dict:
    from utils.core.log import pid_tool_logger, set_logger

    set_logger(
        pid_tool_logger(None, "press_search"),
        tool_name="press_search",
        ip_address=remote_ip or "no_ip",
        request_type=request_method or "N/A",
    )
    clippings = await search_clippings(
        query, match_threshold=match_threshold, match_count=match_count
    )
    return {"status": "done", "clippings": clippings, "count": len(clippings)}


@app.route("/ping", methods=["GET", "POST"])
def PING():
    data = get_payload()
    return handle(
        tool_func=ping_status_tool,
        request_body=data,
        user_name=data.get("userName") or data.get("user"),
    )


@app.route("/press-clipping", methods=["GET", "POST"])
def PRESS_CLIPPING():
    """
    Press clipping extraction endpoint
    - POST - claim a pending job and process it in the background (202)
    - GET  - job status, plus its clippings once completed
    """
    data = get_payload()
    job_id = data.get("jobId") or data.get("job_id")
    if not job_id:
        return bad_request("jobId is required")

    return handle(
        tool_func=press_clipping_main,
        request_body=data,
        job_id=job_id,
        supervisor=get_supervisor() if request.method == "POST" else None,
        user_name=data.get("userName", ""),
    )


@app.route("/press-clipping/search", methods=["POST"])
def PRESS_SEARCH():
    data = get_payload()
    query = (data.get("query") or "").strip()
    if not query:
        return bad_request("query is required")

    try:
        threshold = float(data.get("matchThreshold", 0.7))
        count = int(data.get("matchCount", 5))
    except (TypeError, ValueError):
        return bad_request("matchThreshold must be a number and matchCount an integer")

    return handle(
        tool_func=press_search_tool,
        request_body=data,
        query=query,
        match_threshold=threshold,
        match_count=count,
    )


if __name__ == "__main__":
    if os.path.exists("crt.pem") and os.path.exists("key.pem"):
        app.run(host="0.0.0.0", port=5000, ssl_context=("crt.pem", "key.pem"))
    else:
        app.run(host="0.0.0.0", port=5000)

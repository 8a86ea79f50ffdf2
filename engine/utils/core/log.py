import re
import json
import logging
import pathlib
import datetime
import logging.config
from typing import Union
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler

from utils.vault import secrets


_logger_var: ContextVar[Union[logging.Logger, logging.LoggerAdapter]] = ContextVar(
    "job_tool_logger", default=None
)

CONFIG_PATH = pathlib.Path(__file__).resolve().parent.parent / "logging_config.json"
CONTEXT_KEYS = ("tool_name", "job_id", "ip_address", "request_type", "user_name")
NOISY_LIBS = (
    "google_genai",
    "google_genai.models",
    "google.genai",
    "httpx",
    "httpcore",
    "botocore",
    "boto3",
    "urllib3",
    "slack_sdk",
)

RED = "\033[31m"
GREEN = "\033[32m"
BLUE = "\033[34m"
ORANGE = "\033[33m"
GREY = "\033[90m"
WHITE = "\033[97m"
PURPLE = "\033[35m"
RESET = "\033[0m"


def set_logger(logger: logging.Logger, **extra):
    _logger_var.set(logging.LoggerAdapter(logger, extra))


def get_logger() -> logging.LoggerAdapter:
    logger = _logger_var.get()
    if logger is None:
        raise RuntimeError("Job-specific logger not set in this context")
    return logger


def _log_root() -> pathlib.Path:
    raw = secrets.get("process_log_dir", default="") or ""
    if raw:
        return pathlib.Path(raw).expanduser()
    return pathlib.Path.home() / "process_logs"


class NoDebugFilter(logging.Filter):
    """Filter that blocks DEBUG messages"""

    def filter(self, record):
        return record.levelno > logging.DEBUG


class ContextFilter(logging.Filter):
    def filter(self, record):
        current = _logger_var.get()
        if isinstance(current, logging.LoggerAdapter):
            extra = getattr(current, "extra", {}) or {}
            for k in CONTEXT_KEYS:
                if not hasattr(record, k) and k in extra:
                    setattr(record, k, extra[k])

        defaults = {
            "tool_name": "N/A",
            "job_id": "N/A",
            "ip_address": "no_ip",
            "request_type": "N/A",
            "user_name": "Anonymous",
        }
        for k, v in defaults.items():
            if not hasattr(record, k):
                setattr(record, k, v)
        return True


class JobFileFilter(logging.Filter):
    """Per-job file keeps DEBUG plus ERROR/CRITICAL; INFO/WARNING stay on the console."""

    def filter(self, record):
        return record.levelno == logging.DEBUG or record.levelno >= logging.ERROR


def setup_logging(config_file: pathlib.Path | None = None):
    with open(config_file or CONFIG_PATH) as f_in:
        config = json.load(f_in)

    for handler in config.get("handlers", {}).values():
        if "filename" in handler:
            path = pathlib.Path(handler["filename"]).expanduser()
            handler["filename"] = str(path)
            path.parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(config)

    for name in NOISY_LIBS:
        lib_logger = logging.getLogger(name)
        lib_logger.setLevel(logging.ERROR)
        lib_logger.propagate = False

    context_filter = ContextFilter()
    no_debug_filter = NoDebugFilter()
    root_logger = logging.getLogger()
    root_logger.addFilter(context_filter)
    for handler in root_logger.handlers:
        handler.addFilter(context_filter)
        handler.addFilter(no_debug_filter)


def pid_tool_logger(job_id: str | None, tool_name: str) -> logging.Logger:
    """Logger writing to {process_log_dir}/{job_id}/{tool_name}.log."""
    job_key = str(job_id or "SYSTEM")
    log_dir = _log_root() / job_key
    log_dir.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        filename=log_dir / f"{tool_name}.log", maxBytes=5_000_000, backupCount=1
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    handler.addFilter(JobFileFilter())

    logger = logging.getLogger(f"{job_key}.{tool_name}")
    logger.setLevel(logging.DEBUG)

    # pid_tool_logger may be called once per stage for the same job
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.propagate = True
    return logger


class DynamicPrefixFormatter(logging.Formatter):
    """
    Color-aware console formatter. Pass color=True/False from logging config.
    """

    JOB_W = 36  # uuid job id
    IP_W = 15
    PROC_W = 6  # POST/GET/WORKER
    TOOL_W = 9
    FUNC_W = 22
    LEVEL_W = 7

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = bool(color)

    def _c(self, code: str) -> str:
        return code if self.color else ""

    @staticmethod
    def _derive_tool_base(record: logging.LogRecord) -> str:
        tb = getattr(record, "tool_base", None)
        if tb:
            return str(tb).upper()

        name = getattr(record, "name", "")
        if "." in name:
            tool = name.split(".", 1)[1].lower()
        else:
            tool = (getattr(record, "tool_name", "") or "").lower()

        tool = re.sub(r"(_main|_worker)$", "", tool)

        if "search" in tool:
            return "SEARCH"
        if any(k in tool for k in ("press", "clipping", "extract", "index")):
            return "PRESS"
        if any(k in tool for k in ("worker", "job_queue", "db_init")):
            return "QUEUE"
        if "ping" in tool:
            return "PING"
        return "-"

    def format(self, record: logging.LogRecord) -> str:
        is_error_or_warn = record.levelno >= logging.WARNING
        is_error = record.levelno >= logging.ERROR
        request_type = (getattr(record, "request_type", "") or "").upper()
        is_get = request_type == "GET"
        process = (getattr(record, "request_type", "N/A") or "N/A")[: self.PROC_W]
        job_id = str(getattr(record, "job_id", "N/A") or "N/A")[: self.JOB_W]
        ip_address = (getattr(record, "ip_address", "no_ip") or "no_ip")[: self.IP_W]
        user_name = (getattr(record, "user_name", "Anonymous") or "Anonymous")[:15]
        tool_base = self._derive_tool_base(record)
        func_name = (getattr(record, "tool_name", "N/A") or "N/A")[: self.FUNC_W]
        ts = datetime.datetime.fromtimestamp(record.created).strftime(
            "%Y-%m-%d %H:%M:%S"
        )

        if is_error_or_warn:
            prefix_colored = f"{self._c(RED)}[-]"
        else:
            prefix_colored = f"{self._c(GREY) if is_get else self._c(GREEN)}[+]"

        if process == "POST":
            proc_colored = f"{self._c(GREEN)}{process:<{self.PROC_W}}"
        else:
            proc_colored = f"{self._c(WHITE)}{process:<{self.PROC_W}}"

        level_color = RED if is_error else PURPLE
        dash = f"{self._c(RED)} - "

        line = (
            f"{prefix_colored} "
            f"{self._c(WHITE)}{ts} "
            f"{self._c(BLUE)}{job_id:<{self.JOB_W}} "
            f"{self._c(ORANGE)}{ip_address:<{self.IP_W}} "
            f"{self._c(BLUE)}{user_name:<15} "
            f"{proc_colored}"
            f"{dash}"
            f"{self._c(level_color)}{record.levelname:<{self.LEVEL_W}}"
            f"{dash}"
            f"{self._c(GREY)}{tool_base:<{self.TOOL_W}}: "
            f"{func_name:<{self.FUNC_W}} "
            f"{record.getMessage()}"
        )
        if self.color:
            line += RESET

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
            if self.color:
                line += RESET
        if record.stack_info:
            line += "\n" + self.formatStack(record.stack_info)
            if self.color:
                line += RESET

        return line

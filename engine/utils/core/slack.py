from typing import Optional
from dataclasses import dataclass

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from utils.vault import secrets

_ENV = (secrets.get("clipping_env_label", default="") or "").strip() or "Unknown"
_CHANNEL_ID = secrets.get("channel_id", default="") or ""
_TOKEN = secrets.get("slack_token", default="") or ""
_client = WebClient(token=_TOKEN)


@dataclass
class SlackActivityMeta:
    job_id: str
    tool: str
    user: str
    publication: Optional[str] = None
    environment: str = _ENV


def fmt_dur(sec: float | None) -> str:
    if sec is None:
        return "0s"
    return f"{int(round(float(sec)))}s"


class SlackActivityLogger:
    """
    Job activity thread in Slack:
      - start(): parent message
      - sub():   step line(s) in the thread
      - done():  final DONE
      - error(): final ERROR line with details
    """

    def __init__(
        self,
        meta: SlackActivityMeta,
        channel_id: Optional[str] = None,
        thread_ts: Optional[str] = None,
    ):
        if not _TOKEN or not (_CHANNEL_ID or channel_id):
            raise EnvironmentError("Missing SLACK_TOKEN or CHANNEL_ID")
        self.meta = meta
        self.channel_id = channel_id or _CHANNEL_ID
        self.thread_ts = thread_ts

    @property
    def header_text(self) -> str:
        publication = self.meta.publication or "-"
        return (
            f"ENV={self.meta.environment} | USER={self.meta.user} | TOOL={self.meta.tool} "
            f"| JOB={self.meta.job_id} | PUBLICATION={publication}"
        )

    def _post(self, text: str) -> None:
        if not self.thread_ts:
            self.start()
        _client.chat_postMessage(channel=self.channel_id, text=text, thread_ts=self.thread_ts)

    def start(self) -> str:
        resp = _client.chat_postMessage(channel=self.channel_id, text=self.header_text)
        self.thread_ts = resp["ts"]
        return self.thread_ts

    def sub(self, text: str) -> None:
        self._post(text)

    def done(self, text: str = "DONE") -> None:
        self._post(text)

    def error(self, error_text: str) -> None:
        self._post(f"ERROR: {error_text}")


def open_activity(meta: SlackActivityMeta, logger) -> Optional[SlackActivityLogger]:
    """Start a Slack thread, or return None when Slack is unavailable."""
    try:
        act = SlackActivityLogger(meta)
        act.start()
        return act
    except (EnvironmentError, SlackApiError) as exc:
        logger.debug(f"Slack activity disabled: {exc}")
        return None


def safe_sub(logger, act: Optional[SlackActivityLogger], text: str) -> None:
    if not act:
        return
    try:
        act.sub(text)
    except (SlackApiError, OSError):
        logger.debug("Slack sub failed (non-fatal).", exc_info=True)


def safe_done(logger, act: Optional[SlackActivityLogger], text: str = "DONE") -> None:
    if not act:
        return
    try:
        act.done(text)
    except (SlackApiError, OSError):
        logger.debug("Slack done failed (non-fatal).", exc_info=True)


def safe_error(logger, act: Optional[SlackActivityLogger], text: str) -> None:
    if not act:
        return
    try:
        act.error(text)
    except (SlackApiError, OSError):
        logger.debug("Slack error failed (non-fatal).", exc_info=True)

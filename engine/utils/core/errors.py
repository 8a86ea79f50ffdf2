from datetime import datetime, UTC


class PressPipelineError(Exception):
    """Base class for clipping pipeline failures."""


class JobNotFoundError(PressPipelineError):
    pass


class JobStateError(PressPipelineError):
    """Raised when a job is not in a state that allows the requested transition."""

    def __init__(self, job_id: str, status: str | None, expected: str = "pending"):
        self.job_id = job_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Job {job_id} is '{status}', expected '{expected}'"
        )


class DownloadError(PressPipelineError):
    """Source bytes for a job could not be retrieved. Fatal for the job."""


class UnsupportedDocumentError(DownloadError):
    pass


class UploadError(PressPipelineError):
    """Remote file upload failed or never reached the ACTIVE state."""


class DeadlineExceeded(PressPipelineError):
    def __init__(self, processed: int, total: int):
        self.processed = processed
        self.total = total
        super().__init__(f"{processed} of {total} pages processed before deadline")


def _make_error_payload(
    stage: str, err: Exception | str, extra: dict | None = None
) -> dict:
    msg = str(err)
    base = {
        "status": "error",
        "error": msg,
        "stage": stage,
        "timestamp": datetime.now(UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
    }
    if extra:
        base.update(extra)
    return base

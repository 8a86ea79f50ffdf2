"""
MinIO object storage access for uploaded press documents.

The upload UI writes source files (and optional compressed variants) into the
press bucket; this module only reads them back.

- download_bytes: fetch one object into memory
"""

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from utils.vault import secrets
from utils.core.log import get_logger
from utils.core.errors import DownloadError


# MinIO config from Vault/env:
#   minio_endpoint, minio_root_user, minio_root_password, minio_secure, press_bucket
MINIO_ACCESS_KEY = (secrets.get("minio_root_user", default="") or "").strip()
MINIO_SECRET_KEY = (secrets.get("minio_root_password", default="") or "").strip()
_minio_endpoint = (secrets.get("minio_endpoint", default="") or "").strip().rstrip("/")
MINIO_ENDPOINT = _minio_endpoint or "http://minio:9000"
MINIO_SECURE = secrets.get_bool("minio_secure", default=False)
PRESS_BUCKET = (secrets.get("press_bucket", default="pdf-uploads") or "pdf-uploads").strip()

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}

S3_BOTOCORE_CONFIG = BotoConfig(
    max_pool_connections=32,
    retries={"max_attempts": 5, "mode": "adaptive"},
)

s3_client = boto3.client(
    "s3",
    endpoint_url=MINIO_ENDPOINT,
    aws_access_key_id=MINIO_ACCESS_KEY or None,
    aws_secret_access_key=MINIO_SECRET_KEY or None,
    use_ssl=MINIO_SECURE,
    config=S3_BOTOCORE_CONFIG,
)


def download_bytes(bucket: str | None, key: str) -> bytes:
    """
    Read an object fully into memory.

    Raises:
        DownloadError: missing object, storage failure or empty body.
    """
    logger = get_logger()
    bucket = bucket or PRESS_BUCKET
    key = (key or "").lstrip("/")
    if not key:
        raise DownloadError("No file path on job")

    try:
        resp = s3_client.get_object(Bucket=bucket, Key=key)
        body = resp["Body"]
        try:
            data = body.read()
        finally:
            body.close()
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in _NOT_FOUND_CODES:
            raise DownloadError(f"File not found: {bucket}/{key}") from e
        raise DownloadError(f"Storage error for {bucket}/{key}: {code or e}") from e
    except BotoCoreError as e:
        raise DownloadError(f"Storage unavailable for {bucket}/{key}: {e}") from e

    if not data:
        raise DownloadError(f"File is empty: {bucket}/{key}")

    logger.debug(f"Downloaded {bucket}/{key} ({len(data)} bytes)")
    return data


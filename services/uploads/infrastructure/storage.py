from __future__ import annotations

import logging
from typing import Sequence
from urllib.parse import quote

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from services.uploads.application.interfaces import StorageBackend
from services.uploads.config import UploadConfig
from services.uploads.domain.errors import StorageError

LOGGER = logging.getLogger(__name__)

_DELETE_BATCH_SIZE = 1000
_NON_RETRYABLE_CODES = frozenset(
    {
        "AccessDenied",
        "EntityTooLarge",
        "InvalidAccessKeyId",
        "InvalidBucketName",
        "NoSuchBucket",
        "SignatureDoesNotMatch",
    }
)
_NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404, 413})


def create_s3_client(config: UploadConfig):
    return boto3.client(
        "s3",
        endpoint_url=config.storage_endpoint_url,
        region_name=config.storage_region,
        aws_access_key_id=config.storage_access_key,
        aws_secret_access_key=config.storage_secret_key,
        config=BotoConfig(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            connect_timeout=30,
            read_timeout=60,
            retries={"max_attempts": 1},
        ),
    )


class S3StorageBackend(StorageBackend):
    def __init__(self, client, *, public_endpoint_url: str) -> None:
        self._client = client
        self._public_endpoint_url = public_endpoint_url.rstrip("/")

    def put(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                CacheControl="max-age=3600",
            )
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, f"upload of {bucket}/{path}") from exc
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._public_endpoint_url}/{bucket}/{quote(path)}"

    def remove(self, bucket: str, paths: Sequence[str]) -> None:
        for start in range(0, len(paths), _DELETE_BATCH_SIZE):
            batch = paths[start : start + _DELETE_BATCH_SIZE]
            try:
                response = self._client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                raise _translate(exc, f"delete from {bucket}") from exc
            errors = response.get("Errors") or []
            if errors:
                LOGGER.warning(
                    "Storage refused to delete %d object(s) from %s: %s",
                    len(errors),
                    bucket,
                    [error.get("Key") for error in errors],
                )
                raise StorageError(
                    f"Failed to delete {len(errors)} object(s) from {bucket}",
                    retryable=False,
                )


def _translate(exc: Exception, operation: str) -> StorageError:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        retryable = (
            code not in _NON_RETRYABLE_CODES
            and status not in _NON_RETRYABLE_STATUSES
        )
        return StorageError(f"{operation} failed: {code or status}", retryable=retryable)
    return StorageError(f"{operation} failed: {type(exc).__name__}", retryable=True)


def create_storage_backend(config: UploadConfig) -> StorageBackend:
    client = create_s3_client(config)
    return S3StorageBackend(client, public_endpoint_url=config.public_endpoint_url)

"""
S3-compatible object storage for uploaded documents, challenge images and
submission exports.
"""

from __future__ import annotations

import html
import logging
import threading
from typing import Any, BinaryIO, Protocol, cast

from boto3 import Session
from botocore.client import Config  # type: ignore[reportMissingTypeStubs]
from botocore.exceptions import ClientError  # type: ignore[reportMissingTypeStubs]

from .config import settings

LOGGER = logging.getLogger(__name__)

_ENSURED_BUCKETS: set[str] = set()
_ENSURE_LOCK = threading.Lock()


class S3ClientProtocol(Protocol):
    """Subset of S3 client methods used in this module."""

    def head_bucket(self, *args: Any, **kwargs: Any) -> Any: ...

    def create_bucket(self, *args: Any, **kwargs: Any) -> Any: ...

    def put_object(self, *args: Any, **kwargs: Any) -> Any: ...

    def get_object(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...

    def generate_presigned_url(self, *args: Any, **kwargs: Any) -> str: ...

    def delete_object(self, *args: Any, **kwargs: Any) -> Any: ...


class S3BucketError(Exception):
    """S3 bucket does not exist."""


class S3AccessError(Exception):
    """S3 access denied."""


def _normalize_endpoint(url: str | None) -> str | None:
    """Ensure endpoints include a scheme so boto3 accepts them."""
    if not url:
        return None
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"http://{url}"


def s3() -> S3ClientProtocol:
    """S3 client for AWS, or for a compatible store when S3_ENDPOINT is set."""
    session = Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return cast(
        S3ClientProtocol,
        session.client(
            "s3",
            endpoint_url=_normalize_endpoint(settings.S3_ENDPOINT),
            config=Config(signature_version="s3v4"),
        ),
    )


def ensure_bucket(bucket: str | None = None) -> None:
    """Ensure the bucket exists; create it on self-hosted stores."""
    target_bucket = bucket or settings.S3_BUCKET
    client = s3()
    try:
        client.head_bucket(Bucket=target_bucket)
        return
    except ClientError as e:
        response = cast(dict[str, Any], e.response)
        error_dict = cast(dict[str, Any], response.get("Error", {}))
        error_code: str = error_dict.get("Code", "")
        if error_code == "403":
            raise S3AccessError(f"Access denied to S3 bucket '{target_bucket}'.") from e
        if error_code != "404":
            raise
        if not settings.S3_ENDPOINT:
            raise S3BucketError(f"S3 bucket '{target_bucket}' does not exist.") from e

    LOGGER.info("Creating bucket %s", target_bucket)
    client.create_bucket(Bucket=target_bucket)


def ensure_bucket_once(bucket: str | None = None) -> None:
    """Ensure a bucket exists, but only once per process (per bucket name)."""
    target_bucket = bucket or settings.S3_BUCKET
    with _ENSURE_LOCK:
        if target_bucket in _ENSURED_BUCKETS:
            return
        ensure_bucket(bucket=target_bucket)
        _ENSURED_BUCKETS.add(target_bucket)


def put_object(
    key: str, data: bytes, content_type: str, *, bucket: str | None = None
) -> None:
    """Upload object to S3 bucket."""
    target_bucket = bucket or settings.S3_BUCKET
    ensure_bucket_once(target_bucket)
    s3().put_object(
        Bucket=target_bucket,
        Key=key,
        Body=data,
        ContentType=html.escape(content_type),
    )


def get_object(key: str, *, bucket: str | None = None) -> bytes:
    """Download object from S3 bucket."""
    target_bucket = bucket or settings.S3_BUCKET
    ensure_bucket_once(target_bucket)
    obj = s3().get_object(Bucket=target_bucket, Key=key)
    body = obj.get("Body")
    if body is None:
        raise S3AccessError(f"Object {key} has no body")
    return cast(BinaryIO, body).read()


def presign_get(
    key: str,
    expires: int | None = None,
    bucket: str | None = None,
    response_disposition: str = "inline",
) -> str:
    """Generate presigned GET URL for downloading from S3."""
    target_bucket = bucket or settings.S3_BUCKET
    ensure_bucket_once(target_bucket)
    return s3().generate_presigned_url(
        "get_object",
        Params={
            "Bucket": target_bucket,
            "Key": key,
            "ResponseContentDisposition": response_disposition,
        },
        ExpiresIn=expires or settings.PRESIGN_EXPIRES_SECONDS,
        HttpMethod="GET",
    )


def delete_object(key: str, *, bucket: str | None = None) -> None:
    """Delete object from S3 bucket. Missing keys are ignored."""
    target_bucket = bucket or settings.S3_BUCKET
    ensure_bucket_once(target_bucket)
    try:
        s3().delete_object(Bucket=target_bucket, Key=key)
    except ClientError as e:
        response = cast(dict[str, Any], e.response)
        error_dict = cast(dict[str, Any], response.get("Error", {}))
        if error_dict.get("Code") not in {"NoSuchKey", "404"}:
            LOGGER.error("Failed to delete S3 object: %s", key)
            raise

"""
S3-compatible object storage used as the remote export target.

Works against AWS S3 and against MinIO (set `endpoint_url`). Every botocore
failure is surfaced as ObjectStorageError; nothing is retried here beyond
what botocore itself does.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import BinaryIO, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ObjectStorageError
from .storage import atomic_write

logger = logging.getLogger(__name__)

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}
_INVALID_BUCKET_CHARS = re.compile(r"[^a-z0-9.-]+")


def bucket_name_for(namespace: str) -> str:
    """
    Derive a valid bucket name from a document namespace: lowercase, only
    [a-z0-9.-], 3 to 63 characters, starting and ending alphanumeric.
    """
    name = _INVALID_BUCKET_CHARS.sub("-", namespace.lower()).strip(".-")
    name = name[:63].rstrip(".-")
    if len(name) < 3:
        name = (name + "-stp").lstrip(".-")
    return name


class S3ObjectStorage:
    def __init__(self, client, region: str = "us-east-1"):
        self.client = client
        self.region = region

    @classmethod
    def from_config(
        cls,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = "us-east-1",
    ) -> "S3ObjectStorage":
        logger.info("Connecting to object storage at %s (region: %s)", endpoint_url or "AWS", region)
        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        return cls(client, region=region)

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.client.head_bucket(Bucket=bucket)
            return True
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_BUCKET_CODES:
                return False
            raise ObjectStorageError(f"Failed to check bucket {bucket}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStorageError(f"Failed to check bucket {bucket}: {exc}") from exc

    def make_bucket(self, bucket: str) -> None:
        kwargs = {"Bucket": bucket}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStorageError(f"Failed to create bucket {bucket}: {exc}") from exc
        logger.info("Created bucket %s", bucket)

    def ensure_bucket(self, bucket: str) -> bool:
        """Create `bucket` if missing. Returns True when it was created."""
        if self.bucket_exists(bucket):
            logger.debug("Bucket %s already exists", bucket)
            return False
        self.make_bucket(bucket)
        return True

    def list_objects(self, bucket: str, prefix: str = "") -> List[str]:
        names: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                names.extend(item["Key"] for item in page.get("Contents", []))
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStorageError(f"Failed to list {bucket}/{prefix}: {exc}") from exc
        return names

    def upload_fileobj(self, bucket: str, object_name: str, fileobj: BinaryIO) -> None:
        start = time.perf_counter()
        try:
            self.client.upload_fileobj(fileobj, bucket, object_name)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStorageError(f"Failed to upload s3://{bucket}/{object_name}: {exc}") from exc
        logger.info("Uploaded s3://%s/%s in %.2fs", bucket, object_name, time.perf_counter() - start)

    def download_file(self, bucket: str, object_name: str, path: Path) -> Path:
        path = Path(path)
        start = time.perf_counter()
        try:
            with atomic_write(path) as handle:
                self.client.download_fileobj(bucket, object_name, handle)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStorageError(f"Failed to download s3://{bucket}/{object_name}: {exc}") from exc
        logger.info(
            "Downloaded s3://%s/%s to %s in %.2fs",
            bucket,
            object_name,
            path,
            time.perf_counter() - start,
        )
        return path

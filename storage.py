"""
Blob stores for generated assets.

Both stores expose ``put(path, data, content_type) -> public_url``. The
local store writes under ``MEDIA_DIR`` and is served by the ``/media``
route; the S3 store uploads with boto3.
"""

import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import (
    BLOB_STORE,
    MEDIA_DIR,
    PUBLIC_BASE_URL,
    S3_BUCKET_NAME,
    S3_KEY_PREFIX,
    S3_PUBLIC_BASE_URL,
    S3_REGION,
)
from errors import ConfigurationError, ErrorKind, UpstreamError, classify_status


class LocalBlobStore:
    def __init__(self, root: str = MEDIA_DIR, base_url: str = PUBLIC_BASE_URL):
        self.root = os.path.abspath(root)
        self.base_url = base_url.rstrip("/")

    def resolve(self, path: str) -> str:
        """Absolute filesystem path for ``path``; refuses anything outside the root."""
        full = os.path.abspath(os.path.join(self.root, path))
        if os.path.commonpath([full, self.root]) != self.root:
            raise ValueError(f"Path escapes media root: {path}")
        return full

    def put(self, path: str, data: bytes, content_type: str) -> str:
        full = self.resolve(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)
        logging.info(f"💾 Stored {len(data)} bytes ({content_type}) at {full}")
        return f"{self.base_url}/media/{path}"


class S3BlobStore:
    def __init__(self, bucket: str = S3_BUCKET_NAME, region: str = S3_REGION, prefix: str = S3_KEY_PREFIX,
                 public_base_url: str = S3_PUBLIC_BASE_URL, client=None):
        if not bucket:
            raise ConfigurationError("Missing env: S3_BUCKET_NAME")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.public_base_url = public_base_url or f"https://{bucket}.s3.{region}.amazonaws.com"
        self.client = client or boto3.client("s3", region_name=region)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        key = f"{self.prefix}/{path}" if self.prefix else path
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000, immutable",
            )
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 500)
            raise UpstreamError(f"S3 upload failed: {status} {e}", kind=classify_status(status), status_code=status) from e
        except BotoCoreError as e:
            raise UpstreamError(f"S3 transport error: {e}", kind=ErrorKind.TRANSPORT) from e
        logging.info(f"☁️ Uploaded s3://{self.bucket}/{key}")
        return f"{self.public_base_url}/{key}"


def build_blob_store(kind: str = BLOB_STORE):
    if kind == "s3":
        return S3BlobStore()
    if kind == "local":
        return LocalBlobStore()
    raise ConfigurationError(f"Unknown BLOB_STORE: {kind}")

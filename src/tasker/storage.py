"""
Object storage for todo attachments.

Two backends implement the ObjectStore contract:
- InMemoryObjectStore: process-local dict, default for development and tests
- S3ObjectStore: AWS S3 (or any S3-compatible endpoint) through boto3

Content type is sniffed from the leading bytes of the upload on our side
before the object is written, never taken from the client.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from threading import RLock
from typing import BinaryIO, Dict, Optional, Tuple

import boto3
import filetype
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StorageError
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Number of leading bytes inspected for content-type detection
SNIFF_LENGTH = 512

DEFAULT_CONTENT_TYPE = "application/octet-stream"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


# PUBLIC_INTERFACE
def detect_content_type(head: bytes) -> str:
    """
    Detect a MIME type from the first bytes of a file.

    Known binary signatures are recognised by ``filetype``. Anything else that
    decodes as UTF-8 without NUL bytes is treated as plain text.
    """
    kind = filetype.guess(head)
    if kind is not None:
        return kind.mime
    if not head:
        return TEXT_CONTENT_TYPE
    if b"\x00" in head:
        return DEFAULT_CONTENT_TYPE
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte character may be cut at the sniff boundary
        if exc.start < len(head) - 3:
            return DEFAULT_CONTENT_TYPE
    return TEXT_CONTENT_TYPE


# PUBLIC_INTERFACE
class ObjectStore(ABC):
    """Abstract contract for attachment object storage."""

    @abstractmethod
    def upload(self, bucket: str, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        """Write the stream under key and return the key."""

    @abstractmethod
    def presigned_download_url(self, bucket: str, key: str, ttl: timedelta) -> str:
        """Return a time-limited URL granting read access to the object."""

    @abstractmethod
    def delete(self, bucket: str, key: str) -> None:
        """Delete the object. Deleting a missing object is not an error."""


class InMemoryObjectStore(ObjectStore):
    """
    Thread-safe in-memory object store suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._objects: Dict[Tuple[str, str], Tuple[bytes, Optional[str]]] = {}

    def upload(self, bucket: str, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        data = stream.read()
        with self._lock:
            self._objects[(bucket, key)] = (data, content_type)
        return key

    def presigned_download_url(self, bucket: str, key: str, ttl: timedelta) -> str:
        with self._lock:
            if (bucket, key) not in self._objects:
                raise StorageError(f"object not found: {key}")
        return f"memory://{bucket}/{key}?expires_in={int(ttl.total_seconds())}"

    def delete(self, bucket: str, key: str) -> None:
        with self._lock:
            self._objects.pop((bucket, key), None)

    def get(self, bucket: str, key: str) -> Optional[Tuple[bytes, Optional[str]]]:
        """Return (data, content_type) for a stored object, or None."""
        with self._lock:
            return self._objects.get((bucket, key))


class S3ObjectStore(ObjectStore):
    """
    S3-backed object store. The boto3 client is created lazily unless one is
    passed in (tests pass a stubbed client).
    """

    def __init__(self, settings: Optional[Settings] = None, client=None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def client(self):
        """Lazy initialization of the S3 client."""
        if self._client is None:
            s = self._settings
            self._client = boto3.client(
                "s3",
                region_name=s.aws_region,
                aws_access_key_id=s.aws_access_key_id,
                aws_secret_access_key=s.aws_secret_access_key,
                endpoint_url=s.aws_endpoint_url,
            )
        return self._client

    def upload(self, bucket: str, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        extra_args = {"ContentType": content_type} if content_type else None
        try:
            self.client.upload_fileobj(stream, bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to upload file to S3: {e}") from e
        return key

    def presigned_download_url(self, bucket: str, key: str, ttl: timedelta) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(ttl.total_seconds()),
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to generate presigned URL: {e}") from e

    def delete(self, bucket: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to delete file: {e}") from e


# PUBLIC_INTERFACE
def get_object_store(settings: Optional[Settings] = None) -> ObjectStore:
    """
    Factory to return the configured object store based on settings.
    - memory: InMemoryObjectStore
    - s3: S3ObjectStore
    """
    settings = settings or get_settings()
    if settings.storage_backend == "s3":
        return S3ObjectStore(settings)
    logger.warning("S3 not configured. Using in-memory storage for attachments.")
    return InMemoryObjectStore()

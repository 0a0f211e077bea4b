"""Blob storage for QR codes and payout proofs: local disk or an S3 bucket."""
from __future__ import annotations

import base64
import binascii
import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ledgerbook.config import settings

LOGGER = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)

IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}
DOCUMENT_TYPES = {**IMAGE_TYPES, "application/pdf": "pdf"}


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    handle: str
    url: str
    size: int
    content_type: str


def decode_data_url(value: str, allowed_types: dict[str, str]) -> tuple[bytes, str]:
    matches = DATA_URL_PATTERN.match(value.strip())
    if not matches:
        raise StorageError("Invalid file format. Expected data URL.")
    mime_type, payload = matches.group(1), matches.group(2)
    if mime_type not in allowed_types:
        allowed = ", ".join(sorted(allowed_types))
        raise StorageError(f"Invalid file type. Allowed types: {allowed}")
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise StorageError("File content is not valid base64") from exc
    if not data:
        raise StorageError("File is empty")
    return data, mime_type


def is_plain_filename(value: str) -> bool:
    return bool(value) and "/" not in value and "\\" not in value and ".." not in value


def _object_name(prefix: str, content_type: str) -> str:
    extension = DOCUMENT_TYPES.get(content_type, "bin")
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4()}.{extension}"


class LocalStorage:
    def __init__(self, root: str, public_prefix: str = "/uploads") -> None:
        self.root = Path(root)
        self._public_prefix = public_prefix.rstrip("/")

    def store(
        self, data: bytes, content_type: str, prefix: str = "file", folder: str = ""
    ) -> StoredObject:
        # Local files are served flat from /uploads/<name>; folders only apply to S3.
        name = _object_name(prefix, content_type)
        self.root.mkdir(parents=True, exist_ok=True)
        try:
            (self.root / name).write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to save file: {exc}") from exc
        return StoredObject(
            handle=name,
            url=f"{self._public_prefix}/{name}",
            size=len(data),
            content_type=content_type,
        )

    def delete(self, handle: str) -> bool:
        if not handle or not is_plain_filename(handle):
            return False
        try:
            (self.root / handle).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            LOGGER.warning("Failed to delete %s: %s", handle, exc)
            return False
        return True

    def path_for(self, handle: str) -> Optional[Path]:
        if not is_plain_filename(handle):
            return None
        return self.root / handle


class S3Storage:
    """S3-compatible bucket (Cloudflare R2 in production)."""

    def __init__(
        self,
        bucket: str,
        endpoint: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        public_url: str = "",
        client=None,
    ) -> None:
        if not bucket:
            raise StorageError("S3 bucket not configured")
        self.bucket = bucket
        self._endpoint = endpoint
        self._public_url = public_url
        if client is None:
            if not (endpoint and access_key_id and secret_access_key):
                raise StorageError(
                    "S3 client not initialized. Check R2 environment variables."
                )
            client = boto3.client(
                "s3",
                endpoint_url=endpoint,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name="auto",
            )
        self.client = client

    def store(
        self, data: bytes, content_type: str, prefix: str = "file", folder: str = ""
    ) -> StoredObject:
        key = f"{folder}{_object_name(prefix, content_type)}"
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload file: {exc}") from exc
        return StoredObject(
            handle=key, url=self.url_for(key), size=len(data), content_type=content_type
        )

    def delete(self, handle: str) -> bool:
        if not handle:
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=handle)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "NoSuchKey":
                return True
            raise StorageError(f"Failed to delete file: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to delete file: {exc}") from exc
        return True

    def url_for(self, key: str) -> str:
        if self._public_url:
            return f"{self._public_url.rstrip('/')}/{key}"
        account = re.match(r"https?://([^.]+)\.r2\.cloudflarestorage\.com", self._endpoint)
        if account:
            return f"https://{self.bucket}.{account.group(1)}.r2.cloudflarestorage.com/{key}"
        return f"{self._endpoint.rstrip('/')}/{self.bucket}/{key}"


def build_storage():
    if settings.storage_backend.lower() in ("s3", "r2"):
        return S3Storage(
            bucket=settings.r2_bucket_name,
            endpoint=settings.r2_endpoint,
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            public_url=settings.r2_public_url,
        )
    return LocalStorage(settings.upload_dir)

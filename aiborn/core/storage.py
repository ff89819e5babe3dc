"""
Receipt file storage. A stored file is addressed by a reference string
(`/uploads/receipts/<name>` locally, `s3://bucket/key` on S3).
"""
import logging
import os
import secrets
from pathlib import Path

from aiborn.core.config import Settings
from aiborn.core.errors import ConfigurationError

logger = logging.getLogger("aiborn.storage")

LOCAL_PREFIX = "/uploads/"


def secure_filename(user_id: str, extension: str) -> str:
    return f"{user_id[:8]}-{secrets.token_hex(12)}{extension}"


class LocalStorage:
    def __init__(self, root: str):
        self.root = Path(root)

    def save(self, data: bytes, filename: str, folder: str = "receipts") -> str:
        target_dir = self.root / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / filename).write_bytes(data)
        return f"{LOCAL_PREFIX}{folder}/{filename}"

    def _path(self, ref: str) -> Path:
        if not ref.startswith(LOCAL_PREFIX):
            raise FileNotFoundError(f"not a local file reference: {ref}")
        relative = ref[len(LOCAL_PREFIX):]
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            raise FileNotFoundError(f"reference escapes upload root: {ref}")
        return path

    def read(self, ref: str) -> bytes:
        return self._path(ref).read_bytes()

    def delete(self, ref: str) -> None:
        self._path(ref).unlink(missing_ok=True)


class S3Storage:
    def __init__(self, bucket: str, region: str | None = None, client=None):
        if client is None:
            import boto3

            client = boto3.client("s3", region_name=region)
        self.bucket = bucket
        self.client = client

    def save(self, data: bytes, filename: str, folder: str = "receipts") -> str:
        key = f"{folder}/{filename}"
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        return f"s3://{self.bucket}/{key}"

    def _key(self, ref: str) -> str:
        prefix = f"s3://{self.bucket}/"
        if not ref.startswith(prefix):
            raise FileNotFoundError(f"not an object in {self.bucket}: {ref}")
        return ref[len(prefix):]

    def read(self, ref: str) -> bytes:
        obj = self.client.get_object(Bucket=self.bucket, Key=self._key(ref))
        return obj["Body"].read()

    def delete(self, ref: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=self._key(ref))


def build_storage(settings: Settings):
    if settings.STORAGE_BACKEND == "s3":
        if not settings.S3_BUCKET:
            raise ConfigurationError("S3_BUCKET is not configured", code="STORAGE_NOT_CONFIGURED")
        return S3Storage(settings.S3_BUCKET, settings.S3_REGION)
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    return LocalStorage(settings.UPLOAD_DIR)

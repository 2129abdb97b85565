import os
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import UploadError

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "png", "image/png"),
    (b"\xff\xd8\xff", "jpg", "image/jpeg"),
)


def make_key(*parts: str) -> str:
    return "/".join([p.strip("/") for p in parts])


def sniff_image_type(data: bytes) -> tuple[str, str]:
    """Return ``(extension, content_type)`` for image bytes, defaulting to PNG."""
    for magic, ext, content_type in _IMAGE_SIGNATURES:
        if data.startswith(magic):
            return ext, content_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp", "image/webp"
    return "png", "image/png"


def object_path(user_id: str, job_id: str, ext: str) -> str:
    return make_key(user_id, f"{job_id}.{ext}")


class S3BlobStore:
    """S3-compatible object storage (Supabase Storage, R2, MinIO...)."""

    def __init__(self, client, bucket: str, public_base_url: str):
        self._s3 = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3BlobStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4"),
        )
        base = settings.blob_public_base_url or make_key(
            settings.s3_endpoint or "", settings.s3_bucket
        )
        return cls(client, settings.s3_bucket, base)

    def put(self, path: str, data: bytes, content_type: str) -> None:
        # put_object replaces an existing key, so a retry with the same path is safe.
        try:
            self._s3.put_object(
                Bucket=self.bucket, Key=path, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"upload of {path} failed: {e}") from e

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{path}"


class LocalBlobStore:
    """Directory-backed storage for development, served under ``/assets``."""

    def __init__(self, root: str, public_base_url: Optional[str] = None):
        self.root = root
        self.public_base_url = (public_base_url or "/assets").rstrip("/")
        os.makedirs(root, exist_ok=True)

    def put(self, path: str, data: bytes, content_type: str) -> None:
        full = os.path.join(self.root, path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as f:
                f.write(data)
        except OSError as e:
            raise UploadError(f"upload of {path} failed: {e}") from e

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{path}"


def make_blob_store(settings: Settings):
    if settings.s3_configured:
        return S3BlobStore.from_settings(settings)
    return LocalBlobStore(
        os.path.join(settings.static_dir, "assets"), settings.blob_public_base_url
    )

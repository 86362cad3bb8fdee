"""
S3/R2 object storage for source uploads and generated media.

Objects are stored under:
  images/{user_id}/{uuid}.{ext}
  videos/{user_id}/{uuid}.{ext}

Uploads go through boto3 against the R2 S3 endpoint (run in a worker thread);
downloads of public URLs use httpx.
"""

import os
import uuid
import asyncio
import logging
import mimetypes
from typing import Optional

import boto3
import httpx
from botocore.config import Config as BotoConfig

from .errors import StorageError
from .models import MediaKind

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")

DEFAULT_CONTENT_TYPES = {
    MediaKind.IMAGE: "image/png",
    MediaKind.VIDEO: "video/mp4",
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def object_key(kind: MediaKind, user_id: str, content_type: str) -> str:
    """Generate a fresh S3 key for an object of the given kind."""
    ext = mimetypes.guess_extension(content_type) or ""
    return f"{kind.value}s/{user_id}/{uuid.uuid4().hex}{ext}"


def _guess_content_type(path: str, kind: MediaKind) -> str:
    guessed, _ = mimetypes.guess_type(path)
    return guessed or DEFAULT_CONTENT_TYPES[kind]


class ObjectStorage:
    """Thin wrapper over an S3-compatible client that returns public URLs."""

    def __init__(
        self,
        s3_client,
        bucket: str,
        public_url: str,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._s3 = s3_client
        self._bucket = bucket
        self._public_url = public_url.rstrip("/")
        self._http = http

    @classmethod
    def from_env(cls, http: Optional[httpx.AsyncClient] = None) -> "ObjectStorage":
        if not R2_ACCOUNT_ID or not R2_ACCESS_KEY_ID or not R2_SECRET_ACCESS_KEY:
            raise RuntimeError("R2_ACCOUNT_ID, R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY must be set")
        s3 = boto3.client(
            "s3",
            endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
            aws_access_key_id=R2_ACCESS_KEY_ID,
            aws_secret_access_key=R2_SECRET_ACCESS_KEY,
            config=BotoConfig(signature_version="s3v4"),
            region_name="auto",
        )
        return cls(s3, R2_BUCKET_NAME, R2_PUBLIC_URL, http=http)

    def public_url(self, key: str) -> str:
        return f"{self._public_url}/{key}"

    async def upload_bytes(
        self,
        data: bytes,
        content_type: str,
        kind: MediaKind,
        user_id: str,
    ) -> str:
        """Upload a buffer and return its public URL."""
        key = object_key(kind, user_id, content_type)
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            logger.error(f"R2 upload failed for key={key}: {e}")
            raise StorageError(f"Upload to object storage failed: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded to R2: {url}")
        return url

    async def upload_file(
        self,
        path: str,
        kind: MediaKind,
        user_id: str,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload a local file and return its public URL."""
        content_type = content_type or _guess_content_type(path, kind)
        key = object_key(kind, user_id, content_type)
        try:
            await asyncio.to_thread(
                self._s3.upload_file,
                path,
                self._bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except Exception as e:
            logger.error(f"R2 upload failed for {path} (key={key}): {e}")
            raise StorageError(f"Upload to object storage failed: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded {kind.value} to R2: {url}")
        return url

    async def download_bytes(self, url: str) -> bytes:
        """Download an object from a public URL and return raw bytes."""
        try:
            if self._http is not None:
                resp = await self._http.get(url, follow_redirects=True)
                resp.raise_for_status()
                return resp.content
            async with httpx.AsyncClient(timeout=30) as client:
                resp = await client.get(url, follow_redirects=True)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as e:
            raise StorageError(f"Could not download {url}: {e}") from e

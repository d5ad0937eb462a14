import asyncio
import logging
import os
import ssl
from typing import List, Optional
from urllib.parse import urlparse

import aiohttp
import certifi


GENERATED_PREFIX = "generated/"
GENERATED_MARKER = "/generated/"


class BlobStorageError(Exception):
    pass


def is_generated_asset(image_url: Optional[str]) -> bool:
    """Generated images live under ``generated/`` in the bucket; external images never do."""
    if not image_url:
        return False
    return GENERATED_MARKER in (urlparse(image_url).path or "")


class BlobStorage:
    """
    Supabase Storage over its REST API.

    Uploads return the public URL, or None when storage is not configured.
    """

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        api_key: Optional[str] = None,
        bucket: Optional[str] = None,
    ):
        self.supabase_url = (supabase_url or os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("SUPABASE_KEY") or ""
        self.bucket = bucket or os.getenv("STORAGE_BUCKET") or "urbanhub_assets"
        self.session: Optional[aiohttp.ClientSession] = None
        self.timeout = aiohttp.ClientTimeout(total=30)
        self.logger = logging.getLogger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self.supabase_url and self.api_key and "placeholder" not in self.supabase_url)

    def _headers(self, content_type: Optional[str] = None) -> dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self.session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)
        return self.session

    async def close_session(self):
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    def public_url(self, path: str) -> str:
        return f"{self.supabase_url}/storage/v1/object/public/{self.bucket}/{path}"

    def path_from_public_url(self, image_url: str) -> Optional[str]:
        """Inverse of ``public_url`` for objects in this bucket."""
        marker = f"/storage/v1/object/public/{self.bucket}/"
        path = urlparse(image_url).path
        if marker not in path:
            return None
        return path.split(marker, 1)[1] or None

    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> Optional[str]:
        """Upload (upsert) ``data`` at ``path``. Returns the public URL."""
        if not self.configured:
            self.logger.debug("Blob storage not configured, skipping upload")
            return None

        upload_url = f"{self.supabase_url}/storage/v1/object/{self.bucket}/{path}"
        headers = self._headers(content_type)
        headers["x-upsert"] = "true"
        try:
            session = await self._get_session()
            async with session.post(upload_url, headers=headers, data=data) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise BlobStorageError(f"Upload failed ({response.status}): {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BlobStorageError(f"Upload failed: {e}") from e

        public_url = self.public_url(path)
        self.logger.info(f"✅ Image uploaded: {public_url}")
        return public_url

    async def delete(self, paths: List[str]) -> None:
        """Remove objects by path in one request."""
        if not paths or not self.configured:
            return
        delete_url = f"{self.supabase_url}/storage/v1/object/{self.bucket}"
        try:
            session = await self._get_session()
            async with session.delete(
                delete_url,
                headers=self._headers("application/json"),
                json={"prefixes": paths},
            ) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise BlobStorageError(f"Delete failed ({response.status}): {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BlobStorageError(f"Delete failed: {e}") from e
        self.logger.info(f"🧹 Deleted {len(paths)} stored image(s)")

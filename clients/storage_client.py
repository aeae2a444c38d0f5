"""Firebase Storage access plus plain HTTP fetching of stored media."""
import asyncio
import logging
import re
from datetime import timedelta
from typing import List, Optional

import httpx

from aiam.config import settings
from aiam.errors import StorageFetchFailed

logger = logging.getLogger("aiam.storage")

_GS_URI = re.compile(r"^gs://([^/]+)/(.+)$")


def is_storage_uri(uri: str) -> bool:
    return bool(uri) and uri.startswith("gs://")


def blob_path(uri: str) -> str:
    """``gs://bucket/users/x/a.mp3`` -> ``users/x/a.mp3``."""
    match = _GS_URI.match(uri or "")
    if not match:
        raise ValueError(f"Not a storage URI: {uri!r}")
    return match.group(2)


class StorageClient:
    """Client for the default Firebase Storage bucket."""

    def __init__(self, bucket=None, timeout: float = settings.FETCH_TIMEOUT):
        self._bucket = bucket
        self.client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @property
    def bucket(self):
        if self._bucket is None:
            from aiam.database import get_bucket
            self._bucket = get_bucket()
        return self._bucket

    def _uri(self, path: str) -> str:
        return f"gs://{self.bucket.name}/{path}"

    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store ``data`` at ``path`` and return its ``gs://`` URI."""
        blob = self.bucket.blob(path)
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        logger.debug("Uploaded %s (%d bytes)", path, len(data))
        return self._uri(path)

    async def resolve_to_fetchable_url(self, uri: str, ttl_seconds: int = settings.SIGNED_URL_TTL) -> str:
        """Turn a ``gs://`` URI into a signed HTTPS URL; HTTP(S) URLs pass through."""
        if not is_storage_uri(uri):
            return uri
        try:
            blob = self.bucket.blob(blob_path(uri))
            return await asyncio.to_thread(
                blob.generate_signed_url,
                expiration=timedelta(seconds=max(ttl_seconds, 900)),
                method="GET",
                version="v4",
            )
        except Exception as e:
            raise StorageFetchFailed(f"Failed to resolve storage URL: {e}") from e

    async def list(self, prefix: str, max_results: Optional[int] = None) -> List[str]:
        def _list():
            blobs = self.bucket.list_blobs(prefix=prefix, max_results=max_results)
            return [self._uri(b.name) for b in blobs if not b.name.endswith("/")]

        return await asyncio.to_thread(_list)

    async def download(self, uri: str) -> bytes:
        if not is_storage_uri(uri):
            return await self.fetch(uri)
        try:
            blob = self.bucket.blob(blob_path(uri))
            return await asyncio.to_thread(blob.download_as_bytes)
        except Exception as e:
            raise StorageFetchFailed(f"Failed to download {uri}: {e}") from e

    async def fetch(self, url: str) -> bytes:
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            raise StorageFetchFailed(f"Failed to fetch audio: {e}") from e

    async def aclose(self):
        await self.client.aclose()

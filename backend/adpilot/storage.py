"""
Creative asset storage — where generated images and videos live.
Deployment reads raw bytes for Google asset uploads and public URLs for Facebook creatives.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from adpilot.config import Settings, get_settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """An asset could not be read from storage."""
    pass


class AssetStorage(Protocol):
    async def get_object(self, path: str) -> bytes:
        ...

    def url_for(self, path: str) -> str:
        ...


def _clean_path(path: str) -> str:
    cleaned = (path or "").strip().lstrip("/")
    if not cleaned or ".." in Path(cleaned).parts:
        raise StorageError(f"Invalid asset path: {path!r}")
    return cleaned


class LocalAssetStorage:
    """Assets on the local filesystem under ``root``; URLs served from ``base_url`` when set."""

    def __init__(self, root: str, base_url: str = ""):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        return self.root / _clean_path(path)

    async def get_object(self, path: str) -> bytes:
        file_path = self._resolve(path)
        try:
            return await asyncio.to_thread(file_path.read_bytes)
        except OSError as e:
            raise StorageError(f"Cannot read asset {path!r}: {e}") from e

    def url_for(self, path: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{quote(_clean_path(path))}"
        return self._resolve(path).as_uri()


class HttpAssetStorage:
    """Assets behind an HTTP(S) base URL (object storage bucket or CDN)."""

    def __init__(self, base_url: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{quote(_clean_path(path))}"

    async def get_object(self, path: str) -> bytes:
        url = self.url_for(path)
        try:
            if self._client is not None:
                resp = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(url)
            resp.raise_for_status()
            return resp.content
        except httpx.HTTPError as e:
            raise StorageError(f"Cannot fetch asset {url}: {e}") from e


def create_asset_storage(settings: Optional[Settings] = None) -> AssetStorage:
    """HTTP storage when only a base URL is configured, local filesystem otherwise."""
    settings = settings or get_settings()
    if settings.asset_base_url and not settings.asset_storage_root:
        return HttpAssetStorage(settings.asset_base_url, timeout=settings.platform_timeout_seconds)
    return LocalAssetStorage(settings.asset_storage_root, base_url=settings.asset_base_url)

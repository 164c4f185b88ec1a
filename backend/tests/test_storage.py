"""
Tests for creative asset storage backends.
"""

import httpx
import pytest

from adpilot.config import Settings
from adpilot.storage import (
    HttpAssetStorage, LocalAssetStorage, StorageError, create_asset_storage,
)


@pytest.mark.anyio
async def test_local_storage_reads_bytes(tmp_path):
    (tmp_path / "images").mkdir()
    (tmp_path / "images" / "hero.png").write_bytes(b"png-bytes")
    storage = LocalAssetStorage(str(tmp_path), base_url="https://cdn.test/assets/")

    assert await storage.get_object("images/hero.png") == b"png-bytes"
    assert storage.url_for("images/hero.png") == "https://cdn.test/assets/images/hero.png"


@pytest.mark.anyio
async def test_local_storage_missing_file(tmp_path):
    storage = LocalAssetStorage(str(tmp_path))
    with pytest.raises(StorageError):
        await storage.get_object("images/missing.png")


@pytest.mark.anyio
async def test_local_storage_rejects_traversal(tmp_path):
    storage = LocalAssetStorage(str(tmp_path))
    with pytest.raises(StorageError):
        await storage.get_object("../etc/passwd")


def test_local_url_without_base_is_file_uri(tmp_path):
    storage = LocalAssetStorage(str(tmp_path))
    assert storage.url_for("a.png").startswith("file://")


@pytest.mark.anyio
async def test_http_storage_fetches_object():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.raw_path == b"/bucket/videos/spot%201.mp4":
            return httpx.Response(200, content=b"video")
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        storage = HttpAssetStorage("https://storage.test/bucket", client=http)
        assert storage.url_for("videos/spot 1.mp4") == "https://storage.test/bucket/videos/spot%201.mp4"
        assert await storage.get_object("videos/spot 1.mp4") == b"video"
        with pytest.raises(StorageError):
            await storage.get_object("videos/other.mp4")


def test_factory_picks_backend(tmp_path):
    local = create_asset_storage(Settings(asset_storage_root=str(tmp_path), asset_base_url=""))
    assert isinstance(local, LocalAssetStorage)
    remote = create_asset_storage(Settings(asset_storage_root="", asset_base_url="https://storage.test/bucket"))
    assert isinstance(remote, HttpAssetStorage)

"""Tests for object storage and the error taxonomy."""

from unittest.mock import MagicMock

import httpx
import pytest

from showcase.pipeline import errors
from showcase.pipeline.models import MediaKind
from showcase.pipeline.storage import ObjectStorage, object_key


class TestObjectStorage:

    def test_object_key_layout(self):
        key = object_key(MediaKind.VIDEO, "u1", "video/mp4")
        assert key.startswith("videos/u1/")
        assert key.endswith(".mp4")

    @pytest.mark.asyncio
    async def test_upload_bytes_returns_public_url(self):
        s3 = MagicMock()
        storage = ObjectStorage(s3, "assets", "https://cdn.example.com/")

        url = await storage.upload_bytes(b"png", "image/png", MediaKind.IMAGE, "u1")

        kwargs = s3.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "assets"
        assert kwargs["ContentType"] == "image/png"
        assert url == f"https://cdn.example.com/{kwargs['Key']}"

    @pytest.mark.asyncio
    async def test_upload_file_failure_is_storage_error(self, temp_dir):
        path = temp_dir / "clip.mp4"
        path.write_bytes(b"mp4")
        s3 = MagicMock()
        s3.upload_file.side_effect = RuntimeError("network down")
        storage = ObjectStorage(s3, "assets", "https://cdn.example.com")

        with pytest.raises(errors.StorageError):
            await storage.upload_file(str(path), MediaKind.VIDEO, "u1")

    @pytest.mark.asyncio
    async def test_download_bytes(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, content=b"img"))
        async with httpx.AsyncClient(transport=transport) as http:
            storage = ObjectStorage(MagicMock(), "assets", "https://cdn", http=http)
            assert await storage.download_bytes("https://cdn/images/u1/x.png") == b"img"

    @pytest.mark.asyncio
    async def test_download_failure_is_storage_error(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(404))
        async with httpx.AsyncClient(transport=transport) as http:
            storage = ObjectStorage(MagicMock(), "assets", "https://cdn", http=http)
            with pytest.raises(errors.StorageError):
                await storage.download_bytes("https://cdn/missing.png")


@pytest.mark.parametrize("cls,status", [
    (errors.BadRequest, 400),
    (errors.Unauthorized, 401),
    (errors.PaymentRequired, 402),
    (errors.InsufficientCredits, 402),
    (errors.NotFound, 404),
    (errors.Conflict, 409),
    (errors.PreconditionFailed, 412),
    (errors.UpstreamError, 502),
    (errors.GenerationTimedOut, 504),
    (errors.StorageError, 500),
    (errors.InternalError, 500),
])
def test_error_status_codes(cls, status):
    err = cls("message")
    assert err.status_code == status
    assert err.message == "message"
    assert isinstance(err, errors.PipelineError)

"""Integration tests: real ChunkedUploader and UploadClient against the server app."""

import httpx
import pytest

from cli.chunked_uploader import ChunkedUploader
from cli.upload_client import UploadClient, UploadClientError
from server.main import create_app


@pytest.fixture
def upload_api(upload_settings):
    """UploadClient wired to the app through httpx.ASGITransport."""
    app = create_app(upload_settings)
    return UploadClient(
        "http://testserver",
        transport=httpx.ASGITransport(app=app),
        retry_backoff_multiplier=0,
    )


@pytest.mark.asyncio
async def test_parallel_upload_end_to_end(upload_api, upload_settings, sample_file):
    """Many workers racing on one session still assemble exactly once."""
    async with upload_api as client:
        uploader = ChunkedUploader(client, str(sample_file), chunk_size=1024, parallel_uploads=8,
                                   folder_path="incoming")
        file_id = await uploader.upload()

    assert file_id == "incoming/sample.bin"
    assert (upload_settings.upload_dir / "incoming" / "sample.bin").read_bytes() == sample_file.read_bytes()
    assert list(upload_settings.temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_encrypted_upload_end_to_end(upload_api, upload_settings, sample_file, fast_kdf):
    async with upload_api as client:
        uploader = ChunkedUploader(client, str(sample_file), chunk_size=4096, encrypt=True, password="secret")
        file_id = await uploader.upload()

    assert file_id == "sample.bin"
    assert (upload_settings.upload_dir / "sample.bin").read_bytes() == sample_file.read_bytes()


@pytest.mark.asyncio
async def test_resume_after_interruption(upload_api, upload_settings, sample_file):
    """A second uploader sends only the chunks the server reports missing."""
    data = sample_file.read_bytes()

    async with upload_api as client:
        await client.init_upload("resume-1", "sample.bin", len(data), 3, chunk_size=4096)
        await client.upload_chunk("resume-1", 0, 3, "sample.bin", data[:4096])
        await client.upload_chunk("resume-1", 2, 3, "sample.bin", data[8192:])

        status = await client.get_status("resume-1")
        assert status["uploadedChunks"] == [0, 2]

        events = []
        uploader = ChunkedUploader(
            client,
            str(sample_file),
            upload_id="resume-1",
            chunk_size=status["chunkSize"],
            already_uploaded=status["uploadedChunks"],
            on_progress=events.append,
        )
        file_id = await uploader.upload()

    assert file_id == "sample.bin"
    assert events[0].chunks_completed == 2
    assert (upload_settings.upload_dir / "sample.bin").read_bytes() == data


@pytest.mark.asyncio
async def test_list_and_cancel_session(upload_api, upload_settings):
    async with upload_api as client:
        await client.init_upload("pending-1", "a.bin", 10, 1)
        sessions = await client.list_sessions()
        assert [s["uploadId"] for s in sessions] == ["pending-1"]

        await client.delete_upload("pending-1")
        assert await client.get_status("pending-1") == {"exists": False}

        with pytest.raises(UploadClientError) as exc_info:
            await client.delete_upload("pending-1")
        assert exc_info.value.code == "SESSION_NOT_FOUND"


@pytest.mark.asyncio
async def test_server_rejects_oversized_chunk_size(upload_api, upload_settings):
    """Server limits come from the config endpoint."""
    async with upload_api as client:
        limits = await client.get_config()
        assert limits["max_chunk_size"] == upload_settings.max_chunk_size

        with pytest.raises(UploadClientError) as exc_info:
            await client.init_upload("too-big", "big.bin", 10, 1, chunk_size=upload_settings.max_chunk_size + 1)
        assert exc_info.value.status_code == 413

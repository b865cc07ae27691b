"""Tests for the chunked upload HTTP API."""

import dataclasses
import json
import time

import pytest
from fastapi.testclient import TestClient

from common.chunk_crypto import encrypt_chunk
from server.config import ApiKeyEntry
from server.main import create_app


def init_upload(client, upload_id, file_size, total_chunks, file_name="abc.txt", headers=None, **extra):
    body = {
        "uploadId": upload_id,
        "fileName": file_name,
        "fileSize": file_size,
        "totalChunks": total_chunks,
    }
    body.update(extra)
    return client.post("/upload/init", json=body, headers=headers or {})


def send_chunk(client, upload_id, index, total_chunks, data, file_name="abc.txt", headers=None):
    return client.post(
        "/upload/chunk",
        data={
            "uploadId": upload_id,
            "chunkIndex": str(index),
            "totalChunks": str(total_chunks),
            "fileName": file_name,
        },
        files={"chunk": (f"chunk-{index}", data, "application/octet-stream")},
        headers=headers or {},
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


def test_config_endpoint(client, upload_settings):
    response = client.get("/upload/config")

    assert response.status_code == 200
    data = response.json()
    assert data["maxChunkSize"] == upload_settings.max_chunk_size
    assert data["parallelUploads"] == 12
    assert data["maxFileSize"] == 0
    assert data["chunkRetryAttempts"] == 5
    assert data["chunkRetryDelayMs"] == 1000


class TestPlainUpload:
    """Test unencrypted uploads end to end."""

    def test_three_chunk_upload(self, client, upload_settings):
        """AAA, BBB, CCC are assembled in order and the session is removed on finalize."""
        assert init_upload(client, "u1", 9, 3, chunkSize=3).json() == {"success": True}

        progress = [send_chunk(client, "u1", i, 3, part).json()["progress"]
                    for i, part in enumerate([b"AAA", b"BBB", b"CCC"])]
        assert progress == [pytest.approx(33.33), pytest.approx(66.67), 100.0]

        response = client.post("/upload/finalize", json={"uploadId": "u1"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"fileId": "abc.txt"}}

        assert (upload_settings.upload_dir / "abc.txt").read_bytes() == b"AAABBBCCC"
        assert not (upload_settings.temp_dir / "u1").exists()

    def test_out_of_order_chunks(self, client, upload_settings):
        """Arrival order does not affect the assembled bytes."""
        parts = [bytes([65 + i]) * 4 for i in range(5)]
        init_upload(client, "u2", 20, 5, file_name="order.bin", chunkSize=4)

        for index in [3, 1, 4, 0, 2]:
            response = send_chunk(client, "u2", index, 5, parts[index], file_name="order.bin")
            assert response.status_code == 200

        assert client.post("/upload/finalize", json={"uploadId": "u2"}).status_code == 200
        assert (upload_settings.upload_dir / "order.bin").read_bytes() == b"".join(parts)

    def test_folder_destination(self, client, upload_settings):
        init_upload(client, "u3", 2, 1, folderPath="photos/2024")
        send_chunk(client, "u3", 0, 1, b"hi")

        response = client.post("/upload/finalize", json={"uploadId": "u3"})

        assert response.json()["data"]["fileId"] == "photos/2024/abc.txt"
        assert (upload_settings.upload_dir / "photos" / "2024" / "abc.txt").read_bytes() == b"hi"

    def test_empty_file(self, client, upload_settings):
        init_upload(client, "empty", 0, 1, file_name="empty.txt")
        assert send_chunk(client, "empty", 0, 1, b"", file_name="empty.txt").status_code == 200

        assert client.post("/upload/finalize", json={"uploadId": "empty"}).status_code == 200
        assert (upload_settings.upload_dir / "empty.txt").read_bytes() == b""

    def test_duplicate_chunk_before_completion(self, client):
        init_upload(client, "dup", 6, 2)
        send_chunk(client, "dup", 0, 2, b"abc")
        response = send_chunk(client, "dup", 0, 2, b"abc")

        assert response.status_code == 200
        assert response.json()["progress"] == 50.0

    def test_chunk_after_assembly_is_ignored(self, client, upload_settings):
        init_upload(client, "late", 3, 1)
        send_chunk(client, "late", 0, 1, b"abc")

        response = send_chunk(client, "late", 0, 1, b"xyz")

        assert response.status_code == 200
        assert response.json()["progress"] == 100.0
        assert (upload_settings.upload_dir / "abc.txt").read_bytes() == b"abc"

    def test_size_mismatch_fails_assembly(self, client):
        """Assembled bytes must add up to the declared fileSize."""
        init_upload(client, "short", 10, 2)
        send_chunk(client, "short", 0, 2, b"abc")
        response = send_chunk(client, "short", 1, 2, b"de")

        assert response.status_code == 422
        assert response.json()["code"] == "ASSEMBLY_FAILED"
        assert "does not match declared size" in response.json()["error"]


class TestInitValidation:
    """Test session registration rules."""

    def test_reinit_same_parameters_is_idempotent(self, client):
        assert init_upload(client, "same", 9, 3).status_code == 200
        send_chunk(client, "same", 0, 3, b"AAA")

        assert init_upload(client, "same", 9, 3).status_code == 200
        status = client.post("/upload/status", json={"uploadId": "same"}).json()
        assert status["uploadedChunks"] == [0]

    def test_reinit_different_parameters_conflicts(self, client):
        init_upload(client, "conf", 9, 3)
        response = init_upload(client, "conf", 12, 4)

        assert response.status_code == 409
        assert response.json()["code"] == "SESSION_CONFLICT"

    @pytest.mark.parametrize("upload_id", ["../evil", "a/b", "bad id"])
    def test_invalid_upload_id(self, client, upload_id):
        response = init_upload(client, upload_id, 3, 1)

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Invalid upload ID",
            "code": "INVALID_UPLOAD_ID",
        }

    @pytest.mark.parametrize("folder", ["../outside", "a/../../b", "/etc"])
    def test_folder_traversal(self, client, upload_settings, folder):
        response = init_upload(client, "trav", 3, 1, folderPath=folder)

        assert response.status_code == 400
        assert response.json()["code"] == "PATH_TRAVERSAL"
        assert not (upload_settings.temp_dir / "trav").exists()

    @pytest.mark.parametrize("file_name", ["../x.txt", "dir/x.txt", ".."])
    def test_file_name_with_path(self, client, file_name):
        response = init_upload(client, "name", 3, 1, file_name=file_name)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_total_chunks_must_match_chunk_size(self, client):
        response = init_upload(client, "math", 10, 2, chunkSize=3)

        assert response.status_code == 400
        assert "totalChunks" in response.json()["error"]

    def test_chunk_size_above_limit(self, client, upload_settings):
        size = upload_settings.max_chunk_size * 2
        response = init_upload(client, "big", size, 1, chunkSize=size)

        assert response.status_code == 413
        assert response.json()["code"] == "CHUNK_TOO_LARGE"

    def test_max_file_size(self, upload_settings):
        settings = dataclasses.replace(upload_settings, max_file_size=100)
        with TestClient(create_app(settings)) as limited:
            response = init_upload(limited, "huge", 101, 1)

        assert response.status_code == 413
        assert response.json()["code"] == "FILE_TOO_LARGE"

    def test_encrypted_requires_password(self, client):
        response = init_upload(client, "nopw", 3, 1, e2eEncrypted=True)

        assert response.status_code == 400


class TestChunkValidation:
    """Test chunk request rejections."""

    def test_unknown_session(self, client):
        response = send_chunk(client, "ghost", 0, 1, b"abc")

        assert response.status_code == 404
        assert response.json()["code"] == "SESSION_NOT_FOUND"

    def test_index_out_of_range(self, client):
        init_upload(client, "range", 9, 3)

        for index in (3, -1):
            response = send_chunk(client, "range", index, 3, b"AAA")
            assert response.status_code == 400
            assert response.json()["code"] == "CHUNK_INDEX_OUT_OF_RANGE"

    def test_total_chunks_mismatch(self, client):
        init_upload(client, "total", 9, 3)

        response = send_chunk(client, "total", 0, 4, b"AAA")

        assert response.status_code == 400

    def test_chunk_too_large(self, client, upload_settings):
        size = upload_settings.max_chunk_size * 2
        init_upload(client, "huge-chunk", size, 2)

        response = send_chunk(client, "huge-chunk", 0, 2, b"x" * (upload_settings.max_chunk_size + 45))

        assert response.status_code == 413
        assert response.json()["code"] == "CHUNK_TOO_LARGE"

    @pytest.mark.parametrize("upload_id", ["../evil", "a/b"])
    def test_chunk_rejects_path_like_upload_id(self, client, upload_settings, upload_id):
        response = send_chunk(client, upload_id, 0, 1, b"abc")

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_UPLOAD_ID"
        assert list(upload_settings.temp_dir.iterdir()) == []

    def test_invalid_chunk_after_assembly_still_rejected(self, client):
        init_upload(client, "done", 3, 1)
        send_chunk(client, "done", 0, 1, b"abc")

        out_of_range = send_chunk(client, "done", 5, 1, b"abc")
        wrong_name = send_chunk(client, "done", 0, 1, b"abc", file_name="other.txt")

        assert out_of_range.status_code == 400
        assert out_of_range.json()["code"] == "CHUNK_INDEX_OUT_OF_RANGE"
        assert wrong_name.status_code == 400

    def test_unencrypted_chunk_for_encrypted_session(self, client):
        init_upload(client, "e2e-raw", 5, 1, e2eEncrypted=True, e2ePassword="secret")

        response = send_chunk(client, "e2e-raw", 0, 1, b"plain")

        assert response.status_code == 400
        assert response.json()["code"] == "UNENCRYPTED_CHUNK"


@pytest.mark.usefixtures("fast_kdf")
class TestEncryptedUpload:
    """Test E2E encrypted uploads and failed-assembly recovery."""

    def test_encrypted_upload(self, client, upload_settings):
        plaintext = [b"secret part one ", b"secret part two"]
        total_size = sum(len(p) for p in plaintext)
        init_upload(client, "enc", total_size, 2, file_name="doc.txt",
                    e2eEncrypted=True, e2ePassword="secret", chunkSize=16)

        for index, part in enumerate(plaintext):
            response = send_chunk(client, "enc", index, 2, encrypt_chunk(part, "secret"), file_name="doc.txt")
            assert response.status_code == 200

        assert client.post("/upload/finalize", json={"uploadId": "enc"}).status_code == 200
        assert (upload_settings.upload_dir / "doc.txt").read_bytes() == b"".join(plaintext)

    def test_status_never_exposes_password(self, client):
        init_upload(client, "enc-status", 3, 1, e2eEncrypted=True, e2ePassword="secret")

        status = client.post("/upload/status", json={"uploadId": "enc-status"}).json()

        assert status["e2eEncrypted"] is True
        assert "e2ePassword" not in status
        assert "secret" not in str(status)

    def test_encrypted_flag_round_trips_on_the_wire(self, client):
        init_upload(client, "enc-wire", 3, 1, e2eEncrypted=True, e2ePassword="secret")

        status = client.post("/upload/status", json={"uploadId": "enc-wire"}).json()
        sessions = client.get("/upload/sessions").json()["sessions"]
        plain = send_chunk(client, "enc-wire", 0, 1, b"abc")

        assert status["e2eEncrypted"] is True
        assert "e2EEncrypted" not in status
        assert sessions[0]["e2eEncrypted"] is True
        assert plain.status_code == 400
        assert plain.json()["code"] == "UNENCRYPTED_CHUNK"

    def test_wrong_password_then_reassemble(self, client, upload_settings):
        """A failed decryption keeps the chunks; reassembly with the right password succeeds."""
        init_upload(client, "wrong", 6, 2, file_name="doc.txt",
                    e2eEncrypted=True, e2ePassword="not-it", chunkSize=3)
        send_chunk(client, "wrong", 0, 2, encrypt_chunk(b"abc", "secret"), file_name="doc.txt")
        response = send_chunk(client, "wrong", 1, 2, encrypt_chunk(b"def", "secret"), file_name="doc.txt")

        assert response.status_code == 422
        assert response.json()["code"] == "ASSEMBLY_FAILED"
        assert not (upload_settings.upload_dir / "doc.txt").exists()

        status = client.post("/upload/status", json={"uploadId": "wrong"}).json()
        assert status["assemblyFailed"] is True
        assert "Decryption failed for chunk 0" in status["assemblyError"]
        assert status["completed"] is False

        finalize = client.post("/upload/finalize", json={"uploadId": "wrong"})
        assert finalize.status_code == 422

        retry = client.post("/upload/reassemble", json={"uploadId": "wrong", "e2ePassword": "secret"})
        assert retry.status_code == 200
        assert retry.json()["data"]["fileId"] == "doc.txt"
        assert (upload_settings.upload_dir / "doc.txt").read_bytes() == b"abcdef"

        assert client.post("/upload/finalize", json={"uploadId": "wrong"}).status_code == 200
        assert not (upload_settings.temp_dir / "wrong").exists()


class TestStatusAndSessions:
    """Test status, listing, deletion and finalize preconditions."""

    def test_status_unknown(self, client):
        response = client.post("/upload/status", json={"uploadId": "nope"})

        assert response.status_code == 200
        assert response.json() == {"exists": False}

    def test_status_for_resume(self, client):
        init_upload(client, "resume", 15, 5, chunkSize=3)
        for index in (0, 1, 2):
            send_chunk(client, "resume", index, 5, b"xyz")

        status = client.post("/upload/status", json={"uploadId": "resume"}).json()

        assert status["exists"] is True
        assert status["uploadedChunks"] == [0, 1, 2]
        assert status["totalChunks"] == 5
        assert status["progress"] == 60.0
        assert status["chunkSize"] == 3
        assert status["completed"] is False

    def test_finalize_incomplete(self, client):
        init_upload(client, "partial", 9, 3)
        send_chunk(client, "partial", 0, 3, b"AAA")

        response = client.post("/upload/finalize", json={"uploadId": "partial"})

        assert response.status_code == 409
        assert response.json()["code"] == "ASSEMBLY_NOT_COMPLETE"

    def test_finalize_unknown(self, client):
        response = client.post("/upload/finalize", json={"uploadId": "ghost"})

        assert response.status_code == 404

    def test_list_and_delete(self, client, upload_settings):
        init_upload(client, "s1", 9, 3)
        init_upload(client, "s2", 9, 3, file_name="other.txt")
        init_upload(client, "s3", 3, 1)
        send_chunk(client, "s3", 0, 1, b"abc")

        sessions = client.get("/upload/sessions").json()["sessions"]
        assert sorted(s["uploadId"] for s in sessions) == ["s1", "s2"]

        assert client.delete("/upload/s1").json() == {"success": True}
        assert not (upload_settings.temp_dir / "s1").exists()
        assert client.delete("/upload/s1").status_code == 404


class TestAuthentication:
    """Test API key handling when keys are configured."""

    @pytest.fixture
    def keyed_client(self, upload_settings):
        settings = dataclasses.replace(
            upload_settings,
            api_keys={
                "key-alice": ApiKeyEntry("alice"),
                "key-bob": ApiKeyEntry("bob"),
                "key-root": ApiKeyEntry("root", is_admin=True),
            },
        )
        with TestClient(create_app(settings)) as test_client:
            yield test_client

    def test_missing_key(self, keyed_client):
        response = init_upload(keyed_client, "auth", 3, 1)

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_API_KEY"

    def test_unknown_key(self, keyed_client):
        response = init_upload(keyed_client, "auth", 3, 1, headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_user_folder_scoping_and_ownership(self, keyed_client, upload_settings):
        alice = {"Authorization": "Bearer key-alice"}
        bob = {"Authorization": "Bearer key-bob"}
        root = {"Authorization": "Bearer key-root"}

        init_upload(keyed_client, "a1", 3, 1, headers=alice, folderPath="docs")
        init_upload(keyed_client, "a2", 6, 2, headers=alice)

        assert [s["uploadId"] for s in keyed_client.get("/upload/sessions", headers=bob).json()["sessions"]] == []
        assert len(keyed_client.get("/upload/sessions", headers=root).json()["sessions"]) == 2
        assert keyed_client.delete("/upload/a2", headers=bob).status_code == 404

        send_chunk(keyed_client, "a1", 0, 1, b"abc", headers=alice)
        response = keyed_client.post("/upload/finalize", json={"uploadId": "a1"}, headers=alice)

        assert response.json()["data"]["fileId"] == "alice/docs/abc.txt"
        assert (upload_settings.upload_dir / "alice" / "docs" / "abc.txt").read_bytes() == b"abc"


def test_startup_marks_interrupted_assembly_failed(upload_settings):
    """A session left mid-assembly by a previous process is recoverable by reassembly."""
    session_dir = upload_settings.temp_dir / "crashed"
    session_dir.mkdir()
    (session_dir / "chunk-0").write_bytes(b"abc")
    (session_dir / "session.json").write_text(json.dumps({
        "uploadId": "crashed",
        "fileName": "abc.txt",
        "fileSize": 3,
        "totalChunks": 1,
        "createdAt": int(time.time() * 1000),
        "receivedChunks": [0],
        "writtenChunks": [0],
        "fileId": "__ASSEMBLING__",
    }))

    with TestClient(create_app(upload_settings)) as test_client:
        status = test_client.post("/upload/status", json={"uploadId": "crashed"}).json()
        assert status["assemblyFailed"] is True

        response = test_client.post("/upload/reassemble", json={"uploadId": "crashed"})
        assert response.status_code == 200
        assert (upload_settings.upload_dir / "abc.txt").read_bytes() == b"abc"

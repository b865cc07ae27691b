"""Domain records for upload sessions."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ASSEMBLY_IN_PROGRESS = "__ASSEMBLING__"
ASSEMBLY_FAILED = "__ASSEMBLY_FAILED__"

_JSON_NAMES = {
    "upload_id": "uploadId",
    "file_name": "fileName",
    "file_size": "fileSize",
    "total_chunks": "totalChunks",
    "created_at": "createdAt",
    "received_chunks": "receivedChunks",
    "written_chunks": "writtenChunks",
    "chunk_size": "chunkSize",
    "folder_path": "folderPath",
    "e2e_encrypted": "e2eEncrypted",
    "e2e_password": "e2ePassword",
    "file_id": "fileId",
    "assembly_error": "assemblyError",
    "owner": "owner",
}


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def _index_list(raw: Any, total_chunks: int, name: str) -> List[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"{name} must be a list")
    indices = set()
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} contains a non-integer index")
        if not 0 <= value < total_chunks:
            raise ValueError(f"{name} index {value} out of range")
        indices.add(value)
    return sorted(indices)


@dataclass
class UploadSession:
    """
    Durable state of one in-flight upload, persisted as session.json.

    Attributes:
        upload_id: Opaque token, also the session directory name
        file_name: Final file name
        file_size: Declared plaintext size in bytes
        total_chunks: Number of chunks the client will send
        created_at: Creation time, epoch milliseconds
        received_chunks: Indices whose bytes were accepted
        written_chunks: Indices durably written to the temp directory
        chunk_size: Client chunk size, when known
        folder_path: Destination folder relative to the user's root
        e2e_encrypted: Chunks are AES-GCM envelopes
        e2e_password: Password used to decrypt chunks during assembly
        file_id: None, a sentinel, or the final relative path
        assembly_error: Reason recorded when assembly failed
        owner: Username of the user who created the session
    """
    upload_id: str
    file_name: str
    file_size: int
    total_chunks: int
    created_at: int = field(default_factory=now_ms)
    received_chunks: List[int] = field(default_factory=list)
    written_chunks: List[int] = field(default_factory=list)
    chunk_size: Optional[int] = None
    folder_path: Optional[str] = None
    e2e_encrypted: bool = False
    e2e_password: Optional[str] = None
    file_id: Optional[str] = None
    assembly_error: Optional[str] = None
    owner: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return len(self.written_chunks) == self.total_chunks

    @property
    def is_claimed(self) -> bool:
        return bool(self.file_id)

    @property
    def is_assembling(self) -> bool:
        return self.file_id == ASSEMBLY_IN_PROGRESS

    @property
    def is_assembly_failed(self) -> bool:
        return self.file_id == ASSEMBLY_FAILED

    @property
    def is_finished(self) -> bool:
        """True once file_id holds a real path (terminal state)."""
        return bool(self.file_id) and not self.file_id.startswith("__")

    @property
    def progress(self) -> float:
        return len(self.written_chunks) / self.total_chunks * 100

    def matches(self, other: "UploadSession") -> bool:
        """True if other describes the same file (used for idempotent init)."""
        return (
            self.file_name == other.file_name
            and self.file_size == other.file_size
            and self.total_chunks == other.total_chunks
        )

    def is_expired(self, ttl_seconds: float, now: Optional[int] = None) -> bool:
        current = now if now is not None else now_ms()
        return current - self.created_at > ttl_seconds * 1000

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for attr, json_name in _JSON_NAMES.items():
            value = getattr(self, attr)
            if value is None:
                continue
            data[json_name] = value
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> "UploadSession":
        """
        Build a session from its JSON form.

        Raises:
            ValueError: If required fields are missing or have the wrong type
        """
        if not isinstance(raw, dict):
            raise ValueError("session record must be a JSON object")

        upload_id = raw.get("uploadId")
        file_name = raw.get("fileName")
        total_chunks = raw.get("totalChunks")
        file_size = raw.get("fileSize")

        if not isinstance(upload_id, str) or not upload_id:
            raise ValueError("missing uploadId")
        if not isinstance(file_name, str) or not file_name:
            raise ValueError("missing fileName")
        if isinstance(total_chunks, bool) or not isinstance(total_chunks, int) or total_chunks <= 0:
            raise ValueError("missing or invalid totalChunks")
        if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
            raise ValueError("missing or invalid fileSize")

        created_at = raw.get("createdAt")
        if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
            raise ValueError("missing or invalid createdAt")

        chunk_size = raw.get("chunkSize")
        if chunk_size is not None and (isinstance(chunk_size, bool) or not isinstance(chunk_size, int)):
            raise ValueError("invalid chunkSize")

        return cls(
            upload_id=upload_id,
            file_name=file_name,
            file_size=file_size,
            total_chunks=total_chunks,
            created_at=int(created_at),
            received_chunks=_index_list(raw.get("receivedChunks"), total_chunks, "receivedChunks"),
            written_chunks=_index_list(raw.get("writtenChunks"), total_chunks, "writtenChunks"),
            chunk_size=chunk_size,
            folder_path=raw.get("folderPath") or None,
            e2e_encrypted=bool(raw.get("e2eEncrypted", False)),
            e2e_password=raw.get("e2ePassword"),
            file_id=raw.get("fileId") or None,
            assembly_error=raw.get("assemblyError"),
            owner=raw.get("owner"),
        )

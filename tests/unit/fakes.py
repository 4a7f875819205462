"""Fake implementations for testing the storage layer."""

from outline_kb.errors import StorageIOError


class FakeBlobStorage:
    """In-memory fake for FileBlobStorage.

    Keeps blobs in a dict and records writes and deletes for assertions.
    """

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.writes: list[str] = []
        self.deletes: list[str] = []

    def exists(self, rel_path: str) -> bool:
        return rel_path in self.blobs

    def write(self, rel_path: str, data: bytes) -> None:
        self.writes.append(rel_path)
        self.blobs[rel_path] = data

    def read(self, rel_path: str) -> bytes:
        if rel_path not in self.blobs:
            msg = f"FakeBlobStorage: no blob at {rel_path!r}"
            raise StorageIOError(msg, path=rel_path)
        return self.blobs[rel_path]

    def delete(self, rel_path: str) -> None:
        self.deletes.append(rel_path)
        self.blobs.pop(rel_path, None)


class FailingBlobStorage(FakeBlobStorage):
    """Blob storage whose writes always fail, like a full disk."""

    def write(self, rel_path: str, data: bytes) -> None:
        msg = f"Failed to write blob {rel_path}"
        raise StorageIOError(msg, path=rel_path, original_error=OSError(28, "No space left on device"))

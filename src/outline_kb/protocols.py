"""Protocols for dependency injection in the storage layer."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class BlobStorageProtocol(Protocol):
    """Protocol for attachment blob storage.

    Paths are relative to the store's base directory, e.g.
    ``attachments/ab/ab12...``.
    """

    def exists(self, rel_path: str) -> bool:
        """Return True if a blob is stored at rel_path."""
        ...

    def write(self, rel_path: str, data: bytes) -> None:
        """Store bytes at rel_path atomically."""
        ...

    def read(self, rel_path: str) -> bytes:
        """Return the bytes stored at rel_path."""
        ...

    def delete(self, rel_path: str) -> None:
        """Remove the blob at rel_path if present."""
        ...

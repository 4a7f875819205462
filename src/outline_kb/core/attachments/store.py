"""Content-addressed attachment storage.

Files are stored once per SHA-256 hash at ``attachments/<hash[:2]>/<hash>``
under the base directory; any number of attachment rows may share a blob.
Bytes are written before the metadata row is inserted, and a blob is only
reclaimed after commit once no row references its hash any more.
"""

import hashlib
import mimetypes
import os
import sqlite3
import tempfile
from pathlib import Path

from loguru import logger

from outline_kb.config import ATTACHMENTS_DIRNAME
from outline_kb.core.links.graph import add_attachment_link, delete_attachment_links
from outline_kb.core.tree.navigation import get_node
from outline_kb.errors import NotFoundError, StorageIOError, ValidationError
from outline_kb.models.node import Attachment
from outline_kb.protocols import BlobStorageProtocol
from outline_kb.utils import new_id, now_ms

_ATTACHMENT_COLUMNS = (
    "id, note_id, node_id, filename, filepath, mime_type, size_bytes, hash, created_at"
)


class FileBlobStorage:
    """Blob storage on the local filesystem, rooted at the base directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def _resolve(self, rel_path: str) -> Path:
        if Path(rel_path).is_absolute():
            msg = f"must be relative: {rel_path!r}"
            raise ValueError(msg)
        return self.base_dir / rel_path

    def exists(self, rel_path: str) -> bool:
        return self._resolve(rel_path).is_file()

    def write(self, rel_path: str, data: bytes) -> None:
        """Write via a temporary file in the target directory and rename into place."""
        target = self._resolve(rel_path)
        tmp_name = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=target.parent, prefix=".tmp-", delete=False
            ) as f:
                tmp_name = f.name
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            msg = f"Failed to write blob {rel_path}"
            raise StorageIOError(msg, path=str(target), original_error=e) from e

    def read(self, rel_path: str) -> bytes:
        target = self._resolve(rel_path)
        try:
            return target.read_bytes()
        except OSError as e:
            msg = f"Failed to read blob {rel_path}"
            raise StorageIOError(msg, path=str(target), original_error=e) from e

    def delete(self, rel_path: str) -> None:
        target = self._resolve(rel_path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            msg = f"Failed to delete blob {rel_path}"
            raise StorageIOError(msg, path=str(target), original_error=e) from e


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def blob_path_for(hash_hex: str) -> str:
    """Relative storage path of the blob with the given hash."""
    return f"{ATTACHMENTS_DIRNAME}/{hash_hex[:2]}/{hash_hex}"


def guess_mime_type(filename: str) -> str:
    mime, _ = mimetypes.guess_type(filename)
    return mime or "application/octet-stream"


def _row_to_attachment(row: tuple) -> Attachment:
    return Attachment(
        id=row[0],
        note_id=row[1],
        node_id=row[2],
        filename=row[3],
        storage_path=row[4],
        mime_type=row[5],
        size_bytes=row[6],
        content_hash=row[7],
        created_at=row[8],
    )


def find_attachment(conn: sqlite3.Connection, attachment_id: str) -> Attachment | None:
    row = conn.execute(
        f"SELECT {_ATTACHMENT_COLUMNS} FROM attachments WHERE id = ?", (attachment_id,)
    ).fetchone()
    return _row_to_attachment(row) if row else None


def get_attachment(conn: sqlite3.Connection, attachment_id: str) -> Attachment:
    attachment = find_attachment(conn, attachment_id)
    if attachment is None:
        raise NotFoundError("attachment", attachment_id)
    return attachment


def attachments_for_note(conn: sqlite3.Connection, note_id: str) -> list[Attachment]:
    rows = conn.execute(
        f"SELECT {_ATTACHMENT_COLUMNS} FROM attachments WHERE note_id = ? "
        "ORDER BY created_at, id",
        (note_id,),
    ).fetchall()
    return [_row_to_attachment(r) for r in rows]


def hash_refcount(conn: sqlite3.Connection, hash_hex: str) -> int:
    return conn.execute("SELECT COUNT(*) FROM attachments WHERE hash = ?", (hash_hex,)).fetchone()[0]


def attach(
    conn: sqlite3.Connection,
    storage: BlobStorageProtocol,
    *,
    note_id: str,
    node_id: str | None,
    filename: str,
    data: bytes,
    mime_type: str | None = None,
) -> tuple[Attachment, str | None]:
    """Store bytes (deduplicated by hash) and record an attachment row.

    The blob write happens before the insert, so a failed write leaves no
    metadata behind.

    Returns:
        (attachment, fresh_blob_path). The second item is the blob path when
        this call wrote it, or None when an existing blob was reused; callers
        remove a fresh blob again if the surrounding transaction rolls back.

    Raises:
        StorageIOError: If the bytes cannot be written.
    """
    if conn.execute("SELECT 1 FROM notes WHERE id = ?", (note_id,)).fetchone() is None:
        raise NotFoundError("note", note_id)
    if node_id is not None and get_node(conn, node_id).note_id != note_id:
        msg = "Attachment node belongs to a different note"
        raise ValidationError(msg, details={"node_id": node_id, "note_id": note_id})
    if not filename.strip():
        msg = "Attachment filename must not be empty"
        raise ValidationError(msg)

    hash_hex = content_hash(data)
    rel_path = blob_path_for(hash_hex)
    fresh_path = None
    if storage.exists(rel_path):
        logger.debug("Reusing blob {} for {!r}", hash_hex[:12], filename)
    else:
        storage.write(rel_path, data)
        fresh_path = rel_path
        logger.debug("Wrote blob {} ({} bytes)", hash_hex[:12], len(data))

    attachment_id = new_id()
    try:
        conn.execute(
            f"INSERT INTO attachments ({_ATTACHMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                attachment_id, note_id, node_id, filename, rel_path,
                mime_type or guess_mime_type(filename), len(data), hash_hex, now_ms(),
            ),
        )
        attachment = get_attachment(conn, attachment_id)
        add_attachment_link(conn, attachment)
    except BaseException:
        if fresh_path is not None:
            storage.delete(fresh_path)
            logger.info("Removed blob {} after failed insert", hash_hex[:12])
        raise
    return attachment, fresh_path


def detach(conn: sqlite3.Connection, attachment_id: str) -> Attachment:
    """Delete an attachment row. The blob is left for ``reclaim_blob`` after commit."""
    attachment = get_attachment(conn, attachment_id)
    delete_attachment_links(conn, [attachment_id])
    conn.execute("DELETE FROM attachments WHERE id = ?", (attachment_id,))
    return attachment


def reclaim_blob(conn: sqlite3.Connection, storage: BlobStorageProtocol, hash_hex: str) -> bool:
    """Delete the blob for ``hash_hex`` if no attachment row references it.

    Returns:
        True if the blob was removed.
    """
    if hash_refcount(conn, hash_hex) > 0:
        return False
    storage.delete(blob_path_for(hash_hex))
    logger.info("Reclaimed unreferenced blob {}", hash_hex[:12])
    return True


def release_node_attachments(conn: sqlite3.Connection, node_ids: list[str]) -> None:
    """Detach attachments from deleted nodes; they stay owned by the note."""
    conn.executemany(
        "UPDATE attachments SET node_id = NULL WHERE node_id = ?", [(i,) for i in node_ids]
    )


def note_attachment_hashes(conn: sqlite3.Connection, note_id: str) -> set[str]:
    rows = conn.execute(
        "SELECT DISTINCT hash FROM attachments WHERE note_id = ?", (note_id,)
    ).fetchall()
    return {r[0] for r in rows}


def read_attachment(
    conn: sqlite3.Connection, storage: BlobStorageProtocol, attachment_id: str
) -> bytes:
    attachment = get_attachment(conn, attachment_id)
    return storage.read(attachment.storage_path)

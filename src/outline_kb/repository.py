"""Repository: the single entry point to a knowledge base.

Every mutating method runs as one SQLite transaction on the write
connection. Inside it the structural change is made, tags and links are
re-derived from the new content, the search index is updated and verified,
and task transitions are logged. Either all of it commits or none of it does.

Read methods use a read-only connection per thread and see only committed
state.
"""

import datetime
import itertools
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from outline_kb.config import StoreConfig
from outline_kb.core.attachments import store as attachments
from outline_kb.core.database.connection import open_connection, transaction
from outline_kb.core.database.schema import migrate_schema
from outline_kb.core.links import graph
from outline_kb.core.pages import daily, favorites, lookup, notes
from outline_kb.core.search import searcher
from outline_kb.core.tags import index as tags
from outline_kb.core.tasks import log as task_log
from outline_kb.core.tree import markdown, navigation, outline
from outline_kb.errors import IndexInconsistency
from outline_kb.models.node import (
    Attachment,
    BacklinkGroup,
    BlockKind,
    Breadcrumb,
    DailyNote,
    Favorite,
    Link,
    Note,
    OutlineNode,
    Priority,
    SearchResponse,
    Tag,
    TaskFilter,
    TaskLogEntry,
    Transclusion,
)
from outline_kb.protocols import BlobStorageProtocol
from outline_kb.writer import MarkdownWriter


@dataclass
class _UnitOfWork:
    """Side effects outside SQLite that depend on how a mutation ends."""

    after_commit: list[Callable[[], None]] = field(default_factory=list)
    on_rollback: list[Callable[[], None]] = field(default_factory=list)

    def absorb(self, inner: "_UnitOfWork") -> None:
        self.after_commit.extend(inner.after_commit)
        self.on_rollback.extend(inner.on_rollback)


class Repository:
    """Transactional façade over one knowledge-base directory."""

    def __init__(
        self,
        base_dir: str | Path | None = None,
        *,
        blob_storage: BlobStorageProtocol | None = None,
    ) -> None:
        self.config = StoreConfig.from_base_dir(base_dir)
        self.storage: BlobStorageProtocol = blob_storage or attachments.FileBlobStorage(
            self.config.base_dir
        )
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._unit: _UnitOfWork | None = None
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()
        self._search_seq = itertools.count(1)

    # -- lifecycle ---------------------------------------------------------

    def open(self) -> "Repository":
        with self._lock:
            if self._conn is not None:
                return self
            self.config.base_dir.mkdir(parents=True, exist_ok=True)
            self.config.attachments_dir.mkdir(parents=True, exist_ok=True)
            self._conn = open_connection(self.config.db_path)
            migrate_schema(self._conn)
            logger.debug("Opened knowledge base at {}", self.config.base_dir)
        return self

    def close(self) -> None:
        with self._readers_lock:
            for conn in self._readers:
                conn.close()
            self._readers.clear()
        self._local = threading.local()
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "Repository":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _writer(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = "Repository is not open"
            raise RuntimeError(msg)
        return self._conn

    def _reader(self) -> sqlite3.Connection:
        self._writer()
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = open_connection(self.config.db_path, read_only=True)
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    @contextmanager
    def _mutation(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic mutation.

        Nested mutations become savepoints; their post-commit actions wait for
        the outermost commit.
        """
        with self._lock:
            conn = self._writer()
            outer = self._unit
            unit = _UnitOfWork()
            self._unit = unit
            try:
                with transaction(conn):
                    yield conn
            except BaseException as e:
                self._unit = outer
                for action in unit.on_rollback:
                    action()
                if isinstance(e, IndexInconsistency) and outer is None:
                    self._recover_index(e)
                raise
            self._unit = outer
            if outer is not None:
                outer.absorb(unit)
                return
            for action in unit.after_commit:
                action()

    def _recover_index(self, error: IndexInconsistency) -> None:
        logger.error("{}; rebuilding search index", error)
        conn = self._writer()
        with transaction(conn):
            searcher.rebuild_index(conn)

    def _refresh_derived(self, conn: sqlite3.Connection, node: OutlineNode) -> None:
        """Re-derive tags, links and the index entry from the node's content."""
        tags.sync_tags(conn, node.id, node.content)
        graph.sync_links(conn, note_id=node.note_id, node_id=node.id, text=node.content)
        searcher.index_node(conn, node.id, node.content)
        searcher.verify_node_index(conn, node.id)

    def _reclaim_later(self, conn: sqlite3.Connection, hashes: set[str]) -> None:
        assert self._unit is not None
        for hash_hex in sorted(hashes):
            self._unit.after_commit.append(
                lambda h=hash_hex: attachments.reclaim_blob(conn, self.storage, h)
            )

    # -- notes -------------------------------------------------------------

    def create_note(self, title: str) -> Note:
        with self._mutation() as conn:
            return notes.create_note(conn, title)

    def rename_note(self, note_id: str, title: str) -> Note:
        with self._mutation() as conn:
            return notes.rename_note(conn, note_id, title)

    def delete_note(self, note_id: str) -> list[str]:
        with self._mutation() as conn:
            hashes = attachments.note_attachment_hashes(conn, note_id)
            deleted = notes.delete_note(conn, note_id)
            self._reclaim_later(conn, hashes)
            return deleted

    def get_note(self, note_id: str) -> Note:
        return lookup.get_note(self._reader(), note_id)

    def note_by_title(self, title: str) -> Note | None:
        return notes.note_by_title(self._reader(), title)

    def list_notes(self) -> list[Note]:
        return notes.list_notes(self._reader())

    def find_notes(self, query: str, *, limit: int = 50) -> list[Note]:
        return notes.find_notes(self._reader(), query, limit=limit)

    # -- daily notes and favorites ------------------------------------------

    def daily_note(self, date: datetime.date | None = None) -> Note:
        """Get or create the daily note for ``date`` (default: today)."""
        with self._mutation() as conn:
            note, _ = daily.daily_note(conn, date or datetime.date.today())
            return note

    def assign_daily_note(self, date: datetime.date, note_id: str) -> DailyNote:
        with self._mutation() as conn:
            return daily.assign_daily_note(conn, date, note_id)

    def list_daily_notes(self) -> list[DailyNote]:
        return daily.list_daily_notes(self._reader())

    def add_favorite(self, note_id: str) -> Favorite:
        with self._mutation() as conn:
            return favorites.add_favorite(conn, note_id)

    def remove_favorite(self, note_id: str) -> bool:
        with self._mutation() as conn:
            return favorites.remove_favorite(conn, note_id)

    def move_favorite(self, note_id: str, index: int) -> None:
        with self._mutation() as conn:
            favorites.move_favorite(conn, note_id, index)

    def list_favorites(self) -> list[Favorite]:
        return favorites.list_favorites(self._reader())

    # -- outline tree -------------------------------------------------------

    def create_node(
        self,
        note_id: str,
        *,
        parent_id: str | None = None,
        content: str = "",
        index: int | None = None,
        block_kind: BlockKind = BlockKind.NORMAL,
    ) -> OutlineNode:
        with self._mutation() as conn:
            node = outline.create_node(
                conn,
                note_id=note_id,
                parent_id=parent_id,
                content=content,
                index=index,
                block_kind=block_kind,
            )
            self._refresh_derived(conn, node)
            return node

    def update_content(self, node_id: str, content: str) -> OutlineNode:
        with self._mutation() as conn:
            node = outline.update_content(conn, node_id, content)
            self._refresh_derived(conn, node)
            return node

    def move_node(
        self, node_id: str, *, new_parent_id: str | None, index: int | None = None
    ) -> OutlineNode:
        with self._mutation() as conn:
            return outline.move_node(conn, node_id, new_parent_id=new_parent_id, index=index)

    def reorder_children(
        self, note_id: str, parent_id: str | None, ordered_ids: list[str]
    ) -> None:
        with self._mutation() as conn:
            outline.reorder_children(
                conn, note_id=note_id, parent_id=parent_id, ordered_ids=ordered_ids
            )

    def indent(self, node_id: str) -> bool:
        with self._mutation() as conn:
            return outline.indent(conn, node_id)

    def outdent(self, node_id: str) -> bool:
        with self._mutation() as conn:
            return outline.outdent(conn, node_id)

    def delete_node(self, node_id: str) -> list[str]:
        with self._mutation() as conn:
            return outline.delete_node(conn, node_id)

    def toggle_task(self, node_id: str) -> OutlineNode:
        with self._mutation() as conn:
            before = navigation.get_node(conn, node_id)
            after = outline.set_task(conn, node_id, not before.is_task)
            task_log.log_transition(conn, before, after)
            return after

    def set_completed(self, node_id: str, completed: bool) -> OutlineNode:
        with self._mutation() as conn:
            before = navigation.get_node(conn, node_id)
            after = outline.set_completed(conn, node_id, completed)
            task_log.log_transition(conn, before, after)
            return after

    def toggle_completed(self, node_id: str) -> OutlineNode:
        with self._mutation() as conn:
            before = navigation.get_node(conn, node_id)
            after = outline.set_completed(conn, node_id, not before.completed)
            task_log.log_transition(conn, before, after)
            return after

    def set_priority(self, node_id: str, priority: Priority | None) -> OutlineNode:
        with self._mutation() as conn:
            return outline.set_priority(conn, node_id, priority)

    def set_due_date(self, node_id: str, due_date: datetime.date | None) -> OutlineNode:
        with self._mutation() as conn:
            return outline.set_due_date(conn, node_id, due_date)

    def set_block_kind(self, node_id: str, block_kind: BlockKind) -> OutlineNode:
        with self._mutation() as conn:
            return outline.set_block_kind(conn, node_id, block_kind)

    def get_node(self, node_id: str) -> OutlineNode:
        return navigation.get_node(self._reader(), node_id)

    def get_children(self, note_id: str, parent_id: str | None = None) -> tuple[OutlineNode, ...]:
        return navigation.get_children(self._reader(), note_id=note_id, parent_id=parent_id)

    def get_note_nodes(self, note_id: str) -> list[tuple[OutlineNode, int]]:
        conn = self._reader()
        lookup.get_note(conn, note_id)
        return navigation.get_note_nodes(conn, note_id)

    def get_breadcrumbs(self, node_id: str) -> tuple[Breadcrumb, ...]:
        conn = self._reader()
        navigation.get_node(conn, node_id)
        return navigation.get_breadcrumbs(conn, node_id)

    def get_siblings(
        self, node_id: str, *, count: int = 3
    ) -> tuple[tuple[OutlineNode, ...], tuple[OutlineNode, ...]]:
        return navigation.get_siblings(self._reader(), node_id, count=count)

    def check_sibling_order(self, note_id: str) -> list[tuple[str | None, list[int]]]:
        return navigation.check_sibling_order(self._reader(), note_id)

    # -- tags ---------------------------------------------------------------

    def add_tag(self, node_id: str, name: str) -> Tag:
        with self._mutation() as conn:
            navigation.get_node(conn, node_id)
            return tags.add_tag(conn, node_id, name)

    def remove_tag(self, node_id: str, name: str) -> bool:
        with self._mutation() as conn:
            navigation.get_node(conn, node_id)
            return tags.remove_tag(conn, node_id, name)

    def create_tag(self, name: str, *, color: str | None = None) -> Tag:
        with self._mutation() as conn:
            return tags.create_tag(conn, name, color=color)

    def rename_tag(self, name: str, new_name: str) -> Tag:
        with self._mutation() as conn:
            return tags.rename_tag(conn, name, new_name)

    def set_tag_color(self, name: str, color: str | None) -> Tag:
        with self._mutation() as conn:
            return tags.set_tag_color(conn, name, color)

    def list_tags(self) -> list[Tag]:
        return tags.list_tags(self._reader())

    def tags_for_node(self, node_id: str) -> list[Tag]:
        return tags.tags_for_node(self._reader(), node_id)

    def tag_usage_counts(self) -> dict[str, int]:
        return tags.tag_usage_counts(self._reader())

    def nodes_with_tag(self, name: str) -> tuple[OutlineNode, ...]:
        return tags.nodes_with_tag(self._reader(), name)

    def notes_with_tag(self, name: str) -> list[str]:
        return tags.notes_with_tag(self._reader(), name)

    # -- links --------------------------------------------------------------

    def backlinks(self, note_id: str) -> tuple[BacklinkGroup, ...]:
        return graph.backlinks_for(self._reader(), note_id)

    def resolve_transclusion(self, title: str, node_id: str) -> Transclusion:
        return graph.resolve_transclusion(self._reader(), title, node_id)

    def outgoing_links(self, node_id: str) -> list[Link]:
        return graph.outgoing_links(self._reader(), node_id)

    def unresolved_links(self) -> list[Link]:
        return graph.unresolved_links(self._reader())

    def link_notes(self, source_note_id: str, title: str) -> Link:
        with self._mutation() as conn:
            return graph.link_notes(conn, source_note_id=source_note_id, title=title)

    # -- attachments --------------------------------------------------------

    def attach(
        self,
        note_id: str,
        filename: str,
        data: bytes,
        *,
        node_id: str | None = None,
        mime_type: str | None = None,
    ) -> Attachment:
        with self._mutation() as conn:
            attachment, fresh_path = attachments.attach(
                conn,
                self.storage,
                note_id=note_id,
                node_id=node_id,
                filename=filename,
                data=data,
                mime_type=mime_type,
            )
            if fresh_path is not None:
                assert self._unit is not None
                self._unit.on_rollback.append(
                    lambda: self._discard_fresh_blob(attachment.content_hash)
                )
            return attachment

    def _discard_fresh_blob(self, hash_hex: str) -> None:
        conn = self._writer()
        if attachments.hash_refcount(conn, hash_hex) == 0:
            self.storage.delete(attachments.blob_path_for(hash_hex))
            logger.info("Removed blob {} written by a rolled-back mutation", hash_hex[:12])

    def detach(self, attachment_id: str) -> Attachment:
        with self._mutation() as conn:
            attachment = attachments.detach(conn, attachment_id)
            self._reclaim_later(conn, {attachment.content_hash})
            return attachment

    def get_attachment(self, attachment_id: str) -> Attachment:
        return attachments.get_attachment(self._reader(), attachment_id)

    def attachments_for_note(self, note_id: str) -> list[Attachment]:
        return attachments.attachments_for_note(self._reader(), note_id)

    def read_attachment(self, attachment_id: str) -> bytes:
        return attachments.read_attachment(self._reader(), self.storage, attachment_id)

    # -- tasks --------------------------------------------------------------

    def task_history(self, node_id: str) -> list[TaskLogEntry]:
        return task_log.history(self._reader(), node_id)

    def open_tasks(self, task_filter: TaskFilter | None = None) -> list[OutlineNode]:
        return task_log.open_tasks(self._reader(), task_filter)

    def recent_activity(self, *, limit: int = 50) -> list[TaskLogEntry]:
        return task_log.recent_activity(self._reader(), limit=limit)

    # -- search -------------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        note_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> SearchResponse:
        """Full-text search, stamped with a sequence number in issue order."""
        with self._readers_lock:
            sequence = next(self._search_seq)
        results, total = searcher.search_nodes(
            self._reader(), query=query, note_id=note_id, limit=limit, offset=offset
        )
        logger.debug("Search #{} {!r}: {} of {} hit(s)", sequence, query, len(results), total)
        return SearchResponse(sequence=sequence, query=query, results=tuple(results))

    def check_index(self) -> list[str]:
        return searcher.check_index(self._reader())

    def rebuild_index(self) -> int:
        with self._mutation() as conn:
            return searcher.rebuild_index(conn)

    # -- export and maintenance --------------------------------------------

    def export(self, note_id: str) -> str:
        return markdown.render_note_as_markdown(self._reader(), note_id)

    def export_all(self, out_dir: str | Path, *, dry_run: bool = False) -> MarkdownWriter:
        """Write every note as ``<title>.md`` into ``out_dir``; stale .md files are removed."""
        conn = self._reader()
        writer = MarkdownWriter(out_dir, dry_run=dry_run)
        for note in sorted(notes.list_notes(conn), key=lambda n: (n.created_at, n.id)):
            name = writer.make_unique_name(markdown.export_stem(note.title) or note.id, suffix=".md")
            writer.write_file(name + ".md", markdown.render_note_as_markdown(conn, note.id))
        writer.finalize(delete_others=True)
        return writer

    def backup(self, path: str | Path) -> Path:
        """Write a consistent copy of the database to ``path``."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            dest = sqlite3.connect(str(target))
            try:
                self._writer().backup(dest)
            finally:
                dest.close()
        logger.info("Backed up database to {}", target)
        return target

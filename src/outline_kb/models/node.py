"""Domain models for the outline knowledge base."""

import datetime
from dataclasses import dataclass
from enum import Enum


class Priority(str, Enum):
    """Task priority. Higher rank sorts first in task overviews."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class BlockKind(str, Enum):
    NORMAL = "normal"
    QUOTE = "quote"
    CODE = "code"


class LinkKind(str, Enum):
    WIKI = "wiki"
    TRANSCLUSION = "transclusion"
    ATTACHMENT = "attachment"


class TaskStatus(str, Enum):
    CREATED = "created"
    COMPLETED = "completed"
    UNCOMPLETED = "uncompleted"
    DELETED = "deleted"


class TagSource(str, Enum):
    """Where a node-tag association came from."""

    CONTENT = "content"  # derived from #tag tokens
    MANUAL = "manual"  # applied explicitly through the API


@dataclass(frozen=True)
class Note:
    """A page: the root of one outline tree."""

    id: str
    title: str
    created_at: int
    modified_at: int


@dataclass(frozen=True)
class OutlineNode:
    """A single block in a note's outline tree."""

    id: str
    note_id: str
    parent_id: str | None
    content: str
    position: int
    is_task: bool = False
    completed: bool = False
    priority: Priority | None = None
    due_date: datetime.date | None = None
    block_kind: BlockKind = BlockKind.NORMAL
    created_at: int = 0
    modified_at: int = 0

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass(frozen=True)
class Tag:
    id: int
    name: str
    color: str | None = None
    created_at: int = 0


@dataclass(frozen=True)
class ResolvedTarget:
    """Link target pointing at a known note."""

    note_id: str


@dataclass(frozen=True)
class UnresolvedTarget:
    """Link target known only by title; the note may not exist yet."""

    title: str


LinkTarget = ResolvedTarget | UnresolvedTarget


@dataclass(frozen=True)
class Link:
    """A reference from a note (and usually one of its nodes) to another note.

    ``target_title`` is always kept. ``target_note_id`` is set when the title
    resolved at write time; otherwise the link is unresolved and is matched by
    title at query time.
    """

    id: int
    source_note_id: str
    source_node_id: str | None
    target_note_id: str | None
    target_title: str
    link_text: str
    kind: LinkKind
    anchor: str | None = None
    created_at: int = 0

    @property
    def target(self) -> LinkTarget:
        if self.target_note_id is not None:
            return ResolvedTarget(self.target_note_id)
        return UnresolvedTarget(self.target_title)

    @property
    def is_resolved(self) -> bool:
        return self.target_note_id is not None


@dataclass(frozen=True)
class Attachment:
    """Metadata for a stored file. Equal hashes share one physical blob."""

    id: str
    note_id: str
    node_id: str | None
    filename: str
    storage_path: str
    mime_type: str | None
    size_bytes: int
    content_hash: str
    created_at: int = 0


@dataclass(frozen=True)
class DailyNote:
    date: datetime.date
    note_id: str


@dataclass(frozen=True)
class Favorite:
    note_id: str
    position: int
    created_at: int = 0


@dataclass(frozen=True)
class TaskLogEntry:
    """One task-state transition. Never mutated after insert."""

    id: int
    node_id: str
    status: TaskStatus
    old_value: str | None
    new_value: str | None
    timestamp: int


@dataclass(frozen=True)
class Breadcrumb:
    """A single ancestor in a breadcrumb trail."""

    node_id: str
    content: str
    depth: int


@dataclass(frozen=True)
class SearchResult:
    """A search hit with context."""

    node: OutlineNode
    note_title: str
    snippet: str
    score: float = 0.0


@dataclass(frozen=True)
class SearchResponse:
    """Results of one search, stamped with the order it was issued in."""

    sequence: int
    query: str
    results: tuple[SearchResult, ...]


@dataclass(frozen=True)
class Backlink:
    """One inbound reference: the link, the node holding it, and its text."""

    link: Link
    node: OutlineNode | None
    link_text: str
    context: str


@dataclass(frozen=True)
class BacklinkGroup:
    source_note: Note
    references: tuple[Backlink, ...]


@dataclass(frozen=True)
class Transclusion:
    """Live content of a transcluded node, or a broken-reference marker."""

    title: str
    node_id: str
    content: str | None

    @property
    def broken(self) -> bool:
        return self.content is None


@dataclass(frozen=True)
class TaskFilter:
    """Filter for the open-task overview."""

    note_id: str | None = None
    priority: Priority | None = None
    due_on_or_before: datetime.date | None = None
    include_completed: bool = False

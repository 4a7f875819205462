"""Outline knowledge base: storage layer for a hierarchical note store."""

from outline_kb.core.attachments.store import FileBlobStorage
from outline_kb.protocols import BlobStorageProtocol
from outline_kb.repository import Repository
from outline_kb.writer import MarkdownWriter

__all__ = ["BlobStorageProtocol", "FileBlobStorage", "MarkdownWriter", "Repository"]

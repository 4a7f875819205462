"""Typed errors raised by the knowledge-base storage layer.

Every error carries a human-readable message and a ``details`` dict with
machine-readable context, so UI layers can render or serialize it.
"""

from typing import Any


class OutlineError(Exception):
    """Base class for all storage-layer errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to a dict for serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class NotFoundError(OutlineError):
    """An entity id does not exist."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(
            f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": str(entity_id)},
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(OutlineError):
    """Invalid input: bad position, cyclic reparent, empty title and similar."""


class ConstraintViolation(OutlineError):
    """A uniqueness rule would be broken (tag name, daily-note date, favorite)."""


class StorageIOError(OutlineError):
    """Reading or writing attachment bytes failed."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, details=details)
        self.path = path
        self.original_error = original_error


class IndexInconsistency(OutlineError):
    """The search index disagrees with stored node content.

    Never expected under correct operation. The repository rebuilds the index
    before re-raising this error.
    """

    def __init__(self, node_ids: list[str]) -> None:
        super().__init__(
            f"Search index out of sync for {len(node_ids)} node(s)",
            details={"node_ids": node_ids[:20]},
        )
        self.node_ids = node_ids

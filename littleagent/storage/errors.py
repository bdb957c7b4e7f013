from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or FK constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class MissingReference(ConstraintViolation):
    """A referenced record does not exist inside the caller's workspace.

    Records that exist in another workspace are reported the same way, so the
    error never confirms that a foreign id is valid.
    """

    def __init__(self, entity: str, record_id: str, workspace_id: str):
        super().__init__(
            f"{entity} not found",
            {"entity": entity, "id": record_id, "workspace_id": workspace_id},
        )
        self.entity = entity


__all__ = ["ConstraintViolation", "MissingReference"]

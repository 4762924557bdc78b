"""Search result window and bulk status models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ResultWindow(list):
    """Ordered search results with out-of-band metadata.

    Attributes:
        total: Total number of matches, when it was requested.
        aggregations: Aggregations of the first response.
        cursor_id: Latest Point-in-Time id, only for caller-managed cursors.
        last_sort_key: Sort values of the last item, for chaining ``search_after``.
    """

    def __init__(self, *items: Any) -> None:
        super().__init__(items)
        self.total: int | None = None
        self.aggregations: dict[str, Any] | None = None
        self.cursor_id: str | None = None
        self.last_sort_key: list[Any] | None = None


class BulkState(str, Enum):
    """Lifecycle state of a bulk item."""

    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"


class StatusEntry(BaseModel):
    """Outcome of one bulk item, keyed by its identity tag."""

    id: str | None = Field(default=None, description="Storage id of the document")
    index: str | None = Field(default=None, description="Collection address (alias or index)")
    status: int | None = Field(default=None, description="HTTP status of the last operation")
    message: str | None = Field(default=None, description="Result string or error reason")
    state: BulkState = Field(default=BulkState.IN_PROGRESS, description="Lifecycle state")
    payload: dict[str, Any] = Field(default_factory=dict, description="Caller-attached metadata")

    @property
    def failed(self) -> bool:
        return self.status is not None and self.status >= 400

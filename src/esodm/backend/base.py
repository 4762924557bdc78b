"""Base search backend — Abstract interface for the document store transport.

A backend translates one logical operation into one HTTP request and returns
a ``Response``. It must:
  1. Raise ``BackendError`` subclasses (see ``esodm.backend.exceptions``) for
     error statuses, never return them
  2. Leave retrying and payload splitting to ``esodm.core.action.Action``
  3. Report health status
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class Response(BaseModel):
    """A single backend response."""

    body: Any = Field(default=None, description="Parsed JSON body")
    status_code: int = Field(default=200, description="HTTP status code")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers")


class BackendHealth(BaseModel):
    """Health status of the backend cluster."""

    status: str = Field(description="Health status: healthy, degraded, unhealthy")
    latency_ms: int = Field(default=0, description="Latency of the health check in ms")
    last_check: str | None = Field(default=None, description="ISO timestamp of the health check")
    message: str | None = Field(default=None, description="Additional health message")


class SearchBackend(ABC):
    """Abstract base class for document store transports.

    Method names double as operation names for ``Action.call``; every method
    returns a ``Response``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique backend name (e.g., 'elasticsearch')."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections. Called once before first use."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Close connections."""

    @abstractmethod
    async def health_check(self) -> BackendHealth:
        """Check the health of the backend cluster."""

    # ── Documents ────────────────────────────────────────────────────────

    @abstractmethod
    async def search(
        self,
        index: str | None,
        body: dict[str, Any],
        from_: int | None = None,
        size: int | None = None,
        source: bool | list[str] | None = None,
        track_total_hits: bool = True,
        search_after: list[Any] | None = None,
        pit_id: str | None = None,
        keep_alive: int | None = None,
    ) -> Response:
        """Run a search. ``index`` must be ``None`` when ``pit_id`` is given."""

    @abstractmethod
    async def bulk(self, operations: list[dict[str, Any]], refresh: bool | str = True) -> Response:
        """Send alternating action/document entries in one request."""

    @abstractmethod
    async def get(self, index: str, doc_id: str, source: bool | list[str] = True) -> Response:
        """Fetch one document; raises ``NotFoundError`` when missing."""

    @abstractmethod
    async def mget(self, index: str, ids: list[str], source: bool | list[str] = True) -> Response:
        """Fetch many documents; missing ones are reported with ``found: false``."""

    @abstractmethod
    async def index(
        self,
        index: str,
        document: dict[str, Any],
        doc_id: str | None = None,
        primary_term: int | None = None,
        seq_no: int | None = None,
        refresh: bool | str = True,
    ) -> Response:
        """Create or replace one document, conditionally when tokens are given."""

    @abstractmethod
    async def delete(
        self,
        index: str,
        doc_id: str,
        primary_term: int | None = None,
        seq_no: int | None = None,
        refresh: bool | str = True,
    ) -> Response:
        """Delete one document, conditionally when tokens are given."""

    @abstractmethod
    async def count(self, index: str, body: dict[str, Any] | None = None) -> Response:
        """Count documents matching the body query."""

    @abstractmethod
    async def update_by_query(
        self,
        index: str,
        body: dict[str, Any],
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
        refresh: bool | str = True,
    ) -> Response:
        """Update documents matching a query."""

    @abstractmethod
    async def delete_by_query(
        self,
        index: str,
        body: dict[str, Any],
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
        refresh: bool | str = True,
    ) -> Response:
        """Delete documents matching a query."""

    # ── Point in Time ────────────────────────────────────────────────────

    @abstractmethod
    async def open_pit(self, index: str, keep_alive: int | None = None) -> Response:
        """Open a Point-in-Time cursor; body carries ``id``."""

    @abstractmethod
    async def close_pit(self, pit_id: str) -> Response:
        """Close a Point-in-Time cursor; body carries ``succeeded``."""

    # ── Index administration ─────────────────────────────────────────────

    @abstractmethod
    async def create_index(self, index: str, body: dict[str, Any] | None = None) -> Response:
        """Create a physical index."""

    @abstractmethod
    async def delete_index(self, index: str) -> Response:
        """Delete a physical index."""

    @abstractmethod
    async def exists_index(self, index: str) -> Response:
        """Body is ``True`` when the index (or alias) exists."""

    @abstractmethod
    async def get_alias(self, alias: str) -> Response:
        """Body maps physical index names to their alias definitions."""

    @abstractmethod
    async def exists_alias(self, alias: str) -> Response:
        """Body is ``True`` when the alias exists."""

    @abstractmethod
    async def put_alias(self, index: str, alias: str) -> Response:
        """Point a write alias at an index."""

    @abstractmethod
    async def delete_alias(self, index: str, alias: str) -> Response:
        """Remove an alias from an index."""

    @abstractmethod
    async def refresh(self, index: str) -> Response:
        """Make recent writes searchable."""

    @abstractmethod
    async def get_mapping(self, index: str) -> Response:
        """Return index mappings."""

    @abstractmethod
    async def put_mapping(self, index: str, mapping: dict[str, Any]) -> Response:
        """Update index mappings."""

    @abstractmethod
    async def get_settings(self, index: str, include_defaults: bool = False) -> Response:
        """Return index settings."""

    @abstractmethod
    async def put_settings(self, index: str, settings: dict[str, Any]) -> Response:
        """Update index settings."""

    @abstractmethod
    async def reindex(
        self,
        source: str,
        dest: str,
        script: dict[str, Any] | None = None,
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
        refresh: bool | str = True,
    ) -> Response:
        """Copy every document of ``source`` into ``dest``, optionally through a script."""

    @abstractmethod
    async def clone_index(self, source: str, target: str, settings: dict[str, Any] | None = None) -> Response:
        """Clone a write-blocked physical index into ``target``."""

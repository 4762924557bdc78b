"""Repository — Typed access to one tenant-scoped collection.

A repository binds a ``ModelConfig`` to a backend and a ``RetryPolicy``.
Every public coroutine runs as one ``Action``, so retries, payload
splitting and call summaries apply uniformly to searches, bulk writes and
index administration.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from typing import Any

from esodm.backend.base import SearchBackend
from esodm.backend.exceptions import InvalidRequestError, NotFoundError
from esodm.config.settings import RetryPolicy
from esodm.core import search as search_engine
from esodm.core.action import Action
from esodm.core.bulk import BulkArray
from esodm.models.config import ModelConfig, with_immediate_refresh, with_tenant
from esodm.models.document import Document
from esodm.models.query import CursorOptions, SearchRequest
from esodm.models.result import ResultWindow

logger = logging.getLogger(__name__)


class Repository:
    """Entry point for searching and writing documents of one collection.

    Args:
        config: Immutable collection configuration.
        backend: Initialized transport.
        policy: Retry and paging limits for every operation.
        document_class: ``Document`` subclass built from search hits.

    Example:
        >>> users = Repository(ModelConfig(tenant="acme", base_name="users"), backend)
        >>> window = await users.search({"query": {"match_all": {}}}, 0, 20)
        >>> window.total
        42
    """

    def __init__(
        self,
        config: ModelConfig,
        backend: SearchBackend,
        policy: RetryPolicy | None = None,
        document_class: type[Document] = Document,
    ) -> None:
        self._config = config
        self._backend = backend
        self._policy = policy or RetryPolicy()
        self._document_class = document_class

    def __repr__(self) -> str:
        return f"Repository(alias={self.alias!r}, backend={self._backend.name!r})"

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def backend(self) -> SearchBackend:
        return self._backend

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def alias(self) -> str:
        return self._config.alias

    def in_tenant(self, tenant: str) -> Repository:
        """Return a repository over the same collection of another tenant."""
        return type(self)(with_tenant(self._config, tenant), self._backend, self._policy, self._document_class)

    def with_immediate_refresh(self, immediate_refresh: bool | str) -> Repository:
        """Return a repository sending ``immediate_refresh`` as the 'refresh' parameter."""
        return type(self)(
            with_immediate_refresh(self._config, immediate_refresh),
            self._backend,
            self._policy,
            self._document_class,
        )

    def action(self, name: str) -> Action:
        """Start a logical operation against this collection."""
        return Action(name, self._backend, self._policy, alias=self.alias)

    def check_writable(self, operation: str) -> None:
        """Raise ``InvalidRequestError`` when the alias addresses several tenants."""
        if self._config.is_wildcard:
            raise InvalidRequestError(f"Cannot {operation} on '{self.alias}': the address contains a wildcard.")

    def new(self, data: dict[str, Any] | None = None, **kwargs: Any) -> Document:
        """Create an unsaved document of this repository."""
        return self._document_class(self, data, **kwargs)

    def from_hit(self, hit: dict[str, Any]) -> Document:
        """Build a typed document from a search hit or a get response."""
        return self._document_class(
            self,
            hit.get("_source"),
            id=hit.get("_id"),
            version=hit.get("_version"),
            primary_term=hit.get("_primary_term"),
            seq_no=hit.get("_seq_no"),
            score=hit.get("_score"),
            sort=hit.get("sort"),
            highlight=hit.get("highlight"),
        )

    # ── Hooks ────────────────────────────────────────────────────────────

    async def get_bulk_size(self) -> int:
        """Page size used while walking a cursor. Override to adapt it."""
        return self._policy.bulk_size

    async def after_search(self, window: BulkArray, cache: dict[str, Any] | None = None) -> None:
        """Called once with every non-empty window of typed documents."""

    # ── Point in Time ────────────────────────────────────────────────────

    async def open_pit(self, keep_alive: int | None = None, *, action: Action | None = None) -> str:
        """Open a Point-in-Time cursor over the alias and return its id."""
        if action is None:
            with self.action("openPIT") as own_action:
                response = await own_action.call("open_pit", self.alias, keep_alive)
        else:
            response = await action.call("open_pit", self.alias, keep_alive)
        return response.body["id"]

    async def close_pit(self, pit_id: str, *, action: Action | None = None) -> bool:
        """Close a Point-in-Time cursor. Never raises; returns whether it succeeded."""
        if action is None:
            with self.action("closePIT") as own_action:
                return await own_action.close_pit(pit_id)
        return await action.close_pit(pit_id)

    # ── Search ───────────────────────────────────────────────────────────

    async def search(
        self,
        body: dict[str, Any] | None = None,
        from_: int | str | None = None,
        size: int | str | None = None,
        *,
        source: bool | list[str] | None = None,
        pit_id: str | None = None,
        search_after: list[Any] | None = None,
        auto_sort: bool = True,
        track_total_hits: bool | None = None,
        keep_alive: int | None = None,
        cache: dict[str, Any] | None = None,
    ) -> ResultWindow:
        """Return the ``from_``/``size`` window of documents matching ``body``.

        Windows deeper than ``policy.page_limit`` are read through an implicit
        Point-in-Time cursor. With ``pit_id`` or ``search_after`` a single page
        is returned; continue with ``window.cursor_id`` and ``window.last_sort_key``.

        Args:
            body: Search body (query, sort, aggs, ...).
            from_: Index of the first hit; numeric strings are accepted.
            size: Number of hits; absent means all matches.
            source: ``None`` returns a ``BulkArray`` of documents, anything else
                a ``ResultWindow`` of raw hits with this '_source' filter.
            pit_id: Caller-owned Point-in-Time id.
            search_after: Sort values of the last hit already seen.
            auto_sort: Add a tie-break sort for cursors without a sort.
            track_total_hits: Populate ``window.total``.
            keep_alive: Point-in-Time keep alive in seconds.
            cache: Object handed to ``after_search``.

        Raises:
            InvalidRequestError: Invalid ``from_``/``size``, or a cursor with ``from_``.
            ShardFailureError: Any shard failed.
        """
        request = SearchRequest(
            body=body or {},
            from_=from_,
            size=size,
            source=source,
            cursor=CursorOptions(
                pit_id=pit_id,
                search_after=search_after,
                auto_sort=auto_sort,
                track_total_hits=track_total_hits,
                keep_alive=keep_alive,
            ),
            cache=cache,
        )
        with self.action("search") as action:
            return await search_engine.search(self, action, request)

    async def find_all(self, source: bool | list[str] | None = None) -> ResultWindow:
        """Return every document of the collection."""
        return await self.search({"query": {"match_all": {}}}, source=source)

    async def find(self, ids: str | Sequence[str], source: bool | list[str] | None = None) -> Any:
        """Search documents by id.

        Returns:
            One item for a single id, a window for a list of ids.

        Raises:
            NotFoundError: A single id does not match any document.
        """
        single = isinstance(ids, str)
        id_list = [ids] if single else list(ids)
        window = await self.search({"query": {"ids": {"values": id_list}}}, 0, len(id_list), source=source)
        if single:
            if not window:
                raise NotFoundError(f"Document '{ids}' not found in '{self.alias}'.", status_code=404)
            return window[0]
        return window

    async def get(self, ids: str | Sequence[str]) -> Document | BulkArray:
        """Fetch documents by id in real time.

        Ids missing from a list are recorded as ``not_found`` status entries
        of the returned ``BulkArray``.

        Raises:
            NotFoundError: A single id does not exist.
        """
        single = isinstance(ids, str)
        id_list = [ids] if single else list(ids)

        window = BulkArray()
        if id_list:
            with self.action("get") as action:
                response = await action.call("mget", self.alias, id_list, True)
            for doc in response.body.get("docs", []):
                if doc.get("found"):
                    window.append(self.from_hit(doc))
                else:
                    window.not_found(doc.get("_id"), doc.get("_index") or self.alias)

        if single and not window:
            raise NotFoundError(f"Document '{ids}' not found in '{self.alias}'.", status_code=404)
        if window:
            await self.after_search(window)
        return window[0] if single else window

    async def head(self, ids: str | Sequence[str]) -> Any:
        """Return storage metadata (id, version tokens) without sources.

        Raises:
            NotFoundError: Any of the ids does not exist.
        """
        single = isinstance(ids, str)
        docs = await self._mget_heads([ids] if single else list(ids))
        missing = [doc.get("_id") for doc in docs if not doc.get("found")]
        if missing:
            raise NotFoundError(f"Documents {missing} not found in '{self.alias}'.", status_code=404)
        return docs[0] if single else docs

    async def exists(self, ids: str | Sequence[str]) -> bool | list[bool]:
        """Check whether documents exist."""
        single = isinstance(ids, str)
        docs = await self._mget_heads([ids] if single else list(ids))
        found = [bool(doc.get("found")) for doc in docs]
        return found[0] if single else found

    async def count(self, body: dict[str, Any] | None = None) -> int:
        """Return the number of documents matching ``body['query']``."""
        query = {"query": body["query"]} if body and "query" in body else None
        with self.action("count") as action:
            response = await action.call("count", self.alias, query)
        return response.body["count"]

    def bulk_iterator(
        self,
        body: dict[str, Any] | None = None,
        *,
        source: bool | list[str] | None = None,
        page_size: int | None = None,
        keep_alive: int | None = None,
        cache: dict[str, Any] | None = None,
    ) -> AsyncIterator[ResultWindow]:
        """Yield every match page by page over an owned Point-in-Time cursor.

        The cursor is closed when the iteration ends or is abandoned.

        Example:
            >>> async for page in users.bulk_iterator({"query": {"match_all": {}}}):
            ...     await page.save()
        """
        return search_engine.iterate_pages(
            self, body or {}, source=source, page_size=page_size, keep_alive=keep_alive, cache=cache
        )

    async def item_iterator(
        self,
        body: dict[str, Any] | None = None,
        *,
        source: bool | list[str] | None = None,
        page_size: int | None = None,
        keep_alive: int | None = None,
        cache: dict[str, Any] | None = None,
    ) -> AsyncIterator[Any]:
        """Yield every match one by one; see ``bulk_iterator``."""
        pages = self.bulk_iterator(body, source=source, page_size=page_size, keep_alive=keep_alive, cache=cache)
        async with aclosing(pages):
            async for page in pages:
                for item in page:
                    yield item

    # ── Writes ───────────────────────────────────────────────────────────

    async def delete(self, ids: str | Sequence[str]) -> dict[str, Any]:
        """Delete documents by id in one bulk request; returns the bulk body."""
        self.check_writable("delete")
        id_list = [ids] if isinstance(ids, str) else list(ids)
        operations = [{"delete": {"_index": self.alias, "_id": doc_id}} for doc_id in id_list]
        with self.action("delete") as action:
            response = await action.send_bulk(operations, self._config.immediate_refresh)
        return response.body

    async def update(self, ids: str | Sequence[str], body: dict[str, Any]) -> dict[str, Any]:
        """Partially update documents by id with ``body`` (``doc`` or ``script``)."""
        self.check_writable("update")
        if not body:
            raise InvalidRequestError("Update body must not be empty.")
        id_list = [ids] if isinstance(ids, str) else list(ids)
        operations: list[dict[str, Any]] = []
        for doc_id in id_list:
            operations.append({"update": {"_index": self.alias, "_id": doc_id}})
            operations.append(body)
        with self.action("update") as action:
            response = await action.send_bulk(operations, self._config.immediate_refresh)
        return response.body

    async def update_by_query(
        self,
        body: dict[str, Any],
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
    ) -> dict[str, Any]:
        """Update every document matching ``body['query']`` with ``body['script']``."""
        self.check_writable("update by query")
        with self.action("updateByQuery") as action:
            action.log_params(scroll_size=scroll_size, wait_for_completion=wait_for_completion)
            response = await action.call(
                "update_by_query",
                self.alias,
                body,
                scroll_size,
                wait_for_completion,
                self._config.immediate_refresh,
            )
        return response.body

    async def delete_by_query(
        self,
        body: dict[str, Any],
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
    ) -> dict[str, Any]:
        """Delete every document matching ``body['query']``."""
        self.check_writable("delete by query")
        with self.action("deleteByQuery") as action:
            action.log_params(scroll_size=scroll_size, wait_for_completion=wait_for_completion)
            response = await action.call(
                "delete_by_query",
                self.alias,
                body,
                scroll_size,
                wait_for_completion,
                self._config.immediate_refresh,
            )
        return response.body

    # ── Index administration ─────────────────────────────────────────────

    async def create_index(self, body: dict[str, Any] | None = None, set_alias: bool = True) -> str:
        """Create a physical index ``<alias>-<unix ms>`` and return its name.

        Args:
            body: Index settings and mappings.
            set_alias: Point the write alias at the new index.
        """
        self.check_writable("create index")
        index = f"{self.alias}-{int(time.time() * 1000)}"
        with self.action("createIndex") as action:
            await action.call("create_index", index, body)
            if set_alias:
                await action.call("put_alias", index, self.alias)
        logger.info("Created index %s (alias set: %s)", index, set_alias)
        return index

    async def get_index(self) -> str | None:
        """Return the physical index behind the alias, or None when there is none."""
        with self.action("getIndex") as action:
            try:
                response = await action.call("get_alias", self.alias)
            except NotFoundError:
                return None
        indices = list(response.body or {})
        return indices[0] if indices else None

    async def index_exists(self) -> bool:
        with self.action("indexExists") as action:
            response = await action.call("exists_index", self.alias)
        return bool(response.body)

    async def alias_exists(self) -> bool:
        with self.action("aliasExists") as action:
            response = await action.call("exists_alias", self.alias)
        return bool(response.body)

    async def alias_index(self, index: str) -> None:
        """Point the write alias at ``index``."""
        self.check_writable("alias index")
        with self.action("aliasIndex") as action:
            await action.call("put_alias", index, self.alias)

    async def delete_alias(self) -> None:
        """Remove the alias, keeping the index behind it.

        Raises:
            NotFoundError: The alias does not exist.
        """
        self.check_writable("delete alias")
        index = await self._require_index()
        with self.action("deleteAlias") as action:
            await action.call("delete_alias", index, self.alias)

    async def delete_index(self) -> None:
        """Delete the index behind the alias, and the alias with it.

        Raises:
            NotFoundError: The alias does not exist.
        """
        self.check_writable("delete index")
        index = await self._require_index()
        with self.action("deleteIndex") as action:
            await action.call("delete_index", index)
        logger.info("Deleted index %s", index)

    async def refresh(self) -> dict[str, Any]:
        with self.action("refresh") as action:
            response = await action.call("refresh", self.alias)
        return response.body

    async def get_mapping(self) -> dict[str, Any]:
        with self.action("getMapping") as action:
            response = await action.call("get_mapping", self.alias)
        return response.body

    async def put_mapping(self, mapping: dict[str, Any]) -> dict[str, Any]:
        self.check_writable("put mapping")
        with self.action("putMapping") as action:
            response = await action.call("put_mapping", self.alias, mapping)
        return response.body

    async def get_settings(self, include_defaults: bool = False) -> dict[str, Any]:
        with self.action("getSettings") as action:
            response = await action.call("get_settings", self.alias, include_defaults)
        return response.body

    async def put_settings(self, settings: dict[str, Any]) -> dict[str, Any]:
        self.check_writable("put settings")
        with self.action("putSettings") as action:
            response = await action.call("put_settings", self.alias, settings)
        return response.body

    async def reindex(
        self,
        destination: Repository | str,
        script: str | dict[str, Any] | None = None,
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
    ) -> dict[str, Any]:
        """Copy every document of this collection into ``destination``.

        Args:
            destination: Repository or index name to write into.
            script: Painless source, or a full script object, run on each document.
            scroll_size: Documents read per batch.
            wait_for_completion: Wait for the copy instead of returning a task.

        Raises:
            InvalidRequestError: ``destination`` addresses several indices.
        """
        if isinstance(destination, Repository):
            destination.check_writable("reindex")
            dest = destination.alias
            refresh = destination.config.immediate_refresh
        else:
            if "*" in destination or "," in destination:
                raise InvalidRequestError(f"Cannot reindex into '{destination}': it addresses several indices.")
            dest = destination
            refresh = self._config.immediate_refresh
        if isinstance(script, str):
            script = {"source": script, "lang": "painless"}

        with self.action("reindex") as action:
            action.log_params(destination=dest, scroll_size=scroll_size, wait_for_completion=wait_for_completion)
            response = await action.call("reindex", self.alias, dest, script, scroll_size, wait_for_completion, refresh)
        logger.info("Reindexed %s into %s", self.alias, dest)
        return response.body

    async def clone_index(self, settings: dict[str, Any] | None = None) -> str:
        """Clone the index behind the alias into ``<alias>-<unix ms>`` and return its name.

        The index must be write-blocked first (``index.blocks.write``). The
        clone keeps the replica count unless ``settings`` overrides it; the
        alias is not moved.

        Raises:
            NotFoundError: The alias does not exist.
        """
        self.check_writable("clone index")
        index = await self._require_index()
        target = f"{self.alias}-{int(time.time() * 1000)}"
        with self.action("cloneIndex") as action:
            response = await action.call("get_settings", index)
            current = response.body.get(index, {}).get("settings", {})
            replicas = current.get("index", {}).get("number_of_replicas", current.get("index.number_of_replicas"))
            clone_settings = {"index.number_of_replicas": replicas} if replicas is not None else {}
            clone_settings.update(settings or {})
            await action.call("clone_index", index, target, clone_settings)
        logger.info("Cloned index %s into %s", index, target)
        return target

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _mget_heads(self, ids: list[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        with self.action("head") as action:
            response = await action.call("mget", self.alias, ids, False)
        return response.body.get("docs", [])

    async def _require_index(self) -> str:
        index = await self.get_index()
        if index is None:
            raise NotFoundError(f"Alias '{self.alias}' does not exist.", status_code=404)
        return index

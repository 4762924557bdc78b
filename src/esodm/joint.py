"""Joint search — One request over the recorded queries of several collections.

Searches run through a recorder are not sent; their queries are kept. A
joint search then matches every recorded query within its own collection
(``_index`` term) and routes each hit back to the repository it came from.

Example:
    >>> joint = JointRepository()
    >>> await joint.record_search(users).search({"query": {"term": {"tags": "vip"}}})
    >>> await joint.record_search(orders).search({"query": {"range": {"total": {"gte": 100}}}})
    >>> window = await joint.search({}, 0, 50)
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from esodm.backend.base import SearchBackend
from esodm.backend.exceptions import InvalidRequestError
from esodm.config.settings import RetryPolicy
from esodm.core import search as search_engine
from esodm.core.action import Action
from esodm.core.bulk import BulkArray
from esodm.models.config import ModelConfig, parse_alias
from esodm.models.document import Document
from esodm.models.query import CursorOptions, SearchRequest
from esodm.models.result import ResultWindow
from esodm.repository import Repository

logger = logging.getLogger(__name__)


class SearchRecorder(Repository):
    """Repository whose ``search`` only records ``body['query']`` and returns an empty window."""

    def __init__(
        self,
        config: ModelConfig,
        backend: SearchBackend,
        policy: RetryPolicy | None = None,
        document_class: type[Document] = Document,
        *,
        queries: list[dict[str, Any] | None] | None = None,
    ) -> None:
        super().__init__(config, backend, policy, document_class)
        self.queries = [] if queries is None else queries

    async def search(self, body: dict[str, Any] | None = None, *args: Any, **kwargs: Any) -> ResultWindow:
        self.queries.append(copy.deepcopy((body or {}).get("query")))
        return ResultWindow()


class _Member:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository
        self.queries: list[dict[str, Any] | None] = []
        self.results: list[Document] = []


class JointRepository:
    """Combines recorded searches of several repositories into one.

    Every member contributes ``bool.must[_index term, query]`` clauses to one
    ``bool.should`` query. Typed hits are built by the member repository and
    each member's ``after_search`` receives only its own documents.
    """

    def __init__(self) -> None:
        self._members: list[_Member] = []

    def __repr__(self) -> str:
        return f"JointRepository(aliases={self.aliases!r})"

    @property
    def aliases(self) -> list[str]:
        return [member.repository.alias for member in self._members]

    @property
    def alias(self) -> str:
        return ",".join(self.aliases)

    def record_search(self, repository: Repository) -> SearchRecorder:
        """Return a recorder of ``repository``; recording twice appends to the same member.

        Raises:
            InvalidRequestError: The alias contains a wildcard.
        """
        if repository.config.is_wildcard:
            raise InvalidRequestError(f"Cannot record search on '{repository.alias}': the address contains a wildcard.")
        logger.debug("Recording searches of %s", repository.alias)

        member = self._member(repository.alias)
        if member is None:
            member = _Member(repository)
            self._members.append(member)
        return SearchRecorder(
            repository.config,
            repository.backend,
            repository.policy,
            repository._document_class,
            queries=member.queries,
        )

    def clear_search(self) -> None:
        """Forget every recorded query."""
        for member in self._members:
            member.queries.clear()
            member.results.clear()

    # ── Collaborator surface of the search engine ────────────────────────

    def action(self, name: str) -> Action:
        first = self._first().repository
        return Action(name, first.backend, first.policy, alias=self.alias)

    async def get_bulk_size(self) -> int:
        sizes = [await member.repository.get_bulk_size() for member in self._members]
        return min(sizes)

    async def open_pit(self, keep_alive: int | None = None, *, action: Action | None = None) -> str:
        if action is None:
            with self.action("jointOpenPIT") as own_action:
                response = await own_action.call("open_pit", self.alias, keep_alive)
        else:
            response = await action.call("open_pit", self.alias, keep_alive)
        return response.body["id"]

    async def close_pit(self, pit_id: str, *, action: Action | None = None) -> bool:
        if action is None:
            with self.action("jointClosePIT") as own_action:
                return await own_action.close_pit(pit_id)
        return await action.close_pit(pit_id)

    def from_hit(self, hit: dict[str, Any]) -> Document:
        """Build the document with the repository of the collection ``hit`` came from."""
        try:
            alias = parse_alias(hit["_index"])["alias"]
        except ValueError as e:
            raise InvalidRequestError(f"Hit from '{hit['_index']}' does not belong to any recorded collection.") from e
        member = self._member(alias)
        if member is None:
            raise InvalidRequestError(f"Hit from '{hit['_index']}' does not belong to any recorded collection.")
        document = member.repository.from_hit(hit)
        member.results.append(document)
        return document

    async def after_search(self, window: BulkArray, cache: dict[str, Any] | None = None) -> None:
        members = [member for member in self._members if member.results]
        try:
            await asyncio.gather(
                *(member.repository.after_search(BulkArray(*member.results), cache) for member in members)
            )
        finally:
            for member in members:
                member.results.clear()

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
        """Run every recorded query at once; see ``Repository.search``.

        ``body['query']`` is replaced, the rest of ``body`` (sort, aggs, ...)
        is kept.

        Raises:
            InvalidRequestError: Nothing has been recorded.
        """
        request = SearchRequest(
            body=self._joint_body(body),
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
        for member in self._members:
            member.results.clear()
        with self.action("jointSearch") as action:
            return await search_engine.search(self, action, request)

    def bulk_iterator(
        self,
        body: dict[str, Any] | None = None,
        *,
        source: bool | list[str] | None = None,
        page_size: int | None = None,
        keep_alive: int | None = None,
        cache: dict[str, Any] | None = None,
    ) -> AsyncIterator[ResultWindow]:
        """Yield every joint match page by page over an owned Point-in-Time cursor."""
        return search_engine.iterate_pages(
            self, self._joint_body(body), source=source, page_size=page_size, keep_alive=keep_alive, cache=cache
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
        """Yield every joint match one by one."""
        pages = self.bulk_iterator(body, source=source, page_size=page_size, keep_alive=keep_alive, cache=cache)
        async with aclosing(pages):
            async for page in pages:
                for item in page:
                    yield item

    # ── Helpers ──────────────────────────────────────────────────────────

    def _joint_body(self, body: dict[str, Any] | None) -> dict[str, Any]:
        partial_queries = [
            {
                "bool": {
                    "must": [
                        {"term": {"_index": member.repository.alias}},
                        query if query is not None else {"match_all": {}},
                    ]
                }
            }
            for member in self._members
            for query in member.queries
        ]
        if not partial_queries:
            raise InvalidRequestError("No search has been recorded!")

        joint_body = copy.deepcopy(body or {})
        joint_body["query"] = {"bool": {"should": partial_queries}}
        return joint_body

    def _member(self, alias: str) -> _Member | None:
        for member in self._members:
            if member.repository.alias == alias:
                return member
        return None

    def _first(self) -> _Member:
        if not self._members:
            raise InvalidRequestError("No search has been recorded!")
        return self._members[0]

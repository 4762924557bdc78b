"""Tests for the pagination/search engine."""

from __future__ import annotations

from typing import Any

import pytest
from fakes import FakeBackend

from esodm.backend.exceptions import BackendError, InvalidRequestError, ShardFailureError
from esodm.config.settings import RetryPolicy
from esodm.core.bulk import BulkArray
from esodm.core.search import MAX_SAFE_INT, MIN_SAFE_INT, normalize_sort, normalize_window
from esodm.models.document import Document
from esodm.models.query import SearchRequest
from esodm.models.result import ResultWindow
from esodm.repository import Repository

CURSOR_POLICY = RetryPolicy(max_retries=3, base=0.01, page_limit=10, bulk_size=4)


def _ids(window: list[Any]) -> list[str]:
    return [item.id if isinstance(item, Document) else item["_id"] for item in window]


def _expected(start: int, stop: int) -> list[str]:
    return [f"u{i:02d}" for i in range(start, min(stop, 25))]


@pytest.fixture
def deep_users(users: Repository, backend: FakeBackend) -> Repository:
    """Users repository whose page limit forces cursors beyond 10 hits."""
    backend.max_result_window = 10
    return Repository(users.config, backend, CURSOR_POLICY)


class RecordingRepository(Repository):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.hook_calls: list[tuple[int, Any]] = []

    async def after_search(self, window: BulkArray, cache: dict[str, Any] | None = None) -> None:
        self.hook_calls.append((len(window), cache))


# ══════════════════════════════════════════════════════════════════════════════
# Window arithmetic
# ══════════════════════════════════════════════════════════════════════════════


class TestWindow:
    @pytest.mark.parametrize(
        ("from_", "size"),
        [(0, 10), (20, 10), (24, 1), (25, 5), (30, 5), (0, 0), (5, None), (0, None)],
    )
    async def test_window_length_matches_available_hits(self, users: Repository, from_: int, size: int | None) -> None:
        window = await users.search({}, from_, size, source=True)

        stop = 25 if size is None else from_ + size
        assert _ids(window) == _expected(from_, stop)
        assert window.total == 25

    @pytest.mark.parametrize(
        ("from_", "size"),
        [(0, 12), (3, 15), (9, 2), (8, 30), (0, None), (17, None)],
    )
    async def test_deep_windows_are_exact(self, deep_users: Repository, from_: int, size: int | None) -> None:
        window = await deep_users.search({}, from_, size)

        stop = 25 if size is None else from_ + size
        assert _ids(window) == _expected(from_, stop)

    async def test_numeric_strings_are_accepted(self, users: Repository) -> None:
        window = await users.search({}, "2", "3")
        assert _ids(window) == _expected(2, 5)

    async def test_body_from_and_size_are_a_fallback(self, users: Repository, backend: FakeBackend) -> None:
        window = await users.search({"from": 3, "size": 2})
        assert _ids(window) == _expected(3, 5)
        assert "from" not in backend.params_of("search")[0]["body"]

        window = await users.search({"from": 3, "size": 2}, 0, 1)
        assert _ids(window) == _expected(0, 1)

    async def test_empty_collection_returns_empty_window(self, empty_users: Repository) -> None:
        window = await empty_users.search({})
        assert len(window) == 0
        assert window.total == 0
        assert window.last_sort_key is None

    async def test_total_can_be_skipped(self, users: Repository) -> None:
        window = await users.search({}, 0, 5, track_total_hits=False)
        assert len(window) == 5
        assert window.total is None

    async def test_query_is_applied(self, users: Repository) -> None:
        window = await users.search({"query": {"term": {"tags": "even"}}}, 0, 100)
        assert window.total == 13
        assert all(item["tags"] == ["even"] for item in window)


# ══════════════════════════════════════════════════════════════════════════════
# Validation
# ══════════════════════════════════════════════════════════════════════════════


class TestValidation:
    @pytest.mark.parametrize(
        ("body", "kwargs"),
        [
            ({}, {"from_": -1}),
            ({}, {"size": -1}),
            ({}, {"from_": "-3"}),
            ({}, {"size": "-3"}),
            ({"from": -1}, {}),
            ({"size": "-2"}, {}),
            ({}, {"from_": "abc"}),
            ({}, {"size": 1.5}),
        ],
    )
    async def test_invalid_window_fails_before_any_call(
        self, users: Repository, backend: FakeBackend, body: dict, kwargs: dict
    ) -> None:
        with pytest.raises(InvalidRequestError):
            await users.search(body, **kwargs)
        assert backend.calls == []

    async def test_search_after_with_from_is_rejected(self, users: Repository, backend: FakeBackend) -> None:
        with pytest.raises(InvalidRequestError, match="search_after"):
            await users.search({"sort": "age"}, 1, 5, search_after=[3])
        assert backend.calls == []

    async def test_explicit_cursor_with_from_is_rejected(self, users: Repository, backend: FakeBackend) -> None:
        with pytest.raises(InvalidRequestError, match="Point in Time"):
            await users.search({}, 2, 5, pit_id="pit-1-0")
        assert backend.calls == []

    def test_absent_size_means_everything(self) -> None:
        assert normalize_window(SearchRequest(from_=7)) == (7, MAX_SAFE_INT - 7, False)
        assert normalize_window(SearchRequest(size="4")) == (0, 4, True)


# ══════════════════════════════════════════════════════════════════════════════
# Implicit cursor
# ══════════════════════════════════════════════════════════════════════════════


class TestImplicitCursor:
    @pytest.mark.parametrize("page_size", [1, 3, 4, 7, 25, 100])
    async def test_traversal_has_no_gaps_or_duplicates(
        self, users: Repository, backend: FakeBackend, page_size: int
    ) -> None:
        policy = RetryPolicy(max_retries=3, base=0.01, page_limit=10, bulk_size=page_size)
        repository = Repository(users.config, backend, policy)

        window = await repository.search({})

        assert _ids(window) == _expected(0, 25)
        assert len(set(_ids(window))) == 25

    async def test_cursor_is_opened_and_closed(self, deep_users: Repository, backend: FakeBackend) -> None:
        await deep_users.search({}, 3, 15)

        assert backend.count_calls("open_pit") == 1
        assert backend.count_calls("close_pit") == 1
        assert backend.open_pit_count == 0

    async def test_pages_read_from_zero_with_tie_break_sort(self, deep_users: Repository, backend: FakeBackend) -> None:
        await deep_users.search({}, 3, 15)

        searches = backend.params_of("search")
        assert len(searches) == 5
        assert all(params["index"] is None for params in searches)
        assert all(params["from_"] == 0 and params["size"] == 4 for params in searches)
        assert searches[0]["body"]["sort"] == [{"_shard_doc": "asc"}]
        assert searches[0]["search_after"] is None
        assert searches[1]["search_after"] is not None

    async def test_latest_cursor_id_is_used_and_closed(self, deep_users: Repository, backend: FakeBackend) -> None:
        await deep_users.search({}, 0, 12)

        searches = backend.params_of("search")
        assert searches[0]["pit_id"] != searches[1]["pit_id"]
        assert backend.params_of("close_pit")[0]["pit_id"] not in (searches[0]["pit_id"], None)

    async def test_cursor_is_closed_when_a_page_fails(self, deep_users: Repository, backend: FakeBackend) -> None:
        original = backend.search

        async def failing_second_page(*args: Any, **kwargs: Any):
            if backend.count_calls("search") >= 1:
                raise BackendError("node disconnected", status_code=500)
            return await original(*args, **kwargs)

        backend.search = failing_second_page  # type: ignore[method-assign]

        with pytest.raises(BackendError, match="node disconnected"):
            await deep_users.search({}, 0, 20)
        assert backend.count_calls("close_pit") == 1
        assert backend.open_pit_count == 0

    async def test_auto_sort_can_be_disabled(self, deep_users: Repository, backend: FakeBackend) -> None:
        window = await deep_users.search({}, 0, 4, pit_id=await deep_users.open_pit(), auto_sort=False)
        assert "sort" not in backend.params_of("search")[0]["body"]
        assert len(window) == 4

    async def test_unsorted_implicit_cursor_is_rejected(self, deep_users: Repository, backend: FakeBackend) -> None:
        with pytest.raises(InvalidRequestError, match="sort is required"):
            await deep_users.search({}, 0, 12, source=True, auto_sort=False)
        assert backend.calls == []

    async def test_implicit_cursor_with_own_sort_and_auto_sort_disabled(
        self, deep_users: Repository, backend: FakeBackend
    ) -> None:
        window = await deep_users.search({"sort": [{"age": "asc"}]}, 0, 12, source=True, auto_sort=False)

        assert _ids(window) == _expected(0, 12)
        assert backend.open_pit_count == 0

    async def test_aggregations_come_from_the_first_page_only(
        self, deep_users: Repository, backend: FakeBackend
    ) -> None:
        original = backend.search
        pages = 0

        async def numbered_pages(*args: Any, **kwargs: Any):
            nonlocal pages
            pages += 1
            response = await original(*args, **kwargs)
            response.body["aggregations"] = {"page": {"value": pages}}
            return response

        backend.search = numbered_pages  # type: ignore[method-assign]

        window = await deep_users.search({}, 0, 20)

        assert pages > 1
        assert window.aggregations == {"page": {"value": 1}}

    async def test_total_comes_from_the_first_page(self, deep_users: Repository, backend: FakeBackend) -> None:
        window = await deep_users.search({}, 0, 20)
        tracked = [params["track_total_hits"] for params in backend.params_of("search")]
        assert window.total == 25
        assert tracked[0] is True
        assert not any(tracked[1:])


# ══════════════════════════════════════════════════════════════════════════════
# Explicit cursor & search_after
# ══════════════════════════════════════════════════════════════════════════════


class TestExplicitCursor:
    async def test_caller_drives_pagination(self, users: Repository, backend: FakeBackend) -> None:
        pit_id = await users.open_pit()

        first = await users.search({}, 0, 10, pit_id=pit_id)
        second = await users.search({}, 0, 10, pit_id=first.cursor_id, search_after=first.last_sort_key)

        assert _ids(first) == _expected(0, 10)
        assert _ids(second) == _expected(10, 20)
        assert first.cursor_id is not None and first.cursor_id != pit_id
        assert first.last_sort_key == first[-1].sort
        assert first.total is None
        assert backend.count_calls("close_pit") == 0

        assert await users.close_pit(second.cursor_id) is True
        assert backend.open_pit_count == 0

    async def test_explicit_size_is_capped_by_page_limit(self, deep_users: Repository, backend: FakeBackend) -> None:
        window = await deep_users.search({}, 0, 50, pit_id=await deep_users.open_pit())
        assert len(window) == 10
        assert backend.params_of("search")[0]["size"] == 10

    async def test_absent_size_uses_page_size_hint(self, deep_users: Repository, backend: FakeBackend) -> None:
        window = await deep_users.search({}, pit_id=await deep_users.open_pit())
        assert len(window) == CURSOR_POLICY.bulk_size

    async def test_cursor_is_a_snapshot(self, empty_users: Repository, backend: FakeBackend) -> None:
        backend.seed("acme_users-1", [{"id": f"a{i}", "name": "a", "age": i} for i in range(10)])
        pit_id = await empty_users.open_pit()
        backend.seed("acme_users-1", [{"id": f"b{i}", "name": "b", "age": i} for i in range(10)])

        seen: list[str] = []
        cursor_id, search_after = pit_id, None
        while True:
            window = await empty_users.search({}, 0, 4, pit_id=cursor_id, search_after=search_after)
            if not window:
                break
            seen += _ids(window)
            cursor_id, search_after = window.cursor_id, window.last_sort_key
        await empty_users.close_pit(cursor_id)

        assert seen == [f"a{i}" for i in range(10)]
        assert (await empty_users.search({})).total == 20

    async def test_search_after_pages_over_missing_sort_values(self, empty_users: Repository, backend: FakeBackend) -> None:
        documents = [{"id": f"r{i}", "name": "r", "age": 1} for i in range(7)]
        for i, document in enumerate(documents):
            if i % 3 != 0:
                document["rank"] = 10 - i
        backend.seed("acme_users-1", documents)

        seen: list[str] = []
        search_after = None
        while True:
            window = await empty_users.search(
                {"sort": [{"rank": "desc"}, {"_id": "asc"}]}, 0, 2, search_after=search_after
            )
            if not window:
                break
            seen += _ids(window)
            search_after = window.last_sort_key

        assert sorted(seen) == sorted(document["id"] for document in documents)
        assert seen[-3:] == ["r0", "r3", "r6"]
        assert window.total is None


# ══════════════════════════════════════════════════════════════════════════════
# Sort normalization
# ══════════════════════════════════════════════════════════════════════════════


class TestSortNormalization:
    def test_string_clause(self) -> None:
        assert normalize_sort("age") == [{"age": {"order": "asc", "missing": MAX_SAFE_INT}}]

    def test_descending_clause_pins_min(self) -> None:
        assert normalize_sort({"age": "desc"}) == [{"age": {"order": "desc", "missing": MIN_SAFE_INT}}]

    def test_missing_first_is_flipped(self) -> None:
        assert normalize_sort([{"age": {"missing": "_first"}}]) == [{"age": {"order": "asc", "missing": MIN_SAFE_INT}}]
        assert normalize_sort([{"age": {"order": "desc", "missing": "_first"}}]) == [
            {"age": {"order": "desc", "missing": MAX_SAFE_INT}}
        ]

    def test_explicit_missing_value_is_kept(self) -> None:
        assert normalize_sort([{"age": {"order": "asc", "missing": 0}}]) == [{"age": {"order": "asc", "missing": 0}}]

    def test_internal_fields_are_not_pinned(self) -> None:
        assert normalize_sort(["_score", {"_shard_doc": "asc"}]) == [
            {"_score": {"order": "desc"}},
            {"_shard_doc": {"order": "asc"}},
        ]

    def test_empty_sort(self) -> None:
        assert normalize_sort(None) == []
        assert normalize_sort([]) == []

    def test_unsupported_clause(self) -> None:
        with pytest.raises(InvalidRequestError):
            normalize_sort([42])

    async def test_sort_is_pinned_only_for_cursors(self, users: Repository, backend: FakeBackend) -> None:
        await users.search({"sort": "age"}, 0, 5)
        await users.search({"sort": "age"}, 0, 5, search_after=[2])

        plain, paged = backend.params_of("search")
        assert plain["body"]["sort"] == "age"
        assert paged["body"]["sort"] == [{"age": {"order": "asc", "missing": MAX_SAFE_INT}}]


# ══════════════════════════════════════════════════════════════════════════════
# Result types, hooks & shard failures
# ══════════════════════════════════════════════════════════════════════════════


class TestResults:
    async def test_typed_documents_by_default(self, users: Repository) -> None:
        window = await users.search({}, 0, 2)

        assert isinstance(window, BulkArray)
        assert window[0].id == "u00"
        assert window[0]["name"] == "user-00"
        assert window[0].version == 1
        assert window[0].seq_no is not None and window[0].primary_term == 1

    async def test_raw_hits_with_source(self, users: Repository) -> None:
        window = await users.search({}, 0, 2, source=["name"])

        assert type(window) is ResultWindow
        assert window[0]["_source"] == {"name": "user-00"}

    async def test_after_search_runs_once_per_window(self, users: Repository, backend: FakeBackend) -> None:
        backend.max_result_window = 10
        repository = RecordingRepository(users.config, backend, CURSOR_POLICY)
        cache = {"users": {}}

        await repository.search({}, 0, 20, cache=cache)
        await repository.search({}, 0, 5, source=True)
        await repository.search({"query": {"ids": {"values": []}}})

        assert repository.hook_calls == [(20, cache)]

    async def test_shard_failure_is_raised_and_not_retried(self, users: Repository, backend: FakeBackend) -> None:
        backend.shard_failures = [{"shard": 0, "reason": {"type": "query_shard_exception"}}]

        with pytest.raises(ShardFailureError) as exc_info:
            await users.search({}, 0, 5)
        assert backend.count_calls("search") == 1
        assert exc_info.value.status_code == 500

    async def test_shard_failure_closes_implicit_cursor(self, deep_users: Repository, backend: FakeBackend) -> None:
        backend.shard_failures = [{"shard": 0, "reason": "boom"}]

        with pytest.raises(ShardFailureError):
            await deep_users.search({}, 0, 20)
        assert backend.open_pit_count == 0

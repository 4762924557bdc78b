"""Search engine — Exact result windows over plain paging, Point in Time and search_after.

A request for ``from``/``size`` is served by:
  - one plain search when ``from + size`` fits into ``policy.page_limit``
  - an implicit Point-in-Time cursor, opened and closed here, when it does not
  - a single page of a caller-owned cursor (``pit_id``) or ``search_after``,
    where the caller drives the pagination with ``cursor_id``/``last_sort_key``
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from esodm.backend.exceptions import InvalidRequestError, ShardFailureError
from esodm.core.bulk import BulkArray
from esodm.models.query import CursorOptions, SearchRequest
from esodm.models.result import ResultWindow

if TYPE_CHECKING:
    from esodm.core.action import Action
    from esodm.joint import JointRepository
    from esodm.repository import Repository

MAX_SAFE_INT = 2**53 - 1
MIN_SAFE_INT = -(2**53 - 1)

DEFAULT_CURSOR_SORT: list[dict[str, Any]] = [{"_shard_doc": "asc"}]


async def search(repository: Repository | JointRepository, action: Action, request: SearchRequest) -> ResultWindow:
    """Return exactly the ``from``/``size`` window of matches.

    Typed documents (``request.source is None``) come back in a ``BulkArray``
    and are passed to ``repository.after_search`` once; raw hits come back in
    a ``ResultWindow``.

    Raises:
        InvalidRequestError: Negative ``from``/``size``, a cursor combined
            with ``from != 0``, or an implicit cursor left without a sort.
            Raised before any backend call.
        ShardFailureError: Any shard failed; never retried.
    """
    from_, size, is_explicit_size = normalize_window(request)
    cursor = request.cursor
    policy = action.policy

    is_explicit_cursor = cursor.pit_id is not None
    is_implicit_cursor = (from_ + size) > policy.page_limit and not is_explicit_cursor
    use_cursor = is_explicit_cursor or is_implicit_cursor
    use_search_after = cursor.search_after is not None

    if use_search_after and from_ != 0:
        raise InvalidRequestError("From can't be specified together with search_after!")
    if is_explicit_cursor and from_ != 0:
        raise InvalidRequestError("From can't be specified when using an explicit Point in Time!")

    if use_cursor:
        request_from = 0
        if is_explicit_cursor and is_explicit_size:
            page_size = min(policy.page_limit, size)
        else:
            page_size = await repository.get_bulk_size()
    else:
        request_from = from_
        page_size = size

    body = {key: value for key, value in request.body.items() if key not in ("from", "size")}
    if use_cursor or use_search_after:
        sort = normalize_sort(body.get("sort"))
        if sort:
            body["sort"] = sort
        elif use_cursor and cursor.auto_sort:
            body["sort"] = list(DEFAULT_CURSOR_SORT)
    # pages of an implicit cursor are chained by the sort values of their last hit
    if is_implicit_cursor and not body.get("sort"):
        raise InvalidRequestError("A sort is required to page through a cursor when auto_sort is disabled!")

    track_total_hits = cursor.track_total_hits
    if track_total_hits is None:
        track_total_hits = not (is_explicit_cursor or use_search_after)

    action.log_params(
        from_=from_,
        size=size,
        source=request.source,
        use_cursor=use_cursor,
        explicit_cursor=is_explicit_cursor,
        search_after=cursor.search_after,
    )

    window: ResultWindow = BulkArray() if request.source is None else ResultWindow()
    pit_id = cursor.pit_id
    owns_pit = False
    last_hit: dict[str, Any] | None = None

    try:
        if is_implicit_cursor:
            pit_id = await repository.open_pit(cursor.keep_alive, action=action)
            owns_pit = True

        search_after = cursor.search_after
        counter = 0 if use_cursor else from_
        end = from_ + size
        first_page = True

        while True:
            response = await action.call(
                "search",
                None if pit_id else repository.alias,
                body,
                request_from,
                page_size,
                request.source,
                track_total_hits and first_page,
                search_after,
                pit_id,
                cursor.keep_alive,
            )
            result = response.body
            raise_on_shard_failures(result)

            if first_page:
                if track_total_hits:
                    window.total = _total_hits(result)
                window.aggregations = result.get("aggregations")
                first_page = False

            pit_id = result.get("pit_id") or pit_id
            hits = result.get("hits", {}).get("hits", [])

            for hit in hits:
                if counter >= end:
                    break
                if counter >= from_:
                    window.append(repository.from_hit(hit) if request.source is None else hit)
                    last_hit = hit
                counter += 1

            if not is_implicit_cursor or not hits or len(hits) < page_size or counter >= end:
                break
            search_after = hits[-1].get("sort")

        if is_explicit_cursor:
            window.cursor_id = pit_id

    finally:
        if owns_pit and pit_id:
            await repository.close_pit(pit_id, action=action)

    window.last_sort_key = last_hit.get("sort") if last_hit else None

    if request.source is None and window:
        action.note("Calling after_search hook.")
        await repository.after_search(window, request.cache)

    return window


async def iterate_pages(
    repository: Repository | JointRepository,
    body: dict[str, Any],
    *,
    source: bool | list[str] | None = None,
    page_size: int | None = None,
    keep_alive: int | None = None,
    cache: dict[str, Any] | None = None,
) -> AsyncIterator[ResultWindow]:
    """Yield every match page by page over a Point-in-Time cursor owned here.

    The cursor is closed when the iteration ends or is abandoned.
    """
    size = page_size or await repository.get_bulk_size()
    with repository.action("bulkIterator") as action:
        pit_id = await repository.open_pit(keep_alive, action=action)
        try:
            search_after: list[Any] | None = None
            while True:
                request = SearchRequest(
                    body=body,
                    size=size,
                    source=source,
                    cursor=CursorOptions(pit_id=pit_id, search_after=search_after, keep_alive=keep_alive),
                    cache=cache,
                )
                window = await search(repository, action, request)
                pit_id = window.cursor_id or pit_id
                if not window:
                    break
                yield window
                if len(window) < size or window.last_sort_key is None:
                    break
                search_after = window.last_sort_key
        finally:
            await repository.close_pit(pit_id, action=action)


def normalize_window(request: SearchRequest) -> tuple[int, int, bool]:
    """Resolve ``from``/``size`` from the request, falling back to the body.

    Returns:
        ``(from, size, is_explicit_size)``; an absent size means "everything".
    """
    from_ = _parse_int(request.from_, "From")
    if from_ is None:
        from_ = _parse_int(request.body.get("from"), "From in body")
    if from_ is None:
        from_ = 0

    size = _parse_int(request.size, "Size")
    if size is None:
        size = _parse_int(request.body.get("size"), "Size in body")
    if size is None:
        return from_, MAX_SAFE_INT - from_, False
    return from_, size, True


def normalize_sort(sort: Any) -> list[dict[str, Any]]:
    """Convert a sort into object clauses with pinned ``missing`` values.

    The backend's own sentinels for missing values are 64-bit extremes that
    do not survive a round trip as ``search_after`` values, so every field
    clause gets a safe-integer sentinel instead. Internal fields (``_score``,
    ``_doc``, ``_shard_doc``, ...) are left without one.
    """
    if not sort:
        return []
    if isinstance(sort, (str, dict)):
        sort = [sort]

    clauses: list[dict[str, Any]] = []
    for clause in sort:
        if isinstance(clause, str):
            clauses.append(_sort_clause(clause, {}))
        elif isinstance(clause, dict):
            for field, options in clause.items():
                if isinstance(options, str):
                    options = {"order": options}
                clauses.append(_sort_clause(field, dict(options)))
        else:
            raise InvalidRequestError(f"Unsupported sort clause: {clause!r}")
    return clauses


def raise_on_shard_failures(result: dict[str, Any]) -> None:
    failures = result.get("_shards", {}).get("failures")
    if failures:
        reason = failures[0].get("reason", failures[0]) if isinstance(failures[0], dict) else failures[0]
        raise ShardFailureError(f"Search failed on {len(failures)} shard(s): {reason}", status_code=500, body=failures)


def _sort_clause(field: str, options: dict[str, Any]) -> dict[str, Any]:
    order = options.get("order") or ("desc" if field == "_score" else "asc")
    options["order"] = order
    if field.startswith("_"):
        return {field: options}

    missing = options.get("missing")
    if missing is None or missing in ("_first", "_last"):
        at_end = missing != "_first"
        if (order == "asc") == at_end:
            options["missing"] = MAX_SAFE_INT
        else:
            options["missing"] = MIN_SAFE_INT
    return {field: options}


def _parse_int(value: Any, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRequestError(f"{name} must be a number!")
    if isinstance(value, str):
        try:
            value = int(value.strip(), 10)
        except ValueError as e:
            raise InvalidRequestError(f"{name} must be a number!") from e
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidRequestError(f"{name} must be an integer!")
        value = int(value)
    elif not isinstance(value, int):
        raise InvalidRequestError(f"{name} must be a number!")

    if value < 0:
        raise InvalidRequestError(f"{name} can't be lower than zero!")
    return value


def _total_hits(result: dict[str, Any]) -> int | None:
    total = result.get("hits", {}).get("total")
    if isinstance(total, dict):
        return total.get("value")
    return total

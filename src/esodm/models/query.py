"""Search request models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CursorOptions(BaseModel):
    """Cursor controls of a search request.

    ``pit_id`` is a caller-owned Point-in-Time id; the engine never closes it.
    Either ``pit_id`` or ``search_after`` forces ``from`` to be 0.
    """

    pit_id: str | None = Field(default=None, description="Explicit Point-in-Time id owned by the caller")
    search_after: list[Any] | None = Field(default=None, description="Sort values of the last item already seen")
    auto_sort: bool = Field(default=True, description="Inject a tie-break sort when a cursor is used without one")
    track_total_hits: bool | None = Field(
        default=None,
        description="Populate the window total; defaults to true unless paging by cursor or search_after",
    )
    keep_alive: int | None = Field(default=None, gt=0, description="Point-in-Time keep alive in seconds")


class SearchRequest(BaseModel):
    """A single search intent against one collection.

    ``from_`` and ``size`` may be numeric strings; they are normalized by the
    search engine, falling back to ``from``/``size`` inside ``body``.
    ``source`` left as ``None`` yields typed documents, anything else raw hits.
    """

    model_config = ConfigDict(populate_by_name=True)

    body: dict[str, Any] = Field(default_factory=dict, description="Search body (query, sort, aggs, ...)")
    from_: int | float | str | None = Field(default=None, alias="from", description="Index of the first returned hit")
    size: int | float | str | None = Field(default=None, description="Number of returned hits")
    source: bool | list[str] | None = Field(default=None, description="Passed as '_source'; controls the result type")
    cursor: CursorOptions = Field(default_factory=CursorOptions, description="Cursor options")
    cache: dict[str, Any] | None = Field(default=None, description="Object handed to the after-search hook")

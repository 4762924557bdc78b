"""Optimistic concurrency — fetch current version tokens before a conditional write."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from esodm.backend.exceptions import NotFoundError, VersionMismatchError

if TYPE_CHECKING:
    from esodm.core.action import Action
    from esodm.models.document import Document


async def fetch_versions(action: Action, documents: list[Document]) -> None:
    """Fill ``version``, ``primary_term`` and ``seq_no`` of ``documents`` in place.

    Heads are fetched concurrently and all of them are awaited before any
    document is touched.

    Raises:
        NotFoundError: A document does not exist anymore.
        VersionMismatchError: A document already knows a version and the
            stored one differs.
    """
    if not documents:
        return

    action.note(f"Fetching version tokens of {len(documents)} document(s).")
    results = await asyncio.gather(
        *(action.call("get", document.alias, document.id, False) for document in documents),
        return_exceptions=True,
    )

    missing: list[str | None] = []
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, NotFoundError):
            raise result
    for document, result in zip(documents, results, strict=True):
        if isinstance(result, NotFoundError) or not result.body.get("found", True):
            missing.append(document.id)
    if missing:
        raise NotFoundError(f"Documents {missing} not found, their versions cannot be verified.", status_code=404)

    for document, result in zip(documents, results, strict=True):
        stored_version = result.body.get("_version")
        if document.version is not None and stored_version != document.version:
            raise VersionMismatchError(document.id or "", document.version, stored_version)

    for document, result in zip(documents, results, strict=True):
        document.version = result.body.get("_version")
        document.primary_term = result.body.get("_primary_term")
        document.seq_no = result.body.get("_seq_no")

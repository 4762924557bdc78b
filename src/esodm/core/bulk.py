"""BulkArray — A mutable list of documents with per-item status tracking.

Batch operations never raise for a single failing item. Every item has a
``StatusEntry`` keyed by its identity tag, recording the HTTP status and
message of the last operation; ``reject``/``finish`` settle items and
``clear`` sweeps settled items out of the list.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from esodm.backend.exceptions import InvalidRequestError, OdmError
from esodm.core.action import Action
from esodm.core.concurrency import fetch_versions
from esodm.models.document import Document, format_errors
from esodm.models.result import BulkState, ResultWindow, StatusEntry

logger = logging.getLogger(__name__)


class BulkArray(ResultWindow):
    """List of documents saved, deleted and reloaded together.

    Args:
        *items: Initial documents.
        immediate_refresh: Value sent as the bulk 'refresh' parameter;
            defaults to the refresh setting of the first item's repository.

    Example:
        >>> bulk = BulkArray(repo.new({"name": "a"}), repo.new({"name": "b"}))
        >>> await bulk.save()
        >>> bulk.es_status()["errors"]
        False
    """

    def __init__(self, *items: Any, immediate_refresh: bool | str | None = None) -> None:
        super().__init__(*items)
        self.immediate_refresh = immediate_refresh
        self._status: dict[str, StatusEntry] = {}
        self._rejected: list[Any] = []
        self._finished: list[Any] = []

    @property
    def status(self) -> dict[str, StatusEntry]:
        """Status table keyed by identity tag; entries are created on first access."""
        for item in self:
            if isinstance(item, Document) and item.uid not in self._status:
                self._status[item.uid] = StatusEntry(id=item.id, index=item.alias)
        return self._status

    @property
    def rejected(self) -> list[Any]:
        """Items moved out by ``clear()`` after being rejected."""
        return self._rejected

    @property
    def finished(self) -> list[Any]:
        """Items moved out by ``clear()`` after being finished."""
        return self._finished

    # ── Backend operations ───────────────────────────────────────────────

    async def save(self, use_version: bool = False) -> dict[str, Any]:
        """Index every in-progress item in one bulk request.

        Items failing schema validation are rejected with 400 instead of
        being sent. Storage ids and version tokens are copied back into the
        items and their status entries are updated.

        Args:
            use_version: Make every write conditional on the item's version
                tokens; missing tokens are fetched first.

        Returns:
            Bulk response body, merged when the payload had to be split.

        Raises:
            InvalidRequestError: An item has a wildcard address, or lacks an
                id while ``use_version`` is set.
        """
        items = self._select(require_id=use_version, operation="save")

        valid: list[Document] = []
        for item in items:
            errors = item.validate()
            if errors:
                self.reject(item, 400, format_errors(errors))
            else:
                valid.append(item)
        if not valid:
            return {"took": 0, "errors": False, "items": []}

        with self._action("bulkSave", valid) as action:
            if use_version:
                await fetch_versions(action, [i for i in valid if i.primary_term is None or i.seq_no is None])

            operations: list[dict[str, Any]] = []
            for item in valid:
                operations.append({"index": self._header(item, use_version)})
                operations.append(item.to_source())

            response = await action.send_bulk(operations, self._refresh(valid))

        for item, result in zip(valid, response.body["items"], strict=True):
            self._reconcile(item, result["index"])
        return response.body

    async def delete(self, use_version: bool = False) -> dict[str, Any]:
        """Delete every in-progress item in one bulk request.

        Every item must already have a storage id.

        Returns:
            Bulk response body, merged when the payload had to be split.
        """
        items = self._select(require_id=True, operation="delete")
        if not items:
            return {"took": 0, "errors": False, "items": []}

        with self._action("bulkDelete", items) as action:
            if use_version:
                await fetch_versions(action, [i for i in items if i.primary_term is None or i.seq_no is None])

            operations = [{"delete": self._header(item, use_version)} for item in items]
            response = await action.send_bulk(operations, self._refresh(items))

        for item, result in zip(items, response.body["items"], strict=True):
            self._reconcile(item, result["delete"])
        return response.body

    async def reload(self) -> None:
        """Reload every in-progress item concurrently, then ``clear()``.

        An item that cannot be reloaded (e.g. deleted meanwhile) is rejected
        with 404 and does not affect the others. Any other exception is raised
        once every reload has finished, and the list is left unswept.
        """
        items = self._select(require_id=False, operation="reload")
        if not items:
            self.clear()
            return

        with self._action("bulkReload", items) as action:

            async def _reload(item: Document) -> None:
                try:
                    await item.reload(action=action)
                except OdmError as e:
                    self.reject(item, 404, f"Item '{item.id}' cannot be reloaded: {e}")

            results = await asyncio.gather(*(_reload(item) for item in items), return_exceptions=True)

        for result in results:
            if isinstance(result, BaseException):
                raise result
        self.clear()

    # ── Status transitions ───────────────────────────────────────────────

    def not_found(self, id: str, alias: str | None = None) -> None:
        """Record a document that was requested but does not exist."""
        self._status[f"not_found:{alias or ''}:{id}"] = StatusEntry(
            id=id,
            index=alias,
            status=404,
            message="not_found",
            state=BulkState.NOT_FOUND,
        )

    def reject(self, item: Document, status_code: int | None = 400, message: str | None = None) -> None:
        """Mark an item as rejected; call ``clear()`` to move it out of the list."""
        self._transition(item, BulkState.REJECTED, status_code, message)

    def finish(self, item: Document, status_code: int | None = 200, message: str | None = None) -> None:
        """Mark an item as finished; call ``clear()`` to move it out of the list."""
        self._transition(item, BulkState.FINISHED, status_code, message)

    def reject_failed(self) -> None:
        """Reject every item whose recorded status is 400 or higher."""
        status = self.status
        for item in self:
            if isinstance(item, Document) and status[item.uid].failed:
                self.reject(item, None)

    def clear(self) -> None:
        """Sweep settled items out of the list.

        Unlike ``list.clear`` this keeps in-progress items in place. Rejected
        items move to ``rejected``, finished ones to ``finished``, everything
        else is dropped.
        """
        status = self.status
        rejected: list[Any] = []
        finished: list[Any] = []
        for position in range(len(self) - 1, -1, -1):
            item = self[position]
            entry = status.get(item.uid) if isinstance(item, Document) else None
            if entry is not None and entry.state == BulkState.IN_PROGRESS:
                continue

            del self[position]
            if entry is not None and entry.state == BulkState.REJECTED:
                rejected.append(item)
            elif entry is not None and entry.state == BulkState.FINISHED:
                finished.append(item)

        self._rejected.extend(reversed(rejected))
        self._finished.extend(reversed(finished))

    def payload(self, item: Document) -> dict[str, Any]:
        """Return the mutable metadata object of an item's status entry."""
        return self._entry(item).payload

    def import_status(self, *bulk_arrays: BulkArray) -> None:
        """Merge status tables of other arrays into this one.

        Foreign entries overwrite local ones with the same identity tag;
        entries only known here are left untouched.
        """
        for other in bulk_arrays:
            for uid, entry in other.status.items():
                self._status[uid] = entry.model_copy(deep=True)

    def es_status(self, include_all: bool = False) -> dict[str, Any]:
        """Return a bulk-response-like snapshot of the status table.

        Args:
            include_all: Include successful items too, not only failed ones.

        Returns:
            ``{"items": [...], "errors": bool, "count": int}``; items are copies
            without the internal state.
        """
        entries = list(self.status.values())
        items = [entry.model_dump(exclude={"state"}) for entry in entries if include_all or entry.failed]
        return {
            "items": items,
            "errors": any(entry.failed for entry in entries),
            "count": len(items),
        }

    # ── Helpers ──────────────────────────────────────────────────────────

    def _select(self, require_id: bool, operation: str) -> list[Document]:
        status = self.status
        items = [
            item
            for item in self
            if isinstance(item, Document) and status[item.uid].state == BulkState.IN_PROGRESS
        ]
        for item in items:
            if "*" in item.alias:
                raise InvalidRequestError(
                    f"Cannot {operation} item '{item.id or item.uid}': address '{item.alias}' contains a wildcard."
                )
            if require_id and item.id is None:
                raise InvalidRequestError(f"Cannot {operation} item '{item.uid}': it has no id.")
        return items

    def _entry(self, item: Document) -> StatusEntry:
        if not isinstance(item, Document):
            raise TypeError(f"BulkArray tracks Document instances only, got {type(item).__name__}.")
        entry = self._status.get(item.uid)
        if entry is None:
            entry = StatusEntry(id=item.id, index=item.alias)
            self._status[item.uid] = entry
        return entry

    def _transition(self, item: Document, state: BulkState, status_code: int | None, message: str | None) -> None:
        entry = self._entry(item)
        entry.state = state
        if status_code is not None:
            entry.status = status_code
        if message is not None:
            entry.message = message

    def _reconcile(self, item: Document, result: dict[str, Any]) -> None:
        previous_id = item.id
        item.id = result.get("_id", item.id)
        if result.get("_version") is not None:
            item.version = result["_version"]
        if result.get("_primary_term") is not None:
            item.primary_term = result["_primary_term"]
        if result.get("_seq_no") is not None:
            item.seq_no = result["_seq_no"]

        entry = self._entry(item)
        entry.id = item.id
        entry.status = result.get("status")
        error = result.get("error")
        if error:
            entry.message = error.get("reason", str(error)) if isinstance(error, dict) else str(error)
        else:
            entry.message = result.get("result")
        if previous_id is not None and previous_id != item.id:
            entry.payload["original_id"] = previous_id

    def _refresh(self, items: list[Document]) -> bool | str:
        if self.immediate_refresh is not None:
            return self.immediate_refresh
        return items[0].repository.config.immediate_refresh

    @staticmethod
    def _header(item: Document, use_version: bool) -> dict[str, Any]:
        header: dict[str, Any] = {"_index": item.alias}
        if item.id is not None:
            header["_id"] = item.id
        if use_version:
            header["if_primary_term"] = item.primary_term
            header["if_seq_no"] = item.seq_no
        return header

    @staticmethod
    def _action(name: str, items: list[Document]) -> Action:
        repository = items[0].repository
        aliases = {item.alias for item in items}
        return Action(
            name,
            repository.backend,
            repository.policy,
            alias=aliases.pop() if len(aliases) == 1 else None,
        )

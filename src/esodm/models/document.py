"""Document — A typed entity stored in one collection.

Each document carries an identity tag (``uid``) assigned at construction.
The tag never changes and is independent of the storage ``id``; bulk status
tracking is keyed by it.
"""

from __future__ import annotations

import copy
import uuid
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from esodm.backend.exceptions import DocumentValidationError, InvalidRequestError
from esodm.core.concurrency import fetch_versions

if TYPE_CHECKING:
    from esodm.core.action import Action
    from esodm.repository import Repository


class Document:
    """A document of a repository, with its storage metadata.

    Args:
        repository: Repository the document belongs to.
        data: Document source.
        id: Storage id; assigned by the backend on first save when absent.
        version: Storage version.
        primary_term: Primary term token for conditional writes.
        seq_no: Sequence number token for conditional writes.
        score: Search score.
        sort: Sort values of the search hit.
        highlight: Search highlight.
    """

    def __init__(
        self,
        repository: Repository,
        data: dict[str, Any] | None = None,
        *,
        id: str | None = None,
        version: int | None = None,
        primary_term: int | None = None,
        seq_no: int | None = None,
        score: float | None = None,
        sort: list[Any] | None = None,
        highlight: dict[str, Any] | None = None,
    ) -> None:
        self.repository = repository
        self.data: dict[str, Any] = dict(data or {})
        self.id = id
        self.version = version
        self.primary_term = primary_term
        self.seq_no = seq_no
        self.score = score
        self.sort = sort
        self.highlight = highlight
        self.uid = uuid.uuid4().hex

    def __repr__(self) -> str:
        return f"{type(self).__name__}(alias={self.alias!r}, id={self.id!r}, version={self.version!r})"

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    @property
    def alias(self) -> str:
        return self.repository.alias

    def to_source(self) -> dict[str, Any]:
        """Return a deep copy of the data, as sent to the backend."""
        return copy.deepcopy(self.data)

    def apply_hit(self, hit: dict[str, Any]) -> None:
        """Replace data and storage metadata with a backend hit or get response."""
        self.data = dict(hit.get("_source") or {})
        self.id = hit.get("_id", self.id)
        self.version = hit.get("_version")
        self.primary_term = hit.get("_primary_term")
        self.seq_no = hit.get("_seq_no")

    # ── Validation ───────────────────────────────────────────────────────

    def validate(self) -> list[dict[str, Any]]:
        """Validate data against the repository schema.

        Returns:
            Pydantic error dicts; empty when the data is valid or no schema is set.
        """
        schema = self.repository.config.schema_model
        if schema is None:
            return []
        try:
            schema.model_validate(self.data)
        except ValidationError as e:
            return e.errors(include_url=False)
        return []

    def check(self) -> None:
        """Raise ``DocumentValidationError`` when ``validate()`` finds errors."""
        errors = self.validate()
        if errors:
            raise DocumentValidationError(format_errors(errors), errors)

    # ── Single-item operations ───────────────────────────────────────────

    async def save(self, use_version: bool = False) -> Document:
        """Index this document.

        Args:
            use_version: Make the write conditional on the known version tokens;
                missing tokens are fetched first.

        Raises:
            VersionConflictError: The stored document changed meanwhile.
        """
        self.repository.check_writable("save")
        self.check()
        if use_version and self.id is None:
            raise InvalidRequestError("Document without id cannot be saved with its version.")

        with self.repository.action("save") as action:
            if use_version and (self.primary_term is None or self.seq_no is None):
                await fetch_versions(action, [self])

            response = await action.call(
                "index",
                self.alias,
                self.to_source(),
                self.id,
                self.primary_term if use_version else None,
                self.seq_no if use_version else None,
                self.repository.config.immediate_refresh,
            )

        body = response.body
        self.id = body.get("_id", self.id)
        self.version = body.get("_version")
        self.primary_term = body.get("_primary_term")
        self.seq_no = body.get("_seq_no")
        return self

    async def delete(self, use_version: bool = False) -> None:
        """Delete this document.

        Raises:
            NotFoundError: The document does not exist.
            VersionConflictError: The stored document changed meanwhile.
        """
        self.repository.check_writable("delete")
        if self.id is None:
            raise InvalidRequestError("Document without id cannot be deleted.")

        with self.repository.action("delete") as action:
            if use_version and (self.primary_term is None or self.seq_no is None):
                await fetch_versions(action, [self])

            await action.call(
                "delete",
                self.alias,
                self.id,
                self.primary_term if use_version else None,
                self.seq_no if use_version else None,
                self.repository.config.immediate_refresh,
            )

    async def reload(self, action: Action | None = None) -> None:
        """Replace data and metadata with the stored state.

        Raises:
            NotFoundError: The document does not exist anymore.
        """
        if self.id is None:
            raise InvalidRequestError("Document without id cannot be reloaded.")

        if action is not None:
            response = await action.call("get", self.alias, self.id, True)
        else:
            with self.repository.action("reload") as own_action:
                response = await own_action.call("get", self.alias, self.id, True)
        self.apply_hit(response.body)

    def clone(self, preserve_attributes: bool = True) -> Document:
        """Return a copy with a new identity tag.

        Args:
            preserve_attributes: Keep id, version tokens, score, sort and highlight.
        """
        if not preserve_attributes:
            return type(self)(self.repository, self.to_source())
        return type(self)(
            self.repository,
            self.to_source(),
            id=self.id,
            version=self.version,
            primary_term=self.primary_term,
            seq_no=self.seq_no,
            score=self.score,
            sort=copy.deepcopy(self.sort),
            highlight=copy.deepcopy(self.highlight),
        )


def format_errors(errors: list[dict[str, Any]]) -> str:
    """Join pydantic error dicts into one readable message."""
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ())) or "value"
        parts.append(f'"{location}" {error.get("msg", "is invalid")}')
    return ". ".join(parts)

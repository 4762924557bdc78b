"""Action — Resilient call layer for one logical operation.

Every backend request of an operation (a search, a bulk save, ...) goes
through the operation's ``Action``:
  1. 429 responses are retried with jittered exponential backoff
  2. Bulk payloads rejected as too large are split and resubmitted
  3. Call count, response size and latency are summed into ``summary``
     and logged once the operation finishes
"""

from __future__ import annotations

import asyncio
import random
import time
import uuid
from types import TracebackType
from typing import Any

import structlog
from pydantic import BaseModel, Field

from esodm.backend.base import Response, SearchBackend
from esodm.backend.exceptions import BackendError, BulkSizeError, PayloadTooLargeError, RateLimitedError
from esodm.config.settings import RetryPolicy

logger = structlog.get_logger(__name__)

MIN_BULK_SIZE = 2


class CallSummary(BaseModel):
    """Running totals over every backend call of one operation."""

    calls: int = Field(default=0, description="Number of backend calls, retries included")
    content_length: int = Field(default=0, description="Summed 'content-length' of the responses")
    calculated_took_ms: float = Field(default=0.0, description="Summed wall time measured by the client")


class Action:
    """One logical operation against the backend.

    Use as a context manager so the summary is logged when the operation ends::

        with Action("search", backend, policy, alias="acme_users") as action:
            response = await action.call("count", "acme_users")

    Args:
        name: Operation name used in logs.
        backend: Transport executing the calls.
        policy: Retry and paging limits.
        alias: Collection address the operation works on, if any.
    """

    def __init__(
        self,
        name: str,
        backend: SearchBackend,
        policy: RetryPolicy | None = None,
        alias: str | None = None,
    ) -> None:
        self.name = name
        self.alias = alias
        self.backend = backend
        self.policy = policy or RetryPolicy()
        self.log_id = uuid.uuid4().hex
        self.parameters: dict[str, Any] | None = None
        self.summary = CallSummary()
        self._started = time.monotonic()
        self._log = logger.bind(action=name, alias=alias, log_id=self.log_id)
        self._log.debug("Operation started.")

    def __enter__(self) -> Action:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is None:
            self.finish()
        else:
            self.finish(error=str(exc), error_type=exc_type.__name__ if exc_type else None)

    # ── Logging ──────────────────────────────────────────────────────────

    def note(self, msg: str) -> None:
        """Log a debug note bound to this operation."""
        self._log.debug(msg)

    def log_params(self, **parameters: Any) -> None:
        """Remember and log the effective operation parameters."""
        self.parameters = parameters
        self._log.debug("These parameters will be used.", parameters=parameters)

    def finish(self, **extra: Any) -> None:
        """Log the operation summary."""
        total_ms = (time.monotonic() - self._started) * 1000
        self._log.info(
            "Operation finished.",
            parameters=self.parameters,
            summary=self.summary.model_dump(),
            total_time_ms=round(total_ms, 3),
            **extra,
        )

    # ── Calls ────────────────────────────────────────────────────────────

    async def call(self, operation: str, *args: Any, **kwargs: Any) -> Response:
        """Run ``backend.<operation>(*args, **kwargs)``, retrying on 429.

        Raises:
            RateLimitedError: The backend still answered 429 after
                ``policy.max_retries`` retries.
            BackendError: Any other backend error, unchanged.
        """
        func = getattr(self.backend, operation)
        attempt = 0
        while True:
            self._log.debug("Calling backend.", operation=operation, attempt=attempt)
            start = time.monotonic()
            try:
                response = await func(*args, **kwargs)
            except RateLimitedError:
                self._record(None, start)
                if attempt >= self.policy.max_retries:
                    self._log.warning("Backend is still rate limiting, giving up.", operation=operation, attempt=attempt)
                    raise
                attempt += 1
                delay = self._backoff_seconds(attempt)
                self._log.warning(
                    "Backend returned 429 - Too many requests, will try again.",
                    operation=operation,
                    attempt=attempt,
                    delay_s=round(delay, 3),
                )
                await asyncio.sleep(delay)
                continue
            except BackendError as e:
                self._log.warning("Backend call failed.", operation=operation, status_code=e.status_code, error=str(e))
                raise

            took_ms = self._record(response, start)
            body = response.body
            self._log.debug(
                "Backend responded.",
                operation=operation,
                call_number=self.summary.calls,
                status_code=response.status_code,
                took=body.get("took", 0) if isinstance(body, dict) else 0,
                calculated_took_ms=round(took_ms, 3),
            )
            return response

    async def send_bulk(
        self,
        operations: list[dict[str, Any]],
        refresh: bool | str = True,
        *,
        processed: int = 0,
        bulk_size: int | None = None,
        merged: dict[str, Any] | None = None,
    ) -> Response:
        """Send bulk entries, halving the batch while the payload is too large.

        Entries are action/document pairs, so the batch size is kept even.
        When the payload had to be split, the partial responses are merged
        into one body: ``took`` summed, ``errors`` OR-ed, ``items`` chained.

        Raises:
            BulkSizeError: The backend rejected even a minimal batch.
        """
        if bulk_size is None:
            bulk_size = len(operations)

        try:
            while processed < len(operations):
                if bulk_size >= len(operations):
                    chunk = operations
                else:
                    chunk = operations[processed : processed + bulk_size]

                response = await self.call("bulk", chunk, refresh)
                if len(chunk) == len(operations):
                    return response

                merged = _merge_bulk_bodies(merged, response.body)
                processed += bulk_size

        except PayloadTooLargeError as e:
            if bulk_size <= MIN_BULK_SIZE:
                raise BulkSizeError(f"Bulk operation failed despite the bulk size is {bulk_size}.") from e

            new_bulk_size = bulk_size // 2
            if new_bulk_size % 2 == 1:
                new_bulk_size += 1

            self._log.warning(
                "Backend returned 413 - Content Too Large, will try again with split payload.",
                bulk_size=bulk_size,
                new_bulk_size=new_bulk_size,
            )
            return await self.send_bulk(
                operations,
                refresh,
                processed=processed,
                bulk_size=new_bulk_size,
                merged=merged,
            )

        return Response(body=merged or {"took": 0, "errors": False, "items": []})

    async def close_pit(self, pit_id: str) -> bool:
        """Close a Point-in-Time cursor; failures are logged, not raised."""
        try:
            response = await self.call("close_pit", pit_id)
        except Exception:
            self._log.warning("Unable to close Point in Time.", exc_info=True)
            return False
        return bool(response.body.get("succeeded", False)) if isinstance(response.body, dict) else False

    # ── Helpers ──────────────────────────────────────────────────────────

    def _backoff_seconds(self, attempt: int) -> float:
        """``base ** attempt * 100 ms`` with +-20 % jitter."""
        delay = 0.1 * (self.policy.base**attempt)
        return random.uniform(delay * 0.8, delay * 1.2)

    def _record(self, response: Response | None, start: float) -> float:
        took_ms = (time.monotonic() - start) * 1000
        content_length = 0
        if response is not None:
            try:
                content_length = int(response.headers.get("content-length", 0))
            except (TypeError, ValueError):
                content_length = 0

        self.summary.calls += 1
        self.summary.content_length += content_length
        self.summary.calculated_took_ms += took_ms
        return took_ms


def _merge_bulk_bodies(merged: dict[str, Any] | None, body: dict[str, Any]) -> dict[str, Any]:
    if merged is None:
        return {
            "took": body.get("took", 0),
            "errors": bool(body.get("errors", False)),
            "items": list(body.get("items", [])),
        }
    merged["took"] += body.get("took", 0)
    merged["errors"] = merged["errors"] or bool(body.get("errors", False))
    merged["items"].extend(body.get("items", []))
    return merged

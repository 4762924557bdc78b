"""Elasticsearch backend — Transport over the official async client (v8+).

Uses ``elasticsearch[async]`` and maps every call to a ``Response``. Client
errors are converted into the ``esodm.backend.exceptions`` taxonomy here and
nowhere else.

Install the dependency::

    pip install esodm
    # or: pip install "elasticsearch[async]"
"""

from __future__ import annotations

import functools
import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from esodm.backend.base import BackendHealth, Response, SearchBackend
from esodm.backend.exceptions import (
    BackendConnectionError,
    PayloadTooLargeError,
    error_for_status,
)
from esodm.config.settings import BackendSettings

logger = logging.getLogger(__name__)


class ElasticsearchBackend(SearchBackend):
    """Search backend for Elasticsearch (v8+).

    Every search requests ``seq_no_primary_term`` and ``version`` so hits
    carry the optimistic concurrency tokens.

    Args:
        settings: Connection settings.
        **kwargs: Additional keyword arguments forwarded to ``AsyncElasticsearch``.
    """

    def __init__(self, settings: BackendSettings | None = None, **kwargs: Any) -> None:
        self._settings = settings or BackendSettings()
        self._extra_kwargs = kwargs
        self._client: Any = None

    @property
    def name(self) -> str:
        return "elasticsearch"

    @property
    def pit_keep_alive(self) -> int:
        return self._settings.pit_keep_alive_seconds

    async def initialize(self) -> None:
        """Create and verify the ``AsyncElasticsearch`` client."""
        from elasticsearch import AsyncElasticsearch

        client_kwargs: dict[str, Any] = {
            "hosts": self._settings.hosts,
            "verify_certs": self._settings.verify_certs,
            "request_timeout": self._settings.request_timeout,
        }
        if self._settings.api_key:
            client_kwargs["api_key"] = self._settings.api_key
        elif self._settings.username and self._settings.password:
            client_kwargs["basic_auth"] = (self._settings.username, self._settings.password)

        client_kwargs.update(self._extra_kwargs)

        self._client = AsyncElasticsearch(**client_kwargs)
        response = await self._request("info")
        version = response.body.get("version", {}).get("number", "unknown")
        cluster = response.body.get("cluster_name", "unknown")
        logger.info("Connected to Elasticsearch cluster: %s (v%s)", cluster, version)

    async def shutdown(self) -> None:
        """Close the Elasticsearch client."""
        if self._client:
            await self._client.close()
            self._client = None

    async def health_check(self) -> BackendHealth:
        """Check Elasticsearch cluster health."""
        if not self._client:
            return BackendHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            health = await self._client.cluster.health()
            latency_ms = int((time.monotonic() - start) * 1000)

            status_map = {"green": "healthy", "yellow": "degraded", "red": "unhealthy"}

            return BackendHealth(
                status=status_map.get(health.get("status", "red"), "unhealthy"),
                latency_ms=latency_ms,
                last_check=datetime.now(UTC).isoformat(),
                message=f"Cluster: {health.get('cluster_name')}, Nodes: {health.get('number_of_nodes')}",
            )
        except Exception as e:
            return BackendHealth(status="unhealthy", message=str(e))

    # ── Documents ────────────────────────────────────────────────────────

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
        request_body: dict[str, Any] = {
            **body,
            "seq_no_primary_term": True,
            "version": True,
            "track_total_hits": track_total_hits,
        }
        if from_ is not None:
            request_body["from"] = from_
        if size is not None:
            request_body["size"] = size
        if source is not None:
            request_body["_source"] = source
        if search_after is not None:
            request_body["search_after"] = search_after
        if pit_id is not None:
            request_body["pit"] = {"id": pit_id, "keep_alive": f"{keep_alive or self.pit_keep_alive}s"}
            index = None

        return await self._request("search", index=index, body=request_body)

    async def bulk(self, operations: list[dict[str, Any]], refresh: bool | str = True) -> Response:
        if self._settings.max_bulk_bytes is not None:
            payload_size = sum(len(json.dumps(entry, default=str).encode("utf-8")) + 1 for entry in operations)
            if payload_size > self._settings.max_bulk_bytes:
                raise PayloadTooLargeError(
                    f"Bulk payload of {payload_size} bytes exceeds {self._settings.max_bulk_bytes} bytes.",
                    status_code=413,
                )
        return await self._request("bulk", operations=operations, refresh=refresh)

    async def get(self, index: str, doc_id: str, source: bool | list[str] = True) -> Response:
        return await self._request("get", index=index, id=doc_id, source=source)

    async def mget(self, index: str, ids: list[str], source: bool | list[str] = True) -> Response:
        return await self._request("mget", index=index, ids=ids, source=source)

    async def index(
        self,
        index: str,
        document: dict[str, Any],
        doc_id: str | None = None,
        primary_term: int | None = None,
        seq_no: int | None = None,
        refresh: bool | str = True,
    ) -> Response:
        return await self._request(
            "index",
            index=index,
            id=doc_id,
            document=document,
            if_primary_term=primary_term,
            if_seq_no=seq_no,
            refresh=refresh,
        )

    async def delete(
        self,
        index: str,
        doc_id: str,
        primary_term: int | None = None,
        seq_no: int | None = None,
        refresh: bool | str = True,
    ) -> Response:
        return await self._request(
            "delete",
            index=index,
            id=doc_id,
            if_primary_term=primary_term,
            if_seq_no=seq_no,
            refresh=refresh,
        )

    async def count(self, index: str, body: dict[str, Any] | None = None) -> Response:
        return await self._request("count", index=index, body=body or None)

    async def update_by_query(
        self,
        index: str,
        body: dict[str, Any],
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
        refresh: bool | str = True,
    ) -> Response:
        return await self._request(
            "update_by_query",
            index=index,
            body=body,
            scroll_size=scroll_size,
            refresh=bool(refresh),
            slices="auto",
            wait_for_completion=wait_for_completion,
        )

    async def delete_by_query(
        self,
        index: str,
        body: dict[str, Any],
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
        refresh: bool | str = True,
    ) -> Response:
        return await self._request(
            "delete_by_query",
            index=index,
            body=body,
            scroll_size=scroll_size,
            refresh=bool(refresh),
            slices="auto",
            wait_for_completion=wait_for_completion,
        )

    # ── Point in Time ────────────────────────────────────────────────────

    async def open_pit(self, index: str, keep_alive: int | None = None) -> Response:
        return await self._request(
            "open_point_in_time",
            index=index,
            keep_alive=f"{keep_alive or self.pit_keep_alive}s",
        )

    async def close_pit(self, pit_id: str) -> Response:
        return await self._request("close_point_in_time", id=pit_id)

    # ── Index administration ─────────────────────────────────────────────

    async def create_index(self, index: str, body: dict[str, Any] | None = None) -> Response:
        return await self._request("indices.create", index=index, **(body or {}))

    async def delete_index(self, index: str) -> Response:
        return await self._request("indices.delete", index=index)

    async def exists_index(self, index: str) -> Response:
        return await self._request("indices.exists", index=index)

    async def get_alias(self, alias: str) -> Response:
        return await self._request("indices.get_alias", name=alias)

    async def exists_alias(self, alias: str) -> Response:
        return await self._request("indices.exists_alias", name=alias)

    async def put_alias(self, index: str, alias: str) -> Response:
        return await self._request("indices.put_alias", index=index, name=alias, is_write_index=True)

    async def delete_alias(self, index: str, alias: str) -> Response:
        return await self._request("indices.delete_alias", index=index, name=alias)

    async def refresh(self, index: str) -> Response:
        return await self._request("indices.refresh", index=index)

    async def get_mapping(self, index: str) -> Response:
        return await self._request("indices.get_mapping", index=index)

    async def put_mapping(self, index: str, mapping: dict[str, Any]) -> Response:
        return await self._request("indices.put_mapping", index=index, **mapping)

    async def get_settings(self, index: str, include_defaults: bool = False) -> Response:
        return await self._request("indices.get_settings", index=index, include_defaults=include_defaults)

    async def put_settings(self, index: str, settings: dict[str, Any]) -> Response:
        return await self._request("indices.put_settings", index=index, settings=settings)

    async def reindex(
        self,
        source: str,
        dest: str,
        script: dict[str, Any] | None = None,
        scroll_size: int | None = None,
        wait_for_completion: bool = True,
        refresh: bool | str = True,
    ) -> Response:
        source_body: dict[str, Any] = {"index": source}
        if scroll_size is not None:
            source_body["size"] = scroll_size
        return await self._request(
            "reindex",
            source=source_body,
            dest={"index": dest},
            script=script,
            refresh=bool(refresh),
            slices="auto",
            wait_for_completion=wait_for_completion,
        )

    async def clone_index(self, source: str, target: str, settings: dict[str, Any] | None = None) -> Response:
        return await self._request("indices.clone", index=source, target=target, settings=settings)

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _request(self, method: str, **kwargs: Any) -> Response:
        """Call a client method by dotted name and convert the outcome into a ``Response``."""
        from elasticsearch import ApiError, TransportError

        if self._client is None:
            raise BackendConnectionError("Elasticsearch client not initialized.")

        func: Callable[..., Awaitable[Any]] = functools.reduce(getattr, method.split("."), self._client)
        try:
            result = await func(**kwargs)
        except ApiError as e:
            status_code = e.meta.status if e.meta is not None else None
            raise error_for_status(status_code, f"Elasticsearch request failed: {e.message}", e.body) from e
        except TransportError as e:
            raise BackendConnectionError(f"Elasticsearch is unreachable: {e}") from e

        return self._to_response(result)

    @staticmethod
    def _to_response(result: Any) -> Response:
        """Map an ``ApiResponse`` (or a plain dict from a test double) to ``Response``."""
        meta = getattr(result, "meta", None)
        if meta is None:
            return Response(body=result)
        return Response(
            body=result.body,
            status_code=meta.status,
            headers={k.lower(): v for k, v in dict(meta.headers or {}).items()},
        )

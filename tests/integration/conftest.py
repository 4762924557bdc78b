"""Integration test fixtures — a real Elasticsearch node with seed data.

Expects Elasticsearch to be running at localhost:9200, e.g.:
    docker run -p 9200:9200 -e discovery.type=single-node \
        -e xpack.security.enabled=false docker.elastic.co/elasticsearch/elasticsearch:8.13.4

Tests are skipped when the node is not reachable.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import pytest

ES_HOST = "http://localhost:9200"
SEED_INDEX = "itest_docs-1"
SEED_ALIAS = "itest_docs"

MOCK_DOCUMENTS: list[dict[str, Any]] = [
    {
        "id": f"doc-{i:03d}",
        "title": f"Document {i}",
        "rank": i if i % 4 else None,
        "tags": ["even" if i % 2 == 0 else "odd"],
    }
    for i in range(30)
]


def _wait_for_service(url: str, timeout: float = 10.0) -> bool:
    """Block until *url* returns HTTP 200, or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            r = httpx.get(url, timeout=5)
            if r.status_code == 200:
                return True
        except httpx.HTTPError:
            pass
        time.sleep(1)
    return False


async def _seed_elasticsearch(host: str = ES_HOST) -> None:
    async with httpx.AsyncClient(base_url=host, timeout=30) as client:
        await client.delete(f"/{SEED_INDEX}", params={"ignore_unavailable": "true"})

        mapping = {
            "mappings": {
                "properties": {
                    "title": {"type": "keyword"},
                    "rank": {"type": "long"},
                    "tags": {"type": "keyword"},
                }
            },
            "aliases": {SEED_ALIAS: {"is_write_index": True}},
        }
        resp = await client.put(f"/{SEED_INDEX}", json=mapping)
        resp.raise_for_status()

        for doc in MOCK_DOCUMENTS:
            source = {key: value for key, value in doc.items() if key != "id" and value is not None}
            resp = await client.put(f"/{SEED_INDEX}/_doc/{doc['id']}", json=source)
            resp.raise_for_status()

        await client.post(f"/{SEED_INDEX}/_refresh")


@pytest.fixture(scope="session")
def elasticsearch_ready() -> str:
    """Ensure Elasticsearch is running and seeded."""
    if not _wait_for_service(ES_HOST):
        pytest.skip(f"Elasticsearch not available at {ES_HOST}")
    asyncio.run(_seed_elasticsearch(ES_HOST))
    return ES_HOST

"""CLI entry point for esodm administration commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="esodm",
        description="esodm — Typed async access layer for Elasticsearch collections",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"esodm {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("health", help="Print cluster health")

    count_parser = subparsers.add_parser("count", help="Count documents of a collection")
    _add_collection_arguments(count_parser)

    search_parser = subparsers.add_parser("search", help="Print matching hits as JSON lines")
    _add_collection_arguments(search_parser)
    search_parser.add_argument("--from", dest="from_", type=int, default=None, help="Index of the first hit")
    search_parser.add_argument("--size", type=int, default=None, help="Number of hits (default: all)")
    search_parser.add_argument(
        "--source",
        type=str,
        default=None,
        help="Comma-separated source fields to return (default: full source)",
    )

    args = parser.parse_args(argv)

    # Load settings
    from esodm.config.settings import Settings

    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
        settings = Settings.from_yaml(config_path)
    else:
        settings = Settings()

    if args.log_level:
        settings.observability.log_level = args.log_level
    elif settings.debug:
        settings.observability.log_level = "debug"

    from esodm.observability.logging import setup_logging

    setup_logging(settings.observability)

    try:
        query = _parse_query(getattr(args, "query", None))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    exit_code = asyncio.run(_run(args, settings, query))
    sys.exit(exit_code)


def _add_collection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("tenant", type=str, help="Tenant prefix of the alias ('*' for all tenants)")
    parser.add_argument("name", type=str, help="Collection name")
    parser.add_argument("--query", "-q", type=str, default=None, help="Query clause as JSON")


def _parse_query(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        query = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--query is not valid JSON: {e}") from e
    if not isinstance(query, dict):
        raise ValueError("--query must be a JSON object")
    return query


async def _run(args: argparse.Namespace, settings: Any, query: dict[str, Any] | None) -> int:
    from esodm.backend.elasticsearch import ElasticsearchBackend
    from esodm.backend.exceptions import OdmError
    from esodm.models.config import ModelConfig
    from esodm.repository import Repository

    backend = ElasticsearchBackend(settings.backend)
    try:
        if backend_error := await _initialize(backend):
            print(f"Error: {backend_error}", file=sys.stderr)
            return 1

        if args.command == "health":
            health = await backend.health_check()
            print(health.model_dump_json(indent=2))
            return 0 if health.status != "unhealthy" else 1

        repository = Repository(ModelConfig(tenant=args.tenant, base_name=args.name), backend, settings.retry)
        body = {"query": query} if query else None

        try:
            if args.command == "count":
                print(await repository.count(body))
                return 0

            source: bool | list[str] = args.source.split(",") if args.source else True
            window = await repository.search(body, args.from_, args.size, source=source)
            for hit in window:
                print(json.dumps(hit, default=str))
            return 0
        except OdmError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    finally:
        await backend.shutdown()


async def _initialize(backend: Any) -> str | None:
    from esodm.backend.exceptions import OdmError

    try:
        await backend.initialize()
    except OdmError as e:
        return str(e)
    return None


def _get_version() -> str:
    """Get the package version."""
    from esodm import __version__

    return __version__


if __name__ == "__main__":
    main()

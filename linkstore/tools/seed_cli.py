"""
Seeding CLI tool for LinkStore.

This tool fills and inspects a local LinkStore database:
- persist: Register collection options and store content
- get: Print rows of a collection, one key or a page
- settings: Print the registry state
- drop-database: Delete all data and settings

Usage:
    python -m linkstore.tools.seed_cli persist --options person.yaml --content people.json
    python -m linkstore.tools.seed_cli get Person --key /api/people/p1
    python -m linkstore.tools.seed_cli settings
    python -m linkstore.tools.seed_cli drop-database

Options files may be YAML or JSON; content files hold one entity or a
list of entities.

Invariants:
    - Output is JSON on stdout; diagnostics go to stderr
    - Engine errors exit with status 1
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from ..config import LinkStoreConfig
from ..errors import LinkStoreError
from ..persistence import PersistenceService
from ..query import KeyOptions, PageOptions
from ..schema.types import CollectionOptions

logger = logging.getLogger(__name__)


def load_document(path: str | Path) -> Any:
    """Read a YAML or JSON document."""
    path = Path(path)
    with open(path) as f:
        if path.suffix == ".json":
            return json.load(f)
        return yaml.safe_load(f)


class SeedCLI:
    """CLI tool for seeding a LinkStore database.

    Example:
        >>> cli = SeedCLI(LinkStoreConfig())
        >>> asyncio.run(cli.persist("person.yaml", "people.json"))
        [PersistResult(collection='Person', rows=2, ...)]
    """

    def __init__(self, config: LinkStoreConfig) -> None:
        self.service = PersistenceService(config)

    async def persist(self, options_path: str, content_path: str) -> list[dict[str, Any]]:
        """Register options from a file and store content from another.

        Returns:
            One result per collection written
        """
        options = CollectionOptions.from_dict(load_document(options_path))
        content = load_document(content_path)
        await self.service.initialize()
        try:
            results = await self.service.persist(content, options)
        finally:
            await self.service.close()
        return [result.to_dict() for result in results]

    async def get(
        self, collection: str, key: str | None = None, page: int = 1, page_size: int | None = None
    ) -> Any:
        """Rows by key, or one page of the collection.

        The page size defaults to the configured `default_page_size`.
        """
        page_size = page_size or self.service.config.engine.default_page_size
        await self.service.initialize()
        try:
            if key is not None:
                return await self.service.read_by_key(collection, KeyOptions(key))
            return await self.service.read_page(
                collection, PageOptions(page=page, page_size=page_size)
            )
        finally:
            await self.service.close()

    def settings(self) -> dict[str, Any]:
        """The durable registry state."""
        self.service.registry.load()
        return self.service.registry.export()

    async def drop_database(self) -> None:
        await self.service.drop_database()


def _config(data_dir: str | None) -> LinkStoreConfig:
    config = LinkStoreConfig.from_env()
    if data_dir:
        config = dataclasses.replace(
            config, storage=dataclasses.replace(config.storage, data_dir=data_dir)
        )
    return config


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the seeding tool."""
    parser = argparse.ArgumentParser(description="LinkStore seeding tool")
    parser.add_argument("--data-dir", help="Data directory (default: LINKSTORE_DATA_DIR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # persist command
    persist_parser = subparsers.add_parser("persist", help="Register options and store content")
    persist_parser.add_argument("--options", required=True, help="YAML/JSON collection options")
    persist_parser.add_argument("--content", required=True, help="YAML/JSON entity or entities")

    # get command
    get_parser = subparsers.add_parser("get", help="Print rows of a collection")
    get_parser.add_argument("collection", help="Collection name")
    get_parser.add_argument("--key", help="Primary key or IRI of a single row")
    get_parser.add_argument("--page", type=int, default=1, help="Page number (1-indexed)")
    get_parser.add_argument(
        "--page-size", type=int, help="Rows per page (default: LINKSTORE_DEFAULT_PAGE_SIZE)"
    )

    # settings command
    subparsers.add_parser("settings", help="Print the registry state")

    # drop-database command
    subparsers.add_parser("drop-database", help="Delete all data and settings")

    args = parser.parse_args(argv)
    try:
        cli = SeedCLI(_config(args.data_dir))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "persist":
            output: Any = asyncio.run(cli.persist(args.options, args.content))
        elif args.command == "get":
            output = asyncio.run(cli.get(args.collection, args.key, args.page, args.page_size))
        elif args.command == "settings":
            output = cli.settings()
        else:
            asyncio.run(cli.drop_database())
            print("Database dropped", file=sys.stderr)
            return
    except LinkStoreError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Cannot read input: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(output, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()

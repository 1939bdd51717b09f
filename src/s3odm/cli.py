"""CLI entry point for s3odm."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import httpx

from s3odm import metrics
from s3odm.client import S3ODM, object_key
from s3odm.config import S3ODMConfig, load_config
from s3odm.errors import NotFoundError, S3ODMError
from s3odm.logging_config import configure_logging

logger = logging.getLogger("s3odm")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="s3odm",
        description="s3odm - JSON documents on S3-compatible object storage",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("s3odm.yaml"),
        help="Path to YAML configuration file (default: s3odm.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("tables", help="List the tables in the bucket")

    ids = commands.add_parser("ids", help="List the document ids of a table")
    ids.add_argument("table")

    get = commands.add_parser("get", help="Print one document")
    get.add_argument("table")
    get.add_argument("id")

    insert = commands.add_parser("insert", help="Insert a new document")
    insert.add_argument("table")
    insert.add_argument("document", help="The document as a JSON object")
    insert.add_argument("--id", dest="doc_id", default=None, help="Document id (default: generated)")

    delete = commands.add_parser("delete", help="Delete one document")
    delete.add_argument("table")
    delete.add_argument("id")

    purge = commands.add_parser("purge", help="Delete every document of a table")
    purge.add_argument("table")

    return parser.parse_args(argv)


def create_client(config: S3ODMConfig) -> S3ODM:
    """Build the client used by the CLI."""
    return S3ODM.from_config(config)


async def run_command(client: S3ODM, args: argparse.Namespace) -> Any:
    """Run one CLI command and return its JSON-serializable result.

    Raises:
        NotFoundError: If ``get`` addresses a missing document.
        ValueError: If ``insert`` is given anything but a JSON object.
    """
    if args.command == "tables":
        return await client.list_tables()

    if args.command == "ids":
        return await client.list_ids(args.table)

    if args.command == "get":
        document = await client.get(args.table, args.id)
        if document is None:
            raise NotFoundError(object_key(args.table, args.id))
        return document

    if args.command == "insert":
        document = json.loads(args.document)
        if not isinstance(document, dict):
            raise ValueError("document must be a JSON object")
        if args.doc_id:
            document["_id"] = args.doc_id
        return await client.create_repository(args.table).insert(document)

    if args.command == "delete":
        await client.delete(args.table, args.id)
        return {"deleted": args.id}

    if args.command == "purge":
        return await client.create_repository(args.table).delete_all()

    raise ValueError(f"Unknown command: {args.command}")


async def _run(config: S3ODMConfig, args: argparse.Namespace) -> Any:
    async with create_client(config) as client:
        return await run_command(client, args)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the s3odm CLI.

    Loads configuration, applies CLI overrides, runs the command and prints
    its result as JSON. Exits with status 1 on any failure.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_format is not None:
        config.logging.format = args.log_format

    configure_logging(level=config.logging.level, fmt=config.logging.format)

    textfile = config.metrics.textfile if config.metrics.enabled else ""
    if config.metrics.enabled and not textfile:
        logger.warning("metrics.enabled is set without metrics.textfile; not recording metrics")
    if textfile:
        metrics.init_metrics()

    try:
        result = asyncio.run(_run(config, args))
    except (S3ODMError, httpx.HTTPError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(1)
    finally:
        if textfile:
            _write_metrics(textfile)

    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")


def _write_metrics(path: str) -> None:
    try:
        metrics.write_textfile(path)
    except OSError as exc:
        logger.error("Failed to write metrics to %s: %s", path, exc)


if __name__ == "__main__":
    main()

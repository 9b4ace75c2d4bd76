"""
Command-line interface for inspecting and maintaining a kota-governor setup.

Useful outside of a host session: print the effective configuration, check that
KotaDB starts, index a repository or trim the blob cache.
"""

import argparse
import asyncio
import json
import os
import sys

from .config.settings import load_config
from .errors import KotaError
from .logging_utils import configure_logging
from .session import KotaSession


def cmd_config(args):
    """Print the merged configuration and the files it came from."""
    loaded = load_config(cwd=args.cwd)
    payload = {
        "config": loaded.config.model_dump(mode="json", by_alias=True),
        "sources": {
            "global": loaded.sources.global_path,
            "project": loaded.sources.project_path,
        },
    }
    print(json.dumps(payload, indent=2))


async def _status(args) -> int:
    session = KotaSession()
    await session.start(args.cwd)
    code = 0
    try:
        await session.ensure_connected(args.cwd)
    except KotaError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    try:
        print(session.status_line())
        print(await session.describe_status())
    finally:
        await session.shutdown()
    return code


def cmd_status(args):
    """Start KotaDB, list its tools and print the session status."""
    return asyncio.run(_status(args))


async def _index(args) -> int:
    session = KotaSession()
    await session.start(args.cwd)
    try:
        print(await session.index_repository(args.cwd, args.path, force=True))
    except KotaError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await session.shutdown()
    return 0


def cmd_index(args):
    """Index a repository (the detected repository root by default)."""
    return asyncio.run(_index(args))


async def _evict(args) -> int:
    session = KotaSession()
    await session.start(args.cwd)
    try:
        result = await session.evict_blobs(args.cwd)
    finally:
        await session.shutdown()
    print(result.message)
    return 0 if result.level == "info" else 1


def cmd_evict_blobs(args):
    """Apply the age and size limits to the blob cache."""
    return asyncio.run(_evict(args))


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Inspect and maintain kota-governor")
    parser.add_argument(
        "--cwd",
        default=os.getcwd(),
        help="Working directory used to locate the repository (default: current directory)",
    )
    parser.add_argument("--log-level", help="Log level (default: KOTA_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("config", help="Print the effective configuration as JSON")
    subparsers.add_parser("status", help="Connect to KotaDB and print the session status")

    parser_index = subparsers.add_parser("index", help="Index a repository")
    parser_index.add_argument("path", nargs="?", help="Directory to index (default: repository root)")

    subparsers.add_parser("evict-blobs", help="Evict old blobs and enforce the size limit")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(level=args.log_level)

    commands = {
        "config": cmd_config,
        "status": cmd_status,
        "index": cmd_index,
        "evict-blobs": cmd_evict_blobs,
    }

    command_func = commands[args.command]
    try:
        code = command_func(args)
    except KotaError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()

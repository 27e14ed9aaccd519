"""Hashmap CLI - command-line access to a hashmap overlay on a local directory.

Usage:
    hashmap [--remote DIR] [--hash-type TYPE] [--root PATH] ls [PATH]
    hashmap lsr [PATH]
    hashmap mkdir PATH
    hashmap rmdir PATH
    hashmap purge PATH
    hashmap put REMOTE [--input FILE]
    hashmap cat REMOTE
    hashmap rm REMOTE
    hashmap mv SRC DST
    hashmap copyto SRC DST
    hashmap about

Options default to the HASHMAP_* environment variables (see hashmap.config).
The remote is the base directory of a filesystem backing store.

Exit codes:
    0: Success
    1: Operation failed / Internal error
    2: Invalid configuration
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from hashmap.backend.filesystem_store import FilesystemObjectStore
from hashmap.config import ConfigError, HashmapConfig, load_hashmap_config
from hashmap.errors import HashmapError
from hashmap.fs import HashmapFs
from hashmap.hashing import HashType
from hashmap.listing import ListEntry
from hashmap.observability import configure_tracing

logger = logging.getLogger(__name__)


def _output_json(data: Any) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(code: str, message: str, errors: list[str] | None = None) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": errors or []}}


def _entries_to_dicts(entries: list[ListEntry]) -> list[dict[str, Any]]:
    return [entry.to_dict() for entry in entries]


def _build_config(args: argparse.Namespace) -> HashmapConfig:
    overrides = {
        field: value
        for field, value in (
            ("remote", args.remote),
            ("hash_type", args.hash_type),
            ("root", args.root),
        )
        if value is not None
    }
    if args.remote is None:
        base = load_hashmap_config().model_dump()
    else:
        base = {}
    return HashmapConfig.create(**{**base, **overrides})


def open_fs(config: HashmapConfig) -> HashmapFs:
    """Open an overlay on a filesystem store rooted at config.remote."""
    return HashmapFs.from_config(config, FilesystemObjectStore(config.remote))


def cmd_ls(fs: HashmapFs, args: argparse.Namespace) -> int:
    _output_json(_entries_to_dicts(fs.list(args.path)))
    return 0


def cmd_lsr(fs: HashmapFs, args: argparse.Namespace) -> int:
    collected: list[dict[str, Any]] = []
    fs.list_r(args.path, lambda entries: collected.extend(_entries_to_dicts(entries)))
    _output_json(collected)
    return 0


def cmd_mkdir(fs: HashmapFs, args: argparse.Namespace) -> int:
    fs.mkdir(args.path)
    return 0


def cmd_rmdir(fs: HashmapFs, args: argparse.Namespace) -> int:
    fs.rmdir(args.path)
    return 0


def cmd_purge(fs: HashmapFs, args: argparse.Namespace) -> int:
    fs.purge(args.path)
    return 0


def cmd_put(fs: HashmapFs, args: argparse.Namespace) -> int:
    if args.input is None:
        obj = fs.put_stream(args.remote, sys.stdin.buffer)
    else:
        with open(args.input, "rb") as f:
            obj = fs.put_stream(args.remote, f)
    _output_json(obj.to_dict())
    return 0


def cmd_cat(fs: HashmapFs, args: argparse.Namespace) -> int:
    obj = fs.new_object(args.remote)
    with obj.open() as stream:
        sys.stdout.buffer.write(stream.read())
    sys.stdout.buffer.flush()
    return 0


def cmd_rm(fs: HashmapFs, args: argparse.Namespace) -> int:
    fs.new_object(args.remote).remove()
    return 0


def cmd_mv(fs: HashmapFs, args: argparse.Namespace) -> int:
    fs.dir_move(args.src, args.dst)
    return 0


def cmd_copyto(fs: HashmapFs, args: argparse.Namespace) -> int:
    obj = fs.copy(fs.new_object(args.src), args.dst)
    _output_json(obj.to_dict())
    return 0


def cmd_about(fs: HashmapFs, args: argparse.Namespace) -> int:
    _output_json(fs.about().to_dict())
    return 0


COMMAND_DISPATCH = {
    "ls": cmd_ls,
    "lsr": cmd_lsr,
    "mkdir": cmd_mkdir,
    "rmdir": cmd_rmdir,
    "purge": cmd_purge,
    "put": cmd_put,
    "cat": cmd_cat,
    "rm": cmd_rm,
    "mv": cmd_mv,
    "copyto": cmd_copyto,
    "about": cmd_about,
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="hashmap",
        description="Hashmap overlay - hierarchical files over a flat object store",
    )
    parser.add_argument(
        "--remote",
        metavar="DIR",
        help="Base directory of the backing store (default: $HASHMAP_REMOTE)",
    )
    parser.add_argument(
        "--hash-type",
        choices=[t.value for t in HashType],
        help="Hash applied to paths (default: $HASHMAP_HASH_TYPE or md5)",
    )
    parser.add_argument(
        "--root",
        metavar="PATH",
        help="Logical directory to root the overlay at (default: $HASHMAP_ROOT)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    for name, help_text in [
        ("ls", "List a directory"),
        ("lsr", "List a directory recursively"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("path", nargs="?", default="", help="Directory (default: root)")

    for name, help_text in [
        ("mkdir", "Create a directory and its parents"),
        ("rmdir", "Remove an empty directory"),
        ("purge", "Remove a directory and all its contents"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("path", help="Directory")

    put_parser = subparsers.add_parser("put", help="Store a file")
    put_parser.add_argument("remote", help="Destination path")
    put_parser.add_argument(
        "--input",
        metavar="FILE",
        default=None,
        help="Local file to upload (reads from stdin if omitted)",
    )

    for name, help_text in [
        ("cat", "Write a file to stdout"),
        ("rm", "Remove a file"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("remote", help="File path")

    for name, help_text in [
        ("mv", "Move a directory"),
        ("copyto", "Copy a file server-side"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("src", help="Source path")
        sub.add_argument("dst", help="Destination path")

    subparsers.add_parser("about", help="Show backing store usage")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Operation failed / Internal error (unexpected)
        2: Invalid configuration
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = _build_config(args)
    except ConfigError as e:
        _output_json(_make_error_result("CONFIG_ERROR", e.message, e.errors))
        return 2

    try:
        configure_tracing()
        fs = open_fs(config)
        try:
            return COMMAND_DISPATCH[args.command](fs, args)
        finally:
            fs.shutdown()
    except HashmapError as e:
        _output_json(_make_error_result(type(e).__name__, str(e)))
        return 1
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        logger.exception("Unexpected error running %s", args.command)
        _output_json(_make_error_result("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())

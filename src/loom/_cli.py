"""Loom CLI — loom watch / loom serve / loom sign.

Entry point for the ``loom`` command-line interface.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the loom CLI."""
    parser = argparse.ArgumentParser(
        prog="loom",
        description="Content change notification for a headless CMS.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # loom watch
    watch_parser = subparsers.add_parser(
        "watch",
        help="Poll for content changes and print events",
    )
    watch_parser.add_argument("root", nargs="?", default=".", help="Project directory")
    watch_parser.add_argument("--base-url", default=None, help="Content API base URL")
    watch_parser.add_argument("--site-id", default=None, help="Site to poll")
    watch_parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between polls",
    )

    # loom serve
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the webhook receiver (with dev polling)",
    )
    serve_parser.add_argument("root", nargs="?", default=".", help="Project directory")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")
    serve_parser.add_argument(
        "--no-poll", action="store_true", help="Disable the polling change detector",
    )

    # loom sign
    sign_parser = subparsers.add_parser(
        "sign",
        help="Print the signature header for a request body",
    )
    sign_parser.add_argument("file", help="Body file ('-' for stdin)")
    sign_parser.add_argument("--secret", required=True, help="Shared webhook secret")

    return parser


def _get_version() -> str:
    """Get the package version."""
    from loom import __version__

    return __version__


def _read_body(source: str) -> bytes:
    if source == "-":
        return sys.stdin.buffer.read()
    return Path(source).read_bytes()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "sign":
        from loom.webhook.signature import sign_payload

        print(sign_payload(_read_body(args.file), args.secret))
        return

    from loom._errors import LoomError
    from loom.app import serve, watch

    try:
        if args.command == "watch":
            watch(
                root=args.root,
                base_url=args.base_url,
                site_id=args.site_id,
                poll_interval=args.interval,
            )
        elif args.command == "serve":
            serve(
                root=args.root,
                host=args.host,
                port=args.port,
                poll=False if args.no_poll else None,
            )
    except LoomError as exc:
        print(f"  [loom] Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

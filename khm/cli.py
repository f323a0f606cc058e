"""
KHM command line.

Usage:
    khm server --ip 0.0.0.0 --port 8080 --flows prod,staging \\
        --database-url postgresql+asyncpg://khm:secret@db/khm
    khm sync --host https://khm.example.com --flow prod --in-place
    khm flows --host https://khm.example.com
    khm deprecate --host https://khm.example.com --flow prod old-server.example.com
    khm restore --host https://khm.example.com --flow prod old-server.example.com
    khm delete --host https://khm.example.com --flow prod old-server.example.com
"""
import argparse
import logging
import sys
from pathlib import Path

from khm import __version__
from khm.core.exceptions import KHMError
from khm.core.logging_handler import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"


def run_server(args) -> None:
    import uvicorn

    from khm.core.config import Settings
    from khm.main import create_app

    overrides = {}
    if args.ip:
        overrides["HOST"] = args.ip
    if args.port:
        overrides["PORT"] = args.port
    if args.flows:
        overrides["FLOWS"] = args.flows
    if args.database_url:
        overrides["DATABASE_URL"] = args.database_url
    settings = Settings(**overrides)

    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


def _api(args):
    from khm.client.api import KhmApiClient
    return KhmApiClient(args.host, basic_auth=args.basic_auth, timeout=args.timeout)


def run_sync(args) -> None:
    from khm.client.sync import sync_known_hosts

    with _api(args) as api:
        stats = sync_known_hosts(args.known_hosts, args.flow, api, in_place=args.in_place)

    print(
        f"✓ Sent {stats.sent} keys to flow '{args.flow}' "
        f"(total={stats.total}, new={stats.inserted}, unchanged={stats.unchanged}, "
        f"ignored deprecated={stats.ignored_deprecated})"
    )
    if args.in_place:
        print(
            f"✓ Wrote {stats.written} keys to {args.known_hosts} "
            f"({stats.deprecated_skipped} deprecated skipped)"
        )


def run_flows(args) -> None:
    with _api(args) as api:
        flows = api.list_flows()
    print("Available flows:")
    for flow in flows:
        print(f"  {flow}")


def run_deprecate(args) -> None:
    with _api(args) as api:
        result = api.deprecate(args.flow, args.server)
    print(f"✓ {result.message}")


def run_restore(args) -> None:
    with _api(args) as api:
        result = api.restore(args.flow, args.server)
    print(f"✓ {result.message}")


def run_delete(args) -> None:
    with _api(args) as api:
        result = api.delete(args.flow, args.server)
    print(f"✓ {result.message}")


def _add_client_arguments(parser: argparse.ArgumentParser, with_flow: bool = True) -> None:
    parser.add_argument(
        "--host",
        required=True,
        help="Server URL, e.g. https://khm.example.com"
    )
    if with_flow:
        parser.add_argument(
            "--flow",
            required=True,
            help="Flow to operate on"
        )
    parser.add_argument(
        "--basic-auth",
        default="",
        help="Credentials as username:password"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Request timeout in seconds (default: 10)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="khm",
        description="Keep SSH known_hosts files consistent across machines",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    server = subparsers.add_parser("server", help="Run the KHM server")
    server.add_argument("--ip", help="Listen address (default: 127.0.0.1)")
    server.add_argument("--port", type=int, help="Listen port (default: 8080)")
    server.add_argument("--flows", help="Comma-separated list of allowed flows")
    server.add_argument("--database-url", help="SQLAlchemy database URL")
    server.set_defaults(func=run_server)

    sync = subparsers.add_parser("sync", help="Synchronise a known_hosts file with a flow")
    _add_client_arguments(sync)
    sync.add_argument(
        "--known-hosts",
        type=Path,
        default=Path(DEFAULT_KNOWN_HOSTS).expanduser(),
        help=f"known_hosts file (default: {DEFAULT_KNOWN_HOSTS})"
    )
    sync.add_argument(
        "--in-place",
        action="store_true",
        help="Replace the known_hosts file with the flow's active keys"
    )
    sync.set_defaults(func=run_sync)

    flows = subparsers.add_parser("flows", help="List the flows a server accepts")
    _add_client_arguments(flows, with_flow=False)
    flows.set_defaults(func=run_flows)

    for name, func, help_text in (
        ("deprecate", run_deprecate, "Deprecate the keys of a server"),
        ("restore", run_restore, "Restore the deprecated keys of a server"),
        ("delete", run_delete, "Permanently delete a server from a flow"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        _add_client_arguments(command)
        command.add_argument("server", help="Server name as it appears in known_hosts")
        command.set_defaults(func=func)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        args.func(args)
    except (KHMError, ValueError) as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

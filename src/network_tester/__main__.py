"""Entry point for network-tester — run one loop, or serve MCP over stdio."""

import asyncio
import argparse
import logging

from .cli import USAGE, parse_invocation, run_loop

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="network-tester",
        description="TCP/UDP connectivity and throughput tester",
        epilog=USAGE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "tokens",
        nargs="*",
        metavar="ARG",
        help="<protocol> <role> [role arguments], see usage below",
    )
    parser.add_argument("-?", dest="show_usage", action="store_true", help="Show usage and exit")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds instead of waiting for Ctrl+C",
    )
    parser.add_argument("--mcp", action="store_true", help="Serve the MCP tool interface over stdio")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
    )
    parser.add_argument("--log-file", default=None, help="Log to file instead of stderr")
    return parser.parse_intermixed_args(argv)


def configure_logging(args: argparse.Namespace) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.log_file:
        handlers = [logging.FileHandler(args.log_file)]

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        handlers=handlers,
    )


async def _run_mcp():
    from mcp.server.stdio import stdio_server

    from .server import create_server, stop_all

    sessions: dict = {}
    server = create_server(sessions)
    init_options = server.create_initialization_options()

    try:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Network tester MCP server starting")
            await server.run(read_stream, write_stream, init_options)
    finally:
        await stop_all(sessions)


def main(argv: list[str] | None = None):
    args = parse_args(argv)
    configure_logging(args)

    if args.mcp:
        asyncio.run(_run_mcp())
        return

    tokens = ["-?"] if args.show_usage else args.tokens
    loop_obj = parse_invocation(tokens)
    if loop_obj is None:
        return

    try:
        asyncio.run(run_loop(loop_obj, duration=args.duration))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()

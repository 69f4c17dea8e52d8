"""Invocation parsing and the run-until-cancelled driver.

Tokens follow the form ``<protocol> <role> [role arguments]``:

    TCP Server <listening port> [buffer size] [write rate]
    TCP Client <ip address> <port> [buffer size]
    UDP Server <ip address> <port> [buffer size] [write rate]
    UDP Client <listening port>

Bad input is logged and yields no loop. Nothing here raises for bad input.
"""

import asyncio
import ipaddress
import logging
import signal
import sys

from .session import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_UDP_BUFFER_SIZE,
    DEFAULT_WRITE_RATE,
    MAX_DATAGRAM_SIZE,
    MAX_WRITE_RATE,
    LoopResult,
    Protocol,
    Role,
    parse_enum,
)
from .tcp import TcpClientLoop, TcpServerLoop
from .udp import UdpBroadcastLoop, UdpReceiveLoop

logger = logging.getLogger(__name__)

INVALID_CALL = "Invalid call"
FOR_PROPER_USAGE = "For proper usage pass ?, -?, or /?"
USAGE_REQUESTS = {"?", "-?", "/?"}

TCP_SERVER_CALL = "TCP Server <listening port> [buffer size] [write rate]"
TCP_CLIENT_CALL = "TCP Client <ip address> <port> [buffer size]"
UDP_SERVER_CALL = "UDP Server <ip address> <port> [buffer size] [write rate]"
UDP_CLIENT_CALL = "UDP Client <listening port>"

USAGE = "\n".join([
    "",
    "*" * 81,
    "    Usage: (<> required parameters, [] optional parameters)",
    f"    network-tester {TCP_SERVER_CALL}",
    f"    network-tester {TCP_CLIENT_CALL}",
    f"    network-tester {UDP_SERVER_CALL}",
    f"    network-tester {UDP_CLIENT_CALL}",
    "*" * 81,
    "",
])


class InvocationError(ValueError):
    """A token could not be turned into a loop parameter."""


def is_usage_request(token: str) -> bool:
    return token.strip().lower() in USAGE_REQUESTS


def _parse_int(token: str, low: int, high: int | None = None) -> int | None:
    try:
        value = int(token.strip())
    except ValueError:
        return None
    if value < low or (high is not None and value > high):
        return None
    return value


def _port(token: str, what: str, call: str) -> int:
    value = _parse_int(token, 0, 65535)
    if value is None:
        raise InvocationError(f"{what} {token}. {call}")
    return value


def _ip(token: str, what: str, call: str) -> str:
    try:
        return str(ipaddress.ip_address(token.strip()))
    except ValueError:
        raise InvocationError(f"{what} {token}. {call}") from None


def _optional_int(args: list[str], index: int, default: int, what: str, call: str,
                  high: int | None = None) -> int:
    if len(args) <= index:
        return default
    value = _parse_int(args[index], 1, high)
    if value is None:
        raise InvocationError(f"{what} {args[index]}. {call}")
    return value


def _require(args: list[str], required: int, optional: int, call: str) -> None:
    if len(args) < required or len(args) > required + optional:
        raise InvocationError(f"{INVALID_CALL}. {call}")


def _build_tcp(role: Role, args: list[str]):
    if role is Role.SERVER:
        _require(args, 1, 2, TCP_SERVER_CALL)
        return TcpServerLoop(
            port=_port(args[0], "TCP Server invalid listening port", TCP_SERVER_CALL),
            buffer_size=_optional_int(args, 1, DEFAULT_BUFFER_SIZE,
                                      "TCP Server invalid buffer size", TCP_SERVER_CALL),
            write_rate=_optional_int(args, 2, DEFAULT_WRITE_RATE,
                                     "TCP Server invalid write rate", TCP_SERVER_CALL,
                                     high=MAX_WRITE_RATE),
        )

    _require(args, 2, 1, TCP_CLIENT_CALL)
    return TcpClientLoop(
        host=_ip(args[0], "TCP Client invalid IP address", TCP_CLIENT_CALL),
        port=_port(args[1], "TCP Client invalid port", TCP_CLIENT_CALL),
        buffer_size=_optional_int(args, 2, DEFAULT_BUFFER_SIZE,
                                  "TCP Client invalid buffer size", TCP_CLIENT_CALL),
    )


def _build_udp(role: Role, args: list[str]):
    if role is Role.SERVER:
        _require(args, 2, 2, UDP_SERVER_CALL)
        return UdpBroadcastLoop(
            host=_ip(args[0], "UDP Server invalid IP address", UDP_SERVER_CALL),
            port=_port(args[1], "UDP Server invalid port", UDP_SERVER_CALL),
            buffer_size=_optional_int(args, 2, DEFAULT_UDP_BUFFER_SIZE,
                                      "UDP Server invalid buffer size", UDP_SERVER_CALL,
                                      high=MAX_DATAGRAM_SIZE),
            write_rate=_optional_int(args, 3, DEFAULT_WRITE_RATE,
                                     "UDP Server invalid write rate", UDP_SERVER_CALL,
                                     high=MAX_WRITE_RATE),
        )

    _require(args, 1, 0, UDP_CLIENT_CALL)
    return UdpReceiveLoop(
        port=_port(args[0], "UDP Client invalid listening port", UDP_CLIENT_CALL),
    )


def parse_invocation(tokens: list[str], log: logging.Logger = logger):
    """Build the loop named by ``tokens``, or log why not and return None.

    A lone usage request (``?``, ``-?``, ``/?``) prints the usage banner.
    """
    if not tokens:
        log.error("%s. %s", INVALID_CALL, FOR_PROPER_USAGE)
        return None
    if len(tokens) == 1:
        if is_usage_request(tokens[0]):
            # The banner is user-facing help, not a log record.
            sys.stdout.write(USAGE + "\n")
        else:
            log.error("%s. %s", INVALID_CALL, FOR_PROPER_USAGE)
        return None

    protocol = parse_enum(Protocol, tokens[0])
    if protocol is None:
        log.error("Failed to parse protocol %s", tokens[0])
        return None
    role = parse_enum(Role, tokens[1])
    if role is None:
        log.error("Failed to parse application %s", tokens[1])
        return None

    build = _build_tcp if protocol is Protocol.TCP else _build_udp
    try:
        return build(role, tokens[2:])
    except ValueError as e:
        # InvocationError, or a loop rejecting its parameters
        log.error("%s", e)
        return None


async def run_loop(loop_obj, duration: float | None = None) -> LoopResult:
    """Run one loop until SIGINT/SIGTERM, or for ``duration`` seconds."""
    stop = asyncio.Event()
    event_loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            event_loop.add_signal_handler(sig, stop.set)
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread.
            logger.debug("Cannot install handler for %s", sig.name)

    timer = None
    if duration is not None:
        timer = event_loop.call_later(duration, stop.set)

    logger.info("Running %s. Press Ctrl+C to stop ...", loop_obj.name)
    try:
        result = await loop_obj.run(stop)
    finally:
        if timer is not None:
            timer.cancel()
        for sig in handled:
            event_loop.remove_signal_handler(sig)

    level = logging.INFO if result.ok else logging.WARNING
    logger.log(level, "%s finished: %s", result.name, result.reason.value)
    return result

"""Session parameters shared by every loop: defaults, validation, results.

Parameters are fixed for the lifetime of a loop and validated once, before
any socket is opened.
"""

import ipaddress
import random
import socket
from dataclasses import asdict, dataclass, field
from enum import Enum


class Protocol(Enum):
    TCP = "TCP"
    UDP = "UDP"


class Role(Enum):
    CLIENT = "Client"
    SERVER = "Server"


def parse_enum(enum_cls, token: str):
    """Match a CLI token to an enum member by name, ignoring case. None if no match."""
    if not token or not token.strip():
        return None
    for member in enum_cls:
        if member.name.lower() == token.strip().lower():
            return member
    return None


DEFAULT_BUFFER_SIZE = 1024
DEFAULT_UDP_BUFFER_SIZE = 512

# IPv4: 65535 - 8 (UDP header) - 20 (IP header)
MAX_DATAGRAM_SIZE = 65507

# Hertz. 4 writes a second is one every 250ms.
DEFAULT_WRITE_RATE = 4
MAX_WRITE_RATE = 255

MILLISECONDS_IN_ONE_SECOND = 1000

ANY_ADDRESS = "0.0.0.0"


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_buffer_size(size: int, maximum: int | None = None) -> int:
    if not _is_int(size) or size < 1:
        raise ValueError(f"buffer_size must be greater than zero, got {size!r}")
    if maximum is not None and size > maximum:
        raise ValueError(f"buffer_size must be at most {maximum}, got {size}")
    return size


def validate_write_rate(rate: int) -> int:
    if not _is_int(rate) or rate < 1:
        raise ValueError(f"write_rate must be greater than zero, got {rate!r}")
    return rate


def write_interval_ms(rate: int) -> float:
    """Delay between two writes at ``rate`` Hz, in milliseconds."""
    return MILLISECONDS_IN_ONE_SECOND / rate


def write_interval(rate: int) -> float:
    return write_interval_ms(rate) / MILLISECONDS_IN_ONE_SECOND


def fill_random(buffer: bytearray, rng: random.Random) -> bytearray:
    """Refill ``buffer`` in place with random bytes."""
    buffer[:] = rng.randbytes(len(buffer))
    return buffer


class ExitReason(Enum):
    CANCELLED = "cancelled"
    PEER_CLOSED = "peer_closed"
    CONNECT_FAILED = "connect_failed"
    BIND_FAILED = "bind_failed"
    IO_ERROR = "io_error"
    NOT_CONNECTED = "not_connected"


@dataclass
class LoopStats:
    """Live counters, updated by a running loop."""

    bytes_transferred: int = 0
    messages: int = 0
    clients: int = 0

    def record(self, nbytes: int) -> None:
        self.bytes_transferred += nbytes
        self.messages += 1


@dataclass
class LoopResult:
    """How a loop finished. Returned instead of raised."""

    name: str
    reason: ExitReason
    stats: LoopStats = field(default_factory=LoopStats)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason in (ExitReason.CANCELLED, ExitReason.PEER_CLOSED)

    def to_dict(self) -> dict:
        return {
            "loop": self.name,
            "reason": self.reason.value,
            "ok": self.ok,
            **asdict(self.stats),
            "error": self.error,
        }


def finish(name: str, reason: ExitReason, stats: LoopStats, error: BaseException | None = None) -> LoopResult:
    snapshot = LoopStats(**asdict(stats))
    return LoopResult(
        name=name,
        reason=reason,
        stats=snapshot,
        error=f"{type(error).__name__}: {error}" if error is not None else None,
    )


def validate_port(port: int) -> int:
    if not _is_int(port) or not 0 <= port <= 65535:
        raise ValueError(f"port must be between 0 and 65535, got {port!r}")
    return port


def address_family(host: str) -> socket.AddressFamily:
    """AF_INET6 for IPv6 literals, AF_INET for everything else (IPv4, hostnames)."""
    try:
        version = ipaddress.ip_address(host).version
    except ValueError:
        return socket.AF_INET
    return socket.AF_INET6 if version == 6 else socket.AF_INET


def format_endpoint(address) -> str:
    if not address:
        return "<unknown>"
    host, port = address[0], address[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"

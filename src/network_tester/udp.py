"""UDP loops.

The broadcaster (UDP Server) sends random datagrams to a fixed remote
endpoint. The listener (UDP Client) receives datagrams on a local port.
"""

import asyncio
import logging
import random
import socket
from dataclasses import dataclass, field

from .cancel import LoopCancelled, sleep_or_cancel, until_cancelled
from .session import (
    ANY_ADDRESS,
    DEFAULT_UDP_BUFFER_SIZE,
    DEFAULT_WRITE_RATE,
    MAX_DATAGRAM_SIZE,
    ExitReason,
    LoopResult,
    LoopStats,
    address_family,
    fill_random,
    finish,
    format_endpoint,
    validate_buffer_size,
    validate_port,
    validate_write_rate,
    write_interval,
)

logger = logging.getLogger(__name__)

# Large enough for any datagram, so nothing is truncated.
RECEIVE_BUFFER_SIZE = 65535


@dataclass
class UdpBroadcastLoop:
    """Sends one ``buffer_size`` datagram to ``host:port`` every 1/``write_rate`` s."""

    host: str
    port: int
    buffer_size: int = DEFAULT_UDP_BUFFER_SIZE
    write_rate: int = DEFAULT_WRITE_RATE
    logger: logging.Logger = field(default=logger, repr=False)
    stats: LoopStats = field(default_factory=LoopStats, init=False)

    name = "udp_broadcast"

    def __post_init__(self):
        validate_port(self.port)
        validate_buffer_size(self.buffer_size, maximum=MAX_DATAGRAM_SIZE)
        validate_write_rate(self.write_rate)

    def _open(self) -> socket.socket:
        sock = socket.socket(address_family(self.host), socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            # Fixes the default destination; no stream is established.
            sock.connect((self.host, self.port))
        except OSError:
            sock.close()
            raise
        return sock

    async def run(self, stop: asyncio.Event) -> LoopResult:
        endpoint = format_endpoint((self.host, self.port))
        try:
            sock = self._open()
        except OSError as e:
            self.logger.error("UDP socket for %s failed to create or connect. %s", endpoint, e)
            return finish(self.name, ExitReason.CONNECT_FAILED, self.stats, e)

        loop = asyncio.get_running_loop()
        rng = random.Random()
        datagram = bytearray(self.buffer_size)
        delay = write_interval(self.write_rate)
        with sock:
            self.logger.info("Broadcasting %d byte datagrams to %s", self.buffer_size, endpoint)
            try:
                while not stop.is_set():
                    fill_random(datagram, rng)
                    await until_cancelled(loop.sock_sendall(sock, datagram), stop)
                    self.stats.record(len(datagram))
                    self.logger.info("Wrote %d bytes to %s", len(datagram), endpoint)
                    if await sleep_or_cancel(delay, stop):
                        break
            except LoopCancelled:
                pass
            except OSError as e:
                self.logger.warning("UDP socket for %s failed to write. %s", endpoint, e)
                return finish(self.name, ExitReason.IO_ERROR, self.stats, e)

        self.logger.info("Stopped broadcasting to %s", endpoint)
        return finish(self.name, ExitReason.CANCELLED, self.stats)


@dataclass
class UdpReceiveLoop:
    """Binds ``host:port`` and logs the length of every datagram received."""

    port: int
    host: str = ANY_ADDRESS
    logger: logging.Logger = field(default=logger, repr=False)
    stats: LoopStats = field(default_factory=LoopStats, init=False)
    listening: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    address: tuple | None = field(default=None, init=False)

    name = "udp_receive"

    def __post_init__(self):
        validate_port(self.port)

    def _bind(self) -> socket.socket:
        sock = socket.socket(address_family(self.host), socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, self.port))
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    async def run(self, stop: asyncio.Event) -> LoopResult:
        endpoint = format_endpoint((self.host, self.port))
        try:
            sock = self._bind()
        except OSError as e:
            self.logger.error("Failed to bind UDP socket %s. %s", endpoint, e)
            return finish(self.name, ExitReason.BIND_FAILED, self.stats, e)

        loop = asyncio.get_running_loop()
        with sock:
            self.address = sock.getsockname()[:2]
            endpoint = format_endpoint(self.address)
            self.logger.info("Listening for datagrams on %s", endpoint)
            self.listening.set()
            try:
                while not stop.is_set():
                    data, peer = await until_cancelled(
                        loop.sock_recvfrom(sock, RECEIVE_BUFFER_SIZE), stop
                    )
                    self.stats.record(len(data))
                    self.logger.info("Read %d bytes from %s", len(data), format_endpoint(peer))
            except LoopCancelled:
                pass
            except OSError as e:
                self.logger.warning("Failed to read from UDP socket %s. %s", endpoint, e)
                return finish(self.name, ExitReason.IO_ERROR, self.stats, e)

        self.logger.info("Stopped listening on %s", endpoint)
        return finish(self.name, ExitReason.CANCELLED, self.stats)

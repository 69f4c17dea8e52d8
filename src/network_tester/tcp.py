"""TCP loops. A server that writes random payloads, a client that reads them.

TcpServerLoop binds, accepts one client at a time and hands each client to
its own write task. TcpClientLoop connects and reads until the peer closes
the stream or the run is cancelled. Neither retries a failed connect/bind.
"""

import asyncio
import logging
import random
import socket
from dataclasses import dataclass, field

from .cancel import LoopCancelled, sleep_or_cancel, until_cancelled
from .session import (
    ANY_ADDRESS,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_WRITE_RATE,
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


async def _close_stream(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        # Peer already reset the connection; the transport is closed either way.
        pass


@dataclass
class TcpServerLoop:
    """Listens on ``host:port`` and writes ``buffer_size`` random bytes to
    every accepted client at ``write_rate`` Hz."""

    port: int
    buffer_size: int = DEFAULT_BUFFER_SIZE
    write_rate: int = DEFAULT_WRITE_RATE
    host: str = ANY_ADDRESS
    logger: logging.Logger = field(default=logger, repr=False)
    stats: LoopStats = field(default_factory=LoopStats, init=False)
    listening: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    address: tuple | None = field(default=None, init=False)

    name = "tcp_server"

    def __post_init__(self):
        validate_port(self.port)
        validate_buffer_size(self.buffer_size)
        validate_write_rate(self.write_rate)

    async def run(self, stop: asyncio.Event) -> LoopResult:
        endpoint = format_endpoint((self.host, self.port))
        try:
            listener = socket.create_server(
                (self.host, self.port), family=address_family(self.host)
            )
        except OSError as e:
            self.logger.error("Socket exception starting TCP listener %s. %s", endpoint, e)
            return finish(self.name, ExitReason.BIND_FAILED, self.stats, e)

        reason = ExitReason.CANCELLED
        error = None
        loop = asyncio.get_running_loop()

        # Leaving the task group joins every client write loop.
        async with asyncio.TaskGroup() as clients:
            with listener:
                listener.setblocking(False)
                self.address = listener.getsockname()[:2]
                endpoint = format_endpoint(self.address)
                self.logger.info("Started server on %s", endpoint)
                self.listening.set()
                try:
                    while not stop.is_set():
                        self.logger.info("Waiting for client ...")
                        conn, peer = await until_cancelled(loop.sock_accept(listener), stop)
                        self.stats.clients += 1
                        self.logger.info("Accepted client %s", format_endpoint(peer))
                        clients.create_task(self._write_to_client(conn, peer, stop))
                except LoopCancelled:
                    self.logger.info("Stopped accepting clients on %s", endpoint)
                except OSError as e:
                    self.logger.error("Failed to accept on TCP listener %s. %s", endpoint, e)
                    reason, error = ExitReason.IO_ERROR, e
            self.logger.info("Stopped TCP listener %s", endpoint)

        return finish(self.name, reason, self.stats, error)

    async def _write_to_client(self, conn: socket.socket, peer, stop: asyncio.Event) -> None:
        client = format_endpoint(peer)
        try:
            _, writer = await asyncio.open_connection(sock=conn)
        except OSError as e:
            conn.close()
            self.logger.warning("TCP client %s is closed. %s", client, e)
            return

        try:
            if writer.is_closing():
                self.logger.warning("Cannot write to client %s", client)
                return
            if writer.get_extra_info("peername") is None:
                self.logger.warning("Client disconnected.")
                return

            rng = random.Random()
            buffer = bytearray(self.buffer_size)
            delay = write_interval(self.write_rate)
            while not stop.is_set():
                fill_random(buffer, rng)
                writer.write(bytes(buffer))
                await until_cancelled(writer.drain(), stop)
                self.stats.record(len(buffer))
                self.logger.info("Wrote %d bytes to client %s", len(buffer), client)
                if await sleep_or_cancel(delay, stop):
                    break
        except LoopCancelled:
            pass
        except OSError as e:
            self.logger.warning("IO error writing to TCP client %s. %s", client, e)
        finally:
            await _close_stream(writer)
        self.logger.info("Stopped writing to client %s", client)


@dataclass
class TcpClientLoop:
    """Connects to ``host:port`` and reads up to ``buffer_size`` bytes at a time."""

    host: str
    port: int
    buffer_size: int = DEFAULT_BUFFER_SIZE
    logger: logging.Logger = field(default=logger, repr=False)
    stats: LoopStats = field(default_factory=LoopStats, init=False)

    name = "tcp_client"

    def __post_init__(self):
        validate_port(self.port)
        validate_buffer_size(self.buffer_size)

    async def run(self, stop: asyncio.Event) -> LoopResult:
        endpoint = format_endpoint((self.host, self.port))
        try:
            reader, writer = await until_cancelled(
                asyncio.open_connection(self.host, self.port), stop
            )
        except LoopCancelled:
            self.logger.info("Connect to %s cancelled", endpoint)
            return finish(self.name, ExitReason.CANCELLED, self.stats)
        except OSError as e:
            self.logger.error("Failed to connect %s. %s", endpoint, e)
            return finish(self.name, ExitReason.CONNECT_FAILED, self.stats, e)

        self.logger.info("Client connected to %s. Will begin reading ...", endpoint)
        try:
            peer = writer.get_extra_info("peername")
            if peer is None:
                self.logger.warning("Remote endpoint is unknown. Cannot read from it.")
                return finish(self.name, ExitReason.NOT_CONNECTED, self.stats)
            if writer.is_closing():
                self.logger.warning("Client %s is not connected. Cannot read from it.", endpoint)
                return finish(self.name, ExitReason.NOT_CONNECTED, self.stats)

            while not stop.is_set():
                data = await until_cancelled(reader.read(self.buffer_size), stop)
                self.logger.info("Read %d bytes", len(data))
                if not data:
                    self.logger.info("Zero bytes read. Stream closed.")
                    return finish(self.name, ExitReason.PEER_CLOSED, self.stats)
                self.stats.record(len(data))
        except LoopCancelled:
            pass
        except OSError as e:
            self.logger.warning("Client %s failed to read. %s", endpoint, e)
            return finish(self.name, ExitReason.IO_ERROR, self.stats, e)
        finally:
            await _close_stream(writer)

        return finish(self.name, ExitReason.CANCELLED, self.stats)

"""MCP server for network testing — start and stop TCP/UDP loops as sessions."""

import asyncio
import json
import logging
import traceback
import uuid
from dataclasses import dataclass, field

from mcp.server import Server
from mcp.types import TextContent, Tool

from .session import LoopResult

logger = logging.getLogger(__name__)

_SESSION_ID = {
    "type": "string",
    "description": "Session ID returned by a start_* tool",
}

TOOLS = [
    Tool(
        name="start_tcp_server",
        description="Listen for TCP clients and write random payloads to each accepted client at a fixed rate.",
        inputSchema={
            "type": "object",
            "properties": {
                "port": {
                    "type": "integer",
                    "description": "Listening port (0 picks a free port)",
                },
                "buffer_size": {
                    "type": "integer",
                    "description": "Bytes per write (default: 1024)",
                    "default": 1024,
                },
                "write_rate": {
                    "type": "integer",
                    "description": "Writes per second (default: 4)",
                    "default": 4,
                },
                "host": {
                    "type": "string",
                    "description": "Address to bind (default: 0.0.0.0)",
                    "default": "0.0.0.0",
                },
            },
            "required": ["port"],
        },
    ),
    Tool(
        name="start_tcp_client",
        description="Connect to a TCP server and read until the stream closes or the session is stopped.",
        inputSchema={
            "type": "object",
            "properties": {
                "host": {"type": "string", "description": "Server IP address"},
                "port": {"type": "integer", "description": "Server port"},
                "buffer_size": {
                    "type": "integer",
                    "description": "Maximum bytes per read (default: 1024)",
                    "default": 1024,
                },
            },
            "required": ["host", "port"],
        },
    ),
    Tool(
        name="start_udp_broadcast",
        description="Send random datagrams to a remote endpoint at a fixed rate.",
        inputSchema={
            "type": "object",
            "properties": {
                "host": {
                    "type": "string",
                    "description": "Destination IP address (broadcast addresses allowed)",
                },
                "port": {"type": "integer", "description": "Destination port"},
                "buffer_size": {
                    "type": "integer",
                    "description": "Datagram size in bytes, at most 65507 (default: 512)",
                    "default": 512,
                },
                "write_rate": {
                    "type": "integer",
                    "description": "Datagrams per second (default: 4)",
                    "default": 4,
                },
            },
            "required": ["host", "port"],
        },
    ),
    Tool(
        name="start_udp_receive",
        description="Bind a UDP port and count received datagrams.",
        inputSchema={
            "type": "object",
            "properties": {
                "port": {"type": "integer", "description": "Local port to bind"},
                "host": {
                    "type": "string",
                    "description": "Address to bind (default: 0.0.0.0)",
                    "default": "0.0.0.0",
                },
            },
            "required": ["port"],
        },
    ),
    Tool(
        name="list_sessions",
        description="List network test sessions with their live byte counts.",
        inputSchema={
            "type": "object",
            "properties": {},
        },
    ),
    Tool(
        name="session_status",
        description="Report whether a session is running, its byte counts, and its result once finished.",
        inputSchema={
            "type": "object",
            "properties": {"session_id": _SESSION_ID},
            "required": ["session_id"],
        },
    ),
    Tool(
        name="stop_session",
        description="Cancel a session, wait for its sockets to close, and return the final result.",
        inputSchema={
            "type": "object",
            "properties": {"session_id": _SESSION_ID},
            "required": ["session_id"],
        },
    ),
]


def generate_session_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class LoopSession:
    """A running loop, its cancellation signal and the task driving it."""

    loop: object
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    session_id: str = field(default_factory=generate_session_id)
    task: asyncio.Task | None = field(default=None, init=False, repr=False)

    def start(self) -> None:
        self.task = asyncio.create_task(self.loop.run(self.stop), name=self.session_id)

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def result(self) -> LoopResult | None:
        if self.task is None or not self.task.done() or self.task.cancelled():
            return None
        return self.task.result()

    async def stop_and_wait(self) -> LoopResult | None:
        self.stop.set()
        if self.task is not None:
            await asyncio.wait({self.task})
        return self.result

    def describe(self) -> dict:
        info = {
            "session_id": self.session_id,
            "loop": self.loop.name,
            "running": self.running,
            **vars(self.loop.stats),
        }
        address = getattr(self.loop, "address", None)
        if address:
            info["address"] = list(address)
        result = self.result
        if result is not None:
            info["result"] = result.to_dict()
        return info


def _text(content: str) -> list[TextContent]:
    return [TextContent(type="text", text=content)]


def _json(data) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


def create_server(sessions: dict | None = None) -> Server:
    server = Server("network-tester")
    if sessions is None:
        sessions = {}

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        try:
            return await _dispatch(name, arguments, sessions)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return _text(f"Error: {e}\n\n{traceback.format_exc()}")

    return server


async def _start(loop_obj, sessions: dict) -> list[TextContent]:
    session = LoopSession(loop=loop_obj)
    session.start()
    sessions[session.session_id] = session

    # Report the bound address for listeners, or an early bind failure.
    listening = getattr(loop_obj, "listening", None)
    if listening is not None:
        waiter = asyncio.ensure_future(listening.wait())
        await asyncio.wait({waiter, session.task}, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
    logger.info("Started session %s (%s)", session.session_id, loop_obj.name)
    return _json(session.describe())


async def _dispatch(name: str, args: dict, sessions: dict) -> list[TextContent]:
    from .tcp import TcpClientLoop, TcpServerLoop
    from .udp import UdpBroadcastLoop, UdpReceiveLoop

    match name:
        case "start_tcp_server":
            return await _start(TcpServerLoop(
                port=args["port"],
                buffer_size=args.get("buffer_size", 1024),
                write_rate=args.get("write_rate", 4),
                host=args.get("host", "0.0.0.0"),
            ), sessions)

        case "start_tcp_client":
            return await _start(TcpClientLoop(
                host=args["host"],
                port=args["port"],
                buffer_size=args.get("buffer_size", 1024),
            ), sessions)

        case "start_udp_broadcast":
            return await _start(UdpBroadcastLoop(
                host=args["host"],
                port=args["port"],
                buffer_size=args.get("buffer_size", 512),
                write_rate=args.get("write_rate", 4),
            ), sessions)

        case "start_udp_receive":
            return await _start(UdpReceiveLoop(
                port=args["port"],
                host=args.get("host", "0.0.0.0"),
            ), sessions)

        case "list_sessions":
            described = [s.describe() for s in sessions.values()]
            return _json({"sessions": described, "count": len(described)})

        case "session_status":
            session = _get_session(sessions, args["session_id"])
            return _json(session.describe())

        case "stop_session":
            session = _get_session(sessions, args["session_id"])
            await session.stop_and_wait()
            del sessions[session.session_id]
            logger.info("Stopped session %s", session.session_id)
            return _json(session.describe())

        case _:
            return _text(f"Unknown tool: {name}")


def _get_session(sessions: dict, session_id: str) -> LoopSession:
    """Look up a session by ID, raising a clear error if not found."""
    session: LoopSession | None = sessions.get(session_id)
    if session is None:
        active = list(sessions.keys())
        raise ValueError(
            f"No session with id '{session_id}'. "
            f"Active sessions: {active if active else 'none — use a start_* tool first'}"
        )
    return session


async def stop_all(sessions: dict) -> None:
    """Cancel every session and join its task."""
    for session in list(sessions.values()):
        await session.stop_and_wait()
    sessions.clear()

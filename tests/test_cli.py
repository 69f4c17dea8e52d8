"""Tests for invocation parsing, the run driver and the entry point."""

import asyncio
import logging
from unittest.mock import patch

import pytest

from network_tester.__main__ import main, parse_args
from network_tester.cli import (
    FOR_PROPER_USAGE,
    TCP_CLIENT_CALL,
    TCP_SERVER_CALL,
    UDP_CLIENT_CALL,
    UDP_SERVER_CALL,
    parse_invocation,
    run_loop,
)
from network_tester.session import ExitReason
from network_tester.tcp import TcpClientLoop, TcpServerLoop
from network_tester.udp import UdpBroadcastLoop, UdpReceiveLoop


@pytest.fixture
def errors(caplog):
    caplog.set_level(logging.ERROR, logger="network_tester")
    return caplog


class TestParseTcp:
    def test_server_defaults(self):
        loop = parse_invocation(["TCP", "Server", "5000"])
        assert isinstance(loop, TcpServerLoop)
        assert (loop.port, loop.buffer_size, loop.write_rate) == (5000, 1024, 4)

    def test_server_all_arguments(self):
        loop = parse_invocation(["tcp", "server", "5000", "8", "2"])
        assert (loop.port, loop.buffer_size, loop.write_rate) == (5000, 8, 2)

    def test_client(self):
        loop = parse_invocation(["TCP", "Client", "192.168.1.10", "5000", "256"])
        assert isinstance(loop, TcpClientLoop)
        assert (loop.host, loop.port, loop.buffer_size) == ("192.168.1.10", 5000, 256)

    def test_client_missing_port(self, errors):
        assert parse_invocation(["TCP", "Client", "10.0.0.1"]) is None
        assert TCP_CLIENT_CALL in errors.text

    def test_client_invalid_ip(self, errors):
        assert parse_invocation(["TCP", "Client", "not-an-ip", "5000"]) is None
        assert "invalid IP address not-an-ip" in errors.text

    def test_server_invalid_port(self, errors):
        assert parse_invocation(["TCP", "Server", "70000"]) is None
        assert "invalid listening port 70000" in errors.text
        assert TCP_SERVER_CALL in errors.text

    @pytest.mark.parametrize("value", ["0", "-3", "abc"])
    def test_server_invalid_buffer_size(self, errors, value):
        assert parse_invocation(["TCP", "Server", "5000", value]) is None
        assert f"invalid buffer size {value}" in errors.text

    @pytest.mark.parametrize("value", ["0", "256"])
    def test_server_invalid_write_rate(self, errors, value):
        assert parse_invocation(["TCP", "Server", "5000", "8", value]) is None
        assert f"invalid write rate {value}" in errors.text

    def test_too_many_arguments(self, errors):
        assert parse_invocation(["TCP", "Server", "5000", "8", "2", "9"]) is None
        assert "Invalid call" in errors.text


class TestParseUdp:
    def test_broadcaster(self):
        loop = parse_invocation(["UDP", "Server", "255.255.255.255", "9000", "128", "10"])
        assert isinstance(loop, UdpBroadcastLoop)
        assert (loop.host, loop.port, loop.buffer_size, loop.write_rate) == (
            "255.255.255.255", 9000, 128, 10,
        )

    def test_broadcaster_defaults(self):
        loop = parse_invocation(["UDP", "Server", "10.0.0.255", "9000"])
        assert (loop.buffer_size, loop.write_rate) == (512, 4)

    def test_broadcaster_buffer_above_datagram_limit(self, errors):
        assert parse_invocation(["UDP", "Server", "10.0.0.1", "9000", "65508"]) is None
        assert UDP_SERVER_CALL in errors.text

    def test_receiver(self):
        loop = parse_invocation(["UDP", "Client", "9000"])
        assert isinstance(loop, UdpReceiveLoop)
        assert loop.port == 9000

    def test_receiver_missing_port(self, errors):
        assert parse_invocation(["UDP", "Client"]) is None
        assert UDP_CLIENT_CALL in errors.text


class TestParseFailures:
    def test_unknown_protocol_logs_once(self, errors):
        assert parse_invocation(["FTP", "Server", "21"]) is None
        assert [r.getMessage() for r in errors.records] == ["Failed to parse protocol FTP"]

    def test_unknown_application(self, errors):
        assert parse_invocation(["TCP", "Peer", "21"]) is None
        assert "Failed to parse application Peer" in errors.text

    def test_no_arguments(self, errors):
        assert parse_invocation([]) is None
        assert FOR_PROPER_USAGE in errors.text

    def test_single_non_usage_token(self, errors):
        assert parse_invocation(["TCP"]) is None
        assert FOR_PROPER_USAGE in errors.text

    @pytest.mark.parametrize("token", ["?", "-?", "/?"])
    def test_usage(self, capsys, errors, token):
        assert parse_invocation([token]) is None
        out = capsys.readouterr().out
        assert TCP_SERVER_CALL in out
        assert UDP_CLIENT_CALL in out
        assert errors.records == []


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_duration_cancels(self):
        loop = UdpReceiveLoop(port=0, host="127.0.0.1")
        result = await asyncio.wait_for(run_loop(loop, duration=0.1), timeout=5)
        assert result.reason is ExitReason.CANCELLED


class TestMain:
    def test_parse_args(self):
        args = parse_args(["--log-level", "debug", "--duration", "2", "TCP", "Server", "5000"])
        assert args.tokens == ["TCP", "Server", "5000"]
        assert args.duration == 2.0
        assert args.log_level == "debug"
        assert not args.mcp

    def test_flag_between_tokens(self):
        args = parse_args(["TCP", "Server", "--duration", "5", "5000"])
        assert args.tokens == ["TCP", "Server", "5000"]
        assert args.duration == 5.0

    def test_usage_flag(self):
        assert parse_args(["-?"]).show_usage

    def test_invalid_protocol_starts_nothing(self):
        with patch("network_tester.__main__.run_loop") as run:
            main(["FTP", "Server", "21"])
        run.assert_not_called()

    def test_runs_for_duration(self):
        with patch("network_tester.__main__.parse_invocation",
                   return_value=UdpReceiveLoop(port=0, host="127.0.0.1")):
            main(["UDP", "Client", "0", "--duration", "0.1"])

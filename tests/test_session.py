"""Tests for session parameters: enum parsing, validation, payloads, results."""

import random
import socket

import pytest

from network_tester.session import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_UDP_BUFFER_SIZE,
    DEFAULT_WRITE_RATE,
    MAX_DATAGRAM_SIZE,
    ExitReason,
    LoopResult,
    LoopStats,
    Protocol,
    Role,
    address_family,
    fill_random,
    finish,
    format_endpoint,
    parse_enum,
    validate_buffer_size,
    validate_port,
    validate_write_rate,
    write_interval,
    write_interval_ms,
)


class TestDefaults:
    def test_values(self):
        assert DEFAULT_BUFFER_SIZE == 1024
        assert DEFAULT_WRITE_RATE == 4
        assert DEFAULT_UDP_BUFFER_SIZE <= MAX_DATAGRAM_SIZE
        assert MAX_DATAGRAM_SIZE == 65507


class TestParseEnum:
    def test_exact_names(self):
        assert parse_enum(Protocol, "TCP") is Protocol.TCP
        assert parse_enum(Protocol, "UDP") is Protocol.UDP
        assert parse_enum(Role, "Client") is Role.CLIENT
        assert parse_enum(Role, "Server") is Role.SERVER

    def test_case_insensitive(self):
        assert parse_enum(Protocol, "tcp") is Protocol.TCP
        assert parse_enum(Role, "SERVER") is Role.SERVER

    def test_unknown(self):
        assert parse_enum(Protocol, "FTP") is None
        assert parse_enum(Role, "Peer") is None

    def test_blank(self):
        assert parse_enum(Protocol, "") is None
        assert parse_enum(Protocol, "   ") is None


class TestValidation:
    @pytest.mark.parametrize("size", [1, 8, 1024, 1 << 20])
    def test_buffer_size_accepts_positive(self, size):
        assert validate_buffer_size(size) == size

    @pytest.mark.parametrize("size", [0, -1, 1.5, "8", True])
    def test_buffer_size_rejects(self, size):
        with pytest.raises(ValueError, match="buffer_size"):
            validate_buffer_size(size)

    def test_buffer_size_maximum(self):
        assert validate_buffer_size(MAX_DATAGRAM_SIZE, maximum=MAX_DATAGRAM_SIZE) == MAX_DATAGRAM_SIZE
        with pytest.raises(ValueError, match="at most"):
            validate_buffer_size(MAX_DATAGRAM_SIZE + 1, maximum=MAX_DATAGRAM_SIZE)

    def test_write_rate(self):
        assert validate_write_rate(1) == 1
        assert validate_write_rate(255) == 255
        with pytest.raises(ValueError, match="write_rate"):
            validate_write_rate(0)

    def test_port(self):
        assert validate_port(0) == 0
        assert validate_port(65535) == 65535
        with pytest.raises(ValueError, match="port"):
            validate_port(65536)
        with pytest.raises(ValueError, match="port"):
            validate_port(-1)


class TestWriteInterval:
    def test_default_rate_is_250ms(self):
        assert write_interval_ms(4) == 250
        assert write_interval(4) == pytest.approx(0.25)

    def test_one_hertz(self):
        assert write_interval(1) == pytest.approx(1.0)

    def test_two_hertz(self):
        assert write_interval_ms(2) == 500


class TestFillRandom:
    def test_refills_in_place(self):
        buffer = bytearray(64)
        result = fill_random(buffer, random.Random(1))
        assert result is buffer
        assert len(buffer) == 64
        assert any(buffer)

    def test_changes_between_fills(self):
        rng = random.Random(7)
        buffer = bytearray(32)
        first = bytes(fill_random(buffer, rng))
        second = bytes(fill_random(buffer, rng))
        assert first != second


class TestResults:
    def test_finish_snapshots_stats(self):
        stats = LoopStats()
        stats.record(8)
        result = finish("tcp_client", ExitReason.PEER_CLOSED, stats)
        stats.record(8)
        assert result.stats.bytes_transferred == 8
        assert result.stats.messages == 1
        assert result.ok

    def test_finish_formats_error(self):
        result = finish("udp_receive", ExitReason.BIND_FAILED, LoopStats(), OSError(98, "in use"))
        assert not result.ok
        assert result.error.startswith("OSError")

    def test_to_dict(self):
        result = LoopResult("tcp_server", ExitReason.CANCELLED, LoopStats(16, 2, 1))
        assert result.to_dict() == {
            "loop": "tcp_server",
            "reason": "cancelled",
            "ok": True,
            "bytes_transferred": 16,
            "messages": 2,
            "clients": 1,
            "error": None,
        }


class TestEndpoints:
    def test_family(self):
        assert address_family("127.0.0.1") == socket.AF_INET
        assert address_family("::1") == socket.AF_INET6
        assert address_family("localhost") == socket.AF_INET

    def test_format(self):
        assert format_endpoint(("10.0.0.1", 80)) == "10.0.0.1:80"
        assert format_endpoint(("::1", 80, 0, 0)) == "[::1]:80"
        assert format_endpoint(None) == "<unknown>"

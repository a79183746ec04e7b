"""
Property-based tests for TCP reachability probing.

Uses a local listening socket for the reachable case and a port that was
bound and released for the unreachable case.
"""

import asyncio
import socket
from io import StringIO

from hypothesis import given, settings
from hypothesis import strategies as st

from serdo.audit_logger import AuditLogger
from serdo.config import ProbeConfig
from serdo.models import Server
from serdo.prober import Prober, ProbeResult


def run_async(coro):
    return asyncio.run(coro)


def closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def with_listener(callback):
    server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        return await callback(port)
    finally:
        server.close()
        await server.wait_closed()


class TestPortOrderProperty:
    """The SSH port is tried first, then the fallbacks, without repeats."""

    @given(ssh_port=st.integers(1, 65535), fallbacks=st.lists(st.integers(1, 65535), max_size=4))
    @settings(max_examples=100)
    def test_ports_for(self, ssh_port: int, fallbacks: list) -> None:
        prober = Prober(ProbeConfig(fallback_ports=fallbacks))
        ports = prober.ports_for(Server(id="s", name="n", ip="h", ssh_port=ssh_port))

        assert ports[0] == ssh_port
        assert len(ports) == len(set(ports))
        assert set(ports) == {ssh_port, *fallbacks}

    def test_default_ports(self) -> None:
        ports = Prober().ports_for(Server(id="s", name="n", ip="h"))
        assert ports == [22, 80, 443]


class TestReachabilityProperty:
    def test_open_port_is_reachable(self) -> None:
        prober = Prober(ProbeConfig(timeout_seconds=2.0))

        async def probe(port: int) -> ProbeResult:
            return await prober.is_reachable("127.0.0.1", [closed_port(), port])

        result = run_async(with_listener(probe))
        assert result.reachable
        assert result.latency_ms is not None and result.latency_ms >= 0

    def test_first_open_port_wins(self) -> None:
        prober = Prober(ProbeConfig(timeout_seconds=2.0))

        async def probe(port: int):
            return port, await prober.is_reachable("127.0.0.1", [port, closed_port()])

        port, result = run_async(with_listener(probe))
        assert result.port == port

    def test_closed_ports_unreachable(self) -> None:
        prober = Prober(ProbeConfig(timeout_seconds=1.0))
        result = run_async(prober.is_reachable("127.0.0.1", [closed_port(), closed_port()]))
        assert result == ProbeResult(reachable=False)

    def test_empty_host(self) -> None:
        result = run_async(Prober().is_reachable("", [22]))
        assert not result.reachable
        assert result.error == "empty host"


class FailingProber(Prober):
    async def probe_server(self, server: Server) -> ProbeResult:
        if server.id == "boom":
            raise RuntimeError("resolver exploded")
        return ProbeResult(reachable=True, port=22, latency_ms=1)


class TestBatchProperty:
    """Batch results line up with the input and isolate failures."""

    @given(ids=st.lists(st.sampled_from(["ok", "boom"]), max_size=8))
    @settings(max_examples=30)
    def test_failures_isolated(self, ids: list) -> None:
        logger = AuditLogger(output_stream=StringIO())
        servers = [Server(id=i, name=f"{i}-{n}", ip="10.0.0.1") for n, i in enumerate(ids)]
        results = run_async(FailingProber(logger=logger).probe_servers(servers))

        assert len(results) == len(servers)
        for server, result in zip(servers, results):
            if server.id == "boom":
                assert not result.reachable
                assert result.error == "RuntimeError: resolver exploded"
            else:
                assert result.reachable
        assert len([e for e in logger.entries if e.component == "Prober"]) == ids.count("boom")

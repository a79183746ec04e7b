"""
TCP reachability probing.

A host counts as reachable when any of its candidate ports accepts a TCP
connection. Ports are tried in order and the first success wins; every
attempt has its own timeout. The connection is closed immediately, no
protocol handshake is performed and failed attempts are not retried.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from .audit_logger import AuditLogger
from .config import ProbeConfig
from .models import Server


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of probing one host."""

    reachable: bool
    port: Optional[int] = None
    latency_ms: Optional[int] = None
    error: Optional[str] = None


class Prober:
    """Checks TCP reachability of servers."""

    def __init__(
        self,
        config: Optional[ProbeConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config or ProbeConfig()
        self._logger = logger

    def ports_for(self, server: Server) -> list[int]:
        """Candidate ports for a server: its SSH port, then the fallbacks, deduplicated."""
        ports: list[int] = []
        for port in [server.ssh_port or self._config.default_ssh_port, *self._config.fallback_ports]:
            if port not in ports:
                ports.append(port)
        return ports

    async def _try_port(self, host: str, port: int) -> Optional[int]:
        start = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._config.timeout_seconds,
            )
        except (OSError, asyncio.TimeoutError):
            return None
        latency = int(round((time.perf_counter() - start) * 1000))
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return latency

    async def is_reachable(self, host: str, ports: Sequence[int]) -> ProbeResult:
        """Try ``ports`` in order and report the first that accepts a connection."""
        if not host:
            return ProbeResult(reachable=False, error="empty host")
        for port in ports:
            latency = await self._try_port(host, port)
            if latency is not None:
                return ProbeResult(reachable=True, port=port, latency_ms=latency)
        return ProbeResult(reachable=False)

    async def probe_server(self, server: Server) -> ProbeResult:
        return await self.is_reachable(server.ip, self.ports_for(server))

    async def probe_servers(self, servers: Sequence[Server]) -> list[ProbeResult]:
        """
        Probe servers concurrently.

        Results line up with ``servers``. An exception while probing one server
        becomes an unreachable result carrying ``"<Type>: <message>"``.
        """
        outcomes = await asyncio.gather(
            *(self.probe_server(server) for server in servers),
            return_exceptions=True,
        )
        results: list[ProbeResult] = []
        for server, outcome in zip(servers, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                if self._logger:
                    self._logger.log_error(
                        component="Prober",
                        message=f"Probe failed for server {server.name}",
                        error=outcome,
                        additional_data={"server_id": server.id, "ip": server.ip},
                    )
                results.append(ProbeResult(
                    reachable=False,
                    error=f"{type(outcome).__name__}: {outcome}",
                ))
            else:
                results.append(outcome)
        return results

from __future__ import annotations

import asyncio
import contextlib
import random
import time
from ipaddress import IPv4Address
from typing import Awaitable, Callable, Optional, Sequence

from pulsenet.models import Hit, Miss, MissReason, ProbeOutcome

Connector = Callable[[str, int], Awaitable[None]]

SIMULATE_HIT_RATE = 0.05


async def tcp_connect(host: str, port: int) -> None:
    """Complete a TCP handshake with host:port, then close the connection."""
    _, writer = await asyncio.open_connection(host, port)
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()


class TcpProbe:
    """
    Reachability check for one address over an ordered set of ports.

    The timeout budget is split evenly across the ports, which are tried in
    order; the first completed handshake wins. When every port fails the
    outcome carries the first specific failure seen (refused or
    unreachable), falling back to timeout only if nothing else was observed.
    """

    def __init__(
        self,
        ports: Sequence[int],
        timeout_ms: int,
        simulate: bool = False,
        connector: Optional[Connector] = None,
        rng: Optional[random.Random] = None,
    ):
        if not ports:
            raise ValueError("at least one port is required")
        self.ports = tuple(ports)
        self.timeout_ms = timeout_ms
        self.simulate = simulate
        self.connector = connector or tcp_connect
        self.rng = rng or random.Random()

    @property
    def port_timeout(self) -> float:
        return self.timeout_ms / max(1, len(self.ports)) / 1000.0

    async def check(self, address: IPv4Address) -> ProbeOutcome:
        if self.simulate:
            return await self._simulate()

        host = str(address)
        per_port = self.port_timeout
        start = time.perf_counter()
        reason: Optional[MissReason] = None

        for port in self.ports:
            try:
                await asyncio.wait_for(self.connector(host, port), timeout=per_port)
            except (asyncio.TimeoutError, TimeoutError):
                if reason is None:
                    reason = MissReason.TIMEOUT
            except ConnectionRefusedError:
                if reason in (None, MissReason.TIMEOUT):
                    reason = MissReason.REFUSED
            except OSError:
                if reason in (None, MissReason.TIMEOUT):
                    reason = MissReason.UNREACHABLE
            else:
                elapsed_ms = int((time.perf_counter() - start) * 1000)
                return Hit(port=port, latency_ms=elapsed_ms)

        return Miss(reason=reason or MissReason.TIMEOUT)

    async def _simulate(self) -> ProbeOutcome:
        await asyncio.sleep(self.rng.uniform(0.010, 0.100))
        if self.rng.random() < SIMULATE_HIT_RATE:
            return Hit(port=self.ports[0], latency_ms=self.rng.randint(5, 49))
        return Miss(reason=MissReason.TIMEOUT)

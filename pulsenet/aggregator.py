from __future__ import annotations

from ipaddress import IPv4Address
from typing import Any, AsyncIterator, List, Optional, Protocol, Sequence, Tuple

from pulsenet.logging_setup import get_logger
from pulsenet.models import Hit, HitRecord, ProbeOutcome, RunStats

log = get_logger(__name__)


class HitSink(Protocol):
    async def publish(self, record: HitRecord) -> None: ...

    async def flush(self) -> None: ...


class UIHooks(Protocol):
    def on_start(self, cfg: Any, total: int) -> None: ...

    def on_hit(self, record: HitRecord) -> None: ...

    def on_progress(self, stats: RunStats, total: int) -> None: ...

    def on_finish(self, stats: RunStats) -> None: ...


class Aggregator:
    """Sole consumer of the result stream and sole owner of the RunStats."""

    def __init__(self, sinks: Sequence[HitSink] = (), ui: Optional[UIHooks] = None, total: int = 0):
        self.sinks: List[HitSink] = list(sinks)
        self.ui = ui
        self.total = total
        self.stats = RunStats()

    async def handle(self, address: IPv4Address, outcome: ProbeOutcome) -> None:
        self.stats.record(outcome)
        if isinstance(outcome, Hit):
            record = HitRecord.from_hit(address, outcome)
            log.debug("hit", ip=record.ip, port=record.port, latency_ms=record.latency_ms)
            for sink in self.sinks:
                await sink.publish(record)
            if self.ui is not None:
                self.ui.on_hit(record)
        if self.ui is not None:
            self.ui.on_progress(self.stats, self.total)

    async def consume(self, stream: AsyncIterator[Tuple[IPv4Address, ProbeOutcome]]) -> RunStats:
        async for address, outcome in stream:
            await self.handle(address, outcome)
        for sink in self.sinks:
            await sink.flush()
        if self.ui is not None:
            self.ui.on_finish(self.stats)
        return self.stats

from __future__ import annotations

import asyncio
import uuid
from ipaddress import IPv4Address
from typing import AsyncIterator, Iterable, Optional, Protocol, Set, Tuple

from opentelemetry import trace, metrics

from pulsenet.aggregator import Aggregator, HitSink, UIHooks
from pulsenet.config import AppConfig
from pulsenet.limits import PermitPool, TokenBucket
from pulsenet.logging_setup import get_logger
from pulsenet.models import Hit, ProbeOutcome, RunStats
from pulsenet.scanner.tcp import TcpProbe
from pulsenet.sources import AddressSource, build_source

log = get_logger(__name__)
tracer = trace.get_tracer(__name__)
meter = metrics.get_meter(__name__)

metric_probes = meter.create_counter("pulsenet_probes_total")
metric_hits = meter.create_counter("pulsenet_hits_total")

DEFAULT_FAN_OUT = 2048

Result = Tuple[IPv4Address, ProbeOutcome]


class Probe(Protocol):
    async def check(self, address: IPv4Address) -> ProbeOutcome: ...


class Orchestrator:
    """
    Runs one probe task per address under a rate limit (new starts per
    second) and a permit pool (simultaneous probes), and yields results in
    completion order.
    """

    def __init__(
        self,
        probe: Probe,
        limiter: TokenBucket,
        permits: PermitPool,
        fan_out: int = DEFAULT_FAN_OUT,
    ):
        self.probe = probe
        self.limiter = limiter
        self.permits = permits
        # never fewer pending tasks than permits, or workers would idle
        self.fan_out = max(fan_out, permits.size)

    async def _probe_one(self, address: IPv4Address) -> Result:
        await self.limiter.acquire()
        async with self.permits:
            outcome = await self.probe.check(address)
        kind = "hit" if isinstance(outcome, Hit) else outcome.reason.value
        metric_probes.add(1, {"outcome": kind})
        if kind == "hit":
            metric_hits.add(1)
        return address, outcome

    async def stream(self, addresses: Iterable[IPv4Address]) -> AsyncIterator[Result]:
        queue = iter(list(addresses))
        pending: Set[asyncio.Task] = set()

        def submit_next() -> bool:
            try:
                address = next(queue)
            except StopIteration:
                return False
            pending.add(asyncio.ensure_future(self._probe_one(address)))
            return True

        try:
            while len(pending) < self.fan_out and submit_next():
                pass
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    yield task.result()
                while len(pending) < self.fan_out and submit_next():
                    pass
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)


async def run_scan(
    cfg: AppConfig,
    sinks: Iterable[HitSink] = (),
    ui: Optional[UIHooks] = None,
    source: Optional[AddressSource] = None,
    probe: Optional[Probe] = None,
    scan_id: Optional[str] = None,
) -> RunStats:
    """Probe every address of the configured source and return the final stats."""
    scan = cfg.scan.validate()
    scan_id = scan_id or str(uuid.uuid4())
    source = source or build_source(scan)
    total = source.total_count()
    probe = probe or TcpProbe(scan.port_set(), scan.timeout_ms, simulate=scan.simulate)

    orchestrator = Orchestrator(
        probe,
        TokenBucket(scan.rate),
        PermitPool(scan.workers),
        fan_out=scan.fan_out,
    )
    aggregator = Aggregator(list(sinks), ui=ui, total=total)

    with tracer.start_as_current_span("scan"):
        log.info(
            "scan_start",
            scan_id=scan_id,
            targets=total,
            ports=list(scan.port_set()),
            workers=scan.workers,
            rate=scan.rate,
            simulate=scan.simulate,
        )
        if ui is not None:
            ui.on_start(scan, total)
        stats = await aggregator.consume(orchestrator.stream(source))
        log.info("scan_complete", scan_id=scan_id, **stats.to_dict())
    return stats

from __future__ import annotations

import asyncio
from ipaddress import IPv4Address
from typing import Callable, Dict, List, Optional

import pytest
import structlog

from pulsenet.config import AppConfig, ElasticConfig, KafkaConfig, OTelConfig, ScanConfig
from pulsenet.models import HitRecord, ProbeOutcome, RunStats


def make_scan_config(**kwargs) -> ScanConfig:
    base = dict(
        count=20,
        timeout_ms=200,
        workers=8,
        rate=10000,
        ports="80",
        output="pulse_results.log",
        clean_output="found_ips.txt",
        cidr=None,
        file=None,
        simulate=False,
        json=False,
        quiet=True,
        fan_out=2048,
    )
    base.update(kwargs)
    return ScanConfig(**base)


def make_app_config(**kwargs) -> AppConfig:
    return AppConfig(
        scan=make_scan_config(**kwargs),
        kafka=KafkaConfig(enabled=False),
        elastic=ElasticConfig(enabled=False),
        otel=OTelConfig(enabled=False),
    )


class FakeConnector:
    """Connector whose behaviour per port is scripted: 'ok', 'refused', 'unreachable', 'etimedout' or 'hang'."""

    def __init__(self, script: Dict[int, str]):
        self.script = script
        self.calls: List[int] = []

    async def __call__(self, host: str, port: int) -> None:
        self.calls.append(port)
        action = self.script[port]
        if action == "ok":
            return
        if action == "refused":
            raise ConnectionRefusedError(111, "Connection refused")
        if action == "unreachable":
            raise OSError(113, "No route to host")
        if action == "etimedout":
            raise TimeoutError(110, "Connection timed out")
        await asyncio.sleep(3600)


class ScriptedProbe:
    """Probe returning a precomputed outcome per address after an optional delay."""

    def __init__(self, outcome_for: Callable[[IPv4Address], ProbeOutcome], delay_for: Optional[Callable[[IPv4Address], float]] = None):
        self.outcome_for = outcome_for
        self.delay_for = delay_for or (lambda a: 0.0)
        self.active = 0
        self.max_active = 0
        self.checked: List[IPv4Address] = []

    async def check(self, address: IPv4Address) -> ProbeOutcome:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay_for(address))
            self.checked.append(address)
            return self.outcome_for(address)
        finally:
            self.active -= 1


class RecordingSink:
    def __init__(self):
        self.records: List[HitRecord] = []
        self.flushed = 0

    async def publish(self, record: HitRecord) -> None:
        self.records.append(record)

    async def flush(self) -> None:
        self.flushed += 1


class RecordingUI:
    def __init__(self):
        self.started: Optional[int] = None
        self.hits: List[HitRecord] = []
        self.progress_calls = 0
        self.finished: Optional[RunStats] = None

    def on_start(self, cfg, total: int) -> None:
        self.started = total

    def on_hit(self, record: HitRecord) -> None:
        self.hits.append(record)

    def on_progress(self, stats: RunStats, total: int) -> None:
        self.progress_calls += 1

    def on_finish(self, stats: RunStats) -> None:
        self.finished = stats


def assert_sum_invariant(stats: RunStats) -> None:
    assert stats.total_processed == stats.hits + stats.timeouts + stats.refused + stats.unreachable
    assert stats.hits <= stats.total_processed


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def recording_ui() -> RecordingUI:
    return RecordingUI()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PULSENET_COUNT", "PULSENET_TIMEOUT_MS", "PULSENET_WORKERS", "PULSENET_RATE",
                 "PULSENET_PORTS", "PULSENET_OUTPUT", "PULSENET_CLEAN_OUTPUT", "PULSENET_CIDR",
                 "PULSENET_FILE", "PULSENET_SIMULATE", "PULSENET_JSON", "PULSENET_QUIET",
                 "PULSENET_FAN_OUT", "KAFKA_ENABLED", "ES_ENABLED", "OTEL_ENABLED"):
        monkeypatch.delenv(name, raising=False)

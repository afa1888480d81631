from __future__ import annotations

import enum
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from ipaddress import IPv4Address
from typing import Any, Dict, Union

TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MissReason(str, enum.Enum):
    TIMEOUT = "timeout"
    REFUSED = "refused"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class Hit:
    port: int
    latency_ms: int


@dataclass(frozen=True)
class Miss:
    reason: MissReason


ProbeOutcome = Union[Hit, Miss]


@dataclass
class HitRecord:
    """One reachable address, as written to logs and shown in the UI."""

    timestamp: str
    ip: str
    port: int
    latency_ms: int
    # UTC ISO-8601 of the same instant, for indexed documents
    observed_at: str = field(default_factory=utcnow_iso, compare=False)

    @classmethod
    def from_hit(cls, address: IPv4Address, hit: Hit) -> "HitRecord":
        now = datetime.now(timezone.utc)
        return cls(
            timestamp=now.astimezone().strftime(TIMESTAMP_FMT),
            ip=str(address),
            port=hit.port,
            latency_ms=hit.latency_ms,
            observed_at=now.isoformat(),
        )

    def to_json_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("observed_at")
        return d

    def to_doc(self) -> Dict[str, Any]:
        d = self.to_json_dict()
        d.pop("timestamp")
        return {"@timestamp": self.observed_at, **d}

    def to_log_line(self) -> str:
        return f"[{self.timestamp}] {self.ip}, Port: {self.port}, Latency: {self.latency_ms}ms"


@dataclass
class RunStats:
    hits: int = 0
    timeouts: int = 0
    refused: int = 0
    unreachable: int = 0
    total_processed: int = 0
    total_latency_ms: int = 0

    def record(self, outcome: ProbeOutcome) -> None:
        self.total_processed += 1
        if isinstance(outcome, Hit):
            self.hits += 1
            self.total_latency_ms += outcome.latency_ms
        elif outcome.reason is MissReason.TIMEOUT:
            self.timeouts += 1
        elif outcome.reason is MissReason.REFUSED:
            self.refused += 1
        else:
            self.unreachable += 1

    @property
    def mean_latency_ms(self) -> int:
        if not self.hits:
            return 0
        return self.total_latency_ms // self.hits

    def to_dict(self) -> Dict[str, int]:
        d = asdict(self)
        d["mean_latency_ms"] = self.mean_latency_ms
        return d

"""
Candidate address sources.

Every source is finite and knows its size before probing starts, so the
UI can show progress against a fixed total. List sources are shuffled so
that input order (adjacent hosts of one CIDR, a sorted file) does not turn
into bursts against neighbouring addresses.
"""
from __future__ import annotations

import ipaddress
import random
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from pulsenet.config import ScanConfig
from pulsenet.filter import is_public
from pulsenet.logging_setup import get_logger

log = get_logger(__name__)


class AddressSource:
    def __iter__(self) -> Iterator[ipaddress.IPv4Address]:
        raise NotImplementedError

    def total_count(self) -> int:
        raise NotImplementedError


class RandomSource(AddressSource):
    """`count` uniformly random public addresses (rejection sampling)."""

    def __init__(self, count: int, rng: Optional[random.Random] = None):
        self.count = count
        self.rng = rng or random.Random()

    def _sample(self) -> ipaddress.IPv4Address:
        while True:
            ip = ipaddress.IPv4Address(self.rng.getrandbits(32))
            if is_public(ip):
                return ip

    def __iter__(self) -> Iterator[ipaddress.IPv4Address]:
        for _ in range(self.count):
            yield self._sample()

    def total_count(self) -> int:
        return self.count


class ListSource(AddressSource):
    def __init__(self, addresses: Sequence[ipaddress.IPv4Address], rng: Optional[random.Random] = None):
        self.addresses: List[ipaddress.IPv4Address] = list(addresses)
        (rng or random.Random()).shuffle(self.addresses)

    @classmethod
    def from_cidr(cls, spec: str, rng: Optional[random.Random] = None) -> "ListSource":
        ips: List[ipaddress.IPv4Address] = []
        for part in spec.split(','):
            s = part.strip()
            if not s:
                continue
            try:
                net = ipaddress.IPv4Network(s, strict=False)
            except ValueError:
                continue
            ips.extend(net.hosts())
        return cls(ips, rng=rng)

    @classmethod
    def from_file(cls, path: str | Path, rng: Optional[random.Random] = None) -> "ListSource":
        ips: List[ipaddress.IPv4Address] = []
        try:
            text = Path(path).read_text(errors="ignore")
        except OSError as e:
            log.warning("input_file_unreadable", path=str(path), error=str(e))
            text = ""
        for line in text.splitlines():
            try:
                ips.append(ipaddress.IPv4Address(line.strip()))
            except ValueError:
                continue
        return cls(ips, rng=rng)

    def __iter__(self) -> Iterator[ipaddress.IPv4Address]:
        return iter(self.addresses)

    def total_count(self) -> int:
        return len(self.addresses)


def build_source(cfg: ScanConfig, rng: Optional[random.Random] = None) -> AddressSource:
    if cfg.cidr:
        return ListSource.from_cidr(cfg.cidr, rng=rng)
    if cfg.file:
        return ListSource.from_file(cfg.file, rng=rng)
    return RandomSource(cfg.count, rng=rng)

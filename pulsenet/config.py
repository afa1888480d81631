from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

DEFAULT_CONFIG_PATH = "pulsenet.yaml"


class ConfigError(ValueError):
    """Fatal configuration problem, raised before any probing starts."""


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    return v if v is not None else default


def _getint(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _getbool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "y", "on")


def parse_ports_arg(spec: str) -> List[int]:
    """
    Parse a ports specification such as "80,443,8000-8002".

    Order of first appearance is kept (ports are probed in that order),
    duplicates are dropped and entries outside [1,65535] or not numeric are
    skipped.
    """
    spec = (spec or "").strip()
    out: List[int] = []
    seen: set[int] = set()

    def add(v: int) -> None:
        if 1 <= v <= 65535 and v not in seen:
            seen.add(v)
            out.append(v)

    for part in spec.split(','):
        p = part.strip()
        if not p:
            continue
        if '-' in p:
            a, b = p.split('-', 1)
            try:
                start = int(a)
                end = int(b)
            except ValueError:
                continue
            step = 1 if start <= end else -1
            for v in range(start, end + step, step):
                add(v)
        else:
            try:
                add(int(p))
            except ValueError:
                continue
    return out


@dataclass
class ScanConfig:
    count: int = field(default_factory=lambda: _getint("PULSENET_COUNT", 1000))
    timeout_ms: int = field(default_factory=lambda: _getint("PULSENET_TIMEOUT_MS", 1500))
    workers: int = field(default_factory=lambda: _getint("PULSENET_WORKERS", 64))
    rate: int = field(default_factory=lambda: _getint("PULSENET_RATE", 500))
    ports: str = field(default_factory=lambda: _getenv("PULSENET_PORTS", "80,443,22,8080") or "80,443,22,8080")
    output: str = field(default_factory=lambda: _getenv("PULSENET_OUTPUT", "pulse_results.log") or "pulse_results.log")
    clean_output: str = field(default_factory=lambda: _getenv("PULSENET_CLEAN_OUTPUT", "found_ips.txt") or "found_ips.txt")
    cidr: Optional[str] = field(default_factory=lambda: _getenv("PULSENET_CIDR"))
    file: Optional[str] = field(default_factory=lambda: _getenv("PULSENET_FILE"))
    simulate: bool = field(default_factory=lambda: _getbool("PULSENET_SIMULATE", False))
    json: bool = field(default_factory=lambda: _getbool("PULSENET_JSON", False))
    quiet: bool = field(default_factory=lambda: _getbool("PULSENET_QUIET", False))
    # cap on pending tasks, independent of (and normally above) workers
    fan_out: int = field(default_factory=lambda: _getint("PULSENET_FAN_OUT", 2048))

    def port_set(self) -> Tuple[int, ...]:
        spec = self.ports
        # YAML may hand us an int or a list
        if isinstance(spec, (list, tuple)):
            spec = ",".join(str(p) for p in spec)
        return tuple(parse_ports_arg(str(spec)))

    def validate(self) -> "ScanConfig":
        for name in ("count", "timeout_ms", "workers", "rate", "fan_out"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if not self.port_set():
            raise ConfigError(f"no valid ports in {self.ports!r}")
        return self


@dataclass
class KafkaConfig:
    enabled: bool = field(default_factory=lambda: _getbool("KAFKA_ENABLED", False))
    bootstrap_servers: str = field(default_factory=lambda: _getenv("KAFKA_BOOTSTRAP", "localhost:9092") or "localhost:9092")
    topic_findings: str = field(default_factory=lambda: _getenv("KAFKA_TOPIC_FINDINGS", "pulsenet.hits") or "pulsenet.hits")
    start_attempts: int = field(default_factory=lambda: _getint("KAFKA_START_ATTEMPTS", 3))


@dataclass
class ElasticConfig:
    enabled: bool = field(default_factory=lambda: _getbool("ES_ENABLED", False))
    url: str = field(default_factory=lambda: _getenv("ES_URL", "http://localhost:9200") or "http://localhost:9200")
    username: Optional[str] = field(default_factory=lambda: _getenv("ES_USERNAME"))
    password: Optional[str] = field(default_factory=lambda: _getenv("ES_PASSWORD"))
    index_findings: str = field(default_factory=lambda: _getenv("ES_INDEX_FINDINGS", "pulsenet-hits") or "pulsenet-hits")


@dataclass
class OTelConfig:
    enabled: bool = field(default_factory=lambda: _getbool("OTEL_ENABLED", False))
    endpoint: str = field(default_factory=lambda: _getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317") or "http://localhost:4317")
    service_name: str = field(default_factory=lambda: _getenv("OTEL_SERVICE_NAME", "pulsenet") or "pulsenet")


@dataclass
class AppConfig:
    scan: ScanConfig = field(default_factory=ScanConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    elastic: ElasticConfig = field(default_factory=ElasticConfig)
    otel: OTelConfig = field(default_factory=OTelConfig)


_ALIASES = {"timeout": "timeout_ms"}


def _apply(target: Any, values: Mapping[str, Any], section: str) -> None:
    known = {f.name for f in fields(target)}
    for key, value in values.items():
        name = str(key).replace("-", "_")
        name = _ALIASES.get(name, name)
        if name not in known:
            raise ConfigError(f"unknown {section} option: {key}")
        setattr(target, name, value)


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"malformed config file {path}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return raw


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> AppConfig:
    """
    Build the run configuration.

    Precedence, lowest first: built-in defaults, PULSENET_* / service
    environment variables, the YAML config file, explicit overrides (CLI
    flags). Overrides whose value is None are treated as not given.

    With no path, DEFAULT_CONFIG_PATH is used when it exists. An explicit
    path that does not exist is an error.
    """
    cfg = AppConfig()

    if path is None:
        candidate = Path(DEFAULT_CONFIG_PATH)
        file_path: Optional[Path] = candidate if candidate.exists() else None
    else:
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigError(f"config file not found: {file_path}")

    if file_path is not None:
        raw = _read_file(file_path)
        sections = {"kafka": cfg.kafka, "elastic": cfg.elastic, "otel": cfg.otel}
        scan_values: Dict[str, Any] = dict(raw.pop("scan", None) or {})
        for name, target in sections.items():
            values = raw.pop(name, None)
            if values:
                _apply(target, values, name)
        # remaining top-level keys are scan options
        scan_values.update(raw)
        _apply(cfg.scan, scan_values, "scan")

    if overrides:
        _apply(cfg.scan, {k: v for k, v in overrides.items() if v is not None}, "scan")

    cfg.scan.validate()
    return cfg

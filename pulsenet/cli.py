#!/usr/bin/env python3
"""
PulseNet: IPv4 reachability discovery.

Probes a set of IPv4 addresses (random public addresses, CIDR blocks or a
list file) with TCP connect attempts over a small port list, under a rate
limit and a concurrency limit, and records every address that answered.

Only scan networks you are authorized to test.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional, Sequence

from aiokafka.errors import KafkaConnectionError

from pulsenet.aggregator import HitSink
from pulsenet.config import AppConfig, ConfigError, DEFAULT_CONFIG_PATH, load_config
from pulsenet.kafka_client import KafkaProducer
from pulsenet.logging_setup import get_logger, setup_logging
from pulsenet.models import RunStats
from pulsenet.orchestrator import run_scan
from pulsenet.otel import init_otel, shutdown_otel
from pulsenet.storage.elasticsearch_store import ElasticStore
from pulsenet.storage.files import open_file_sinks
from pulsenet.ui import ConsoleUI

log = get_logger("cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    # defaults stay None so load_config can tell explicit flags apart
    p = argparse.ArgumentParser(prog="pulsenet", description="PulseNet - IPv4 reachability discovery over TCP connect")
    p.add_argument("-n", "--count", type=int, default=None, help="Number of random public addresses to probe (default 1000)")
    p.add_argument("-t", "--timeout", dest="timeout_ms", type=int, default=None, help="Per-address timeout budget in ms, split across ports (default 1500)")
    p.add_argument("-w", "--workers", type=int, default=None, help="Max simultaneous connection attempts (default 64)")
    p.add_argument("-r", "--rate", type=int, default=None, help="Max new probes per second (default 500)")
    p.add_argument("-p", "--ports", default=None, help="Ports to try, in order, e.g. 80,443,22,8080 (ranges allowed)")
    p.add_argument("-o", "--output", default=None, help="Hit log file (default pulse_results.log)")
    p.add_argument("--clean-output", default=None, help="Bare address list of hits (default found_ips.txt)")
    p.add_argument("-C", "--cidr", default=None, help="Comma-separated CIDR blocks to probe instead of random addresses")
    p.add_argument("-f", "--file", default=None, help="File with one address per line to probe instead of random addresses")
    p.add_argument("-s", "--simulate", action="store_true", default=None, help="Dry run: no network activity, synthetic results")
    p.add_argument("-j", "--json", action="store_true", default=None, help="Write the hit log as JSON lines")
    p.add_argument("-q", "--quiet", action="store_true", default=None, help="No terminal UI")
    p.add_argument("--fan-out", type=int, default=None, help="Max pending probe tasks (default 2048)")
    p.add_argument("--config", default=None, help=f"YAML config file (default {DEFAULT_CONFIG_PATH} if present)")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log verbosity (logs go to stderr)")
    return p.parse_args(argv)


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    keys = ("count", "timeout_ms", "workers", "rate", "ports", "output", "clean_output",
            "cidr", "file", "simulate", "json", "quiet", "fan_out")
    return {k: getattr(args, k) for k in keys if getattr(args, k) is not None}


async def main_async(cfg: AppConfig, file_sinks: Sequence[HitSink] = ()) -> RunStats:
    scan = cfg.scan
    sinks: List[HitSink] = list(file_sinks)
    es = ElasticStore(cfg.elastic)
    kprod = KafkaProducer(cfg.kafka)
    if cfg.elastic.enabled:
        sinks.append(es)
    if cfg.kafka.enabled:
        try:
            await kprod.start()
        except KafkaConnectionError as e:
            log.error("kafka_unavailable", servers=cfg.kafka.bootstrap_servers, error=str(e))
        else:
            sinks.append(kprod)

    ui = ConsoleUI(
        quiet=scan.quiet,
        log_path="" if scan.simulate else scan.output,
        clean_path="" if scan.simulate else scan.clean_output,
    )
    try:
        return await run_scan(cfg, sinks=sinks, ui=ui)
    finally:
        await kprod.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level, stream=sys.stderr)

    try:
        cfg = load_config(args.config, overrides_from_args(args))
    except ConfigError as e:
        print(f"[!] Configuration error: {e}", file=sys.stderr)
        return 1

    # simulated runs write nothing
    try:
        file_sinks = [] if cfg.scan.simulate else open_file_sinks(cfg.scan)
    except OSError as e:
        print(f"[!] Cannot open output: {e}", file=sys.stderr)
        return 1

    init_otel(cfg.otel)
    try:
        asyncio.run(main_async(cfg, file_sinks))
    except KeyboardInterrupt:
        print("\n[!] Interrupted; partial results are in the output files.", file=sys.stderr)
        return 130
    except OSError as e:
        print(f"[!] Scan aborted: {e}", file=sys.stderr)
        return 1
    finally:
        for s in file_sinks:
            s.close()
        shutdown_otel()
    return 0


if __name__ == "__main__":
    sys.exit(main())

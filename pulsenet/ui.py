from __future__ import annotations

import sys
import time
from datetime import datetime
from typing import IO, Optional

from pulsenet.config import ScanConfig
from pulsenet.models import HitRecord, RunStats

BOX_WIDTH = 37


class NullUI:
    def on_start(self, cfg: ScanConfig, total: int) -> None:
        pass

    def on_hit(self, record: HitRecord) -> None:
        pass

    def on_progress(self, stats: RunStats, total: int) -> None:
        pass

    def on_finish(self, stats: RunStats) -> None:
        pass


class ConsoleUI(NullUI):
    """Plain terminal output: config box, live hits, progress line, summary."""

    def __init__(
        self,
        quiet: bool = False,
        stream: Optional[IO[str]] = None,
        update_interval: float = 1.0,
        log_path: str = "",
        clean_path: str = "",
    ):
        self.quiet = quiet
        self.stream = stream or sys.stdout
        self.update_interval = update_interval
        self.log_path = log_path
        self.clean_path = clean_path
        self.start_time = time.monotonic()
        self._last_update = 0.0
        self._progress_shown = False

    def _print(self, text: str = "") -> None:
        if self._progress_shown:
            self.stream.write("\n")
            self._progress_shown = False
        self.stream.write(text + "\n")
        self.stream.flush()

    def _box(self, title: str, rows) -> None:
        self._print("  +" + "-" * BOX_WIDTH + "+")
        self._print(f"  | {title:^{BOX_WIDTH - 2}} |")
        self._print("  +" + "-" * BOX_WIDTH + "+")
        for label, value in rows:
            self._print(f"  | {label:<15} : {str(value):<{BOX_WIDTH - 19}}|")
        self._print("  +" + "-" * BOX_WIDTH + "+")

    def on_start(self, cfg: ScanConfig, total: int) -> None:
        if self.quiet:
            return
        self.start_time = time.monotonic()
        self._box("SCAN CONFIGURATION", [
            ("Targets", total),
            ("Timeout", f"{cfg.timeout_ms}ms"),
            ("Rate Limit", f"{cfg.rate}/s"),
            ("Workers", cfg.workers),
            ("Ports", ",".join(str(p) for p in cfg.port_set())),
            ("Mode", "simulate" if cfg.simulate else "live"),
        ])
        self._print()

    def on_hit(self, record: HitRecord) -> None:
        if self.quiet:
            return
        now = datetime.now().strftime("%H:%M:%S")
        self._print(f"[+] [{now}] ACTIVE {record.ip}:{record.port} {record.latency_ms}ms")

    def on_progress(self, stats: RunStats, total: int) -> None:
        if self.quiet:
            return
        now = time.monotonic()
        done = stats.total_processed >= total
        if not done and now - self._last_update < self.update_interval:
            return
        self._last_update = now
        elapsed = now - self.start_time
        per_sec = stats.total_processed / elapsed if elapsed > 0 else 0.0
        pct = (stats.total_processed / total * 100) if total > 0 else 100.0
        self.stream.write(
            f"\r[*] {stats.total_processed}/{total} ({pct:.1f}%) | Hits: {stats.hits} | {per_sec:.0f}/s"
        )
        self.stream.flush()
        self._progress_shown = True

    def on_finish(self, stats: RunStats) -> None:
        if self.quiet:
            return
        self._print()
        rows = [
            ("Total Hits", stats.hits),
            ("Avg Latency", f"{stats.mean_latency_ms}ms"),
            ("Timeouts", stats.timeouts),
            ("Refused", stats.refused),
            ("Unreachable", stats.unreachable),
        ]
        if self.log_path:
            rows.append(("Full Logs", self.log_path))
        if self.clean_path:
            rows.append(("Clean IPs", self.clean_path))
        self._box("SCAN COMPLETED", rows)

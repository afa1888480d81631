from __future__ import annotations

import json
from pathlib import Path
from typing import IO, List

from pulsenet.config import ScanConfig
from pulsenet.models import HitRecord


class _AppendFile:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        # opened once, up front, so a bad path fails before probing starts
        self._fh: IO[str] = open(self.path, "a", encoding="utf-8")

    def _write_line(self, line: str) -> None:
        self._fh.write(line + "\n")

    async def flush(self) -> None:
        self._fh.flush()

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


class HitLogSink(_AppendFile):
    """Full hit log: one plain-text line or one JSON object per hit."""

    def __init__(self, path: str | Path, as_json: bool = False):
        super().__init__(path)
        self.as_json = as_json

    async def publish(self, record: HitRecord) -> None:
        if self.as_json:
            self._write_line(json.dumps(record.to_json_dict()))
        else:
            self._write_line(record.to_log_line())


class CleanListSink(_AppendFile):
    """Bare addresses, one per line, for feeding into other tools."""

    async def publish(self, record: HitRecord) -> None:
        self._write_line(record.ip)


def open_file_sinks(cfg: ScanConfig) -> List[_AppendFile]:
    log_sink = HitLogSink(cfg.output, as_json=cfg.json)
    try:
        clean_sink = CleanListSink(cfg.clean_output)
    except OSError:
        log_sink.close()
        raise
    return [log_sink, clean_sink]

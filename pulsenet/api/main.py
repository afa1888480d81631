from __future__ import annotations

import dataclasses
import os
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, BackgroundTasks, HTTPException
from pydantic import BaseModel

from pulsenet.aggregator import HitSink
from pulsenet.config import AppConfig, ConfigError, load_config
from pulsenet.logging_setup import setup_logging, get_logger
from pulsenet.otel import init_otel
from pulsenet.kafka_client import KafkaProducer
from pulsenet.middleware import ApiKeyMiddleware, TokenBucketLimiter
from pulsenet.models import HitRecord, RunStats
from pulsenet.orchestrator import run_scan
from pulsenet.storage.elasticsearch_store import ElasticStore
from pulsenet.storage.files import open_file_sinks
from pulsenet.ui import NullUI


class ScanBody(BaseModel):
    count: Optional[int] = None
    ports_spec: Optional[str] = None
    cidr: Optional[str] = None
    timeout_ms: Optional[int] = None
    workers: Optional[int] = None
    rate: Optional[int] = None
    simulate: Optional[bool] = None


@dataclasses.dataclass
class ScanState:
    scan_id: str
    status: str = "queued"
    stats: RunStats = dataclasses.field(default_factory=RunStats)
    hits: List[dict] = dataclasses.field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "scan_id": self.scan_id,
            "status": self.status,
            "stats": self.stats.to_dict(),
            "hits": self.hits,
            "error": self.error,
        }


class StateUI(NullUI):
    """Mirrors live progress of one scan into its ScanState."""

    def __init__(self, state: ScanState):
        self.state = state

    def on_hit(self, record: HitRecord) -> None:
        self.state.hits.append(record.to_json_dict())

    def on_progress(self, stats: RunStats, total: int) -> None:
        self.state.stats = stats


def create_app(cfg: Optional[AppConfig] = None, api_key: Optional[str] = None) -> FastAPI:
    cfg = cfg or load_config()
    log = get_logger("api")
    es = ElasticStore(cfg.elastic)
    kprod = KafkaProducer(cfg.kafka)
    scans: Dict[str, ScanState] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await kprod.start()
        log.info("startup")
        try:
            yield
        finally:
            await es.flush()
            await kprod.stop()
            log.info("shutdown")

    app = FastAPI(title="PulseNet API", version="0.2.0", lifespan=lifespan)
    app.state.scans = scans
    app.add_middleware(TokenBucketLimiter, capacity=30, refill_rate=10.0)
    app.add_middleware(ApiKeyMiddleware, api_key=api_key)

    async def execute(state: ScanState, run_cfg: AppConfig):
        sinks: List[HitSink] = []
        file_sinks = []
        state.status = "running"
        try:
            if not run_cfg.scan.simulate:
                file_sinks = open_file_sinks(run_cfg.scan)
                sinks.extend(file_sinks)
            if run_cfg.elastic.enabled:
                sinks.append(es)
            if run_cfg.kafka.enabled:
                sinks.append(kprod)
            state.stats = await run_scan(run_cfg, sinks=sinks, ui=StateUI(state), scan_id=state.scan_id)
            state.status = "complete"
        except Exception as e:
            log.error("scan_failed", scan_id=state.scan_id, error=str(e))
            state.status = "failed"
            state.error = str(e)
        finally:
            for s in file_sinks:
                s.close()

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.post("/scans")
    async def create_scan(body: ScanBody, tasks: BackgroundTasks):
        overrides = {
            "count": body.count,
            "ports": body.ports_spec,
            "cidr": body.cidr,
            "timeout_ms": body.timeout_ms,
            "workers": body.workers,
            "rate": body.rate,
            "simulate": body.simulate,
            # API scans never read server-side input files
            "file": None,
        }
        scan = dataclasses.replace(cfg.scan, **{k: v for k, v in overrides.items() if v is not None or k == "file"})
        try:
            scan.validate()
        except ConfigError as e:
            raise HTTPException(status_code=422, detail=str(e))
        run_cfg = dataclasses.replace(cfg, scan=scan)

        scan_id = str(uuid.uuid4())
        state = scans[scan_id] = ScanState(scan_id=scan_id)
        # fire-and-forget background task
        tasks.add_task(execute, state, run_cfg)
        log.info("scan_queued", scan_id=scan_id, simulate=scan.simulate)
        return {"scan_id": scan_id}

    @app.get("/scans/{scan_id}")
    async def get_scan(scan_id: str):
        state = scans.get(scan_id)
        if state is None:
            raise HTTPException(status_code=404, detail="Unknown scan")
        return state.to_dict()

    return app


def build_default_app() -> FastAPI:
    cfg = load_config(os.getenv("PULSENET_CONFIG"))
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    init_otel(cfg.otel)
    return create_app(cfg, api_key=os.getenv("PULSENET_API_KEY"))


def main():
    import uvicorn

    uvicorn.run(
        "pulsenet.api.main:build_default_app",
        factory=True,
        host=os.getenv("PULSENET_API_HOST", "127.0.0.1"),
        port=int(os.getenv("PULSENET_API_PORT", "8080")),
    )


if __name__ == "__main__":
    main()

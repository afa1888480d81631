from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional

from elasticsearch import Elasticsearch, helpers

from pulsenet.config import ElasticConfig
from pulsenet.logging_setup import get_logger
from pulsenet.models import HitRecord

log = get_logger(__name__)

BULK_SIZE = 500


class ElasticStore:
    """
    Hit sink indexing into Elasticsearch. Documents are buffered and sent
    with the bulk helper; indexing errors are logged and never stop a scan.
    """

    def __init__(self, cfg: ElasticConfig, client: Optional[Elasticsearch] = None):
        self.cfg = cfg
        self.es: Optional[Elasticsearch] = client
        self._buffer: List[Dict[str, Any]] = []
        if self.es is None and cfg.enabled:
            auth = None
            if cfg.username and cfg.password:
                auth = (cfg.username, cfg.password)
            self.es = Elasticsearch(cfg.url, basic_auth=auth, verify_certs=False)

    def bulk_index_hits(self, docs: Iterable[Dict[str, Any]]) -> None:
        if not self.es or not self.cfg.enabled:
            return
        try:
            actions = (
                {"_index": self.cfg.index_findings, "_source": d} for d in docs
            )
            helpers.bulk(self.es, actions, raise_on_error=False)
        except Exception as e:
            log.error("es_bulk_index_failed", error=str(e))

    async def publish(self, record: HitRecord) -> None:
        if not self.es or not self.cfg.enabled:
            return
        self._buffer.append(record.to_doc())
        if len(self._buffer) >= BULK_SIZE:
            await self.flush()

    async def flush(self) -> None:
        if not self._buffer:
            return
        docs, self._buffer = self._buffer, []
        # helpers.bulk blocks; run it off the event loop
        await asyncio.to_thread(self.bulk_index_hits, docs)
        log.info("es_bulk_index", count=len(docs))

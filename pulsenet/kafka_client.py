from __future__ import annotations

import json
from typing import Optional, Dict, Any

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from pulsenet.config import KafkaConfig
from pulsenet.logging_setup import get_logger
from pulsenet.models import HitRecord

log = get_logger(__name__)


class KafkaProducer:
    """Hit sink publishing compact JSON documents to the findings topic."""

    def __init__(self, cfg: KafkaConfig):
        self.cfg = cfg
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        if not self.cfg.enabled:
            return
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(KafkaConnectionError),
            wait=wait_exponential_jitter(initial=0.5, max=8),
            stop=stop_after_attempt(max(1, self.cfg.start_attempts)),
            reraise=True,
        ):
            with attempt:
                producer = AIOKafkaProducer(bootstrap_servers=self.cfg.bootstrap_servers)
                try:
                    await producer.start()
                except KafkaConnectionError:
                    await producer.stop()
                    log.warning("kafka_start_retry", attempt=attempt.retry_state.attempt_number)
                    raise
        self._producer = producer
        log.info("kafka_producer_started", servers=self.cfg.bootstrap_servers)

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None

    async def send_json(self, topic: str, obj: Dict[str, Any]):
        if not self._producer or not self.cfg.enabled:
            return
        try:
            payload = json.dumps(obj, separators=(",", ":")).encode("utf-8")
            await self._producer.send_and_wait(topic, payload)
        except Exception as e:
            log.error("kafka_send_failed", error=str(e), topic=topic)

    async def publish(self, record: HitRecord) -> None:
        await self.send_json(self.cfg.topic_findings, record.to_doc())

    async def flush(self) -> None:
        if self._producer:
            await self._producer.flush()

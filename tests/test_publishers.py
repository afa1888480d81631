import asyncio
import io
import json
import time
from ipaddress import IPv4Address

import pytest
from aiokafka.errors import KafkaConnectionError

from pulsenet import kafka_client
from pulsenet.config import ElasticConfig, KafkaConfig
from pulsenet.kafka_client import KafkaProducer
from pulsenet.logging_setup import get_logger, setup_logging
from pulsenet.models import HitRecord
from pulsenet.orchestrator import run_scan
from pulsenet.scanner.tcp import TcpProbe
from pulsenet.sources import ListSource
from pulsenet.storage import elasticsearch_store
from pulsenet.storage.elasticsearch_store import ElasticStore

from conftest import make_app_config

RECORD = HitRecord(
    timestamp="2024-05-06 09:08:09", ip="1.2.3.4", port=443, latency_ms=12,
    observed_at="2024-05-06T07:08:09+00:00",
)


async def test_elastic_store_bulk_indexes_on_flush(monkeypatch):
    calls = []

    def fake_bulk(client, actions, raise_on_error):
        calls.append(list(actions))
        return len(calls[-1]), []

    monkeypatch.setattr(elasticsearch_store.helpers, "bulk", fake_bulk)
    store = ElasticStore(ElasticConfig(enabled=True, index_findings="hits-test"), client=object())
    await store.publish(RECORD)
    await store.publish(RECORD)
    assert calls == []
    await store.flush()
    assert len(calls) == 1
    assert calls[0][0] == {
        "_index": "hits-test",
        "_source": {"@timestamp": "2024-05-06T07:08:09+00:00", "ip": "1.2.3.4", "port": 443, "latency_ms": 12},
    }
    await store.flush()
    assert len(calls) == 1


async def test_elastic_store_errors_do_not_propagate(monkeypatch):
    def failing_bulk(client, actions, raise_on_error):
        raise ConnectionError("cluster down")

    monkeypatch.setattr(elasticsearch_store.helpers, "bulk", failing_bulk)
    store = ElasticStore(ElasticConfig(enabled=True), client=object())
    await store.publish(RECORD)
    await store.flush()


async def test_slow_bulk_index_does_not_delay_probes(monkeypatch, recording_sink):
    def slow_bulk(client, actions, raise_on_error):
        list(actions)
        time.sleep(0.2)
        return 1, []

    async def connect(host, port):
        await asyncio.sleep(0.1)

    monkeypatch.setattr(elasticsearch_store.helpers, "bulk", slow_bulk)
    monkeypatch.setattr(elasticsearch_store, "BULK_SIZE", 1)
    store = ElasticStore(ElasticConfig(enabled=True), client=object())
    source = ListSource([IPv4Address(f"192.0.2.{i}") for i in range(1, 11)])
    probe = TcpProbe([80], 1000, connector=connect)

    stats = await run_scan(make_app_config(workers=10, rate=20), sinks=[store, recording_sink], source=source, probe=probe)

    assert stats.hits == 10
    assert max(r.latency_ms for r in recording_sink.records) < 300


async def test_elastic_store_disabled_is_noop():
    store = ElasticStore(ElasticConfig(enabled=False))
    assert store.es is None
    await store.publish(RECORD)
    await store.flush()


class FakeProducer:
    def __init__(self, fail_start=False, **kwargs):
        self.fail_start = fail_start
        self.kwargs = kwargs
        self.sent = []
        self.stopped = False

    async def start(self):
        if self.fail_start:
            raise KafkaConnectionError("no brokers")

    async def stop(self):
        self.stopped = True

    async def send_and_wait(self, topic, payload):
        self.sent.append((topic, payload))

    async def flush(self):
        pass


async def test_kafka_publish_sends_compact_json(monkeypatch):
    created = []

    def factory(**kwargs):
        created.append(FakeProducer(**kwargs))
        return created[-1]

    monkeypatch.setattr(kafka_client, "AIOKafkaProducer", factory)
    kp = KafkaProducer(KafkaConfig(enabled=True, topic_findings="pulsenet.test", bootstrap_servers="broker:9092"))
    await kp.start()
    await kp.publish(RECORD)
    await kp.flush()
    await kp.stop()

    assert created[0].kwargs == {"bootstrap_servers": "broker:9092"}
    topic, payload = created[0].sent[0]
    assert topic == "pulsenet.test"
    assert json.loads(payload) == RECORD.to_doc()
    assert b" " not in payload.replace(b"2024-05-06 07:08:09", b"")
    assert created[0].stopped


async def test_kafka_start_gives_up_after_attempts(monkeypatch):
    created = []

    def factory(**kwargs):
        created.append(FakeProducer(fail_start=True, **kwargs))
        return created[-1]

    monkeypatch.setattr(kafka_client, "AIOKafkaProducer", factory)
    kp = KafkaProducer(KafkaConfig(enabled=True, start_attempts=1))
    with pytest.raises(KafkaConnectionError):
        await kp.start()
    assert len(created) == 1
    assert created[0].stopped


async def test_kafka_disabled_is_noop():
    kp = KafkaProducer(KafkaConfig(enabled=False))
    await kp.start()
    await kp.publish(RECORD)
    await kp.flush()
    await kp.stop()


def test_logging_renders_json_lines():
    out = io.StringIO()
    setup_logging("INFO", stream=out)
    log = get_logger("test")
    log.debug("hidden")
    log.info("scan_start", scan_id="abc", targets=3)
    lines = out.getvalue().splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "scan_start"
    assert event["level"] == "info"
    assert event["scan_id"] == "abc"
    assert event["targets"] == 3
    assert "timestamp" in event

"""
Tests for the in-process event bus and its durable stream.
"""
import json
import threading
import time

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from coffee_commerce.events import EventBus, EventBusError, EventPublishError
from coffee_commerce.events import topics
from tests.helpers import EventCollector


class FakeStream:
    """Records XADD calls the way redis-py receives them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.entries = []
        self.closed = False

    def xadd(self, name, fields, minid=None, approximate=True):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.entries.append({"name": name, "fields": fields, "minid": minid, "approximate": approximate})
        return f"{int(time.time() * 1000)}-0"

    def close(self):
        self.closed = True


def sample(metrics, name, **labels):
    return metrics.registry.get_sample_value(name, labels)


def error_count(metrics, topic, error_kind):
    return sample(metrics, "coffee_commerce_events_error_total", topic=topic, service="test", error_kind=error_kind)


class TestPublishSubscribe:
    """Envelope shape, fan-out and ordering."""

    def test_subscriber_receives_json_envelope_bytes(self, bus):
        received = []
        bus.subscribe(topics.PRODUCT_CREATED, received.append)

        event_id = bus.publish(topics.PRODUCT_CREATED, {"product_id": "p1"})
        bus.close()

        assert len(received) == 1
        assert isinstance(received[0], bytes)
        envelope = json.loads(received[0])
        assert envelope["id"] == event_id
        assert envelope["topic"] == topics.PRODUCT_CREATED
        assert envelope["payload"] == {"product_id": "p1"}
        assert envelope["timestamp"]

    def test_every_subscription_gets_each_message(self, bus):
        first = EventCollector(bus, topics.PRICE_CREATED)
        second = EventCollector(bus, topics.PRICE_CREATED)
        other_topic = EventCollector(bus, topics.PRICE_DELETED)

        bus.publish(topics.PRICE_CREATED, {"price_id": "x"})
        bus.close()

        assert len(first.events) == 1
        assert len(second.events) == 1
        assert other_topic.events == []

    def test_single_publisher_order_is_preserved(self, bus):
        collector = EventCollector(bus, topics.VARIANT_UPDATED)

        for i in range(50):
            bus.publish(topics.VARIANT_UPDATED, {"seq": i})
        bus.close()

        assert [p["seq"] for p in collector.payloads] == list(range(50))

    def test_handler_error_does_not_stop_subscription(self, bus, event_metrics):
        seen = []

        def flaky(data):
            payload = json.loads(data)["payload"]
            if payload["n"] == 1:
                raise RuntimeError("boom")
            seen.append(payload["n"])

        bus.subscribe(topics.PRODUCT_UPDATED, flaky)
        for n in range(3):
            bus.publish(topics.PRODUCT_UPDATED, {"n": n})
        bus.close()

        assert seen == [0, 2]
        assert error_count(event_metrics, topics.PRODUCT_UPDATED, "handler_error") == 1

    def test_unserializable_payload_is_dropped(self, bus, event_metrics):
        collector = EventCollector(bus, topics.PRODUCT_CREATED)

        circular = {}
        circular["self"] = circular

        assert bus.publish(topics.PRODUCT_CREATED, circular) is None
        bus.close()

        assert collector.events == []
        assert error_count(event_metrics, topics.PRODUCT_CREATED, "marshal_error") == 1


class TestClose:
    """Draining and idempotent shutdown."""

    def test_close_waits_for_in_flight_handlers(self, bus):
        done = []

        def slow(data):
            time.sleep(0.05)
            done.append(data)

        bus.subscribe(topics.PRODUCT_CREATED, slow)
        for _ in range(3):
            bus.publish(topics.PRODUCT_CREATED, {})
        bus.close()

        assert len(done) == 3

    def test_close_is_idempotent(self, bus):
        bus.subscribe(topics.PRODUCT_CREATED, lambda data: None)

        bus.close()
        bus.close()

        assert bus.closed

    def test_concurrent_close_waits_for_drain(self, bus):
        started = threading.Event()
        done = []

        def slow(data):
            started.set()
            time.sleep(0.2)
            done.append(data)

        bus.subscribe(topics.PRODUCT_CREATED, slow)
        bus.publish(topics.PRODUCT_CREATED, {})
        assert started.wait(5)
        first = threading.Thread(target=bus.close)
        first.start()
        while not bus._closing:
            time.sleep(0.001)

        bus.close()

        assert len(done) == 1
        assert bus.closed
        first.join()

    def test_handler_may_close_the_bus(self, bus):
        closed = threading.Event()

        def closer(data):
            bus.close()
            closed.set()

        bus.subscribe(topics.PRODUCT_CREATED, closer)
        bus.publish(topics.PRODUCT_CREATED, {})

        assert closed.wait(5)
        assert bus.closed

    def test_no_delivery_after_close(self, bus, event_metrics):
        calls = []
        bus.subscribe(topics.PRODUCT_CREATED, calls.append)
        bus.close()

        assert bus.publish(topics.PRODUCT_CREATED, {}) is None
        with pytest.raises(EventPublishError):
            bus.publish_persistent(topics.PRODUCT_CREATED, {})
        with pytest.raises(EventBusError):
            bus.subscribe(topics.PRODUCT_CREATED, calls.append)
        assert calls == []

    def test_handlers_may_publish_while_bus_drains(self, bus):
        relayed = EventCollector(bus, topics.VARIANT_QUEUED)
        bus.subscribe(topics.PRODUCT_CREATED, lambda data: bus.publish(topics.VARIANT_QUEUED, {"from": "handler"}))

        bus.publish(topics.PRODUCT_CREATED, {})
        assert relayed.wait_for(1)
        bus.close()

        assert relayed.payloads == [{"from": "handler"}]


class TestPersistentPublish:
    """Durable stream appends."""

    def test_appends_to_events_stream_with_topic_subject(self, event_metrics):
        stream = FakeStream()
        bus = EventBus(service_name="test", redis_client=stream, metrics=event_metrics)
        collector = EventCollector(bus, topics.VARIANT_CREATED)

        before = int(time.time() * 1000)
        bus.publish_persistent(topics.VARIANT_CREATED, {"variant_id": "v1"})
        bus.close()

        entry = stream.entries[0]
        assert entry["name"] == "events"
        assert entry["fields"]["subject"] == "events.variants.created"
        assert json.loads(entry["fields"]["data"])["payload"] == {"variant_id": "v1"}
        thirty_days_ms = 30 * 24 * 3600 * 1000
        assert before - thirty_days_ms - 1000 <= entry["minid"] <= before - thirty_days_ms + 1000
        assert collector.payloads == [{"variant_id": "v1"}]
        assert stream.closed

    def test_stream_failure_raises_and_skips_local_delivery(self, event_metrics):
        bus = EventBus(service_name="test", redis_client=FakeStream(fail=True), metrics=event_metrics)
        collector = EventCollector(bus, topics.VARIANT_CREATED)

        with pytest.raises(EventPublishError):
            bus.publish_persistent(topics.VARIANT_CREATED, {"variant_id": "v1"})
        bus.close()

        assert collector.events == []
        assert error_count(event_metrics, topics.VARIANT_CREATED, "publish_persistent_error") == 1

    def test_without_stream_delivers_in_process(self, bus):
        collector = EventCollector(bus, topics.VARIANT_DELETED)

        bus.publish_persistent(topics.VARIANT_DELETED, {"variant_id": "v1"})
        bus.close()

        assert collector.payloads == [{"variant_id": "v1"}]


class TestMetrics:
    """Published counter and subscriber gauge."""

    def test_published_and_received_counters(self, bus, event_metrics):
        collector = EventCollector(bus, topics.PRICE_UPDATED)
        bus.publish(topics.PRICE_UPDATED, {})
        bus.publish(topics.PRICE_UPDATED, {})
        bus.close()

        assert len(collector.events) == 2
        assert sample(event_metrics, "coffee_commerce_events_published_total", topic=topics.PRICE_UPDATED, service="test") == 2
        assert sample(event_metrics, "coffee_commerce_events_received_total", topic=topics.PRICE_UPDATED, service="test") == 2

    def test_subscriber_gauge_follows_subscriptions(self, bus, event_metrics):
        subscription = bus.subscribe(topics.PRODUCT_DELETED, lambda data: None)
        assert sample(event_metrics, "coffee_commerce_event_subscribers_active", topic=topics.PRODUCT_DELETED) == 1

        subscription.unsubscribe()
        assert sample(event_metrics, "coffee_commerce_event_subscribers_active", topic=topics.PRODUCT_DELETED) == 0

    def test_concurrent_publishers(self, bus):
        collector = EventCollector(bus, topics.PRODUCT_STOCK_UPDATED)

        threads = [
            threading.Thread(target=lambda: [bus.publish(topics.PRODUCT_STOCK_UPDATED, {}) for _ in range(20)])
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        bus.close()

        assert len(collector.events) == 80

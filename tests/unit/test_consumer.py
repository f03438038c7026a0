"""
Unit tests for the claim queue consumer, using fake Kafka clients.
"""

import json

import pytest
from confluent_kafka import KafkaError, KafkaException

from conftest import claim_payload, encode

from claim_routing.config import Settings
from claim_routing.core.exceptions import TransientInfrastructureError
from claim_routing.core.rules import RuleConfigBuilder


class FakeMessage:
    def __init__(self, value: bytes, offset: int = 0, key: bytes | None = b"k"):
        self._value = value
        self._offset = offset
        self._key = key

    def topic(self):
        return "claim-assignments"

    def partition(self):
        return 0

    def offset(self):
        return self._offset

    def value(self):
        return self._value

    def key(self):
        return self._key

    def error(self):
        return None


class FakeKafkaConsumer:
    """Records calls; ``poll`` hands out queued messages."""

    def __init__(self, unreachable: bool = False):
        self.unreachable = unreachable
        self.config = None
        self.messages = []
        self.committed = []
        self.seeks = []
        self.subscribed = []
        self.closed = False
        self.on_empty = None

    def __call__(self, config):
        self.config = config
        return self

    def list_topics(self, topic=None, timeout=None):
        if self.unreachable:
            raise KafkaException(KafkaError(KafkaError._TRANSPORT))
        return {}

    def subscribe(self, topics):
        self.subscribed = topics

    def poll(self, timeout):
        if self.messages:
            return self.messages.pop(0)
        if self.on_empty:
            self.on_empty()
        return None

    def commit(self, message=None, asynchronous=True):
        self.committed.append(message.offset())

    def seek(self, partition):
        self.seeks.append(partition.offset)

    def close(self):
        self.closed = True


class FakeProducer:
    def __init__(self):
        self.produced = []
        self.config = None

    def __call__(self, config):
        self.config = config
        return self

    def produce(self, topic, value=None, key=None, headers=None):
        self.produced.append({"topic": topic, "value": value, "key": key, "headers": dict(headers or [])})

    def flush(self, timeout=None):
        return 0


@pytest.fixture
def kafka():
    return FakeKafkaConsumer()


@pytest.fixture
def producer():
    return FakeProducer()


@pytest.fixture
def container(build_container, kafka, producer):
    settings = Settings(
        storage_backend="memory",
        auto_start_queue=False,
        max_delivery_attempts=3,
        redelivery_backoff_seconds=0,
        dead_letter_topic="claim-assignments-dlq",
    )
    container = build_container(
        RuleConfigBuilder().add_catch_all(roles=[3]).build(),
        settings=settings,
        consumer_factory=kafka,
        producer_factory=producer,
    )
    container.consumer.connect()
    return container


@pytest.mark.unit
class TestConnection:
    """Tests for connect/close"""

    def test_connect_subscribes_with_manual_commit(self, container, kafka):
        """Test the consumer subscribes with auto-commit disabled"""
        assert kafka.subscribed == ["claim-assignments"]
        assert kafka.config["enable.auto.commit"] is False
        assert container.consumer.is_connected is True

    def test_unreachable_broker(self, build_container):
        """Test an unreachable broker raises TransientInfrastructureError"""
        kafka = FakeKafkaConsumer(unreachable=True)
        container = build_container(consumer_factory=kafka)

        with pytest.raises(TransientInfrastructureError):
            container.consumer.connect()

        assert kafka.closed is True
        assert container.consumer.is_connected is False

    def test_close(self, container, kafka):
        """Test close releases the consumer"""
        container.consumer.close()

        assert kafka.closed is True
        assert container.consumer.is_connected is False


@pytest.mark.unit
class TestHandleMessage:
    """Tests for per-message decisions"""

    def test_valid_message_committed_after_assignment(self, container, kafka):
        """Test a routed claim is committed once its assignment exists"""
        decision = container.consumer.handle_message(FakeMessage(encode(claim_payload()), offset=5))

        assert decision == "committed"
        assert kafka.committed == [5]
        assert len(container.repository.all()) == 1

    def test_duplicate_delivery_committed(self, container, kafka):
        """Test a redelivered message is committed without a second assignment"""
        message = FakeMessage(encode(claim_payload()), offset=5)

        container.consumer.handle_message(message)
        container.consumer.handle_message(message)

        assert kafka.committed == [5, 5]
        assert len(container.repository.all()) == 1

    def test_no_route_committed_not_dead_lettered(self, container, kafka):
        """Test no-route outcomes are reported and committed"""
        container.rule_store.inner.set_rule_active(1, False)

        decision = container.consumer.handle_message(FakeMessage(encode(claim_payload())))

        assert decision == "committed"
        assert container.dead_letters.list_records() == []
        assert container.audit.query(action="no_route")

    def test_malformed_message_dead_lettered(self, container, kafka, producer):
        """Test invalid JSON is dead-lettered immediately and committed"""
        decision = container.consumer.handle_message(FakeMessage(b"{broken", offset=9))

        assert decision == "dead_lettered"
        assert kafka.committed == [9]
        record = container.dead_letters.list_records()[0]
        assert record.error_type == "ValidationError"
        assert record.raw_payload == "{broken"
        assert record.message_key == "claim-assignments:0:9"
        assert record.attempts == 1

        entry = container.audit.query(action="dead_lettered")[0]
        assert entry.payload["payload"]["raw"] == "{broken"

        assert producer.produced[0]["topic"] == "claim-assignments-dlq"
        assert producer.produced[0]["headers"]["error_type"] == b"ValidationError"

    def test_missing_field_dead_letter_keeps_claim_id(self, container):
        """Test the claim id is recorded when the payload decodes"""
        payload = claim_payload()
        del payload["Value"]

        container.consumer.handle_message(FakeMessage(encode(payload)))

        assert container.dead_letters.list_records()[0].claim_id == "CLM-555"

    def test_unknown_company_dead_lettered(self, container):
        """Test a claim for an unknown company is a permanent failure"""
        decision = container.consumer.handle_message(FakeMessage(encode(claim_payload(Target="111111111"))))

        assert decision == "dead_lettered"
        assert container.dead_letters.list_records()[0].error_type == "NotFoundError"

    def test_transient_failure_redelivered_then_dead_lettered(self, container, kafka, monkeypatch):
        """Test transient failures seek back until the attempt budget is spent"""
        def unavailable(*args, **kwargs):
            raise TransientInfrastructureError("database unavailable")

        monkeypatch.setattr(container.pipeline, "process", unavailable)
        message = FakeMessage(encode(claim_payload()), offset=3)

        decisions = [container.consumer.handle_message(message) for _ in range(3)]

        assert decisions == ["redelivered", "redelivered", "dead_lettered"]
        assert kafka.seeks == [3, 3]
        assert kafka.committed == [3]
        record = container.dead_letters.list_records()[0]
        assert record.attempts == 3
        assert record.error_type == "TransientInfrastructureError"
        assert container.consumer.status()["pendingRedeliveries"] == 0

    def test_dead_letter_store_down_keeps_offset(self, container, kafka, monkeypatch):
        """Test a message is never committed when its dead letter cannot be written"""
        def store_down(record):
            raise TransientInfrastructureError("dead letter table unavailable")

        monkeypatch.setattr(container.dead_letters, "store", store_down)

        decision = container.consumer.handle_message(FakeMessage(b"{broken", offset=4))

        assert decision == "redelivered"
        assert kafka.committed == []
        assert kafka.seeks == [4]


@pytest.mark.unit
class TestRunLoop:
    """Tests for the poll loop and status"""

    def test_run_until_stopped(self, container, kafka):
        """Test run drains queued messages and exits when stopped"""
        kafka.messages = [
            FakeMessage(encode(claim_payload(ClaimId="A")), offset=0),
            FakeMessage(encode(claim_payload(ClaimId="B")), offset=1),
        ]
        kafka.on_empty = container.consumer.stop

        container.consumer.run()

        assert kafka.committed == [0, 1]
        assert container.consumer.wait_for_drain(timeout=0) is True
        status = container.consumer.status()
        assert status["committed"] == 2
        assert status["isConnected"] is True
        assert status["topic"] == "claim-assignments"

    def test_run_requires_connection(self, build_container):
        """Test run before connect fails fast"""
        container = build_container(consumer_factory=FakeKafkaConsumer())

        with pytest.raises(RuntimeError, match="connect"):
            container.consumer.run()


@pytest.mark.unit
def test_dead_letter_payload_is_json_decodable(container, producer):
    """Test the dead-letter topic receives the original bytes"""
    body = encode(claim_payload(Target="111111111"))

    container.consumer.handle_message(FakeMessage(body))

    assert json.loads(producer.produced[0]["value"]) == json.loads(body)

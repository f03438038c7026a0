"""
Kafka consumer driving the ingestion pipeline.

Offsets are committed manually, and only after the message's side effect
(assignment row, no-route audit entry or dead-letter row) is durable.
Transient failures redeliver the same offset with exponential backoff up
to ``max_delivery_attempts``; then the message is dead-lettered. Permanent
failures are dead-lettered immediately.
"""

import threading
import time
from typing import Any, Callable

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer, TopicPartition

from claim_routing.core.audit import error_entry
from claim_routing.core.exceptions import TransientInfrastructureError, ValidationError
from claim_routing.core.models import DeadLetterRecord
from claim_routing.core.ports import AuditSink, DeadLetterSink
from claim_routing.ingestion.messages import capitalize_keys, decode_payload
from claim_routing.ingestion.pipeline import IngestionPipeline
from claim_routing.observability.logger import get_logger
from claim_routing.observability.metrics import (
    dead_letters_total,
    errors_total,
    increment_counter,
    queue_messages_total,
)

logger = get_logger(__name__)

SERVICE_NAME = "claim_queue_consumer"


class ClaimQueueConsumer:
    """
    Single logical consumer of the claim topic.

    Messages are handled one at a time on the thread that calls ``run``.
    ``stop`` lets the in-flight message finish before the loop returns.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        dead_letters: DeadLetterSink,
        audit: AuditSink,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        max_delivery_attempts: int = 5,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        poll_timeout: float = 1.0,
        connect_timeout: float = 10.0,
        dead_letter_topic: str | None = None,
        consumer_factory: Callable[[dict[str, Any]], Any] = Consumer,
        producer_factory: Callable[[dict[str, Any]], Any] = Producer,
    ):
        """
        Args:
            pipeline: Ingestion pipeline to run per message
            dead_letters: Storage for messages that cannot be processed
            audit: Audit trail
            bootstrap_servers: Kafka bootstrap servers
            topic: Claim topic
            group_id: Consumer group
            max_delivery_attempts: Attempts before a transient failure is dead-lettered
            backoff_seconds: First redelivery delay, doubled per attempt
            max_backoff_seconds: Upper bound of the redelivery delay
            poll_timeout: Poll timeout in seconds
            connect_timeout: Broker metadata timeout used by connect()
            dead_letter_topic: Optional topic that receives dead-lettered payloads
            consumer_factory: Builds the Kafka consumer from its config
            producer_factory: Builds the dead-letter producer from its config
        """
        self.pipeline = pipeline
        self.dead_letters = dead_letters
        self.audit = audit
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.group_id = group_id
        self.max_delivery_attempts = max(1, max_delivery_attempts)
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.poll_timeout = poll_timeout
        self.connect_timeout = connect_timeout
        self.dead_letter_topic = dead_letter_topic
        self._consumer_factory = consumer_factory
        self._producer_factory = producer_factory

        self._consumer = None
        self._producer = None
        self._stop_event = threading.Event()
        self._in_flight = threading.Event()
        self._attempts: dict[str, int] = {}
        self._stats = {"committed": 0, "redelivered": 0, "dead_lettered": 0}

    @property
    def consumer_config(self) -> dict[str, Any]:
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "group.id": self.group_id,
            "enable.auto.commit": False,
            "auto.offset.reset": "earliest",
            "enable.partition.eof": False,
        }

    @property
    def is_connected(self) -> bool:
        return self._consumer is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight.is_set()

    # =======================
    # CONNECTION
    # =======================

    def connect(self) -> None:
        """
        Create the consumer, check the broker is reachable and subscribe.

        Raises:
            TransientInfrastructureError: If the broker cannot be reached
        """
        if self._consumer is not None:
            return

        consumer = self._consumer_factory(self.consumer_config)
        try:
            consumer.list_topics(topic=self.topic, timeout=self.connect_timeout)
            consumer.subscribe([self.topic])
        except KafkaException as e:
            consumer.close()
            raise TransientInfrastructureError(
                f"Kafka unavailable at {self.bootstrap_servers}",
                details={"topic": self.topic, "cause": str(e)},
            ) from e

        self._consumer = consumer
        self._stop_event.clear()
        logger.info(f"Subscribed to topic {self.topic} as group {self.group_id}")

    def close(self) -> None:
        """Close the consumer and flush the dead-letter producer."""
        if self._producer is not None:
            self._producer.flush(5.0)
            self._producer = None
        if self._consumer is not None:
            consumer, self._consumer = self._consumer, None
            consumer.close()
            logger.info(f"Consumer for topic {self.topic} closed")

    # =======================
    # CONSUMPTION
    # =======================

    def run(self) -> None:
        """
        Poll and handle messages until ``stop`` is called.

        Raises:
            TransientInfrastructureError: On a fatal broker error
            RuntimeError: If called before connect()
        """
        if self._consumer is None:
            raise RuntimeError("Consumer is not connected. Call connect() first.")

        logger.info(f"Consuming claims from {self.topic}")
        while not self._stop_event.is_set():
            message = self._consumer.poll(self.poll_timeout)
            if message is None:
                continue

            error = message.error()
            if error is not None:
                if error.code() == KafkaError._PARTITION_EOF:
                    continue
                increment_counter(errors_total, error_type="KafkaError", component=SERVICE_NAME)
                if error.fatal():
                    raise TransientInfrastructureError(
                        f"Fatal Kafka error: {error.str()}",
                        details={"topic": self.topic, "code": error.code()},
                    )
                logger.warning(f"Kafka error while polling {self.topic}: {error.str()}")
                continue

            self.handle_message(message)

        logger.info(f"Stopped consuming from {self.topic}")

    def stop(self) -> None:
        """Ask the loop to exit after the in-flight message."""
        self._stop_event.set()

    def wait_for_drain(self, timeout: float | None = None) -> bool:
        """
        Wait until no message is being handled.

        Returns:
            True if drained within the timeout
        """
        waited = 0.0
        while self._in_flight.is_set():
            if timeout is not None and waited >= timeout:
                return False
            time.sleep(0.05)
            waited += 0.05
        return True

    def handle_message(self, message) -> str:
        """
        Run the pipeline for one message and decide its fate.

        Args:
            message: confluent_kafka Message

        Returns:
            "committed", "redelivered" or "dead_lettered"
        """
        key = f"{message.topic()}:{message.partition()}:{message.offset()}"
        raw = message.value() or b""
        attempts = self._attempts.get(key, 0) + 1

        self._in_flight.set()
        try:
            try:
                decision = self._process(message, key, raw, attempts)
            except TransientInfrastructureError as e:
                # Dead-letter storage itself is down; keep the offset uncommitted
                return self._redeliver(message, key, attempts, e)
            if decision == "redelivered":
                return decision

            self._commit(message, key)
            self._attempts.pop(key, None)
            return decision
        finally:
            self._in_flight.clear()

    def _process(self, message, key: str, raw: bytes, attempts: int) -> str:
        try:
            outcome = self.pipeline.process(raw, entrypoint="queue")
        except TransientInfrastructureError as e:
            if attempts < self.max_delivery_attempts:
                return self._redeliver(message, key, attempts, e)
            return self._dead_letter(message, key, raw, attempts, e)
        except Exception as e:  # noqa: BLE001 - every other failure is permanent for this message
            return self._dead_letter(message, key, raw, attempts, e)

        logger.debug(f"Message {key} processed: {outcome.status.value}")
        return "committed"

    def _redeliver(self, message, key: str, attempts: int, error: Exception) -> str:
        self._attempts[key] = attempts
        delay = min(self.backoff_seconds * (2 ** (attempts - 1)), self.max_backoff_seconds)
        logger.warning(
            f"Transient failure on {key} (attempt {attempts}/{self.max_delivery_attempts}): "
            f"{error}; redelivering in {delay:.1f}s"
        )
        increment_counter(queue_messages_total, decision="redelivered")
        self._stats["redelivered"] += 1

        self._stop_event.wait(delay)
        self._consumer.seek(TopicPartition(message.topic(), message.partition(), message.offset()))
        return "redelivered"

    def _dead_letter(self, message, key: str, raw: bytes, attempts: int, error: Exception) -> str:
        claim_id = _claim_id_of(raw)
        if isinstance(error, TransientInfrastructureError):
            log = logger.error
        else:
            log = logger.warning
        log(f"Dead-lettering {key} after {attempts} attempt(s): {type(error).__name__}: {error}")

        record = self.dead_letters.store(DeadLetterRecord(
            message_key=key,
            claim_id=claim_id,
            raw_payload=raw.decode("utf-8", errors="replace"),
            error_type=type(error).__name__,
            error_message=str(error),
            attempts=attempts,
        ))
        self.audit.record(error_entry(
            error,
            service=SERVICE_NAME,
            action="dead_lettered",
            payload={"message_key": key, "raw": raw, "dead_letter_id": record.dead_letter_id},
            claim_id=claim_id,
        ))
        if self.dead_letter_topic:
            self._publish_dead_letter(message, raw, error)

        increment_counter(dead_letters_total, error_type=type(error).__name__)
        increment_counter(queue_messages_total, decision="dead_lettered")
        self._stats["dead_lettered"] += 1
        return "dead_lettered"

    def _publish_dead_letter(self, message, raw: bytes, error: Exception) -> None:
        if self._producer is None:
            self._producer = self._producer_factory({"bootstrap.servers": self.bootstrap_servers})
        self._producer.produce(
            self.dead_letter_topic,
            value=raw,
            key=message.key(),
            headers=[
                ("error_type", type(error).__name__.encode()),
                ("source_offset", f"{message.topic()}:{message.partition()}:{message.offset()}".encode()),
            ],
        )
        self._producer.flush(5.0)

    def _commit(self, message, key: str) -> None:
        try:
            self._consumer.commit(message=message, asynchronous=False)
        except KafkaException as e:
            # Redelivery after a failed commit is harmless: creation is idempotent
            increment_counter(errors_total, error_type="CommitFailed", component=SERVICE_NAME)
            logger.warning(f"Offset commit failed for {key}: {e}")
            return
        increment_counter(queue_messages_total, decision="committed")
        self._stats["committed"] += 1

    def status(self) -> dict[str, Any]:
        """Connectivity and counters for the status endpoint."""
        return {
            "isConnected": self.is_connected,
            "topic": self.topic,
            "groupId": self.group_id,
            "inFlight": self.in_flight,
            "pendingRedeliveries": len(self._attempts),
            **self._stats,
        }


def _claim_id_of(raw: bytes) -> str | None:
    """ClaimId of a payload, if it can be decoded that far."""
    try:
        payload = capitalize_keys(decode_payload(raw))
    except ValidationError:
        return None
    claim_id = payload.get("ClaimId")
    return str(claim_id) if claim_id is not None else None

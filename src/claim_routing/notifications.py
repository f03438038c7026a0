"""
NotificationSink implementations for lifecycle transitions.
"""

import json
from typing import Any, Callable

from confluent_kafka import KafkaException, Producer

from claim_routing.core.exceptions import TransientInfrastructureError
from claim_routing.core.models import TransitionEvent
from claim_routing.core.ports import NotificationSink
from claim_routing.observability.logger import get_logger

logger = get_logger(__name__)


class LoggingNotificationSink(NotificationSink):
    """Writes transition events to the application log."""

    def notify(self, event: TransitionEvent) -> None:
        logger.info(
            f"Assignment {event.assignment_id} {event.transition}: "
            f"{event.before.status.value if event.before else None} -> {event.after.status.value}, "
            f"user {event.before.user_id if event.before else None} -> {event.after.user_id}"
        )


class KafkaNotificationSink(NotificationSink):
    """
    Publishes transition events as JSON to a Kafka topic.

    The orchestrator consumes the topic; events are keyed by assignment id
    so all transitions of one assignment stay ordered.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        flush_timeout: float = 5.0,
        producer_factory: Callable[[dict[str, Any]], Any] = Producer,
    ):
        self.topic = topic
        self.flush_timeout = flush_timeout
        self._producer = producer_factory({
            "bootstrap.servers": bootstrap_servers,
            "enable.idempotence": True,
        })

    def notify(self, event: TransitionEvent) -> None:
        """
        Raises:
            TransientInfrastructureError: If the event cannot be delivered
        """
        payload = json.dumps(event.model_dump(mode="json")).encode("utf-8")
        try:
            self._producer.produce(self.topic, value=payload, key=str(event.assignment_id).encode())
            remaining = self._producer.flush(self.flush_timeout)
        except (KafkaException, BufferError) as e:
            raise TransientInfrastructureError(
                f"Could not publish {event.transition} event",
                details={"topic": self.topic, "cause": str(e)},
            ) from e
        if remaining:
            raise TransientInfrastructureError(
                f"{event.transition} event for assignment {event.assignment_id} not delivered "
                f"within {self.flush_timeout}s",
                details={"topic": self.topic},
            )

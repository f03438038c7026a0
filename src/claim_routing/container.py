"""
Service wiring: builds every component from Settings.
"""

import time
from typing import Any, Callable

from confluent_kafka import Consumer, Producer

from claim_routing.api.auth import StaticTokenProvider
from claim_routing.config import Settings
from claim_routing.core.models import Company, Role, Rule, User
from claim_routing.core.ports import (
    AssignmentRepository,
    AuditSink,
    DeadLetterSink,
    NotificationSink,
    RuleStore,
    UserDirectory,
)
from claim_routing.core.rules import CachedRuleStore, RuleMatcher
from claim_routing.ingestion import BootstrapSupervisor, ClaimQueueConsumer, IngestionPipeline
from claim_routing.lifecycle import AssignmentLifecycle
from claim_routing.notifications import KafkaNotificationSink, LoggingNotificationSink
from claim_routing.observability.logger import get_logger
from claim_routing.routing import RoleResolver, create_selection_policy
from claim_routing.storage.connection import DatabaseConnectionPool

logger = get_logger(__name__)


class ServiceContainer:
    """
    Holds one instance of each collaborator.

    Storage adapters are injected; everything above them is built here
    so the API, the CLIs and the tests share the same wiring.
    """

    def __init__(
        self,
        settings: Settings,
        rule_store: RuleStore,
        user_directory: UserDirectory,
        repository: AssignmentRepository,
        audit: AuditSink,
        dead_letters: DeadLetterSink,
        notifier: NotificationSink | None = None,
        pool: DatabaseConnectionPool | None = None,
        consumer_factory: Callable[[dict[str, Any]], Any] = Consumer,
        producer_factory: Callable[[dict[str, Any]], Any] = Producer,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.pool = pool
        self.rule_store = CachedRuleStore(rule_store, ttl_seconds=settings.rule_cache_ttl_seconds)
        self.user_directory = user_directory
        self.repository = repository
        self.audit = audit
        self.dead_letters = dead_letters
        self.notifier = notifier

        self.matcher = RuleMatcher()
        self.resolver = RoleResolver(user_directory)
        self.selection_policy = create_selection_policy(settings.selection_policy, repository)
        self.lifecycle = AssignmentLifecycle(
            repository,
            audit,
            notifier=notifier,
            user_directory=user_directory,
            rule_store=self.rule_store,
        )
        self.pipeline = IngestionPipeline(
            rule_store=self.rule_store,
            matcher=self.matcher,
            resolver=self.resolver,
            selection_policy=self.selection_policy,
            lifecycle=self.lifecycle,
            audit=audit,
        )
        self.consumer = ClaimQueueConsumer(
            pipeline=self.pipeline,
            dead_letters=dead_letters,
            audit=audit,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.assignment_topic,
            group_id=settings.kafka_group_id,
            max_delivery_attempts=settings.max_delivery_attempts,
            backoff_seconds=settings.redelivery_backoff_seconds,
            dead_letter_topic=settings.dead_letter_topic,
            consumer_factory=consumer_factory,
            producer_factory=producer_factory,
        )
        self.supervisor = BootstrapSupervisor(
            self.consumer,
            audit=audit,
            max_retries=settings.bootstrap_max_retries,
            retry_delay=settings.bootstrap_retry_delay,
            sleep=sleep,
        )
        self.token_provider = StaticTokenProvider(settings.api_tokens) if settings.api_tokens else None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs) -> "ServiceContainer":
        """
        Build the container for the configured storage backend.

        Raises:
            TransientInfrastructureError: If the database cannot be reached
        """
        settings = settings or Settings.from_env()
        if settings.storage_backend == "memory":
            return cls.in_memory(settings, **kwargs)

        # Imported here so the memory backend does not need a database driver at runtime
        from claim_routing.storage.assignment_repository import PostgresAssignmentRepository
        from claim_routing.storage.audit import PostgresAuditSink
        from claim_routing.storage.dead_letter import PostgresDeadLetterSink
        from claim_routing.storage.rule_store import PostgresRuleStore, PostgresUserDirectory
        from claim_routing.storage.schema import ensure_schema

        pool = DatabaseConnectionPool(
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
            user=settings.db_user,
            password=settings.db_password,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
        pool.open(max_retries=settings.bootstrap_max_retries, retry_delay=settings.bootstrap_retry_delay)
        ensure_schema(pool)

        return cls(
            settings,
            rule_store=PostgresRuleStore(pool),
            user_directory=PostgresUserDirectory(pool),
            repository=PostgresAssignmentRepository(pool),
            audit=PostgresAuditSink(pool),
            dead_letters=PostgresDeadLetterSink(pool),
            notifier=_notifier_for(settings),
            pool=pool,
            **kwargs,
        )

    @classmethod
    def in_memory(
        cls,
        settings: Settings | None = None,
        companies: list[Company] | None = None,
        rules: list[Rule] | None = None,
        users: list[User] | None = None,
        roles: list[Role] | None = None,
        **kwargs,
    ) -> "ServiceContainer":
        """Container backed by the in-memory adapters, optionally seeded."""
        from claim_routing.storage.memory import (
            InMemoryAssignmentRepository,
            InMemoryAuditSink,
            InMemoryDeadLetterSink,
            InMemoryRuleStore,
            InMemoryUserDirectory,
        )

        settings = settings or Settings(storage_backend="memory")
        kwargs.setdefault("notifier", _notifier_for(settings))
        return cls(
            settings,
            rule_store=InMemoryRuleStore(companies, rules),
            user_directory=InMemoryUserDirectory(users, roles),
            repository=InMemoryAssignmentRepository(),
            audit=InMemoryAuditSink(),
            dead_letters=InMemoryDeadLetterSink(),
            **kwargs,
        )

    def close(self) -> None:
        """Stop the consumer and release the database pool."""
        self.supervisor.stop()
        if self.pool is not None:
            self.pool.close()
            logger.info("Database pool closed")


def _notifier_for(settings: Settings) -> NotificationSink:
    if settings.notification_topic:
        return KafkaNotificationSink(settings.kafka_bootstrap_servers, settings.notification_topic)
    return LoggingNotificationSink()

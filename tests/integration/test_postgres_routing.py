"""
End-to-end routing against PostgreSQL: pipeline, lifecycle and audit trail.
"""

import pytest

from conftest import claim_payload, encode

from claim_routing.config import Settings
from claim_routing.container import ServiceContainer
from claim_routing.core.models import Rule
from claim_routing.ingestion import IngestionStatus
from claim_routing.storage.assignment_repository import PostgresAssignmentRepository
from claim_routing.storage.audit import PostgresAuditSink
from claim_routing.storage.dead_letter import PostgresDeadLetterSink
from claim_routing.storage.rule_store import PostgresRuleStore, PostgresUserDirectory


@pytest.fixture
def container(seeded_db):
    settings = Settings(storage_backend="postgres", auto_start_queue=False, rule_cache_ttl_seconds=60)
    container = ServiceContainer(
        settings,
        rule_store=PostgresRuleStore(seeded_db),
        user_directory=PostgresUserDirectory(seeded_db),
        repository=PostgresAssignmentRepository(seeded_db),
        audit=PostgresAuditSink(seeded_db),
        dead_letters=PostgresDeadLetterSink(seeded_db),
    )
    container.rule_store.save_rule(Rule(
        name="Mid amounts", company_id=1, type="AMOUNT", minimum_amount=0, maximum_amount=500000, role_ids=[3],
    ))
    return container


@pytest.mark.integration
class TestPostgresRouting:
    """Tests for claim routing on the PostgreSQL backend"""

    def test_claim_is_assigned_once(self, container):
        """Test routing, idempotent redelivery and the audit trail"""
        raw = encode(claim_payload())

        first = container.pipeline.process(raw)
        second = container.pipeline.process(raw)

        assert first.status == IngestionStatus.ASSIGNED
        assert first.assignment.user_id == 1
        assert first.assignment.type == "OBJECTION_OBJ-01"
        assert second.status == IngestionStatus.DUPLICATE
        assert second.assignment.id == first.assignment.id
        assert [e.action for e in container.audit.query(claim_id="CLM-555")] == ["create"]

    def test_least_loaded_spreads_claims(self, container):
        """Test consecutive claims go to different reviewers"""
        first = container.pipeline.process(claim_payload(ClaimId="A"))
        second = container.pipeline.process(claim_payload(ClaimId="B"))

        assert {first.assignment.user_id, second.assignment.user_id} == {1, 2}

    def test_rule_change_is_seen_immediately(self, container):
        """Test rule writes through the cache invalidate it"""
        assert container.pipeline.process(claim_payload(ClaimId="A", Value=900000)).status == IngestionStatus.NO_ROUTE

        container.rule_store.save_rule(Rule(
            name="Large amounts", company_id=1, type="AMOUNT",
            minimum_amount=500000, maximum_amount=10000000, role_ids=[5],
        ))
        outcome = container.pipeline.process(claim_payload(ClaimId="B", Value=900000))

        assert outcome.status == IngestionStatus.ASSIGNED
        assert outcome.assignment.user_id == 42

    def test_lifecycle_persists_transitions(self, container):
        """Test transitions are stored with versions and end dates"""
        assignment = container.pipeline.process(claim_payload()).assignment

        active = container.lifecycle.activate(assignment.id, actor="ana")
        completed = container.lifecycle.complete(assignment.id, actor="ana", expected_version=active.version)

        assert completed.version == 2
        assert completed.end_date is not None
        trail = container.audit.query(assignment_id=assignment.id)
        assert [(e.previous_status, e.new_status) for e in trail] == [
            ("active", "completed"),
            ("assigned", "active"),
            (None, "assigned"),
        ]

"""
Integration tests for the PostgreSQL adapters.

Require Docker; the database is truncated before every test.
"""

from datetime import datetime, timezone

import pytest

from conftest import TARGET_NIT

from claim_routing.core.exceptions import ConflictError, NotFoundError, ValidationError
from claim_routing.core.models import (
    Assignment,
    AssignmentStatus,
    AuditLog,
    DeadLetterRecord,
    Rule,
)
from claim_routing.storage.assignment_repository import PostgresAssignmentRepository
from claim_routing.storage.audit import PostgresAuditSink
from claim_routing.storage.dead_letter import PostgresDeadLetterSink
from claim_routing.storage.rule_store import PostgresRuleStore, PostgresUserDirectory


def _assignment(**overrides) -> Assignment:
    fields = {
        "company_id": 1,
        "claim_id": "CLM-1",
        "document_number": "DOC-1",
        "user_id": 1,
        "status": AssignmentStatus.ASSIGNED,
        "value": 1500.5,
    }
    fields.update(overrides)
    return Assignment(**fields)


@pytest.mark.integration
class TestPostgresRuleStore:
    """Tests for PostgresRuleStore"""

    def test_save_and_list_rules(self, seeded_db):
        """Test rules round-trip with ordered role bindings"""
        store = PostgresRuleStore(seeded_db)

        saved = store.save_rule(Rule(
            name="Mid amounts",
            company_id=1,
            type="AMOUNT",
            minimum_amount=0,
            maximum_amount=500000,
            role_ids=[5, 3],
        ))

        rules = store.list_rules(1)
        assert [r.id for r in rules] == [saved.id]
        assert rules[0].role_ids == [5, 3]
        assert rules[0].maximum_amount == 500000.0

    def test_writes_bump_revision(self, seeded_db):
        """Test every rule write changes the company's rules revision"""
        store = PostgresRuleStore(seeded_db)
        before = store.rules_revision(1)

        saved = store.save_rule(Rule(name="Codes", company_id=1, type="CODE", objection_code="OBJ-01", role_ids=[3]))
        store.set_rule_active(saved.id, False)

        assert store.rules_revision(1) == before + 2
        assert store.list_rules(1)[0].is_active is False

    def test_invalid_rule_rejected(self, seeded_db):
        """Test malformed rules are never written"""
        store = PostgresRuleStore(seeded_db)

        with pytest.raises(ValidationError):
            store.save_rule(Rule(name="Broken", company_id=1, type="AMOUNT", minimum_amount=10, maximum_amount=1))

        assert store.list_rules(1) == []

    def test_unknown_company(self, seeded_db):
        """Test saving a rule for a missing company"""
        with pytest.raises(NotFoundError):
            PostgresRuleStore(seeded_db).save_rule(
                Rule(name="Codes", company_id=99, type="CODE", objection_code="X", role_ids=[3])
            )

    def test_find_company_by_normalized_nit(self, seeded_db):
        """Test NIT lookup ignores hyphens and whitespace"""
        store = PostgresRuleStore(seeded_db)

        assert store.find_company_by_nit(TARGET_NIT).id == 1
        assert store.find_company_by_nit("900 123-456").id == 1
        assert store.find_company_by_nit("111") is None


@pytest.mark.integration
class TestPostgresUserDirectory:
    """Tests for PostgresUserDirectory"""

    def test_users_with_roles(self, seeded_db):
        """Test users are found through active roles only"""
        directory = PostgresUserDirectory(seeded_db)

        assert [u.id for u in directory.users_with_roles([3])] == [1, 2]
        assert directory.users_with_roles([7]) == []
        assert directory.users_with_roles([]) == []

    def test_get_user(self, seeded_db):
        """Test user lookup includes every role held"""
        directory = PostgresUserDirectory(seeded_db)

        assert directory.get_user(2).role_ids == [3, 7]
        assert directory.get_user(999) is None


@pytest.mark.integration
class TestPostgresAssignmentRepository:
    """Tests for PostgresAssignmentRepository"""

    def test_insert_is_idempotent_on_natural_key(self, seeded_db):
        """Test a second insert returns the stored row"""
        repository = PostgresAssignmentRepository(seeded_db)

        first, created = repository.insert_if_absent(_assignment())
        again, created_again = repository.insert_if_absent(_assignment(user_id=2))

        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert again.user_id == 1
        assert first.value == 1500.5

    def test_update_checks_version(self, seeded_db):
        """Test a stale version is a conflict and the row is unchanged"""
        repository = PostgresAssignmentRepository(seeded_db)
        stored, _ = repository.insert_if_absent(_assignment())

        updated = repository.update(stored.model_copy(update={"status": AssignmentStatus.ACTIVE}), expected_version=0)
        assert updated.version == 1

        with pytest.raises(ConflictError):
            repository.update(stored.model_copy(update={"user_id": 2}), expected_version=0)

        assert repository.get(stored.id).user_id == 1

    def test_update_missing_assignment(self, seeded_db):
        """Test updating an unknown id"""
        with pytest.raises(NotFoundError):
            PostgresAssignmentRepository(seeded_db).update(_assignment(id=999), expected_version=0)

    def test_terminal_rows_need_end_date(self, seeded_db):
        """Test completed rows carry an end date"""
        repository = PostgresAssignmentRepository(seeded_db)
        stored, _ = repository.insert_if_absent(_assignment())

        completed = repository.update(
            stored.model_copy(update={
                "status": AssignmentStatus.COMPLETED,
                "end_date": datetime(2024, 5, 1, tzinfo=timezone.utc),
            }),
            expected_version=0,
        )

        assert completed.end_date == datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_count_open_by_user(self, seeded_db):
        """Test only assigned and active rows count as load"""
        repository = PostgresAssignmentRepository(seeded_db)
        repository.insert_if_absent(_assignment(claim_id="A"))
        repository.insert_if_absent(_assignment(claim_id="B", status=AssignmentStatus.ACTIVE))
        repository.insert_if_absent(_assignment(claim_id="C", user_id=None, status=AssignmentStatus.PENDING))

        assert repository.count_open_by_user([1, 2]) == {1: 2, 2: 0}


@pytest.mark.integration
class TestPostgresAuditSink:
    """Tests for PostgresAuditSink"""

    def test_record_and_query(self, seeded_db):
        """Test entries are stored with their payload and read newest first"""
        sink = PostgresAuditSink(seeded_db)
        sink.record(AuditLog(service="test", action="create", message="created", claim_id="CLM-1",
                             payload={"claim": {"Value": 10}}))
        stored = sink.record(AuditLog(level="warning", service="test", action="no_route", message="none",
                                      claim_id="CLM-1", actor="system"))

        entries = sink.query(claim_id="CLM-1")

        assert stored.log_id is not None
        assert [e.action for e in entries] == ["no_route", "create"]
        assert entries[1].payload == {"claim": {"Value": 10}}
        assert sink.query(action="create", limit=1)[0].message == "created"

    def test_summary(self, seeded_db):
        """Test counts per action and level"""
        sink = PostgresAuditSink(seeded_db)
        sink.record(AuditLog(service="test", action="create", message="a"))
        sink.record(AuditLog(level="error", service="test", action="dead_lettered", message="b"))

        summary = sink.summary()

        assert summary["total"] == 2
        assert summary["by_level"] == {"error": 1, "info": 1}


@pytest.mark.integration
class TestPostgresDeadLetterSink:
    """Tests for PostgresDeadLetterSink"""

    def _record(self, **overrides) -> DeadLetterRecord:
        fields = {
            "message_key": "claim-assignments:0:12",
            "claim_id": "CLM-9",
            "raw_payload": '{"ClaimId": "CLM-9"}',
            "error_type": "ValidationError",
            "error_message": "Missing required fields: Target",
        }
        fields.update(overrides)
        return DeadLetterRecord(**fields)

    def test_store_and_get(self, seeded_db):
        """Test the raw payload is kept as received"""
        sink = PostgresDeadLetterSink(seeded_db)

        stored = sink.store(self._record())

        loaded = sink.get(stored.dead_letter_id)
        assert loaded.raw_payload == '{"ClaimId": "CLM-9"}'
        assert loaded.reviewed is False

    def test_review_and_reprocess_flags(self, seeded_db):
        """Test the review workflow and statistics"""
        sink = PostgresDeadLetterSink(seeded_db)
        first = sink.store(self._record())
        second = sink.store(self._record(message_key="claim-assignments:0:13"))

        assert sink.mark_reviewed(first.dead_letter_id) is True
        assert sink.request_reprocess(second.dead_letter_id) is True
        assert sink.mark_reviewed(999) is False

        stats = sink.get_stats()
        assert stats == {"total_dead_lettered": 2, "unreviewed": 1, "reprocess_pending": 1}

        sink.mark_reprocessed(second.dead_letter_id)
        reprocessed = sink.get(second.dead_letter_id)
        assert reprocessed.reprocessed_at is not None
        assert reprocessed.reprocess_requested is False
        assert [r.dead_letter_id for r in sink.list_records(reviewed=True)] == [
            second.dead_letter_id,
            first.dead_letter_id,
        ]

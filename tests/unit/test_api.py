"""
Unit tests for the HTTP API using FastAPI's TestClient.
"""

import json

import pytest
from confluent_kafka import KafkaError, KafkaException
from fastapi.testclient import TestClient

from conftest import claim_payload

from claim_routing.api.app import create_app
from claim_routing.config import Settings
from claim_routing.core.rules import RuleConfigBuilder


class UnreachableKafka:
    def __init__(self, config):
        self.config = config

    def list_topics(self, topic=None, timeout=None):
        raise KafkaException(KafkaError(KafkaError._TRANSPORT))

    def close(self):
        pass


@pytest.fixture
def container(build_container):
    rules = RuleConfigBuilder().add_amount(0, 500000, roles=[3]).build()
    settings = Settings(
        storage_backend="memory",
        auto_start_queue=False,
        bootstrap_max_retries=1,
        bootstrap_retry_delay=0,
    )
    return build_container(rules, settings=settings, consumer_factory=UnreachableKafka)


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


def _create(client, **overrides):
    body = {"companyId": 1, "claimId": "M-1", "documentNumber": "D-1", "userId": 1}
    body.update(overrides)
    response = client.post("/assignments", json=body)
    assert response.status_code == 201
    return response.json()["data"]


@pytest.mark.unit
class TestAssignmentEndpoints:
    """Tests for /assignments"""

    def test_create_and_get(self, client):
        """Test manual creation and retrieval"""
        created = _create(client)

        response = client.get(f"/assignments/{created['id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "assigned"
        assert body["data"]["user_id"] == 1

    def test_duplicate_manual_creation_conflicts(self, client):
        """Test the natural key is unique"""
        _create(client)

        response = client.post("/assignments", json={"companyId": 1, "claimId": "M-1", "documentNumber": "D-1"})

        assert response.status_code == 409
        assert response.json()["error"] == "ConflictError"

    def test_manual_creation_for_unknown_company(self, client, container):
        """Test an unknown company is a 404 and nothing is stored"""
        response = client.post(
            "/assignments", json={"companyId": 999, "claimId": "M-1", "documentNumber": "D-1", "userId": 1},
        )

        assert response.status_code == 404
        assert response.json()["details"] == {"company_id": 999}
        assert container.repository.all() == []
        assert json.loads(container.audit.entries[-1].payload["payload"])["companyId"] == 999

    def test_overlong_field_is_rejected(self, client):
        """Test fields longer than their stored width are a 400"""
        response = client.post(
            "/assignments", json={"companyId": 1, "claimId": "C" * 101, "documentNumber": "D-1"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_not_found_is_audited(self, client, container):
        """Test error responses carry the error payload and are audited"""
        response = client.get("/assignments/999")

        assert response.status_code == 404
        body = response.json()
        assert body == {
            "success": False,
            "error": "NotFoundError",
            "message": "Assignment 999 not found",
            "details": {"assignment_id": 999},
        }
        entry = container.audit.entries[-1]
        assert entry.service == "http_api"
        assert entry.action == "GET /assignments/999"
        assert entry.level == "warning"

    def test_transition_flow(self, client):
        """Test activate then complete"""
        created = _create(client)

        active = client.post(f"/assignments/{created['id']}/activate").json()["data"]
        completed = client.post(f"/assignments/{created['id']}/complete").json()["data"]

        assert active["status"] == "active"
        assert completed["status"] == "completed"
        assert completed["end_date"] is not None

    def test_invalid_transition(self, client, container):
        """Test illegal moves return 409 and audit the request"""
        created = _create(client)
        client.post(f"/assignments/{created['id']}/cancel")

        response = client.post(f"/assignments/{created['id']}/activate")

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransitionError"
        assert container.audit.entries[-1].payload["error_type"] == "InvalidTransitionError"

    def test_stale_version(self, client):
        """Test the version query parameter guards against lost updates"""
        created = _create(client)
        client.post(f"/assignments/{created['id']}/activate")

        response = client.post(f"/assignments/{created['id']}/cancel", params={"version": 0})

        assert response.status_code == 409
        assert response.json()["error"] == "ConflictError"

    def test_unassign(self, client):
        """Test unassign clears the owner"""
        created = _create(client)

        data = client.post(f"/assignments/{created['id']}/unassign").json()["data"]

        assert data["status"] == "unassigned"
        assert data["user_id"] is None

    def test_reassign(self, client):
        """Test single reassignment"""
        created = _create(client, userId=None)

        response = client.post(f"/assignments/{created['id']}/reassign", json={"userId": 42})

        assert response.status_code == 200
        assert response.json()["data"]["user_id"] == 42
        assert response.json()["data"]["status"] == "assigned"

    def test_bulk_reassignment_accepts_misspelt_key(self, client, container):
        """Test bulk reassignment with both assignmentId spellings"""
        first = _create(client, userId=None)
        second = _create(client, claimId="M-2")

        response = client.post("/assignments/company/1/reassignment", json={
            "userTCP": "lead@example.com",
            "userId": 42,
            "assignments": [{"assigmentId": first["id"]}, {"assignmentId": second["id"]}],
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["succeeded"] == 2
        assert data["results"][0]["previousStatus"] == "pending"
        assert data["results"][0]["statusChanged"] is True
        assert container.audit.query(action="reassign")[0].actor == "lead@example.com"

    def test_complete_by_natural_key(self, client):
        """Test completion by claim id and document number"""
        _create(client)

        response = client.post("/assignments/complete", json={"claimId": "M-1", "documentNumber": "D-1"})

        assert response.json()["data"]["status"] == "completed"

    def test_request_validation_error(self, client, container):
        """Test malformed bodies return a 400 ValidationError payload"""
        response = client.post("/assignments", json={"claimId": "M-1"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "ValidationError"
        assert body["details"]["errors"]
        assert container.audit.entries[-1].payload["payload"] == {"claimId": "M-1"}


@pytest.mark.unit
class TestAutoAssignmentEndpoints:
    """Tests for /auto-assignments"""

    def test_process_manually(self, client):
        """Test synchronous routing through the pipeline"""
        response = client.post("/auto-assignments/process-manually", json=claim_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "assigned"
        assert body["assignment"]["user_id"] == 1
        assert body["match"]["winning_rule_type"] == "AMOUNT"

    def test_process_manually_no_route(self, client):
        """Test no-route is reported with success false"""
        response = client.post("/auto-assignments/process-manually", json=claim_payload(Value=900000))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "NoRouteError"
        assert body["status"] == "no_route"

    def test_process_manually_invalid_claim(self, client, container):
        """Test an invalid claim is rejected and audited with its payload"""
        payload = claim_payload()
        del payload["ClaimId"]

        response = client.post("/auto-assignments/process-manually", json=payload)

        assert response.status_code == 400
        assert response.json()["details"]["missing_fields"] == ["ClaimId"]
        assert "DocumentNumber" in container.audit.entries[-1].payload["payload"]

    def test_process_manually_overlong_source(self, client, container):
        """Test a Source wider than a tax ID column is a 400 and nothing is stored"""
        response = client.post("/auto-assignments/process-manually", json=claim_payload(Source="8" * 31))

        assert response.status_code == 400
        fields = [error["field"] for error in response.json()["details"]["errors"]]
        assert "Source" in fields
        assert container.repository.all() == []

    def test_unexpected_error_is_audited(self, container, monkeypatch):
        """Test an untyped failure returns a typed 500 body and audits the request"""
        def broken_insert(assignment):
            raise RuntimeError("value too long for type character varying(30)")

        monkeypatch.setattr(container.repository, "insert_if_absent", broken_insert)
        client = TestClient(create_app(container), raise_server_exceptions=False)

        response = client.post("/auto-assignments/process-manually", json=claim_payload())

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "ClaimRoutingError",
            "message": "Internal server error",
            "details": {"error_type": "RuntimeError"},
        }
        entry = container.audit.entries[-1]
        assert entry.service == "http_api"
        assert entry.action == "POST /auto-assignments/process-manually"
        assert entry.level == "error"
        assert entry.payload["error_type"] == "RuntimeError"
        assert "CLM-555" in entry.payload["payload"]

    def test_service_status(self, client):
        """Test the supervisor status is exposed"""
        data = client.get("/auto-assignments/service/status").json()["data"]

        assert data["state"] == "stopped"
        assert data["isRunning"] is False
        assert data["consumer"]["isConnected"] is False

    def test_service_start_with_broker_down(self, client):
        """Test a failed start returns 503 and leaves the service stopped"""
        response = client.post("/auto-assignments/service/start")

        assert response.status_code == 503
        assert response.json()["data"]["state"] == "stopped"
        assert response.json()["data"]["attempts"] == 1

    def test_service_stop_when_stopped(self, client):
        """Test stop is idempotent"""
        response = client.post("/auto-assignments/service/stop")

        assert response.status_code == 200
        assert response.json()["data"]["state"] == "stopped"

    def test_metrics(self, client):
        """Test Prometheus exposition"""
        client.post("/auto-assignments/process-manually", json=claim_payload())

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "claim_routing_claims_processed_total" in response.text


@pytest.mark.unit
class TestBearerTokens:
    """Tests for actor resolution from bearer tokens"""

    @pytest.fixture
    def secured(self, build_container):
        settings = Settings(storage_backend="memory", auto_start_queue=False, api_tokens={"s3cret": "ana"})
        container = build_container(settings=settings)
        return container, TestClient(create_app(container))

    def test_missing_token(self, secured):
        """Test requests without a token are rejected"""
        _, client = secured

        assert client.get("/assignments/1").status_code == 401

    def test_invalid_token(self, secured):
        """Test unknown tokens are rejected"""
        _, client = secured

        response = client.get("/assignments/1", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_actor_recorded(self, secured):
        """Test the token subject is the audited actor"""
        container, client = secured

        response = client.post(
            "/assignments",
            json={"companyId": 1, "claimId": "M-1", "documentNumber": "D-1"},
            headers={"Authorization": "Bearer s3cret"},
        )

        assert response.status_code == 201
        assert container.audit.query(action="create")[0].actor == "ana"

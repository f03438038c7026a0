"""
Pytest configuration and fixtures for claim-routing tests

This module provides shared fixtures for unit and integration tests.
"""
import json
from typing import Any, Callable, Generator

import pytest

from claim_routing.config import Settings
from claim_routing.container import ServiceContainer
from claim_routing.core.models import Claim, Company, Rule, User


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# DOMAIN FIXTURES
# =======================

TARGET_NIT = "900123456"
SOURCE_NIT = "800000513"


def claim_payload(**overrides: Any) -> dict[str, Any]:
    """A valid wire payload; keyword overrides use wire names."""
    payload = {
        "ProcessId": 1001,
        "Target": TARGET_NIT,
        "Source": SOURCE_NIT,
        "DocumentNumber": "FE-2024-0001",
        "InvoiceAmount": 250000,
        "ExternalReference": "EXT-77",
        "ClaimId": "CLM-555",
        "ConceptApplicationCode": "TAR",
        "ObjectionCode": "OBJ-01",
        "Value": 200000,
    }
    payload.update(overrides)
    return payload


def make_claim(**overrides: Any) -> Claim:
    """Claim built from ``claim_payload``."""
    return Claim.model_validate(claim_payload(**overrides))


def encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def company() -> Company:
    """The receiving company that owns the rules."""
    return Company(id=1, name="Clinica Central", document_number=TARGET_NIT)


@pytest.fixture
def users() -> list[User]:
    """Reviewers: 1 and 2 hold role 3, 3 holds role 9, 4 is inactive with role 3."""
    return [
        User(id=1, name="Ana Torres", company_id=1, role_ids=[3]),
        User(id=2, name="Luis Gomez", company_id=1, role_ids=[3]),
        User(id=3, name="Marta Ruiz", company_id=2, role_ids=[9]),
        User(id=4, name="Pedro Diaz", company_id=1, role_ids=[3], is_active=False),
        User(id=42, name="Sofia Vega", company_id=1, role_ids=[5]),
    ]


@pytest.fixture
def memory_settings() -> Settings:
    """Settings for an in-memory container that never touches the broker."""
    return Settings(
        storage_backend="memory",
        auto_start_queue=False,
        selection_policy="least_loaded",
        bootstrap_retry_delay=0,
    )


@pytest.fixture
def build_container(
    company, users, memory_settings
) -> Callable[..., ServiceContainer]:
    """
    Factory for in-memory containers seeded with the standard company and users

    Returns:
        Callable taking the company's rules (and optional container kwargs)
    """
    def _build(rules: list[Rule] | None = None, **kwargs) -> ServiceContainer:
        return ServiceContainer.in_memory(
            kwargs.pop("settings", memory_settings),
            companies=[company],
            rules=rules or [],
            users=users,
            **kwargs,
        )

    return _build


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_routing",
        password="test_password",
        dbname="test_claim_routing",
        driver=None,
    )
    try:
        container.start()
    except Exception as e:  # noqa: BLE001 - no Docker daemon available
        pytest.skip(f"Docker not available for integration tests: {e}")

    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def db_pool(postgres_container):
    """
    Open connection pool with the schema applied

    Yields:
        DatabaseConnectionPool connected to the test container
    """
    from claim_routing.storage.connection import DatabaseConnectionPool
    from claim_routing.storage.schema import ensure_schema

    pool = DatabaseConnectionPool(conninfo=postgres_container.get_connection_url(), min_size=1, max_size=4)
    pool.open(max_retries=5, retry_delay=1.0)
    ensure_schema(pool)
    yield pool
    pool.close()


@pytest.fixture(scope="function")
def clean_db(db_pool):
    """
    Provide a clean database by truncating all tables before each test

    Yields:
        DatabaseConnectionPool with empty tables
    """
    from claim_routing.storage.schema import TABLES

    db_pool.execute_command(f"TRUNCATE TABLE {', '.join(TABLES)} RESTART IDENTITY CASCADE")
    yield db_pool


@pytest.fixture
def seeded_db(clean_db):
    """
    Company 1 with roles 3 and 5; users 1 and 2 hold role 3, user 42 holds role 5.
    Role 7 is archived and held by user 2.

    Yields:
        DatabaseConnectionPool with the seed rows
    """
    clean_db.execute_command(
        "INSERT INTO companies (id, name, document_number) VALUES (1, 'Clinica Central', %s)",
        (TARGET_NIT,),
    )
    clean_db.execute_command(
        """
        INSERT INTO roles (id, company_id, name, archived_at) VALUES
            (3, 1, 'Auditor', NULL), (5, 1, 'Lead', NULL), (7, 1, 'Legacy', NOW())
        """
    )
    clean_db.execute_command(
        "INSERT INTO users (id, name, company_id) VALUES (1, 'Ana', 1), (2, 'Luis', 1), (42, 'Sofia', 1)"
    )
    clean_db.execute_command(
        "INSERT INTO user_roles (user_id, role_id) VALUES (1, 3), (2, 3), (2, 7), (42, 5)"
    )
    yield clean_db

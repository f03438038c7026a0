"""
Database schema for the claim routing service.

``ensure_schema`` creates the tables idempotently; migrations of existing
databases are managed outside this package.
"""

from claim_routing.observability.logger import get_logger, log_operation
from claim_routing.storage.connection import DatabaseConnectionPool, translate_errors

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS companies (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        document_type VARCHAR(20) NOT NULL DEFAULT 'NIT',
        document_number VARCHAR(30) NOT NULL UNIQUE,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        archived_at TIMESTAMPTZ,
        rules_revision BIGINT NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS roles (
        id SERIAL PRIMARY KEY,
        company_id INTEGER NOT NULL REFERENCES companies(id),
        name VARCHAR(100) NOT NULL,
        description TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        archived_at TIMESTAMPTZ,
        UNIQUE (company_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        dud VARCHAR(60),
        company_id INTEGER REFERENCES companies(id),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        archived_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        user_id INTEGER NOT NULL REFERENCES users(id),
        role_id INTEGER NOT NULL REFERENCES roles(id),
        PRIMARY KEY (user_id, role_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rules (
        id SERIAL PRIMARY KEY,
        company_id INTEGER NOT NULL REFERENCES companies(id),
        name VARCHAR(100) NOT NULL,
        description VARCHAR(500),
        type VARCHAR(50) NOT NULL,
        minimum_amount NUMERIC(18, 2),
        maximum_amount NUMERIC(18, 2),
        nit_associated_company VARCHAR(30),
        objection_code VARCHAR(100),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rule_roles (
        rule_id INTEGER NOT NULL REFERENCES rules(id),
        role_id INTEGER NOT NULL REFERENCES roles(id),
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (rule_id, role_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assignments (
        id SERIAL PRIMARY KEY,
        user_id INTEGER REFERENCES users(id),
        company_id INTEGER NOT NULL REFERENCES companies(id),
        claim_id VARCHAR(100) NOT NULL,
        document_number VARCHAR(100) NOT NULL,
        process_id BIGINT,
        source VARCHAR(30),
        target VARCHAR(30),
        objection_code VARCHAR(100),
        concept_application_code VARCHAR(100),
        external_reference VARCHAR(255),
        invoice_amount NUMERIC(18, 2),
        value NUMERIC(18, 2),
        type VARCHAR(150),
        rule_id INTEGER REFERENCES rules(id),
        status VARCHAR(20) NOT NULL,
        start_date TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        end_date TIMESTAMPTZ,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT assignments_natural_key UNIQUE (claim_id, document_number),
        CONSTRAINT assignments_end_date_terminal CHECK (
            (status IN ('completed', 'cancelled')) = (end_date IS NOT NULL)
        )
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_assignments_user_status ON assignments (user_id, status)",
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        log_id BIGSERIAL PRIMARY KEY,
        level VARCHAR(10) NOT NULL,
        service VARCHAR(100) NOT NULL,
        action VARCHAR(100) NOT NULL,
        message TEXT NOT NULL,
        assignment_id INTEGER,
        claim_id VARCHAR(100),
        actor VARCHAR(255),
        previous_status VARCHAR(20),
        new_status VARCHAR(20),
        previous_user_id INTEGER,
        new_user_id INTEGER,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_log_assignment ON audit_log (assignment_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_log_claim ON audit_log (claim_id)",
    """
    CREATE TABLE IF NOT EXISTS dead_letter (
        dead_letter_id BIGSERIAL PRIMARY KEY,
        message_key VARCHAR(255) NOT NULL,
        claim_id VARCHAR(100),
        raw_payload TEXT NOT NULL,
        error_type VARCHAR(100) NOT NULL,
        error_message TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 1,
        dead_lettered_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        reviewed BOOLEAN NOT NULL DEFAULT FALSE,
        reprocess_requested BOOLEAN NOT NULL DEFAULT FALSE,
        reprocessed_at TIMESTAMPTZ
    )
    """,
]

TABLES = [
    "dead_letter",
    "audit_log",
    "assignments",
    "rule_roles",
    "rules",
    "user_roles",
    "users",
    "roles",
    "companies",
]


def ensure_schema(pool: DatabaseConnectionPool) -> None:
    """
    Create all tables and indexes if they do not exist.

    Args:
        pool: Open connection pool
    """
    with log_operation("ensure schema", logger=logger, statements=len(SCHEMA_STATEMENTS)):
        with translate_errors("ensure_schema"):
            with pool.get_connection() as conn:
                with conn.cursor() as cur:
                    for statement in SCHEMA_STATEMENTS:
                        cur.execute(statement)
                conn.commit()

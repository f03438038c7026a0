"""
Audit log operations backed by PostgreSQL.

Lifecycle transitions, routing outcomes, consumer failures and API errors
all land in the ``audit_log`` table.
"""

from datetime import datetime
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from claim_routing.core.models import AuditLog
from claim_routing.core.ports import AuditSink
from claim_routing.observability.logger import get_logger
from claim_routing.storage.connection import DatabaseConnectionPool, translate_errors

logger = get_logger(__name__)

_INSERT_SQL = """
    INSERT INTO audit_log (
        level, service, action, message, assignment_id, claim_id, actor,
        previous_status, new_status, previous_user_id, new_user_id, payload, created_at
    ) VALUES (
        %(level)s, %(service)s, %(action)s, %(message)s, %(assignment_id)s, %(claim_id)s, %(actor)s,
        %(previous_status)s, %(new_status)s, %(previous_user_id)s, %(new_user_id)s, %(payload)s, %(created_at)s
    ) RETURNING log_id
"""


def insert_audit_log(pool: DatabaseConnectionPool, audit_log: AuditLog) -> int:
    """
    Insert a single audit log entry into the database.

    Args:
        pool: Database connection pool
        audit_log: AuditLog model instance

    Returns:
        log_id: Generated log ID

    Raises:
        TransientInfrastructureError: If the database is unavailable
        psycopg.DatabaseError: If insert fails
    """
    params = audit_log.model_dump(exclude={"log_id", "payload"})
    params["payload"] = Jsonb(audit_log.model_dump(mode="json")["payload"])

    with translate_errors("insert_audit_log"):
        with pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_SQL, params)
                log_id = cur.fetchone()["log_id"]
            conn.commit()

    logger.debug(
        f"Inserted audit log entry: log_id={log_id}, action={audit_log.action}, "
        f"assignment_id={audit_log.assignment_id}"
    )
    return log_id


def query_audit_logs(
    pool: DatabaseConnectionPool,
    assignment_id: int | None = None,
    claim_id: str | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    """
    Query audit log entries, newest first.

    Args:
        pool: Database connection pool
        assignment_id: Filter by assignment
        claim_id: Filter by claim
        action: Filter by action
        limit: Maximum number of entries

    Returns:
        List of AuditLog instances
    """
    conditions = []
    params: dict[str, Any] = {"limit": limit}
    if assignment_id is not None:
        conditions.append("assignment_id = %(assignment_id)s")
        params["assignment_id"] = assignment_id
    if claim_id is not None:
        conditions.append("claim_id = %(claim_id)s")
        params["claim_id"] = claim_id
    if action is not None:
        conditions.append("action = %(action)s")
        params["action"] = action

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    rows = pool.execute_query(
        f"SELECT * FROM audit_log {where} ORDER BY created_at DESC, log_id DESC LIMIT %(limit)s",
        params,
    )
    return [AuditLog(**row) for row in rows]


def get_audit_summary(pool: DatabaseConnectionPool, since: datetime | None = None) -> dict[str, Any]:
    """
    Count audit entries per action and level.

    Args:
        pool: Database connection pool
        since: Only count entries created at or after this time

    Returns:
        Dictionary with total and per action/level counts
    """
    query = "SELECT action, level, COUNT(*) AS count FROM audit_log"
    params: tuple = ()
    if since is not None:
        query += " WHERE created_at >= %s"
        params = (since,)
    query += " GROUP BY action, level ORDER BY action, level"

    try:
        rows = pool.execute_query(query, params)
    except psycopg.DatabaseError as e:
        logger.error(f"Failed to build audit summary: {e}")
        raise

    by_action: dict[str, int] = {}
    by_level: dict[str, int] = {}
    for row in rows:
        by_action[row["action"]] = by_action.get(row["action"], 0) + row["count"]
        by_level[row["level"]] = by_level.get(row["level"], 0) + row["count"]

    return {
        "total": sum(by_action.values()),
        "by_action": by_action,
        "by_level": by_level,
    }


class PostgresAuditSink(AuditSink):
    """AuditSink writing to the ``audit_log`` table."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def record(self, entry: AuditLog) -> AuditLog:
        log_id = insert_audit_log(self.pool, entry)
        return entry.model_copy(update={"log_id": log_id})

    def query(
        self,
        assignment_id: int | None = None,
        claim_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        return query_audit_logs(self.pool, assignment_id, claim_id, action, limit)

    def summary(self, since: datetime | None = None) -> dict[str, Any]:
        return get_audit_summary(self.pool, since)

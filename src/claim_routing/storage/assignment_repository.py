"""
PostgreSQL-backed assignment repository.

Creation is idempotent through ``INSERT ... ON CONFLICT (claim_id,
document_number) DO NOTHING``; updates are conditional on the row's
version so concurrent writers cannot overwrite each other.
"""

from decimal import Decimal
from typing import Any

from claim_routing.core.exceptions import ConflictError, NotFoundError
from claim_routing.core.models import OPEN_STATUSES, Assignment
from claim_routing.core.ports import AssignmentRepository
from claim_routing.observability.logger import get_logger
from claim_routing.storage.connection import DatabaseConnectionPool, translate_errors

logger = get_logger(__name__)

_COLUMNS = [
    "user_id",
    "company_id",
    "claim_id",
    "document_number",
    "process_id",
    "source",
    "target",
    "objection_code",
    "concept_application_code",
    "external_reference",
    "invoice_amount",
    "value",
    "type",
    "rule_id",
    "status",
    "start_date",
    "end_date",
    "created_at",
    "updated_at",
]

_MUTABLE_COLUMNS = ["user_id", "status", "end_date", "updated_at"]


def _params(assignment: Assignment) -> dict[str, Any]:
    params = {column: getattr(assignment, column) for column in _COLUMNS}
    params["status"] = assignment.status.value
    params["id"] = assignment.id
    return params


def _from_row(row: dict[str, Any]) -> Assignment:
    data = dict(row)
    for column in ("invoice_amount", "value"):
        if isinstance(data.get(column), Decimal):
            data[column] = float(data[column])
    return Assignment(**data)


class PostgresAssignmentRepository(AssignmentRepository):
    """Assignments stored in the ``assignments`` table."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def get(self, assignment_id: int) -> Assignment | None:
        rows = self.pool.execute_query("SELECT * FROM assignments WHERE id = %s", (assignment_id,))
        return _from_row(rows[0]) if rows else None

    def get_by_natural_key(self, claim_id: str, document_number: str) -> Assignment | None:
        rows = self.pool.execute_query(
            "SELECT * FROM assignments WHERE claim_id = %s AND document_number = %s",
            (claim_id, document_number),
        )
        return _from_row(rows[0]) if rows else None

    def insert_if_absent(self, assignment: Assignment) -> tuple[Assignment, bool]:
        """
        Insert an assignment unless its natural key already exists.

        Args:
            assignment: Assignment to insert (id is ignored)

        Returns:
            (stored assignment, True if inserted by this call)
        """
        columns = ", ".join(_COLUMNS)
        values = ", ".join(f"%({column})s" for column in _COLUMNS)
        sql = f"""
            INSERT INTO assignments ({columns}, version)
            VALUES ({values}, 0)
            ON CONFLICT (claim_id, document_number) DO NOTHING
            RETURNING *
        """

        with translate_errors("insert_assignment"):
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, _params(assignment))
                    row = cur.fetchone()
                conn.commit()

        if row is not None:
            return _from_row(row), True

        existing = self.get_by_natural_key(assignment.claim_id, assignment.document_number)
        if existing is None:
            # Deleted between the conflict and the read
            raise ConflictError(
                f"Assignment for claim {assignment.claim_id} changed concurrently",
                details={"claim_id": assignment.claim_id, "document_number": assignment.document_number},
            )
        logger.debug(f"Natural key ({assignment.claim_id}, {assignment.document_number}) already assigned")
        return existing, False

    def update(self, assignment: Assignment, expected_version: int) -> Assignment:
        assignments = ", ".join(f"{column} = %({column})s" for column in _MUTABLE_COLUMNS)
        sql = f"""
            UPDATE assignments
            SET {assignments}, version = version + 1
            WHERE id = %(id)s AND version = %(expected_version)s
            RETURNING *
        """
        params = _params(assignment)
        params["expected_version"] = expected_version

        with translate_errors("update_assignment"):
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
                conn.commit()

        if row is not None:
            return _from_row(row)

        current = self.get(assignment.id)
        if current is None:
            raise NotFoundError(f"Assignment {assignment.id} not found", details={"assignment_id": assignment.id})
        raise ConflictError(
            f"Assignment {assignment.id} was modified concurrently",
            details={
                "assignment_id": assignment.id,
                "expected_version": expected_version,
                "current_version": current.version,
            },
        )

    def count_open_by_user(self, user_ids: list[int]) -> dict[int, int]:
        counts = {user_id: 0 for user_id in user_ids}
        if not user_ids:
            return counts
        rows = self.pool.execute_query(
            """
            SELECT user_id, COUNT(*) AS open_count
            FROM assignments
            WHERE user_id = ANY(%s) AND status = ANY(%s)
            GROUP BY user_id
            """,
            (list(user_ids), [status.value for status in OPEN_STATUSES]),
        )
        for row in rows:
            counts[row["user_id"]] = row["open_count"]
        return counts

"""
Dead-letter storage for claim messages that could not be processed.
"""

from typing import Any

from claim_routing.core.models import DeadLetterRecord
from claim_routing.core.ports import DeadLetterSink
from claim_routing.observability.logger import get_logger
from claim_routing.storage.connection import DatabaseConnectionPool, translate_errors

logger = get_logger(__name__)


class PostgresDeadLetterSink(DeadLetterSink):
    """
    Handles writing failed messages to the dead_letter table.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize dead-letter writer.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def store(self, record: DeadLetterRecord) -> DeadLetterRecord:
        """
        Insert a message into the dead-letter table.

        Args:
            record: DeadLetterRecord instance

        Returns:
            The record with its generated dead_letter_id
        """
        query = """
            INSERT INTO dead_letter (
                message_key, claim_id, raw_payload, error_type, error_message,
                attempts, dead_lettered_at, reviewed, reprocess_requested
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING dead_letter_id
        """

        with translate_errors("store_dead_letter"):
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        query,
                        (
                            record.message_key,
                            record.claim_id,
                            record.raw_payload,
                            record.error_type,
                            record.error_message,
                            record.attempts,
                            record.dead_lettered_at,
                            record.reviewed,
                            record.reprocess_requested,
                        ),
                    )
                    dead_letter_id = cur.fetchone()["dead_letter_id"]
                conn.commit()

        logger.info(f"Dead-lettered message {record.message_key} as {dead_letter_id}: {record.error_type}")
        return record.model_copy(update={"dead_letter_id": dead_letter_id})

    def get(self, dead_letter_id: int) -> DeadLetterRecord | None:
        rows = self.pool.execute_query(
            "SELECT * FROM dead_letter WHERE dead_letter_id = %s",
            (dead_letter_id,),
        )
        return DeadLetterRecord(**rows[0]) if rows else None

    def list_records(self, reviewed: bool | None = None, limit: int = 100) -> list[DeadLetterRecord]:
        if reviewed is None:
            rows = self.pool.execute_query(
                "SELECT * FROM dead_letter ORDER BY dead_letter_id DESC LIMIT %s",
                (limit,),
            )
        else:
            rows = self.pool.execute_query(
                "SELECT * FROM dead_letter WHERE reviewed = %s ORDER BY dead_letter_id DESC LIMIT %s",
                (reviewed, limit),
            )
        return [DeadLetterRecord(**row) for row in rows]

    def get_stats(self) -> dict[str, Any]:
        """
        Get dead-letter statistics.

        Returns:
            Dictionary with total, unreviewed and reprocess-pending counts
        """
        result = self.pool.execute_query(
            """
            SELECT
                COUNT(*) AS total_dead_lettered,
                COUNT(*) FILTER (WHERE reviewed = FALSE) AS unreviewed,
                COUNT(*) FILTER (WHERE reprocess_requested = TRUE) AS reprocess_pending
            FROM dead_letter
            """
        )
        return result[0] if result else {}

    def mark_reviewed(self, dead_letter_id: int) -> bool:
        return self.pool.execute_command(
            "UPDATE dead_letter SET reviewed = TRUE WHERE dead_letter_id = %s",
            (dead_letter_id,),
        ) > 0

    def request_reprocess(self, dead_letter_id: int) -> bool:
        return self.pool.execute_command(
            "UPDATE dead_letter SET reprocess_requested = TRUE WHERE dead_letter_id = %s",
            (dead_letter_id,),
        ) > 0

    def mark_reprocessed(self, dead_letter_id: int) -> bool:
        return self.pool.execute_command(
            """
            UPDATE dead_letter
            SET reprocessed_at = NOW(), reprocess_requested = FALSE, reviewed = TRUE
            WHERE dead_letter_id = %s
            """,
            (dead_letter_id,),
        ) > 0

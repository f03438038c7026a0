"""
PostgreSQL-backed rule store and user directory.
"""

from decimal import Decimal
from typing import Any

from claim_routing.core.exceptions import NotFoundError
from claim_routing.core.models import Company, Rule, User, normalize_nit
from claim_routing.core.ports import RuleStore, UserDirectory
from claim_routing.observability.logger import get_logger
from claim_routing.storage.connection import DatabaseConnectionPool, translate_errors

logger = get_logger(__name__)


def _as_float(value: Any) -> float | None:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _company_from_row(row: dict[str, Any]) -> Company:
    return Company(
        id=row["id"],
        name=row["name"],
        document_type=row["document_type"],
        document_number=row["document_number"],
        is_active=row["is_active"],
        archived_at=row["archived_at"],
    )


def _rule_from_row(row: dict[str, Any]) -> Rule:
    return Rule(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        company_id=row["company_id"],
        type=row["type"],
        minimum_amount=_as_float(row["minimum_amount"]),
        maximum_amount=_as_float(row["maximum_amount"]),
        nit_associated_company=row["nit_associated_company"],
        objection_code=row["objection_code"],
        is_active=row["is_active"],
        role_ids=[role_id for role_id in (row.get("role_ids") or []) if role_id is not None],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


_COMPANY_COLUMNS = "id, name, document_type, document_number, is_active, archived_at"

_RULE_SELECT = """
    SELECT r.*,
           ARRAY_AGG(rr.role_id ORDER BY rr.position, rr.role_id) AS role_ids
    FROM rules r
    LEFT JOIN rule_roles rr ON rr.rule_id = r.id
"""


class PostgresRuleStore(RuleStore):
    """
    Companies and rules stored in PostgreSQL.

    Every rule write bumps ``companies.rules_revision`` in the same
    transaction, which rule caches in any process compare against.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def get_company(self, company_id: int) -> Company | None:
        rows = self.pool.execute_query(
            f"SELECT {_COMPANY_COLUMNS} FROM companies WHERE id = %s",
            (company_id,),
        )
        return _company_from_row(rows[0]) if rows else None

    def find_company_by_nit(self, nit: str) -> Company | None:
        rows = self.pool.execute_query(
            f"SELECT {_COMPANY_COLUMNS} FROM companies WHERE document_number = %s",
            (nit,),
        )
        if rows:
            return _company_from_row(rows[0])

        normalized = normalize_nit(nit)
        rows = self.pool.execute_query(
            f"""
            SELECT {_COMPANY_COLUMNS} FROM companies
            WHERE UPPER(REGEXP_REPLACE(document_number, '[-[:space:]]', '', 'g')) = %s
            ORDER BY id
            LIMIT 1
            """,
            (normalized,),
        )
        return _company_from_row(rows[0]) if rows else None

    def list_rules(self, company_id: int) -> list[Rule]:
        rows = self.pool.execute_query(
            _RULE_SELECT + " WHERE r.company_id = %s GROUP BY r.id ORDER BY r.id",
            (company_id,),
        )
        return [_rule_from_row(row) for row in rows]

    def get_rule(self, rule_id: int) -> Rule | None:
        rows = self.pool.execute_query(
            _RULE_SELECT + " WHERE r.id = %s GROUP BY r.id",
            (rule_id,),
        )
        return _rule_from_row(rows[0]) if rows else None

    def rules_revision(self, company_id: int) -> int:
        rows = self.pool.execute_query(
            "SELECT rules_revision FROM companies WHERE id = %s",
            (company_id,),
        )
        return rows[0]["rules_revision"] if rows else 0

    def save_rule(self, rule: Rule) -> Rule:
        """
        Insert or update a rule and its role bindings.

        Raises:
            ValidationError: If the rule is malformed for its type
            NotFoundError: If the company or the rule (on update) does not exist
        """
        rule.ensure_valid()
        params = {
            "id": rule.id,
            "company_id": rule.company_id,
            "name": rule.name.strip(),
            "description": rule.description,
            "type": rule.type,
            "minimum_amount": rule.minimum_amount,
            "maximum_amount": rule.maximum_amount,
            "nit_associated_company": rule.nit_associated_company,
            "objection_code": rule.objection_code,
            "is_active": rule.is_active,
        }

        with translate_errors("save_rule"):
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "UPDATE companies SET rules_revision = rules_revision + 1 WHERE id = %s RETURNING id",
                        (rule.company_id,),
                    )
                    if cur.fetchone() is None:
                        conn.rollback()
                        raise NotFoundError(
                            f"Company {rule.company_id} not found",
                            details={"company_id": rule.company_id},
                        )

                    if rule.id is None:
                        cur.execute(
                            """
                            INSERT INTO rules (
                                company_id, name, description, type, minimum_amount,
                                maximum_amount, nit_associated_company, objection_code, is_active
                            ) VALUES (
                                %(company_id)s, %(name)s, %(description)s, %(type)s, %(minimum_amount)s,
                                %(maximum_amount)s, %(nit_associated_company)s, %(objection_code)s, %(is_active)s
                            ) RETURNING id
                            """,
                            params,
                        )
                    else:
                        cur.execute(
                            """
                            UPDATE rules SET
                                name = %(name)s,
                                description = %(description)s,
                                type = %(type)s,
                                minimum_amount = %(minimum_amount)s,
                                maximum_amount = %(maximum_amount)s,
                                nit_associated_company = %(nit_associated_company)s,
                                objection_code = %(objection_code)s,
                                is_active = %(is_active)s,
                                updated_at = NOW()
                            WHERE id = %(id)s AND company_id = %(company_id)s
                            RETURNING id
                            """,
                            params,
                        )
                    row = cur.fetchone()
                    if row is None:
                        conn.rollback()
                        raise NotFoundError(f"Rule {rule.id} not found", details={"rule_id": rule.id})
                    rule_id = row["id"]

                    cur.execute("DELETE FROM rule_roles WHERE rule_id = %s", (rule_id,))
                    for position, role_id in enumerate(dict.fromkeys(rule.role_ids)):
                        cur.execute(
                            "INSERT INTO rule_roles (rule_id, role_id, position) VALUES (%s, %s, %s)",
                            (rule_id, role_id, position),
                        )
                conn.commit()

        logger.info(f"Saved rule {rule_id} ({rule.type}) for company {rule.company_id}")
        return self.get_rule(rule_id)

    def set_rule_active(self, rule_id: int, is_active: bool) -> Rule:
        with translate_errors("set_rule_active"):
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "UPDATE rules SET is_active = %s, updated_at = NOW() WHERE id = %s RETURNING company_id",
                        (is_active, rule_id),
                    )
                    row = cur.fetchone()
                    if row is None:
                        conn.rollback()
                        raise NotFoundError(f"Rule {rule_id} not found", details={"rule_id": rule_id})
                    cur.execute(
                        "UPDATE companies SET rules_revision = rules_revision + 1 WHERE id = %s",
                        (row["company_id"],),
                    )
                conn.commit()

        logger.info(f"Rule {rule_id} is_active set to {is_active}")
        return self.get_rule(rule_id)


class PostgresUserDirectory(UserDirectory):
    """Users and role bindings stored in PostgreSQL."""

    _USER_SELECT = """
        SELECT u.id, u.name, u.dud, u.company_id, u.is_active, u.archived_at,
               ARRAY_AGG(ur.role_id ORDER BY ur.role_id) AS role_ids
        FROM users u
        LEFT JOIN user_roles ur ON ur.user_id = u.id
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    @staticmethod
    def _user_from_row(row: dict[str, Any]) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            dud=row["dud"],
            company_id=row["company_id"],
            is_active=row["is_active"],
            archived_at=row["archived_at"],
            role_ids=[role_id for role_id in (row["role_ids"] or []) if role_id is not None],
        )

    def users_with_roles(self, role_ids: list[int]) -> list[User]:
        if not role_ids:
            return []
        # Role activity is checked here; user activity is the resolver's concern
        rows = self.pool.execute_query(
            self._USER_SELECT
            + """
            WHERE u.id IN (
                SELECT ur2.user_id FROM user_roles ur2
                JOIN roles ro ON ro.id = ur2.role_id
                WHERE ur2.role_id = ANY(%s) AND ro.is_active AND ro.archived_at IS NULL
            )
            GROUP BY u.id
            ORDER BY u.id
            """,
            (list(role_ids),),
        )
        return [self._user_from_row(row) for row in rows]

    def get_user(self, user_id: int) -> User | None:
        rows = self.pool.execute_query(
            self._USER_SELECT + " WHERE u.id = %s GROUP BY u.id",
            (user_id,),
        )
        return self._user_from_row(rows[0]) if rows else None

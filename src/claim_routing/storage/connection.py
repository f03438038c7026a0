"""
PostgreSQL connection pooling on psycopg3.

Connection-level failures (server down, pool exhausted) surface as
TransientInfrastructureError so the consumer can redeliver the message;
every other database error propagates unchanged.
"""
import time
from contextlib import contextmanager

import psycopg
from psycopg import OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from claim_routing.core.exceptions import TransientInfrastructureError
from claim_routing.observability.logger import get_logger

logger = get_logger(__name__)


@contextmanager
def translate_errors(operation: str):
    """
    Map connection-level database failures onto the error taxonomy

    Args:
        operation: Description used in logs and the raised error

    Raises:
        TransientInfrastructureError: On OperationalError or pool timeout
        psycopg.DatabaseError: Other database errors, re-raised after logging
    """
    try:
        yield
    except (OperationalError, PoolTimeout) as e:
        logger.warning(f"Database unavailable during {operation}: {e}")
        raise TransientInfrastructureError(
            f"Database unavailable during {operation}",
            details={"operation": operation, "cause": str(e)},
        ) from e
    except psycopg.DatabaseError as e:
        logger.error(f"Database error during {operation}: {type(e).__name__}: {e}")
        raise


class DatabaseConnectionPool:
    """
    Shared psycopg pool handing out dict-row connections.

    Adapters borrow a connection per call through ``get_connection`` and
    commit explicitly; the two ``execute_*`` helpers cover single-statement
    reads and writes.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "claim_routing",
        user: str = "claim_routing",
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 30.0,
        conninfo: str | None = None,
    ) -> None:
        """
        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Database role
            password: Password, mandatory unless ``conninfo`` is given
            min_size: Connections kept open
            max_size: Upper bound of open connections
            timeout: Seconds to wait for a connection (also the connect timeout)
            conninfo: Complete libpq connection string, replaces the fields above
        """
        if conninfo is None:
            if not password:
                raise ValueError("DB_PASSWORD is required to connect to PostgreSQL")
            conninfo = make_conninfo(
                host=host,
                port=port,
                dbname=database,
                user=user,
                password=password,
                connect_timeout=int(timeout),
            )

        self.conninfo = conninfo
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self._pool: ConnectionPool | None = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def _new_pool(self) -> ConnectionPool:
        return ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, retrying while the server is unreachable.

        Args:
            max_retries: Connection attempts before giving up
            retry_delay: Seconds between attempts

        Raises:
            TransientInfrastructureError: If every attempt failed
        """
        if self._pool is not None:
            return

        last_error: Exception | None = None
        for attempt in range(1, max(1, max_retries) + 1):
            if attempt > 1:
                time.sleep(retry_delay)
            pool = self._new_pool()
            try:
                pool.open(wait=True, timeout=self.timeout)
            except (OperationalError, PoolTimeout) as e:
                pool.close()
                last_error = e
                logger.warning(f"PostgreSQL not reachable (attempt {attempt}/{max_retries}): {e}")
                continue
            self._pool = pool
            logger.info(f"PostgreSQL pool ready after {attempt} attempt(s) (size {self.min_size}-{self.max_size})")
            return

        raise TransientInfrastructureError(
            f"PostgreSQL unreachable after {max_retries} attempts",
            details={"cause": str(last_error)},
        ) from last_error

    def close(self) -> None:
        """Release every pooled connection."""
        pool, self._pool = self._pool, None
        if pool is not None:
            pool.close()

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection; it goes back to the pool on exit.

        Raises:
            RuntimeError: If ``open`` has not been called
        """
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool is closed; call open() first")

        with self._pool.connection() as conn:
            yield conn

    def execute_query(self, query: str, params: tuple | dict | None = None) -> list[dict]:
        """Run a read statement and return its rows as dictionaries."""
        with translate_errors("query"):
            with self.get_connection() as conn, conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def execute_command(self, command: str, params: tuple | dict | None = None) -> int:
        """Run and commit a write statement; returns the affected row count."""
        with translate_errors("command"):
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(command, params)
                    affected = cur.rowcount
                conn.commit()
        return affected

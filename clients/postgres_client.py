"""
PostgreSQL client with connection pooling and RLS org isolation.

Uses psycopg2 with ThreadedConnectionPool. Tenant isolation enforced via
PostgreSQL Row Level Security - automatically reads the org ID from the
contextvar and sets app.current_org_id on each connection. Services also
filter on org_id explicitly; RLS is the backstop, not the only guard.

Security: No org context = see nothing (RLS blocks all rows). This is safe.
Connection failures surface as StorageError so callers can decide whether
the operation is safe to retry.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from core.exceptions import StorageError
from utils.org_context import _current_org_id

logger = logging.getLogger(__name__)

# Global JSONB and UUID adapter registration flag
_jsonb_registered = False

_CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID objects to strings."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, tuple):
            return tuple(convert(v) for v in value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(params)


class Transaction:
    """
    Queries bound to one connection inside an open transaction.

    Obtained from PostgresClient.transaction(). Row locks taken with
    SELECT ... FOR UPDATE are held until the transaction commits or rolls back.
    """

    def __init__(self, conn):
        self._conn = conn

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, _convert_params(params))
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        with self._conn.cursor() as cur:
            cur.execute(query, _convert_params(params))
            result = cur.fetchone()
            return result[0] if result else None


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Org context is read from utils.org_context contextvar on each checkout.
    - Org context set → sees only that org's data (RLS filtered)
    - No org context → sees nothing (RLS blocks all rows)

    Usage:
        db = PostgresClient(database_url)

        # Single statement, autocommitted
        with org_context(org_id):
            invoices = db.execute("SELECT * FROM invoices WHERE org_id = %s", (org_id,))

        # Several statements that must commit or fail together
        with org_context(org_id):
            with db.transaction() as tx:
                tx.execute("SELECT * FROM invoices WHERE id = %s FOR UPDATE", (invoice_id,))
                tx.execute("INSERT INTO payments ...", (...))
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, statement_timeout_ms: int = 5000):
        self._database_url = database_url
        self._statement_timeout_ms = statement_timeout_ms
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                try:
                    pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=2,
                        maxconn=20,
                        dsn=self._database_url,
                        connect_timeout=30,
                    )
                except _CONNECTION_ERRORS as e:
                    raise StorageError(f"Could not connect to database: {e}") from e

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    psycopg2.extras.register_uuid()
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Get connection with RLS context from contextvar."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            try:
                conn = pool.getconn()
            except (psycopg2.pool.PoolError, *_CONNECTION_ERRORS) as e:
                raise StorageError(f"Could not get connection from pool: {e}") from e

            org_id = _current_org_id.get()

            with conn.cursor() as cur:
                if org_id is not None:
                    cur.execute("SET app.current_org_id = %s", (str(org_id),))
                else:
                    # Empty string maps to NULL in the RLS policies = no rows
                    cur.execute("SET app.current_org_id = ''")
                cur.execute("SET statement_timeout = %s", (self._statement_timeout_ms,))
            conn.commit()

            yield conn

        except _CONNECTION_ERRORS as e:
            logger.error(f"Database connection failure: {e}")
            raise StorageError(f"Database unavailable: {e}") from e

        finally:
            if conn:
                if not conn.closed:
                    conn.rollback()
                pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        Open a transaction. Commits on clean exit, rolls back on any exception.

        Everything done through the yielded Transaction shares one connection,
        so row locks and counter increments are released or persisted together.
        """
        with self.get_connection() as conn:
            try:
                yield Transaction(conn)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        with self.transaction() as tx:
            return tx.execute_scalar(query, params)

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()

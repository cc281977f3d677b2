"""
This module implements the document store used by the API handlers.

Users and companies live in PostgreSQL. Company data blobs and embedded
questionnaire answers are JSONB documents without a schema on their values.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from models.config_models import AppConfig
from models.main_models import CompanyRecord, QuestionnaireAnswers, UserRecord

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    CREATE TABLE IF NOT EXISTS companies (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_by TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        questionnaire JSONB
    );
    CREATE INDEX IF NOT EXISTS idx_companies_created_by ON companies (created_by);
"""

USER_COLUMNS = "id, username, password_hash, role, created_at, updated_at"
COMPANY_COLUMNS = "id, name, data, created_by, created_at, questionnaire"


def new_id() -> str:
    return str(uuid.uuid4())


def _company(row: Optional[Dict[str, Any]]) -> Optional[CompanyRecord]:
    if row is None:
        return None
    row = dict(row)
    if row.get("questionnaire") is not None:
        row["questionnaire"] = QuestionnaireAnswers.model_validate(row["questionnaire"])
    return CompanyRecord.model_validate(row)


def _user(row: Optional[Dict[str, Any]]) -> Optional[UserRecord]:
    return UserRecord.model_validate(dict(row)) if row is not None else None


class PostgresStore:
    """
    Store backed by a lazily created psycopg2 connection pool.

    One instance is shared by all handlers of a process; the pool and the
    schema are set up on first use.
    """

    def __init__(self, config: AppConfig):
        self._config = config
        self._pool: Optional[ThreadedConnectionPool] = None
        self._lock = threading.Lock()
        # ThreadedConnectionPool raises instead of blocking when exhausted
        self._slots = threading.BoundedSemaphore(config.pool_max)

    def _get_pool(self) -> ThreadedConnectionPool:
        with self._lock:
            if self._pool is None:
                if not self._config.database_url:
                    raise RuntimeError(
                        "Database is not configured: set DATABASE_URL or POSTGRES_* variables"
                    )
                logger.info("Opening database connection pool")
                pool = ThreadedConnectionPool(
                    self._config.pool_min,
                    self._config.pool_max,
                    self._config.database_url,
                )
                try:
                    self._create_schema(pool)
                except Exception:
                    pool.closeall()
                    raise
                self._pool = pool
            return self._pool

    @staticmethod
    def _create_schema(pool: ThreadedConnectionPool) -> None:
        conn = pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        except Exception:
            logger.error("Schema setup failed; it will be retried on next use")
            raise
        finally:
            pool.putconn(conn, close=True)

    @staticmethod
    def _rollback(conn) -> bool:
        """Rolls back; returns False when the connection is unusable."""
        if conn.closed:
            return False
        try:
            conn.rollback()
        except psycopg2.Error as exc:
            logger.warning("Rollback failed, discarding connection: %s", exc)
            return False
        return True

    @contextmanager
    def get_db(self):
        """
        Context manager yielding a pooled connection inside a transaction.

        Waits for a free connection when all of them are checked out.
        """
        pool = self._get_pool()
        with self._slots:
            conn = pool.getconn()
            usable = True
            try:
                yield conn
                conn.commit()
            except Exception:
                usable = self._rollback(conn)
                raise
            finally:
                pool.putconn(conn, close=not usable or bool(conn.closed))

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        with self.get_db() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self.get_db() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def _execute(self, sql: str, params: tuple = ()) -> int:
        with self.get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount

    def create_schema(self) -> None:
        self._get_pool()

    def close(self) -> None:
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None

    # =====================
    # Users
    # =====================

    def find_user_by_username(self, username: str) -> Optional[UserRecord]:
        return _user(self._fetchone(
            f"SELECT {USER_COLUMNS} FROM users WHERE username = %s", (username,)
        ))

    def find_user(self, user_id: str) -> Optional[UserRecord]:
        return _user(self._fetchone(
            f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user_id,)
        ))

    def list_users(self) -> List[UserRecord]:
        rows = self._fetchall(f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at")
        return [_user(row) for row in rows]

    def insert_user(self, username: str, password_hash: str, role: str) -> UserRecord:
        return _user(self._fetchone(
            f"INSERT INTO users (id, username, password_hash, role) "
            f"VALUES (%s, %s, %s, %s) RETURNING {USER_COLUMNS}",
            (new_id(), username, password_hash, role),
        ))

    def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[UserRecord]:
        """
        Updates the given columns (username, password_hash, role) of a user.
        """
        allowed = {k: v for k, v in fields.items() if k in ("username", "password_hash", "role")}
        if not allowed:
            return self.find_user(user_id)
        assignments = ", ".join(f"{column} = %s" for column in allowed)
        return _user(self._fetchone(
            f"UPDATE users SET {assignments}, updated_at = NOW() "
            f"WHERE id = %s RETURNING {USER_COLUMNS}",
            (*allowed.values(), user_id),
        ))

    def delete_user(self, user_id: str) -> bool:
        return self._execute("DELETE FROM users WHERE id = %s", (user_id,)) > 0

    # =====================
    # Companies
    # =====================

    def list_companies(self, created_by: Optional[str] = None) -> List[CompanyRecord]:
        if created_by is None:
            rows = self._fetchall(
                f"SELECT {COMPANY_COLUMNS} FROM companies ORDER BY created_at DESC"
            )
        else:
            rows = self._fetchall(
                f"SELECT {COMPANY_COLUMNS} FROM companies WHERE created_by = %s "
                f"ORDER BY created_at DESC",
                (created_by,),
            )
        return [_company(row) for row in rows]

    def insert_company(self, name: str, created_by: str,
                       data: Optional[Dict[str, Any]] = None) -> CompanyRecord:
        return _company(self._fetchone(
            f"INSERT INTO companies (id, name, data, created_by) "
            f"VALUES (%s, %s, %s, %s) RETURNING {COMPANY_COLUMNS}",
            (new_id(), name, Json(data or {}), created_by),
        ))

    def find_company(self, company_id: str) -> Optional[CompanyRecord]:
        return _company(self._fetchone(
            f"SELECT {COMPANY_COLUMNS} FROM companies WHERE id = %s", (company_id,)
        ))

    def rename_company(self, company_id: str, name: str) -> Optional[CompanyRecord]:
        return _company(self._fetchone(
            f"UPDATE companies SET name = %s WHERE id = %s RETURNING {COMPANY_COLUMNS}",
            (name, company_id),
        ))

    def save_company_data(self, company_id: str, data: Dict[str, Any]) -> bool:
        return self._execute(
            "UPDATE companies SET data = %s WHERE id = %s", (Json(data), company_id)
        ) > 0

    def save_questionnaire(self, company_id: str, answers: Dict[str, Any]) -> bool:
        # Whole-map replacement; concurrent saves are last-write-wins.
        return self._execute(
            "UPDATE companies SET questionnaire = %s WHERE id = %s",
            (Json({"answers": answers}), company_id),
        ) > 0

    def delete_company(self, company_id: str) -> bool:
        return self._execute("DELETE FROM companies WHERE id = %s", (company_id,)) > 0

    def delete_all_companies(self) -> int:
        return self._execute("DELETE FROM companies")

import datetime
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Optional, Dict, Any, Iterator

from expensebot.errors import StoreError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def format_timestamp(moment: datetime.datetime) -> str:
    """Render a timestamp as a sortable UTC string for storage."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime.datetime:
    return datetime.datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=datetime.timezone.utc)


class Database:
    def __init__(self, db_file: str, busy_timeout: float = 5.0):
        """Remember the database location and create tables."""
        self.db_file = os.path.abspath(db_file)
        self.busy_timeout = busy_timeout
        os.makedirs(os.path.dirname(self.db_file), exist_ok=True)
        logger.info("Using database file %s", self.db_file)
        self._create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Establish and return a new autocommit connection.

        Every operation opens its own connection so calls can run in worker
        threads; explicit transactions are started with BEGIN IMMEDIATE.
        """
        conn = sqlite3.connect(self.db_file, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row  # For accessing rows as dictionaries
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection for single-statement work; errors become StoreError."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open database: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection holding the write lock; commit on success, roll back on error."""
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _create_tables(self) -> None:
        """Create database tables (users, expenses, pending_expenses) if they don't exist."""
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                telegram_user_id TEXT PRIMARY KEY,
                custom_categories TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL
            )
            """)

            # Committed expenses; category is the label text at commit time
            conn.execute("""
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                telegram_user_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                description TEXT NOT NULL,
                category TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (telegram_user_id) REFERENCES users (telegram_user_id)
            )
            """)
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_expenses_user_created
            ON expenses (telegram_user_id, created_at)
            """)

            # At most one pending expense per user
            conn.execute("""
            CREATE TABLE IF NOT EXISTS pending_expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                telegram_user_id TEXT NOT NULL UNIQUE,
                amount TEXT NOT NULL,
                description TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """)
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_pending_created
            ON pending_expenses (created_at)
            """)

    # --- User Management ---
    @staticmethod
    def ensure_user(conn: sqlite3.Connection, user_id: str, now: Optional[datetime.datetime] = None) -> None:
        """Insert the user row on first contact; existing rows are left alone."""
        conn.execute(
            """
            INSERT INTO users (telegram_user_id, created_at)
            VALUES (?, ?)
            ON CONFLICT(telegram_user_id) DO NOTHING
            """,
            (user_id, format_timestamp(now or utc_now())),
        )

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve user data by Telegram user ID."""
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE telegram_user_id = ?", (user_id,)).fetchone()
        if row:
            return dict(row)
        return None

    def add_user(self, user_id: str) -> None:
        """Register the user on first contact (no-op for known users)."""
        with self.connection() as conn:
            self.ensure_user(conn, user_id)

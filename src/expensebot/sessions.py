"""Pending (not yet categorised) expenses, at most one per user."""
import datetime
import logging
import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from expensebot.database import Database, format_timestamp, parse_timestamp, utc_now
from expensebot.errors import SessionExpired
from expensebot.ledger import CommittedExpense, Ledger

logger = logging.getLogger(__name__)

PENDING_TTL = datetime.timedelta(hours=1)


@dataclass(frozen=True)
class PendingExpense:
    id: int
    user_id: str
    amount: Decimal
    description: str
    created_at: datetime.datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PendingExpense":
        return cls(
            id=row["id"],
            user_id=row["telegram_user_id"],
            amount=Decimal(row["amount"]),
            description=row["description"],
            created_at=parse_timestamp(row["created_at"]),
        )


class SessionStore:
    def __init__(self, db: Database, clock: Callable[[], datetime.datetime] = utc_now):
        self.db = db
        self.clock = clock

    def put_pending(self, user_id: str, amount: Decimal, description: str) -> PendingExpense:
        """Store a pending expense, replacing any previous one for the user.

        The replacement row gets a new id, so a commit that read the old row
        can never clear the new one.
        """
        now = self.clock()
        with self.db.transaction() as conn:
            Database.ensure_user(conn, user_id, now)
            conn.execute("DELETE FROM pending_expenses WHERE telegram_user_id = ?", (user_id,))
            cursor = conn.execute(
                """
                INSERT INTO pending_expenses (telegram_user_id, amount, description, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, str(amount), description, format_timestamp(now)),
            )
            pending_id = cursor.lastrowid
        logger.debug("Stored pending expense %s for user %s", pending_id, user_id)
        return PendingExpense(id=pending_id, user_id=user_id, amount=amount,
                              description=description, created_at=now)

    def get_pending(self, user_id: str) -> Optional[PendingExpense]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM pending_expenses WHERE telegram_user_id = ?", (user_id,)
            ).fetchone()
        if row:
            return PendingExpense.from_row(row)
        return None

    def clear_pending(self, user_id: str) -> bool:
        """Delete the user's pending expense; return whether one existed."""
        with self.db.connection() as conn:
            cursor = conn.execute("DELETE FROM pending_expenses WHERE telegram_user_id = ?", (user_id,))
        return cursor.rowcount > 0

    def sweep_stale(self, older_than: datetime.timedelta = PENDING_TTL) -> int:
        """Delete pending expenses of every user created before now - older_than."""
        cutoff = self.clock() - older_than
        with self.db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_expenses WHERE created_at < ?", (format_timestamp(cutoff),)
            )
        if cursor.rowcount:
            logger.info("Swept %d stale pending expense(s)", cursor.rowcount)
        return cursor.rowcount

    def commit_pending(self, user_id: str, category: str) -> CommittedExpense:
        """Turn the user's pending expense into a ledger entry.

        Reading the pending row, clearing it and appending the expense happen
        in one write transaction: concurrent callers for the same row see
        SessionExpired, and a failed append leaves the pending row in place.
        """
        now = self.clock()
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM pending_expenses WHERE telegram_user_id = ?", (user_id,)
            ).fetchone()
            if row is None:
                raise SessionExpired(user_id)
            pending = PendingExpense.from_row(row)

            cursor = conn.execute(
                "DELETE FROM pending_expenses WHERE id = ? AND telegram_user_id = ?",
                (pending.id, user_id),
            )
            if cursor.rowcount != 1:
                raise SessionExpired(user_id)

            Database.ensure_user(conn, user_id, now)
            expense = Ledger.insert(conn, user_id, pending.amount, pending.description, category, now)

        logger.info("Committed expense %s for user %s in %r", expense.id, user_id, category)
        return expense

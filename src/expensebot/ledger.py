import datetime
import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from expensebot.database import Database, format_timestamp, parse_timestamp


@dataclass(frozen=True)
class CommittedExpense:
    id: int
    user_id: str
    amount: Decimal
    description: str
    category: str
    created_at: datetime.datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CommittedExpense":
        return cls(
            id=row["id"],
            user_id=row["telegram_user_id"],
            amount=Decimal(row["amount"]),
            description=row["description"],
            category=row["category"],
            created_at=parse_timestamp(row["created_at"]),
        )


class Ledger:
    """Append-only store of committed expenses."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def insert(conn: sqlite3.Connection, user_id: str, amount: Decimal, description: str,
               category: str, created_at: datetime.datetime) -> CommittedExpense:
        """Insert an expense row using the caller's connection (and transaction)."""
        cursor = conn.execute(
            """
            INSERT INTO expenses (telegram_user_id, amount, description, category, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, str(amount), description, category, format_timestamp(created_at)),
        )
        return CommittedExpense(
            id=cursor.lastrowid,
            user_id=user_id,
            amount=amount,
            description=description,
            category=category,
            created_at=created_at,
        )

    # --- Reads used by reports ---
    def recent(self, user_id: str, limit: int = 20) -> List[CommittedExpense]:
        """Most recent expenses first."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM expenses
                WHERE telegram_user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [CommittedExpense.from_row(row) for row in rows]

    def since(self, user_id: str, start: Optional[datetime.datetime] = None) -> List[CommittedExpense]:
        """Expenses created at or after ``start`` (all of them when None), oldest first."""
        query = "SELECT * FROM expenses WHERE telegram_user_id = ?"
        params = [user_id]
        if start is not None:
            query += " AND created_at >= ?"
            params.append(format_timestamp(start))
        query += " ORDER BY created_at, id"

        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [CommittedExpense.from_row(row) for row in rows]

import json
import logging
import sqlite3
from typing import List, Optional

from expensebot.database import Database
from expensebot.errors import CategoryIndexError, DuplicateCategoryError, EmptyCategoryError

logger = logging.getLogger(__name__)

# Canonical order; selection tokens index into DEFAULT_CATEGORIES + custom ones
DEFAULT_CATEGORIES = (
    "🍔 Food",
    "🚗 Transport",
    "🏠 Housing",
    "🎬 Entertainment",
    "🛒 Shopping",
    "💊 Healthcare",
    "📚 Education",
    "💼 Work",
    "✈️ Travel",
    "📱 Bills",
    "🎁 Gifts",
    "💰 Other",
)


class CategoryRegistry:
    """Default categories plus each user's own additions.

    Nothing is cached: every call reads the user's current custom list, so a
    token is always resolved against the list as it is right now.
    """

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _load_custom(conn: sqlite3.Connection, user_id: str) -> List[str]:
        row = conn.execute(
            "SELECT custom_categories FROM users WHERE telegram_user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return []
        return list(json.loads(row["custom_categories"]))

    @staticmethod
    def _save_custom(conn: sqlite3.Connection, user_id: str, custom: List[str]) -> None:
        conn.execute(
            "UPDATE users SET custom_categories = ? WHERE telegram_user_id = ?",
            (json.dumps(custom, ensure_ascii=False), user_id),
        )

    def custom_categories(self, user_id: str) -> List[str]:
        with self.db.connection() as conn:
            return self._load_custom(conn, user_id)

    def effective_categories(self, user_id: str) -> List[str]:
        return list(DEFAULT_CATEGORIES) + self.custom_categories(user_id)

    def resolve(self, user_id: str, index: int) -> Optional[str]:
        """Map a selection token to its label in the current list, if it still exists."""
        categories = self.effective_categories(user_id)
        if 0 <= index < len(categories):
            return categories[index]
        return None

    def add_category(self, user_id: str, label: str) -> str:
        """Append a custom category and return the stored (trimmed) label."""
        label = label.strip()
        if not label:
            raise EmptyCategoryError("category label is empty")

        with self.db.transaction() as conn:
            Database.ensure_user(conn, user_id)
            custom = self._load_custom(conn, user_id)
            if label in DEFAULT_CATEGORIES or label in custom:
                raise DuplicateCategoryError(label)
            custom.append(label)
            self._save_custom(conn, user_id, custom)

        logger.info("User %s added category %r", user_id, label)
        return label

    def remove_category(self, user_id: str, custom_index: int) -> str:
        """Remove the custom category at ``custom_index`` and return its label."""
        with self.db.transaction() as conn:
            Database.ensure_user(conn, user_id)
            custom = self._load_custom(conn, user_id)
            if not 0 <= custom_index < len(custom):
                raise CategoryIndexError(custom_index)
            label = custom.pop(custom_index)
            self._save_custom(conn, user_id, custom)

        logger.info("User %s removed category %r", user_id, label)
        return label

# src/expensebot/keyboards.py
from typing import List, Optional

from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

CATEGORY_PREFIX = "cat_"
REMOVE_PREFIX = "remove_"
CANCEL_REMOVE = "cancel_remove"


def parse_token(data: Optional[str], prefix: str) -> Optional[int]:
    """Return the index from a ``<prefix><index>`` callback payload, or None."""
    if not data or not data.startswith(prefix):
        return None
    suffix = data[len(prefix):]
    if not suffix.isascii() or not suffix.isdigit():
        return None
    return int(suffix)


def get_category_selection_keyboard(categories: List[str]) -> InlineKeyboardMarkup:
    """Create keyboard for category selection, two buttons per row."""
    builder = InlineKeyboardBuilder()

    for index, category in enumerate(categories):
        builder.button(
            text=category,
            callback_data=f"{CATEGORY_PREFIX}{index}"  # Index into the list as rendered now
        )
    builder.adjust(2)

    return builder.as_markup()


def get_remove_category_keyboard(custom_categories: List[str]) -> InlineKeyboardMarkup:
    """Create keyboard listing custom categories for removal, plus a cancel button."""
    builder = InlineKeyboardBuilder()

    for index, category in enumerate(custom_categories):
        builder.button(
            text=category,
            callback_data=f"{REMOVE_PREFIX}{index}"
        )

    builder.button(
        text="❌ Cancel",
        callback_data=CANCEL_REMOVE
    )
    builder.adjust(1)  # One category per row, cancel in its own row

    return builder.as_markup()

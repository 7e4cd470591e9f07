# src/expensebot/config.py
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_FILE_PATH = "data/expenses.db"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class Settings:
    bot_token: Optional[str]
    database_file_path: str
    log_level: str


def load_settings() -> Settings:
    """Read settings from the environment (and .env, if present)."""
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        raise SystemExit(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    return Settings(
        bot_token=os.getenv("BOT_TOKEN"),
        database_file_path=os.getenv("DATABASE_FILE_PATH", DEFAULT_DATABASE_FILE_PATH),
        log_level=log_level,
    )

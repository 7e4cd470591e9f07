import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from expensebot import config, handlers
from expensebot.categories import CategoryRegistry
from expensebot.database import Database
from expensebot.flow import ExpenseFlow
from expensebot.ledger import Ledger
from expensebot.sessions import SessionStore

logger = logging.getLogger(__name__)


def build_flow(database_file_path: str) -> ExpenseFlow:
    """Wire the stores and the conversation flow around one database."""
    db = Database(database_file_path)
    return ExpenseFlow(db, CategoryRegistry(db), SessionStore(db), Ledger(db))


def build_dispatcher(flow: ExpenseFlow) -> Dispatcher:
    dp = Dispatcher()
    dp.include_router(handlers.build_router(flow))
    dp.errors.register(handlers.on_error)
    return dp


async def main():
    """Main function to set up and run the bot."""
    settings = config.load_settings()
    logging.basicConfig(level=settings.log_level)

    if not settings.bot_token:
        raise SystemExit("BOT_TOKEN is not set")

    bot = Bot(settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    flow = build_flow(settings.database_file_path)
    dp = build_dispatcher(flow)

    # ------------------ Polling --------------------------
    logger.info("Starting Expense Bot")
    try:
        await dp.start_polling(bot)
    finally:
        await flow.wait_background()
        await bot.session.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

"""The conversation: free text -> pending expense -> category picker -> ledger.

A user's state is never kept in memory. It is read from the session store:
a pending expense row means the user is awaiting a category, no row means
idle. Every store call runs in a worker thread, so many updates can be in
flight at once; the store's commit is what keeps a pending expense from being
saved twice.
"""
import asyncio
import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Set

from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.text_decorations import html_decoration

from expensebot import keyboards, reports
from expensebot.categories import CategoryRegistry
from expensebot.database import Database, utc_now
from expensebot.errors import CategoryIndexError, DuplicateCategoryError, SessionExpired, StoreError
from expensebot.ledger import Ledger
from expensebot.parser import parse_expense_input
from expensebot.sessions import PENDING_TTL, PendingExpense, SessionStore
from expensebot.states import ExpenseState, state_from_pending

logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "Welcome to Expense Tracker! 💰\n\n"
    "Just type your expense like:\n"
    "• 50 lunch\n"
    "• 12.50 coffee\n"
    "• 100 groceries\n\n"
    "Commands:\n"
    "/expenses - View recent expenses\n"
    "/day - Today's summary\n"
    "/month - Monthly summary\n"
    "/categories - View expenses by category\n"
    "/add - Add a custom category\n"
    "/remove - Remove a custom category"
)
USAGE_HINT = (
    "❌ I didn't understand that.\n\n"
    "Please use format: &lt;amount&gt; &lt;description&gt;\n"
    "Example: 50 lunch"
)
ADD_USAGE = (
    "To add a custom category, use:\n\n"
    "/add &lt;emoji&gt; &lt;name&gt;\n\n"
    "Example: /add 🎮 Gaming"
)
SESSION_EXPIRED = "Session expired. Please try again."
CATEGORY_GONE = "This category is no longer available."
SAVE_FAILED = "❌ Failed to save expense. Please try again."
CATEGORY_EXISTS = "❌ This category already exists!"
ADD_FAILED = "❌ Failed to add category. Please try again."
NO_CUSTOM_CATEGORIES = "You don't have any custom categories to remove."
INVALID_CATEGORY = "Invalid category."
REMOVE_FAILED = "❌ Failed to remove category."
CANCELLED = "❌ Cancelled."
REPORT_FAILED = "❌ Failed to load expenses. Please try again."


@dataclass(frozen=True)
class Reply:
    """What to send back for one inbound update.

    ``edit`` asks for the message carrying the pressed button to be edited
    in place; ``notice`` is the short callback answer shown as a toast.
    """
    text: Optional[str] = None
    reply_markup: Optional[InlineKeyboardMarkup] = None
    edit: bool = False
    notice: Optional[str] = None


def category_prompt(amount: Decimal, description: str) -> str:
    return (
        f"💵 <b>{reports.format_amount(amount)}</b> - {html_decoration.quote(description)}\n\n"
        "Select a category:"
    )


class ExpenseFlow:
    def __init__(self, db: Database, registry: CategoryRegistry, sessions: SessionStore, ledger: Ledger,
                 clock: Callable[[], datetime.datetime] = utc_now,
                 pending_ttl: datetime.timedelta = PENDING_TTL):
        self.db = db
        self.registry = registry
        self.sessions = sessions
        self.ledger = ledger
        self.clock = clock
        self.pending_ttl = pending_ttl
        self._background: Set[asyncio.Task] = set()

    async def state_of(self, user_id: str) -> ExpenseState:
        pending = await asyncio.to_thread(self.sessions.get_pending, user_id)
        return state_from_pending(pending)

    async def start(self, user_id: str) -> Reply:
        try:
            await asyncio.to_thread(self.db.add_user, user_id)
        except StoreError:
            # The greeting doesn't depend on the user row; it is created again on next write
            logger.exception("Could not register user %s", user_id)
        return Reply(WELCOME_TEXT)

    # --- Idle -> AwaitingCategory ---
    async def handle_text(self, user_id: str, text: str) -> Reply:
        parsed = parse_expense_input(text)
        if parsed is None:
            return Reply(USAGE_HINT)

        try:
            # Categories first: a failed read must not leave a new pending row behind
            categories = await asyncio.to_thread(self.registry.effective_categories, user_id)
            pending = await asyncio.to_thread(
                self.sessions.put_pending, user_id, parsed.amount, parsed.description
            )
        except StoreError:
            logger.exception("Failed to store pending expense for user %s", user_id)
            return Reply(SAVE_FAILED)

        return Reply(
            category_prompt(pending.amount, pending.description),
            reply_markup=keyboards.get_category_selection_keyboard(categories),
        )

    # --- AwaitingCategory -> Idle ---
    async def select_category(self, user_id: str, index: int) -> Reply:
        try:
            category = await asyncio.to_thread(self.registry.resolve, user_id, index)
            if category is None:
                return await self._reprompt(user_id)
            expense = await asyncio.to_thread(self.sessions.commit_pending, user_id, category)
        except SessionExpired:
            return Reply(notice=SESSION_EXPIRED)
        except StoreError:
            logger.exception("Failed to commit expense for user %s", user_id)
            return Reply(SAVE_FAILED, edit=True)

        self._schedule_sweep()
        return Reply(
            "✅ Expense saved!\n\n"
            f"💵 {reports.format_amount(expense.amount)}\n"
            f"📝 {html_decoration.quote(expense.description)}\n"
            f"📁 {html_decoration.quote(expense.category)}",
            edit=True,
        )

    async def _reprompt(self, user_id: str) -> Reply:
        """The token points past the current list: show a fresh picker if still pending."""
        pending: Optional[PendingExpense] = await asyncio.to_thread(self.sessions.get_pending, user_id)
        if pending is None:
            return Reply(notice=SESSION_EXPIRED)
        categories = await asyncio.to_thread(self.registry.effective_categories, user_id)
        return Reply(
            category_prompt(pending.amount, pending.description),
            reply_markup=keyboards.get_category_selection_keyboard(categories),
            edit=True,
            notice=CATEGORY_GONE,
        )

    def _schedule_sweep(self) -> None:
        task = asyncio.create_task(self._sweep_stale())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _sweep_stale(self) -> None:
        try:
            await asyncio.to_thread(self.sessions.sweep_stale, self.pending_ttl)
        except Exception:
            logger.exception("Sweeping stale pending expenses failed")

    async def wait_background(self) -> None:
        """Wait for outstanding background sweeps."""
        if self._background:
            await asyncio.gather(*list(self._background))

    # --- Custom categories ---
    async def add_category(self, user_id: str, args: Optional[str]) -> Reply:
        if not args or not args.strip():
            return Reply(ADD_USAGE)

        try:
            label = await asyncio.to_thread(self.registry.add_category, user_id, args)
        except DuplicateCategoryError:
            return Reply(CATEGORY_EXISTS)
        except StoreError:
            logger.exception("Failed to add category for user %s", user_id)
            return Reply(ADD_FAILED)

        return Reply(f"✅ Category \"{html_decoration.quote(label)}\" added successfully!")

    async def prompt_remove(self, user_id: str) -> Reply:
        try:
            custom = await asyncio.to_thread(self.registry.custom_categories, user_id)
        except StoreError:
            logger.exception("Failed to load categories for user %s", user_id)
            return Reply(REMOVE_FAILED)

        if not custom:
            return Reply(NO_CUSTOM_CATEGORIES)
        return Reply(
            "Select a category to remove:",
            reply_markup=keyboards.get_remove_category_keyboard(custom),
        )

    async def remove_category(self, user_id: str, index: int) -> Reply:
        try:
            label = await asyncio.to_thread(self.registry.remove_category, user_id, index)
        except CategoryIndexError:
            return Reply(notice=INVALID_CATEGORY)
        except StoreError:
            logger.exception("Failed to remove category for user %s", user_id)
            return Reply(REMOVE_FAILED, edit=True)

        return Reply(f"✅ Category \"{html_decoration.quote(label)}\" removed successfully!", edit=True)

    async def cancel_remove(self) -> Reply:
        return Reply(CANCELLED, edit=True)

    # --- Reports ---
    async def _report(self, build, *args) -> Reply:
        try:
            text = await asyncio.to_thread(build, self.ledger, *args)
        except StoreError:
            logger.exception("Failed to build report %s", build.__name__)
            return Reply(REPORT_FAILED)
        return Reply(text)

    async def recent_expenses(self, user_id: str) -> Reply:
        return await self._report(reports.recent_expenses_report, user_id)

    async def day_summary(self, user_id: str) -> Reply:
        return await self._report(reports.day_report, user_id, self.clock())

    async def month_summary(self, user_id: str) -> Reply:
        return await self._report(reports.month_report, user_id, self.clock())

    async def category_summary(self, user_id: str) -> Reply:
        return await self._report(reports.categories_report, user_id)

"""Text summaries of committed expenses for the reporting commands."""
import datetime
from decimal import Decimal
from typing import Dict, List, Tuple

from aiogram.utils.text_decorations import html_decoration

from expensebot.ledger import CommittedExpense, Ledger

RECENT_LIMIT = 20


def format_amount(amount: Decimal) -> str:
    return f"${amount:.2f}"


def start_of_day(now: datetime.datetime) -> datetime.datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(now: datetime.datetime) -> datetime.datetime:
    return start_of_day(now).replace(day=1)


def _expense_lines(expense: CommittedExpense, when: str) -> str:
    return (
        f"{when} - <b>{format_amount(expense.amount)}</b>\n"
        f"   {html_decoration.quote(expense.category)} • {html_decoration.quote(expense.description)}\n\n"
    )


def totals_by_category(expenses: List[CommittedExpense]) -> List[Tuple[str, Decimal, int]]:
    """(category, total, count) tuples, largest total first."""
    totals: Dict[str, List] = {}
    for expense in expenses:
        entry = totals.setdefault(expense.category, [Decimal("0"), 0])
        entry[0] += expense.amount
        entry[1] += 1
    return sorted(
        ((category, total, count) for category, (total, count) in totals.items()),
        key=lambda item: item[1],
        reverse=True,
    )


def recent_expenses_report(ledger: Ledger, user_id: str) -> str:
    expenses = ledger.recent(user_id, limit=RECENT_LIMIT)
    if not expenses:
        return "No expenses recorded yet. Start by typing an amount and description!"

    text = "📊 <b>Your Recent Expenses:</b>\n\n"
    for expense in expenses:
        text += _expense_lines(expense, expense.created_at.strftime("%Y-%m-%d"))
    return text.rstrip("\n")


def day_report(ledger: Ledger, user_id: str, now: datetime.datetime) -> str:
    expenses = ledger.since(user_id, start_of_day(now))
    if not expenses:
        return "No expenses today yet."

    total = sum((expense.amount for expense in expenses), Decimal("0"))
    text = f"📅 <b>Today's Expenses ({now.strftime('%Y-%m-%d')})</b>\n\n"
    text += f"Total: <b>{format_amount(total)}</b>\n"
    text += f"Transactions: {len(expenses)}\n\n"
    for expense in expenses:
        text += _expense_lines(expense, expense.created_at.strftime("%H:%M"))
    return text.rstrip("\n")


def month_report(ledger: Ledger, user_id: str, now: datetime.datetime) -> str:
    expenses = ledger.since(user_id, start_of_month(now))
    if not expenses:
        return "No expenses this month yet."

    total = sum((expense.amount for expense in expenses), Decimal("0"))
    text = f"📈 <b>Monthly Summary ({now.strftime('%B')})</b>\n\n"
    text += f"Total: <b>{format_amount(total)}</b>\n"
    text += f"Transactions: {len(expenses)}\n\n"
    text += "<b>By Category:</b>\n"
    for category, category_total, _count in totals_by_category(expenses):
        text += f"{html_decoration.quote(category)}: {format_amount(category_total)}\n"
    return text.rstrip("\n")


def categories_report(ledger: Ledger, user_id: str) -> str:
    expenses = ledger.since(user_id)
    if not expenses:
        return "No expenses recorded yet."

    text = "📂 <b>Expenses by Category:</b>\n\n"
    for category, category_total, count in totals_by_category(expenses):
        text += f"{html_decoration.quote(category)}\n"
        text += f"  {format_amount(category_total)} ({count} transactions)\n\n"
    return text.rstrip("\n")

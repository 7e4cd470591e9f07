# src/expensebot/states.py
from dataclasses import dataclass
from typing import Optional, Union

from expensebot.sessions import PendingExpense


@dataclass(frozen=True)
class Idle:
    """No pending expense for the user."""


@dataclass(frozen=True)
class AwaitingCategory:
    """A pending expense exists and the category picker has been shown."""
    pending: PendingExpense


ExpenseState = Union[Idle, AwaitingCategory]


def state_from_pending(pending: Optional[PendingExpense]) -> ExpenseState:
    if pending is None:
        return Idle()
    return AwaitingCategory(pending)

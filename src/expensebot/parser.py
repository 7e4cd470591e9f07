"""Parsing of free-text expense input such as ``"12.50 coffee"``."""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

EXPENSE_INPUT_RE = re.compile(r"(\d+(?:\.\d{1,2})?)\s+(.+)", re.ASCII)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ParsedExpense:
    amount: Decimal
    description: str


def parse_expense_input(text: str) -> Optional[ParsedExpense]:
    """Extract amount and description, or return None if the text doesn't match.

    The amount must be positive with at most two decimals and be followed by
    whitespace and a non-empty description.
    """
    match = EXPENSE_INPUT_RE.fullmatch(text)
    if not match:
        return None

    try:
        amount = Decimal(match.group(1))
    except InvalidOperation:
        return None
    description = match.group(2).strip()

    if not amount.is_finite() or amount <= 0 or not description:
        return None

    return ParsedExpense(amount=amount.quantize(CENTS), description=description)

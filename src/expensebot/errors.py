"""Error types raised by the bot's stores and surfaced to users as replies."""


class ExpenseBotError(Exception):
    """Base class for all bot errors."""


class UserInputError(ExpenseBotError):
    """Input the user can fix; nothing was changed."""


class EmptyCategoryError(UserInputError):
    pass


class DuplicateCategoryError(UserInputError):
    def __init__(self, label: str):
        super().__init__(f"category already exists: {label!r}")
        self.label = label


class CategoryIndexError(UserInputError):
    def __init__(self, index: int):
        super().__init__(f"no custom category at index {index}")
        self.index = index


class SessionExpired(ExpenseBotError):
    """No pending expense exists for the user (already committed or swept)."""


class StoreError(ExpenseBotError):
    """A persistence operation failed; state is as it was before the attempt."""

import logging

from aiogram import F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, ErrorEvent, Message

from expensebot import keyboards
from expensebot.flow import ExpenseFlow, Reply

logger = logging.getLogger(__name__)

SOMETHING_WENT_WRONG = "⚠️ Something went wrong. Please try again later."


async def send_reply(message: Message, reply: Reply) -> None:
    """Send a reply to a plain message."""
    if reply.text is not None:
        await message.answer(reply.text, reply_markup=reply.reply_markup)


async def send_callback_reply(callback: CallbackQuery, reply: Reply) -> None:
    """Apply a reply to a button press: edit the message in place, then answer the callback."""
    message = callback.message
    if reply.text is not None and isinstance(message, Message):
        if reply.edit:
            await message.edit_text(reply.text, reply_markup=reply.reply_markup)
        else:
            await message.answer(reply.text, reply_markup=reply.reply_markup)
    await callback.answer(reply.notice)


def build_router(flow: ExpenseFlow) -> Router:
    """Create the router with all command, text and button handlers bound to ``flow``."""
    router = Router()

    # Command handler for /start and /help commands
    @router.message(Command("start", "help"))
    async def cmd_start(message: Message):
        """Greet the user and list commands."""
        await send_reply(message, await flow.start(str(message.from_user.id)))

    @router.message(Command("expenses"))
    async def cmd_expenses(message: Message):
        await send_reply(message, await flow.recent_expenses(str(message.from_user.id)))

    @router.message(Command("day"))
    async def cmd_day(message: Message):
        await send_reply(message, await flow.day_summary(str(message.from_user.id)))

    @router.message(Command("month"))
    async def cmd_month(message: Message):
        await send_reply(message, await flow.month_summary(str(message.from_user.id)))

    @router.message(Command("categories"))
    async def cmd_categories(message: Message):
        await send_reply(message, await flow.category_summary(str(message.from_user.id)))

    @router.message(Command("add"))
    async def cmd_add_category(message: Message, command: CommandObject):
        """Handle /add <emoji> <name>."""
        await send_reply(message, await flow.add_category(str(message.from_user.id), command.args))

    @router.message(Command("remove"))
    async def cmd_remove_category(message: Message):
        """Show the custom categories as buttons to pick one for removal."""
        await send_reply(message, await flow.prompt_remove(str(message.from_user.id)))

    # Free text (anything that isn't a command) is an expense
    @router.message(F.text, ~F.text.startswith("/"))
    async def process_expense_input(message: Message):
        await send_reply(message, await flow.handle_text(str(message.from_user.id), message.text))

    @router.callback_query(F.data.startswith(keyboards.CATEGORY_PREFIX))
    async def process_category_selection(callback: CallbackQuery):
        index = keyboards.parse_token(callback.data, keyboards.CATEGORY_PREFIX)
        if index is None:
            await callback.answer()
            return
        reply = await flow.select_category(str(callback.from_user.id), index)
        await send_callback_reply(callback, reply)

    @router.callback_query(F.data.startswith(keyboards.REMOVE_PREFIX))
    async def process_category_removal(callback: CallbackQuery):
        index = keyboards.parse_token(callback.data, keyboards.REMOVE_PREFIX)
        if index is None:
            await callback.answer()
            return
        reply = await flow.remove_category(str(callback.from_user.id), index)
        await send_callback_reply(callback, reply)

    @router.callback_query(F.data == keyboards.CANCEL_REMOVE)
    async def cancel_remove_operation(callback: CallbackQuery):
        """Handles the 'cancel' button of the removal keyboard."""
        await send_callback_reply(callback, await flow.cancel_remove())

    return router


async def on_error(event: ErrorEvent) -> bool:
    """Log any handler failure and tell the user, without affecting other updates."""
    logger.error("Failed to handle update %s", event.update.update_id, exc_info=event.exception)

    update = event.update
    try:
        if update.callback_query is not None:
            await update.callback_query.answer(SOMETHING_WENT_WRONG)
        elif update.message is not None:
            await update.message.answer(SOMETHING_WENT_WRONG)
    except TelegramAPIError:
        logger.exception("Could not notify user about failed update %s", update.update_id)
    return True

import asyncio
from decimal import Decimal

from expensebot import flow as flow_module
from expensebot.categories import DEFAULT_CATEGORIES
from expensebot.errors import StoreError
from expensebot.states import AwaitingCategory, Idle

USER = "1001"
FOOD = DEFAULT_CATEGORIES.index("🍔 Food")


def run(coro):
    return asyncio.run(coro)


def button_data(markup):
    return [button.callback_data for row in markup.inline_keyboard for button in row]


def test_expense_scenario_end_to_end(flow, sessions, ledger):
    async def scenario():
        prompt = await flow.handle_text(USER, "50 lunch")
        state = await flow.state_of(USER)
        confirmation = await flow.select_category(USER, FOOD)
        await flow.wait_background()
        again = await flow.select_category(USER, FOOD)
        return prompt, state, confirmation, again, await flow.state_of(USER)

    prompt, state, confirmation, again, final_state = run(scenario())

    assert "$50.00" in prompt.text and "lunch" in prompt.text
    assert len(button_data(prompt.reply_markup)) >= 12
    assert isinstance(state, AwaitingCategory)
    assert state.pending.amount == Decimal("50.00")

    assert confirmation.edit is True
    assert "Expense saved" in confirmation.text
    assert "🍔 Food" in confirmation.text

    [expense] = ledger.recent(USER)
    assert (expense.amount, expense.description, expense.category) == (Decimal("50.00"), "lunch", "🍔 Food")
    assert sessions.get_pending(USER) is None

    assert again.notice == flow_module.SESSION_EXPIRED
    assert again.text is None
    assert final_state == Idle()


def test_unparseable_text_sends_usage_hint_and_keeps_state(flow, sessions):
    async def scenario():
        await flow.handle_text(USER, "50 lunch")
        return await flow.handle_text(USER, "lunch fifty")

    reply = run(scenario())

    assert reply.text == flow_module.USAGE_HINT
    assert sessions.get_pending(USER).description == "lunch"


def test_new_expense_text_replaces_pending(flow, ledger):
    async def scenario():
        await flow.handle_text(USER, "50 lunch")
        await flow.handle_text(USER, "3.20 bus ticket")
        await flow.select_category(USER, 1)
        await flow.wait_background()

    run(scenario())

    [expense] = ledger.recent(USER)
    assert (expense.amount, expense.description, expense.category) == (Decimal("3.20"), "bus ticket", "🚗 Transport")


def test_two_concurrent_selections_commit_once(flow, ledger):
    async def scenario():
        await flow.handle_text(USER, "50 lunch")
        replies = await asyncio.gather(
            flow.select_category(USER, FOOD),
            flow.select_category(USER, FOOD + 1),
        )
        await flow.wait_background()
        return replies

    replies = run(scenario())

    saved = [reply for reply in replies if reply.text and "Expense saved" in reply.text]
    expired = [reply for reply in replies if reply.notice == flow_module.SESSION_EXPIRED]
    assert len(saved) == 1
    assert len(expired) == 1
    assert len(ledger.recent(USER)) == 1


def test_selection_resolves_against_current_categories(flow, registry, ledger):
    for label in ("A", "B", "C"):
        registry.add_category(USER, label)

    async def scenario():
        prompt = await flow.handle_text(USER, "9 snack")
        await flow.remove_category(USER, 0)
        # token rendered for "B" before the removal
        reply = await flow.select_category(USER, 13)
        await flow.wait_background()
        return prompt, reply

    prompt, reply = run(scenario())

    assert "cat_14" in button_data(prompt.reply_markup)
    assert "📁 C" in reply.text
    assert ledger.recent(USER)[0].category == "C"


def test_token_past_the_end_reprompts_and_keeps_pending(flow, registry, sessions, ledger):
    registry.add_category(USER, "A")

    async def scenario():
        await flow.handle_text(USER, "9 snack")
        await flow.remove_category(USER, 0)
        return await flow.select_category(USER, 12)

    reply = run(scenario())

    assert reply.notice == flow_module.CATEGORY_GONE
    assert reply.edit is True
    assert button_data(reply.reply_markup) == [f"cat_{i}" for i in range(12)]
    assert sessions.get_pending(USER) is not None
    assert ledger.recent(USER) == []


def test_token_past_the_end_without_pending_is_expired(flow):
    reply = run(flow.select_category(USER, 99))
    assert reply.notice == flow_module.SESSION_EXPIRED


def test_committed_label_is_a_snapshot(flow, registry, ledger):
    registry.add_category(USER, "🎮 Gaming")

    async def scenario():
        await flow.handle_text(USER, "60 new game")
        await flow.select_category(USER, 12)
        await flow.wait_background()
        await flow.remove_category(USER, 0)

    run(scenario())

    assert ledger.recent(USER)[0].category == "🎮 Gaming"


def test_commit_sweeps_stale_pending_of_other_users(flow, sessions, clock):
    async def scenario():
        await flow.handle_text("other", "5 forgotten")
        clock.advance(hours=1, minutes=1)
        await flow.handle_text(USER, "50 lunch")
        await flow.select_category(USER, FOOD)
        await flow.wait_background()

    run(scenario())

    assert sessions.get_pending("other") is None


def test_recent_pending_of_other_users_survives_sweep(flow, sessions, clock):
    async def scenario():
        await flow.handle_text("other", "5 still deciding")
        clock.advance(minutes=59)
        await flow.handle_text(USER, "50 lunch")
        await flow.select_category(USER, FOOD)
        await flow.wait_background()

    run(scenario())

    assert sessions.get_pending("other") is not None


def test_failing_sweep_does_not_affect_commit(flow, sessions, ledger, monkeypatch, caplog):
    def broken_sweep(older_than):
        raise StoreError("database is locked")

    monkeypatch.setattr(sessions, "sweep_stale", broken_sweep)

    async def scenario():
        await flow.handle_text(USER, "50 lunch")
        reply = await flow.select_category(USER, FOOD)
        await flow.wait_background()
        return reply

    reply = run(scenario())

    assert "Expense saved" in reply.text
    assert len(ledger.recent(USER)) == 1
    assert "Sweeping stale pending expenses failed" in caplog.text


def test_store_failure_on_commit_reports_and_keeps_pending(flow, sessions, monkeypatch):
    def broken_commit(user_id, category):
        raise StoreError("disk I/O error")

    async def scenario():
        await flow.handle_text(USER, "50 lunch")
        monkeypatch.setattr(sessions, "commit_pending", broken_commit)
        return await flow.select_category(USER, FOOD)

    reply = run(scenario())

    assert reply.text == flow_module.SAVE_FAILED
    assert reply.edit is True
    assert sessions.get_pending(USER) is not None


def test_store_failure_on_text_is_reported(flow, sessions, monkeypatch):
    def broken_put(user_id, amount, description):
        raise StoreError("disk full")

    monkeypatch.setattr(sessions, "put_pending", broken_put)

    reply = run(flow.handle_text(USER, "50 lunch"))

    assert reply.text == flow_module.SAVE_FAILED
    assert reply.reply_markup is None


def test_failed_category_read_leaves_previous_pending(flow, registry, sessions, monkeypatch):
    def broken_categories(user_id):
        raise StoreError("database is locked")

    async def scenario():
        await flow.handle_text(USER, "50 lunch")
        monkeypatch.setattr(registry, "effective_categories", broken_categories)
        return await flow.handle_text(USER, "12 taxi")

    reply = run(scenario())

    assert reply.text == flow_module.SAVE_FAILED
    pending = sessions.get_pending(USER)
    assert (pending.amount, pending.description) == (Decimal("50.00"), "lunch")


def test_failed_category_read_without_previous_pending_stays_idle(flow, registry, sessions, monkeypatch):
    def broken_categories(user_id):
        raise StoreError("database is locked")

    monkeypatch.setattr(registry, "effective_categories", broken_categories)

    reply = run(flow.handle_text(USER, "50 lunch"))

    assert reply.text == flow_module.SAVE_FAILED
    assert sessions.get_pending(USER) is None


def test_commands_do_not_touch_pending(flow, sessions):
    async def scenario():
        await flow.handle_text(USER, "50 lunch")
        await flow.start(USER)
        await flow.recent_expenses(USER)
        await flow.month_summary(USER)
        await flow.add_category(USER, "🎮 Gaming")
        await flow.prompt_remove(USER)
        await flow.cancel_remove()
        return await flow.state_of(USER)

    state = run(scenario())

    assert isinstance(state, AwaitingCategory)
    assert state.pending.description == "lunch"


def test_description_is_html_escaped(flow):
    reply = run(flow.handle_text(USER, "5 <b>cake</b> & tea"))
    assert "&lt;b&gt;cake&lt;/b&gt; &amp; tea" in reply.text


def test_add_category_replies(flow, registry):
    async def scenario():
        return (
            await flow.add_category(USER, None),
            await flow.add_category(USER, "   "),
            await flow.add_category(USER, "🎮 Gaming"),
            await flow.add_category(USER, "🎮 Gaming "),
            await flow.add_category(USER, "🍔 Food"),
        )

    usage, blank, added, duplicate, default_duplicate = run(scenario())

    assert usage.text == flow_module.ADD_USAGE
    assert blank.text == flow_module.ADD_USAGE
    assert added.text == '✅ Category "🎮 Gaming" added successfully!'
    assert duplicate.text == flow_module.CATEGORY_EXISTS
    assert default_duplicate.text == flow_module.CATEGORY_EXISTS
    assert registry.custom_categories(USER) == ["🎮 Gaming"]


def test_remove_flow(flow, registry):
    async def scenario():
        empty = await flow.prompt_remove(USER)
        await flow.add_category(USER, "🎮 Gaming")
        await flow.add_category(USER, "🐶 Pets")
        prompt = await flow.prompt_remove(USER)
        invalid = await flow.remove_category(USER, 5)
        removed = await flow.remove_category(USER, 0)
        cancelled = await flow.cancel_remove()
        return empty, prompt, invalid, removed, cancelled

    empty, prompt, invalid, removed, cancelled = run(scenario())

    assert empty.text == flow_module.NO_CUSTOM_CATEGORIES
    assert button_data(prompt.reply_markup) == ["remove_0", "remove_1", "cancel_remove"]
    assert invalid.notice == flow_module.INVALID_CATEGORY
    assert invalid.text is None
    assert removed.edit is True
    assert removed.text == '✅ Category "🎮 Gaming" removed successfully!'
    assert cancelled == flow_module.Reply(flow_module.CANCELLED, edit=True)
    assert registry.custom_categories(USER) == ["🐶 Pets"]


def test_start_registers_user(flow, db):
    reply = run(flow.start(USER))

    assert reply.text == flow_module.WELCOME_TEXT
    assert db.get_user(USER)["custom_categories"] == "[]"

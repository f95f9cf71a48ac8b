from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from foracle.ai.threads import (
    DEFAULT_TITLE,
    EMPTY_PREVIEW,
    InMemoryThreadStore,
    _message_from_row,
    clean_rename,
    derive_title,
)


def _run(coro):
    return asyncio.run(coro)


class SteppingClock:
    def __init__(self, step_seconds: float = 0) -> None:
        self.now = datetime(2026, 2, 20, 9, 0, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step_seconds)

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


def test_derive_title() -> None:
    assert derive_title(None) == DEFAULT_TITLE
    assert derive_title("   \n ") == DEFAULT_TITLE
    assert derive_title("How much\ndid I spend?") == "How much did I spend?"

    long_title = derive_title("a" * 50)
    assert long_title == "a" * 37 + "..."
    assert len(long_title) == 40


def test_clean_rename() -> None:
    assert clean_rename("  Budget plans  ") == "Budget plans"
    assert clean_rename("   ") is None
    assert len(clean_rename("b" * 150)) == 100


def test_first_user_message_sets_title() -> None:
    store = InMemoryThreadStore(clock=SteppingClock())

    async def scenario():
        thread = await store.create_thread("user-a")
        await store.add_message_to_thread("user-a", thread.id, "assistant", "Hello! Ask me anything.")
        await store.add_message_to_thread("user-a", thread.id, "user", "Can I afford a car next year?")
        await store.add_message_to_thread("user-a", thread.id, "user", "What about a motorbike?")
        return thread, await store.get_thread("user-a", thread.id)

    created, stored = _run(scenario())

    assert created.title == DEFAULT_TITLE
    assert stored.title == "Can I afford a car next year?"
    assert len(stored.messages) == 3


def test_created_at_is_strictly_increasing_with_a_frozen_clock() -> None:
    store = InMemoryThreadStore(clock=SteppingClock(step_seconds=0))

    async def scenario():
        thread = await store.create_thread("user-a", "hi", thread_id="thread_fixed")
        for index in range(4):
            await store.add_message_to_thread("user-a", thread.id, "user", f"message {index}")
        return await store.get_thread("user-a", "thread_fixed")

    thread = _run(scenario())

    stamps = [message.created_at for message in thread.messages]
    assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))
    assert [message.content for message in thread.messages] == [f"message {index}" for index in range(4)]
    assert thread.updated_at == stamps[-1]


def test_tools_used_are_kept_on_assistant_messages() -> None:
    store = InMemoryThreadStore()

    async def scenario():
        thread = await store.create_thread("user-a", "food spend")
        await store.add_message_to_thread("user-a", thread.id, "assistant", "You spent $650.", ["get_expenses_summary"])
        await store.add_message_to_thread("user-a", thread.id, "assistant", "No tools here.", [])
        return await store.get_thread("user-a", thread.id)

    thread = _run(scenario())

    assert thread.messages[0].tools_used == ["get_expenses_summary"]
    assert thread.messages[1].tools_used is None


def test_foreign_threads_behave_as_missing() -> None:
    store = InMemoryThreadStore()

    async def scenario():
        thread = await store.create_thread("user-a", "private question")
        return (
            thread,
            await store.get_thread("user-b", thread.id),
            await store.add_message_to_thread("user-b", thread.id, "user", "let me in"),
            await store.rename_thread("user-b", thread.id, "mine now"),
            await store.update_thread_response_id("user-b", thread.id, "resp_x"),
            await store.clear_thread_messages("user-b", thread.id),
            await store.delete_thread("user-b", thread.id),
            await store.get_user_threads("user-b"),
            await store.get_thread("user-a", thread.id),
        )

    thread, fetched, added, renamed, updated, cleared, deleted, listed, own = _run(scenario())

    assert fetched is None
    assert added is None
    assert renamed is False
    assert updated is False
    assert cleared is False
    assert deleted is False
    assert listed == []
    assert own.title == "private question"
    assert own.messages == []


def test_delete_removes_thread() -> None:
    store = InMemoryThreadStore()

    async def scenario():
        thread = await store.create_thread("user-a", "to be removed")
        await store.add_message_to_thread("user-a", thread.id, "user", "to be removed")
        deleted = await store.delete_thread("user-a", thread.id)
        return (
            deleted,
            await store.get_thread("user-a", thread.id),
            await store.get_user_threads("user-a"),
            await store.delete_thread("user-a", thread.id),
        )

    deleted, fetched, listed, deleted_again = _run(scenario())

    assert deleted is True
    assert fetched is None
    assert listed == []
    assert deleted_again is False


def test_clear_messages_resets_continuation() -> None:
    store = InMemoryThreadStore()

    async def scenario():
        thread = await store.create_thread("user-a", "savings")
        await store.add_message_to_thread("user-a", thread.id, "user", "savings")
        await store.update_thread_response_id("user-a", thread.id, "resp_1", "conv_1")
        before = await store.get_thread("user-a", thread.id)
        cleared = await store.clear_thread_messages("user-a", thread.id)
        return before, cleared, await store.get_thread("user-a", thread.id)

    before, cleared, after = _run(scenario())

    assert before.last_response_id == "resp_1"
    assert before.conversation_id == "conv_1"
    assert cleared is True
    assert after.messages == []
    assert after.last_response_id is None
    assert after.conversation_id is None
    assert after.title == "savings"


def test_rename_rejects_blank_titles() -> None:
    store = InMemoryThreadStore()

    async def scenario():
        thread = await store.create_thread("user-a", "original")
        blank = await store.rename_thread("user-a", thread.id, "   ")
        renamed = await store.rename_thread("user-a", thread.id, "  Wedding budget ")
        return blank, renamed, await store.get_thread("user-a", thread.id)

    blank, renamed, thread = _run(scenario())

    assert blank is False
    assert renamed is True
    assert thread.title == "Wedding budget"


def test_thread_list_is_most_recent_first_with_previews() -> None:
    store = InMemoryThreadStore(clock=SteppingClock(step_seconds=1))

    async def scenario():
        older = await store.create_thread("user-a", "older")
        newer = await store.create_thread("user-a", "newer")
        empty = await store.create_thread("user-a")
        await store.add_message_to_thread("user-a", newer.id, "user", "n" * 150)
        await store.add_message_to_thread("user-a", older.id, "user", "bump older")
        return older, newer, empty, await store.get_user_threads("user-a")

    older, newer, empty, summaries = _run(scenario())

    assert [summary.id for summary in summaries] == [older.id, newer.id, empty.id]
    assert summaries[0].last_message == "bump older"
    assert summaries[1].last_message == "n" * 100
    assert summaries[1].message_count == 1
    assert summaries[2].last_message == EMPTY_PREVIEW
    assert summaries[2].message_count == 0


def test_message_rows_decode_json_tools() -> None:
    created_at = datetime(2026, 2, 20, 9, 0, tzinfo=timezone.utc)

    from_text = _message_from_row(
        {"id": "m-1", "role": "assistant", "content": "ok", "tools_used": '["get_income_summary"]', "created_at": created_at}
    )
    from_jsonb = _message_from_row(
        {"id": "m-2", "role": "assistant", "content": "ok", "tools_used": ["get_holdings_summary"], "created_at": created_at}
    )
    without = _message_from_row({"id": "m-3", "role": "user", "content": "hi", "tools_used": None, "created_at": created_at})

    assert from_text.tools_used == ["get_income_summary"]
    assert from_jsonb.tools_used == ["get_holdings_summary"]
    assert without.tools_used is None

"""Conversation threads: transcripts, titles, and provider continuation ids.

Every operation takes the owner id and re-checks ownership; a thread owned by
someone else behaves exactly like a thread that does not exist.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Literal

if TYPE_CHECKING:
    from psycopg_pool import AsyncConnectionPool
else:
    AsyncConnectionPool = Any

MessageRole = Literal["user", "assistant"]

DEFAULT_TITLE = "New conversation"
TITLE_MAX_CHARS = 40
RENAME_MAX_CHARS = 100
PREVIEW_MAX_CHARS = 100
EMPTY_PREVIEW = "No messages yet"


@dataclass(frozen=True)
class Message:
    id: str
    role: MessageRole
    content: str
    created_at: datetime
    tools_used: list[str] | None = None


@dataclass
class Thread:
    id: str
    owner_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    messages: list[Message] = field(default_factory=list)
    last_response_id: str | None = None
    conversation_id: str | None = None


@dataclass(frozen=True)
class ThreadSummary:
    id: str
    title: str
    last_message: str
    message_count: int
    created_at: datetime
    updated_at: datetime


def new_thread_id() -> str:
    return f"thread_{uuid.uuid4().hex}"


def derive_title(text: str | None) -> str:
    """Single-line title from the first user message, at most 40 characters."""
    if not text:
        return DEFAULT_TITLE
    title = " ".join(text.replace("\r", " ").replace("\n", " ").split())
    if not title:
        return DEFAULT_TITLE
    if len(title) > TITLE_MAX_CHARS:
        return f"{title[:TITLE_MAX_CHARS - 3]}..."
    return title


def clean_rename(title: str) -> str | None:
    cleaned = title.strip()
    if not cleaned:
        return None
    return cleaned[:RENAME_MAX_CHARS]


def preview(content: str | None) -> str:
    if not content:
        return EMPTY_PREVIEW
    return content[:PREVIEW_MAX_CHARS]


class ThreadStore:
    """Storage contract used by the chat router and thread endpoints."""

    async def create_thread(
        self, owner_id: str, first_message: str | None = None, *, thread_id: str | None = None
    ) -> Thread:
        raise NotImplementedError

    async def get_thread(self, owner_id: str, thread_id: str) -> Thread | None:
        raise NotImplementedError

    async def get_user_threads(self, owner_id: str) -> list[ThreadSummary]:
        raise NotImplementedError

    async def add_message_to_thread(
        self,
        owner_id: str,
        thread_id: str,
        role: MessageRole,
        content: str,
        tools_used: list[str] | None = None,
    ) -> Message | None:
        raise NotImplementedError

    async def update_thread_response_id(
        self, owner_id: str, thread_id: str, response_id: str, conversation_id: str | None = None
    ) -> bool:
        raise NotImplementedError

    async def delete_thread(self, owner_id: str, thread_id: str) -> bool:
        raise NotImplementedError

    async def rename_thread(self, owner_id: str, thread_id: str, title: str) -> bool:
        raise NotImplementedError

    async def clear_thread_messages(self, owner_id: str, thread_id: str) -> bool:
        raise NotImplementedError


class InMemoryThreadStore(ThreadStore):
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._threads: dict[str, Thread] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _owned(self, owner_id: str, thread_id: str) -> Thread | None:
        thread = self._threads.get(thread_id)
        if thread is None or thread.owner_id != owner_id:
            return None
        return thread

    async def create_thread(
        self, owner_id: str, first_message: str | None = None, *, thread_id: str | None = None
    ) -> Thread:
        now = self._clock()
        thread = Thread(
            id=thread_id or new_thread_id(),
            owner_id=owner_id,
            title=derive_title(first_message),
            created_at=now,
            updated_at=now,
        )
        self._threads[thread.id] = thread
        return replace(thread, messages=[])

    async def get_thread(self, owner_id: str, thread_id: str) -> Thread | None:
        thread = self._owned(owner_id, thread_id)
        if thread is None:
            return None
        return replace(thread, messages=list(thread.messages))

    async def get_user_threads(self, owner_id: str) -> list[ThreadSummary]:
        summaries = [
            ThreadSummary(
                id=thread.id,
                title=thread.title,
                last_message=preview(thread.messages[-1].content if thread.messages else None),
                message_count=len(thread.messages),
                created_at=thread.created_at,
                updated_at=thread.updated_at,
            )
            for thread in self._threads.values()
            if thread.owner_id == owner_id
        ]
        summaries.sort(key=lambda item: item.updated_at, reverse=True)
        return summaries

    async def add_message_to_thread(
        self,
        owner_id: str,
        thread_id: str,
        role: MessageRole,
        content: str,
        tools_used: list[str] | None = None,
    ) -> Message | None:
        thread = self._owned(owner_id, thread_id)
        if thread is None:
            return None

        created_at = self._clock()
        if thread.messages and created_at <= thread.messages[-1].created_at:
            created_at = thread.messages[-1].created_at + timedelta(microseconds=1)

        if role == "user" and not any(m.role == "user" for m in thread.messages):
            thread.title = derive_title(content)

        message = Message(
            id=f"msg_{uuid.uuid4().hex}",
            role=role,
            content=content,
            created_at=created_at,
            tools_used=list(tools_used) if tools_used else None,
        )
        thread.messages.append(message)
        thread.updated_at = created_at
        return message

    async def update_thread_response_id(
        self, owner_id: str, thread_id: str, response_id: str, conversation_id: str | None = None
    ) -> bool:
        thread = self._owned(owner_id, thread_id)
        if thread is None:
            return False
        thread.last_response_id = response_id
        if conversation_id is not None:
            thread.conversation_id = conversation_id
        return True

    async def delete_thread(self, owner_id: str, thread_id: str) -> bool:
        if self._owned(owner_id, thread_id) is None:
            return False
        del self._threads[thread_id]
        return True

    async def rename_thread(self, owner_id: str, thread_id: str, title: str) -> bool:
        thread = self._owned(owner_id, thread_id)
        cleaned = clean_rename(title)
        if thread is None or cleaned is None:
            return False
        thread.title = cleaned
        thread.updated_at = self._clock()
        return True

    async def clear_thread_messages(self, owner_id: str, thread_id: str) -> bool:
        thread = self._owned(owner_id, thread_id)
        if thread is None:
            return False
        thread.messages.clear()
        thread.last_response_id = None
        thread.conversation_id = None
        thread.updated_at = self._clock()
        return True


class PostgresThreadStore(ThreadStore):
    """Threads in `ai_threads`, messages in `ai_thread_messages` (ON DELETE CASCADE)."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def create_thread(
        self, owner_id: str, first_message: str | None = None, *, thread_id: str | None = None
    ) -> Thread:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    INSERT INTO ai_threads (id, user_id, title)
                    VALUES (%s, %s, %s)
                    RETURNING id, user_id, title, last_response_id, conversation_id, created_at, updated_at
                    """,
                    (thread_id or new_thread_id(), owner_id, derive_title(first_message)),
                )
                row = await cursor.fetchone()
        return _thread_from_row(row, [])

    async def get_thread(self, owner_id: str, thread_id: str) -> Thread | None:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    SELECT id, user_id, title, last_response_id, conversation_id, created_at, updated_at
                    FROM ai_threads
                    WHERE id = %s
                      AND user_id = %s
                    """,
                    (thread_id, owner_id),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None

                await cursor.execute(
                    """
                    SELECT id, role, content, tools_used, created_at
                    FROM ai_thread_messages
                    WHERE thread_id = %s
                    ORDER BY created_at ASC
                    """,
                    (thread_id,),
                )
                message_rows = await cursor.fetchall()

        return _thread_from_row(row, [_message_from_row(item) for item in message_rows])

    async def get_user_threads(self, owner_id: str) -> list[ThreadSummary]:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    SELECT t.id, t.title, t.created_at, t.updated_at,
                           (
                               SELECT m.content
                               FROM ai_thread_messages m
                               WHERE m.thread_id = t.id
                               ORDER BY m.created_at DESC
                               LIMIT 1
                           ) AS last_message,
                           (
                               SELECT COUNT(*)
                               FROM ai_thread_messages m
                               WHERE m.thread_id = t.id
                           ) AS message_count
                    FROM ai_threads t
                    WHERE t.user_id = %s
                    ORDER BY t.updated_at DESC
                    """,
                    (owner_id,),
                )
                rows = await cursor.fetchall()

        return [
            ThreadSummary(
                id=str(row["id"]),
                title=row["title"],
                last_message=preview(row["last_message"]),
                message_count=int(row["message_count"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def add_message_to_thread(
        self,
        owner_id: str,
        thread_id: str,
        role: MessageRole,
        content: str,
        tools_used: list[str] | None = None,
    ) -> Message | None:
        async with self._pool.connection() as connection:
            async with connection.transaction():
                async with connection.cursor() as cursor:
                    await cursor.execute(
                        """
                        SELECT id,
                               NOT EXISTS (
                                   SELECT 1 FROM ai_thread_messages
                                   WHERE thread_id = ai_threads.id AND role = 'user'
                               ) AS needs_title
                        FROM ai_threads
                        WHERE id = %s
                          AND user_id = %s
                        FOR UPDATE
                        """,
                        (thread_id, owner_id),
                    )
                    owned = await cursor.fetchone()
                    if owned is None:
                        return None

                    # created_at stays strictly increasing within a thread.
                    await cursor.execute(
                        """
                        INSERT INTO ai_thread_messages (id, thread_id, role, content, tools_used, created_at)
                        VALUES (
                            %s, %s, %s, %s, %s,
                            GREATEST(
                                now(),
                                COALESCE(
                                    (SELECT MAX(created_at) FROM ai_thread_messages WHERE thread_id = %s),
                                    now()
                                ) + interval '1 microsecond'
                            )
                        )
                        RETURNING id, role, content, tools_used, created_at
                        """,
                        (
                            f"msg_{uuid.uuid4().hex}",
                            thread_id,
                            role,
                            content,
                            json.dumps(tools_used) if tools_used else None,
                            thread_id,
                        ),
                    )
                    message_row = await cursor.fetchone()

                    title = derive_title(content) if role == "user" and owned["needs_title"] else None
                    await cursor.execute(
                        """
                        UPDATE ai_threads
                        SET updated_at = %s,
                            title = COALESCE(%s, title)
                        WHERE id = %s
                          AND user_id = %s
                        """,
                        (message_row["created_at"], title, thread_id, owner_id),
                    )

        return _message_from_row(message_row)

    async def _execute_owned(self, query: str, params: tuple[Any, ...]) -> bool:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(query, params)
                return cursor.rowcount > 0

    async def update_thread_response_id(
        self, owner_id: str, thread_id: str, response_id: str, conversation_id: str | None = None
    ) -> bool:
        return await self._execute_owned(
            """
            UPDATE ai_threads
            SET last_response_id = %s,
                conversation_id = COALESCE(%s, conversation_id)
            WHERE id = %s
              AND user_id = %s
            """,
            (response_id, conversation_id, thread_id, owner_id),
        )

    async def delete_thread(self, owner_id: str, thread_id: str) -> bool:
        return await self._execute_owned(
            """
            DELETE FROM ai_threads
            WHERE id = %s
              AND user_id = %s
            """,
            (thread_id, owner_id),
        )

    async def rename_thread(self, owner_id: str, thread_id: str, title: str) -> bool:
        cleaned = clean_rename(title)
        if cleaned is None:
            return False
        return await self._execute_owned(
            """
            UPDATE ai_threads
            SET title = %s,
                updated_at = now()
            WHERE id = %s
              AND user_id = %s
            """,
            (cleaned, thread_id, owner_id),
        )

    async def clear_thread_messages(self, owner_id: str, thread_id: str) -> bool:
        async with self._pool.connection() as connection:
            async with connection.transaction():
                async with connection.cursor() as cursor:
                    await cursor.execute(
                        """
                        UPDATE ai_threads
                        SET last_response_id = NULL,
                            conversation_id = NULL,
                            updated_at = now()
                        WHERE id = %s
                          AND user_id = %s
                        """,
                        (thread_id, owner_id),
                    )
                    if cursor.rowcount == 0:
                        return False
                    await cursor.execute(
                        """
                        DELETE FROM ai_thread_messages
                        WHERE thread_id = %s
                        """,
                        (thread_id,),
                    )
        return True


def _message_from_row(row: dict[str, Any]) -> Message:
    tools_used = row.get("tools_used")
    if isinstance(tools_used, str):
        tools_used = json.loads(tools_used)
    return Message(
        id=str(row["id"]),
        role=row["role"],
        content=row["content"],
        created_at=row["created_at"],
        tools_used=tools_used or None,
    )


def _thread_from_row(row: dict[str, Any], messages: list[Message]) -> Thread:
    return Thread(
        id=str(row["id"]),
        owner_id=str(row["user_id"]),
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        messages=messages,
        last_response_id=row.get("last_response_id"),
        conversation_id=row.get("conversation_id"),
    )

"""Per-user daily quota and per-thread burst limits for inbound chat messages.

Checks run in a fixed order (daily quota, burst window, minimum interval) and the
first failure is reported. A rejected message is never counted. The chat path uses
`acquire`, which checks and records in one step so concurrent requests cannot both
slip under the limit.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Callable, Literal
from zoneinfo import ZoneInfo

from foracle.ai.keyed_lock import KeyedLocks

if TYPE_CHECKING:
    from psycopg_pool import AsyncConnectionPool
else:
    AsyncConnectionPool = Any

logger = logging.getLogger(__name__)

RejectReason = Literal["daily_quota", "burst", "interval"]


@dataclass
class RateLimitCheck:
    allowed: bool
    error: str | None = None
    reason: RejectReason | None = None
    retry_after_seconds: float | None = None


@dataclass
class QuotaInfo:
    used: int
    limit: int
    reset_at: datetime


@dataclass
class ThreadRateState:
    thread_id: str
    recent_timestamps: deque[float] = field(default_factory=deque)


class QuotaStore:
    """Daily counters keyed by user; a counter resets when its window changes."""

    async def get_used(self, key: str, window_reset_at: datetime) -> int:
        raise NotImplementedError

    async def try_increment(self, key: str, limit: int, window_reset_at: datetime) -> tuple[bool, int]:
        """Increment only while `used < limit`; returns (accepted, used after the attempt)."""
        raise NotImplementedError

    async def increment(self, key: str, window_reset_at: datetime) -> int:
        raise NotImplementedError


class InMemoryQuotaStore(QuotaStore):
    def __init__(self) -> None:
        self._counters: dict[str, tuple[datetime, int]] = {}
        self._locks = KeyedLocks()

    def _current(self, key: str, window_reset_at: datetime) -> int:
        entry = self._counters.get(key)
        if entry is None or entry[0] != window_reset_at:
            return 0
        return entry[1]

    async def get_used(self, key: str, window_reset_at: datetime) -> int:
        return self._current(key, window_reset_at)

    async def try_increment(self, key: str, limit: int, window_reset_at: datetime) -> tuple[bool, int]:
        async with self._locks.hold(key):
            used = self._current(key, window_reset_at)
            if used >= limit:
                return False, used
            self._counters[key] = (window_reset_at, used + 1)
            return True, used + 1

    async def increment(self, key: str, window_reset_at: datetime) -> int:
        async with self._locks.hold(key):
            used = self._current(key, window_reset_at) + 1
            self._counters[key] = (window_reset_at, used)
            return used


class PostgresQuotaStore(QuotaStore):
    """Counters in `ai_user_quotas`; the increment is one conditional UPDATE."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def _roll_window(self, cursor: Any, key: str, window_reset_at: datetime) -> None:
        await cursor.execute(
            """
            INSERT INTO ai_user_quotas (user_id, used_today, window_reset_at)
            VALUES (%s, 0, %s)
            ON CONFLICT (user_id) DO UPDATE
            SET used_today = 0,
                window_reset_at = EXCLUDED.window_reset_at
            WHERE ai_user_quotas.window_reset_at < EXCLUDED.window_reset_at
            """,
            (key, window_reset_at),
        )

    async def get_used(self, key: str, window_reset_at: datetime) -> int:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    SELECT used_today
                    FROM ai_user_quotas
                    WHERE user_id = %s
                      AND window_reset_at = %s
                    """,
                    (key, window_reset_at),
                )
                row = await cursor.fetchone()
        return int(row["used_today"]) if row else 0

    async def try_increment(self, key: str, limit: int, window_reset_at: datetime) -> tuple[bool, int]:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await self._roll_window(cursor, key, window_reset_at)
                await cursor.execute(
                    """
                    UPDATE ai_user_quotas
                    SET used_today = used_today + 1
                    WHERE user_id = %s
                      AND window_reset_at = %s
                      AND used_today < %s
                    RETURNING used_today
                    """,
                    (key, window_reset_at, limit),
                )
                row = await cursor.fetchone()
                if row is not None:
                    return True, int(row["used_today"])

                await cursor.execute(
                    """
                    SELECT used_today
                    FROM ai_user_quotas
                    WHERE user_id = %s
                    """,
                    (key,),
                )
                current = await cursor.fetchone()
        return False, int(current["used_today"]) if current else limit

    async def increment(self, key: str, window_reset_at: datetime) -> int:
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await self._roll_window(cursor, key, window_reset_at)
                await cursor.execute(
                    """
                    UPDATE ai_user_quotas
                    SET used_today = used_today + 1
                    WHERE user_id = %s
                    RETURNING used_today
                    """,
                    (key,),
                )
                row = await cursor.fetchone()
        return int(row["used_today"])


class RateLimiter:
    def __init__(
        self,
        store: QuotaStore,
        *,
        daily_limit: int = 50,
        window_seconds: float = 60.0,
        max_messages_per_window: int = 10,
        min_interval_seconds: float = 2.0,
        timezone_name: str = "Asia/Singapore",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.daily_limit = daily_limit
        self.window_seconds = window_seconds
        self.max_messages_per_window = max_messages_per_window
        self.min_interval_seconds = min_interval_seconds
        self.timezone = ZoneInfo(timezone_name)
        self._clock = clock or (lambda: datetime.now(self.timezone))
        self._threads: dict[str, ThreadRateState] = {}
        self._user_locks = KeyedLocks()

    def _now(self) -> datetime:
        return self._clock().astimezone(self.timezone)

    def reset_at(self, now: datetime | None = None) -> datetime:
        """Next local midnight in the reference timezone."""
        local = (now or self._now()).astimezone(self.timezone)
        return datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=self.timezone)

    def _thread_state(self, thread_id: str) -> ThreadRateState:
        state = self._threads.get(thread_id)
        if state is None:
            state = ThreadRateState(thread_id=thread_id)
            self._threads[thread_id] = state
        return state

    def _prune(self, state: ThreadRateState, now_ts: float) -> None:
        window_start = now_ts - self.window_seconds
        while state.recent_timestamps and state.recent_timestamps[0] <= window_start:
            state.recent_timestamps.popleft()

    def _drop_idle_threads(self, now_ts: float) -> None:
        for thread_id, state in list(self._threads.items()):
            self._prune(state, now_ts)
            if not state.recent_timestamps:
                del self._threads[thread_id]

    def _check_thread(self, thread_id: str, now_ts: float) -> RateLimitCheck:
        state = self._threads.get(thread_id)
        if state is None:
            return RateLimitCheck(allowed=True)

        self._prune(state, now_ts)
        if not state.recent_timestamps:
            del self._threads[thread_id]
            return RateLimitCheck(allowed=True)

        if len(state.recent_timestamps) >= self.max_messages_per_window:
            retry_after = state.recent_timestamps[0] + self.window_seconds - now_ts
            return RateLimitCheck(
                allowed=False,
                error="You're sending messages too quickly in this conversation. Please wait a moment.",
                reason="burst",
                retry_after_seconds=max(retry_after, 0.0),
            )

        if state.recent_timestamps:
            since_last = now_ts - state.recent_timestamps[-1]
            if since_last < self.min_interval_seconds:
                return RateLimitCheck(
                    allowed=False,
                    error="Please wait a couple of seconds before sending another message.",
                    reason="interval",
                    retry_after_seconds=self.min_interval_seconds - since_last,
                )

        return RateLimitCheck(allowed=True)

    def _daily_rejection(self, now: datetime) -> RateLimitCheck:
        return RateLimitCheck(
            allowed=False,
            error=f"You've reached your daily limit of {self.daily_limit} messages. It resets at midnight.",
            reason="daily_quota",
            retry_after_seconds=(self.reset_at(now) - now).total_seconds(),
        )

    def _record_thread(self, thread_id: str, now_ts: float) -> None:
        self._drop_idle_threads(now_ts)
        state = self._thread_state(thread_id)
        state.recent_timestamps.append(now_ts)
        while len(state.recent_timestamps) > self.max_messages_per_window:
            state.recent_timestamps.popleft()

    async def check_rate_limits(self, user_id: str, thread_id: str) -> RateLimitCheck:
        """Read-only check; does not record anything."""
        now = self._now()
        used = await self.store.get_used(user_id, self.reset_at(now))
        if used >= self.daily_limit:
            return self._daily_rejection(now)
        return self._check_thread(thread_id, now.timestamp())

    async def record_message(self, user_id: str, thread_id: str) -> None:
        now = self._now()
        async with self._user_locks.hold(user_id):
            await self.store.increment(user_id, self.reset_at(now))
            self._record_thread(thread_id, now.timestamp())

    async def acquire(self, user_id: str, thread_id: str) -> RateLimitCheck:
        """Check every limit and record the message only if all of them pass."""
        async with self._user_locks.hold(user_id):
            now = self._now()
            window_reset_at = self.reset_at(now)

            used = await self.store.get_used(user_id, window_reset_at)
            if used >= self.daily_limit:
                logger.info("rate_limited reason=daily_quota used=%s limit=%s", used, self.daily_limit)
                return self._daily_rejection(now)

            thread_check = self._check_thread(thread_id, now.timestamp())
            if not thread_check.allowed:
                logger.info("rate_limited reason=%s thread=%s", thread_check.reason, thread_id)
                return thread_check

            accepted, _ = await self.store.try_increment(user_id, self.daily_limit, window_reset_at)
            if not accepted:
                return self._daily_rejection(now)

            self._record_thread(thread_id, now.timestamp())
            return RateLimitCheck(allowed=True)

    async def get_user_quota_info(self, user_id: str) -> QuotaInfo:
        now = self._now()
        window_reset_at = self.reset_at(now)
        used = await self.store.get_used(user_id, window_reset_at)
        return QuotaInfo(used=used, limit=self.daily_limit, reset_at=window_reset_at)

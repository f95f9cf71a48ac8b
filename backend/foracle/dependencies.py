"""Wires stores, the tool registry, retrieval and the orchestrator for the routers.

With a database pool every store is Postgres-backed; without one the app runs on
the in-memory stores. The orchestrator is only built when an OpenAI key is set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .ai.keyed_lock import KeyedLocks
from .ai.openai_client import OpenAIResponsesClient
from .ai.orchestrator import Orchestrator
from .ai.rate_limiter import InMemoryQuotaStore, PostgresQuotaStore, RateLimiter
from .ai.threads import InMemoryThreadStore, PostgresThreadStore, ThreadStore
from .ai.tools import ToolRegistry, build_default_registry
from .config import Settings, settings
from .services.finance_data import FinanceRepository, InMemoryFinanceRepository, PostgresFinanceRepository
from .vectors.embeddings import build_embeddings_client
from .vectors.retrieval import RetrievalService
from .vectors.store import InMemoryVectorStore, PostgresVectorStore

if TYPE_CHECKING:
    from psycopg_pool import AsyncConnectionPool
else:
    AsyncConnectionPool = Any

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    finance: FinanceRepository
    thread_store: ThreadStore
    rate_limiter: RateLimiter
    tool_registry: ToolRegistry
    retrieval: RetrievalService | None = None
    orchestrator: Orchestrator | None = None
    chat_locks: KeyedLocks = field(default_factory=KeyedLocks)


_services: AppServices | None = None


def build_services(settings: Settings, pool: AsyncConnectionPool | None = None) -> AppServices:
    if pool is not None:
        finance: FinanceRepository = PostgresFinanceRepository(pool)
        thread_store: ThreadStore = PostgresThreadStore(pool)
        quota_store = PostgresQuotaStore(pool)
        vector_store = PostgresVectorStore(pool)
    else:
        finance = InMemoryFinanceRepository()
        thread_store = InMemoryThreadStore()
        quota_store = InMemoryQuotaStore()
        vector_store = InMemoryVectorStore()

    rate_limiter = RateLimiter(
        quota_store,
        daily_limit=settings.daily_message_quota,
        window_seconds=settings.thread_rate_limit_window_seconds,
        max_messages_per_window=settings.thread_rate_limit_max_messages,
        min_interval_seconds=settings.thread_min_interval_seconds,
        timezone_name=settings.rate_limit_timezone,
    )

    embedder = build_embeddings_client(
        settings.embeddings_provider,
        voyage_api_key=settings.voyage_api_key,
        openai_api_key=settings.openai_api_key,
        gemini_api_key=settings.gemini_api_key,
    )
    retrieval = RetrievalService(vector_store, embedder) if embedder is not None else None
    if retrieval is None:
        logger.info("No %s embeddings key configured; knowledge retrieval disabled", settings.embeddings_provider)

    registry = build_default_registry(
        finance,
        retrieval=retrieval,
        timezone_name=settings.rate_limit_timezone,
        tool_timeout_seconds=settings.tool_timeout_seconds,
    )

    orchestrator = None
    if settings.openai_api_key:
        client = OpenAIResponsesClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
            max_retries=settings.openai_max_retries,
        )
        orchestrator = Orchestrator(
            client,
            registry,
            retrieval=retrieval,
            use_retrieval_context=settings.use_retrieval_context,
            max_tool_rounds=settings.max_tool_rounds,
            chat_timeout_seconds=settings.chat_timeout_seconds,
            timezone_name=settings.rate_limit_timezone,
        )
    else:
        logger.warning("OPENAI_API_KEY is not set; /ai/chat will answer SERVICE_NOT_CONFIGURED")

    return AppServices(
        finance=finance,
        thread_store=thread_store,
        rate_limiter=rate_limiter,
        tool_registry=registry,
        retrieval=retrieval,
        orchestrator=orchestrator,
    )


def init_services(settings: Settings, pool: AsyncConnectionPool | None = None) -> AppServices:
    global _services
    _services = build_services(settings, pool)
    return _services


def reset_services() -> None:
    global _services
    _services = None


def get_services() -> AppServices:
    global _services
    if _services is None:
        _services = build_services(settings)
    return _services

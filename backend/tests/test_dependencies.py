from __future__ import annotations

from fastapi.testclient import TestClient

from foracle import dependencies
from foracle.ai.rate_limiter import InMemoryQuotaStore
from foracle.ai.threads import InMemoryThreadStore
from foracle.config import Settings
from foracle.dependencies import build_services
from foracle.services.finance_data import InMemoryFinanceRepository


def test_services_without_keys_run_in_memory() -> None:
    services = build_services(Settings(openai_api_key="", voyage_api_key="", daily_message_quota=7))

    assert isinstance(services.finance, InMemoryFinanceRepository)
    assert isinstance(services.thread_store, InMemoryThreadStore)
    assert isinstance(services.rate_limiter.store, InMemoryQuotaStore)
    assert services.rate_limiter.daily_limit == 7
    assert services.orchestrator is None
    assert services.retrieval is None
    assert "search_knowledge" not in services.tool_registry.names()


def test_services_with_keys_enable_chat_and_retrieval() -> None:
    services = build_services(
        Settings(openai_api_key="sk-test", voyage_api_key="v-test", max_tool_rounds=3, use_retrieval_context=False)
    )

    assert services.orchestrator is not None
    assert services.orchestrator.max_tool_rounds == 3
    assert services.orchestrator.use_retrieval_context is False
    assert services.retrieval is not None
    assert services.retrieval.embedder.provider == "voyage"
    assert "search_knowledge" in services.tool_registry.names()


def test_health_endpoint() -> None:
    from foracle.main import app

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_get_services_builds_once(monkeypatch) -> None:
    monkeypatch.setattr(dependencies, "_services", None)

    first = dependencies.get_services()

    assert dependencies.get_services() is first
    dependencies.reset_services()
    assert dependencies.get_services() is not first

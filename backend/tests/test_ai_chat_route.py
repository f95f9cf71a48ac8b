from __future__ import annotations

import asyncio
from datetime import datetime
from uuid import uuid4
from zoneinfo import ZoneInfo

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import foracle.ai.router as ai_router
from foracle.ai.errors import ChatTimeoutError
from foracle.ai.openai_client import LLMServiceUnavailableError
from foracle.ai.orchestrator import ChatResult
from foracle.ai.rate_limiter import InMemoryQuotaStore, RateLimiter
from foracle.ai.threads import InMemoryThreadStore
from foracle.ai.tools import build_default_registry
from foracle.dependencies import AppServices, get_services
from foracle.services.finance_data import InMemoryFinanceRepository

SGT = ZoneInfo("Asia/Singapore")
FIXED_NOW = datetime(2026, 2, 20, 10, 0, tzinfo=SGT)


def _run(coro):
    return asyncio.run(coro)


class StubOrchestrator:
    def __init__(self, results):
        self.results = list(results)
        self.calls: list[dict] = []

    async def chat(self, message, user_id, previous_response_id=None, singlish=False):
        self.calls.append(
            {
                "message": message,
                "user_id": user_id,
                "previous_response_id": previous_response_id,
                "singlish": singlish,
            }
        )
        result = self.results[min(len(self.calls), len(self.results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


def _services(orchestrator=None, daily_limit: int = 50) -> AppServices:
    finance = InMemoryFinanceRepository()
    return AppServices(
        finance=finance,
        thread_store=InMemoryThreadStore(),
        rate_limiter=RateLimiter(
            InMemoryQuotaStore(),
            daily_limit=daily_limit,
            min_interval_seconds=0,
            clock=lambda: FIXED_NOW,
        ),
        tool_registry=build_default_registry(finance),
        orchestrator=orchestrator,
    )


@pytest.fixture
def chat_client():
    user_id = uuid4()
    state = {"services": _services()}

    test_app = FastAPI()
    test_app.include_router(ai_router.router)
    test_app.dependency_overrides[get_services] = lambda: state["services"]
    test_app.dependency_overrides[ai_router.get_optional_user_id] = lambda: user_id

    with TestClient(test_app) as client:
        yield client, state, str(user_id)

    test_app.dependency_overrides.clear()


def _messages(services: AppServices, owner_id: str, thread_id: str):
    thread = _run(services.thread_store.get_thread(owner_id, thread_id))
    return [(message.role, message.content) for message in thread.messages]


def test_chat_success_creates_thread_and_reports_quota(chat_client) -> None:
    client, state, owner_id = chat_client
    orchestrator = StubOrchestrator(
        [
            ChatResult(
                response="You spend S$650.00 a month on Food.\n\n**Data used:** `get_expenses_summary`",
                tools_used=["get_expenses_summary"],
                response_id="resp_1",
            )
        ]
    )
    state["services"] = _services(orchestrator)

    response = client.post("/ai/chat", json={"message": "  How much did I spend on food?  "})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["response"].startswith("You spend S$650.00")
    assert data["toolsUsed"] == ["get_expenses_summary"]
    assert data["quota"] == {"used": 1, "limit": 50, "resetAt": "2026-02-21T00:00:00+08:00"}
    assert "errorCode" not in data

    thread_id = data["threadId"]
    assert orchestrator.calls[0]["message"] == "How much did I spend on food?"
    assert orchestrator.calls[0]["user_id"] == owner_id
    assert orchestrator.calls[0]["previous_response_id"] is None

    thread = _run(state["services"].thread_store.get_thread(owner_id, thread_id))
    assert thread.title == "How much did I spend on food?"
    assert thread.last_response_id == "resp_1"
    assert [message.role for message in thread.messages] == ["user", "assistant"]
    assert thread.messages[1].tools_used == ["get_expenses_summary"]


def test_chat_continues_existing_thread(chat_client) -> None:
    client, state, owner_id = chat_client
    orchestrator = StubOrchestrator(
        [
            ChatResult(response="First answer", response_id="resp_1"),
            ChatResult(response="Second answer", response_id="resp_2"),
        ]
    )
    state["services"] = _services(orchestrator)

    first = client.post("/ai/chat", json={"message": "hello"}).json()
    second = client.post(
        "/ai/chat", json={"message": "and then?", "threadId": first["threadId"], "singlishMode": True}
    ).json()

    assert second["threadId"] == first["threadId"]
    assert orchestrator.calls[1]["previous_response_id"] == "resp_1"
    assert orchestrator.calls[1]["singlish"] is True
    assert second["quota"]["used"] == 2
    assert len(_messages(state["services"], owner_id, first["threadId"])) == 4


def test_unknown_thread_id_starts_a_new_thread(chat_client) -> None:
    client, state, owner_id = chat_client
    state["services"] = _services(StubOrchestrator([ChatResult(response="Hi", response_id="resp_1")]))

    data = client.post("/ai/chat", json={"message": "hello", "threadId": "thread_someone_else"}).json()

    assert data["success"] is True
    assert data["threadId"] != "thread_someone_else"
    assert _messages(state["services"], owner_id, data["threadId"]) == [("user", "hello"), ("assistant", "Hi")]


def test_chat_requires_auth() -> None:
    test_app = FastAPI()
    test_app.include_router(ai_router.router)
    test_app.dependency_overrides[get_services] = lambda: _services()
    test_app.dependency_overrides[ai_router.get_optional_user_id] = lambda: None

    with TestClient(test_app) as client:
        response = client.post("/ai/chat", json={"message": "hello"})

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": "Please sign in to use the assistant.",
        "errorCode": "UNAUTHORIZED",
    }


@pytest.mark.parametrize(
    ("kwargs", "error_code"),
    [
        ({"content": "not json", "headers": {"Content-Type": "application/json"}}, "INVALID_REQUEST"),
        ({"json": ["hello"]}, "INVALID_REQUEST"),
        ({"json": {"message": "hi", "threadId": 123}}, "INVALID_REQUEST"),
        ({"json": {}}, "MISSING_MESSAGE"),
        ({"json": {"message": "   "}}, "MISSING_MESSAGE"),
        ({"json": {"message": 42}}, "MISSING_MESSAGE"),
        ({"json": {"message": "x" * 2001}}, "MESSAGE_TOO_LONG"),
    ],
)
def test_chat_rejects_bad_requests(chat_client, kwargs, error_code) -> None:
    client, state, owner_id = chat_client

    response = client.post("/ai/chat", **kwargs)

    assert response.status_code == 400
    assert response.json()["errorCode"] == error_code
    assert _run(state["services"].thread_store.get_user_threads(owner_id)) == []


def test_chat_rate_limited_when_daily_quota_used(chat_client) -> None:
    client, state, owner_id = chat_client
    services = _services(StubOrchestrator([ChatResult(response="unused")]), daily_limit=20)
    limiter = services.rate_limiter
    for _ in range(20):
        _run(limiter.store.increment(owner_id, limiter.reset_at()))
    state["services"] = services

    response = client.post("/ai/chat", json={"message": "one more"})

    assert response.status_code == 429
    data = response.json()
    assert data["success"] is False
    assert data["errorCode"] == "RATE_LIMITED"
    assert data["quota"]["used"] == 20
    assert data["quota"]["limit"] == 20
    assert "threadId" not in data
    assert services.orchestrator.calls == []
    assert _run(services.thread_store.get_user_threads(owner_id)) == []


def test_chat_without_orchestrator_is_not_configured(chat_client) -> None:
    client, state, owner_id = chat_client

    response = client.post("/ai/chat", json={"message": "hello"})

    assert response.status_code == 503
    data = response.json()
    assert data["errorCode"] == "SERVICE_NOT_CONFIGURED"
    assert _messages(state["services"], owner_id, data["threadId"]) == [("user", "hello")]


def test_chat_timeout(chat_client) -> None:
    client, state, owner_id = chat_client
    state["services"] = _services(StubOrchestrator([ChatTimeoutError("Chat turn timed out after 60s")]))

    response = client.post("/ai/chat", json={"message": "slow question"})

    assert response.status_code == 504
    data = response.json()
    assert data["errorCode"] == "TIMEOUT"
    assert data["quota"]["used"] == 1
    assert _messages(state["services"], owner_id, data["threadId"]) == [("user", "slow question")]


def test_chat_provider_unavailable(chat_client) -> None:
    client, state, _owner_id = chat_client
    state["services"] = _services(
        StubOrchestrator([LLMServiceUnavailableError(401, "LLM provider authentication failed")])
    )

    response = client.post("/ai/chat", json={"message": "hello"})

    assert response.status_code == 503
    assert response.json()["errorCode"] == "SERVICE_UNAVAILABLE"
    assert "authentication" not in response.json()["error"]


def test_chat_processing_error_is_saved_as_friendly_reply(chat_client) -> None:
    client, state, owner_id = chat_client
    state["services"] = _services(StubOrchestrator([RuntimeError("database connection reset by 10.0.0.5")]))

    response = client.post("/ai/chat", json={"message": "what's my balance?"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["errorCode"] == "PROCESSING_ERROR"
    assert data["error"] == "I'm having trouble fetching your data right now. Please try again shortly."
    assert "10.0.0.5" not in response.text
    assert _messages(state["services"], owner_id, data["threadId"]) == [
        ("user", "what's my balance?"),
        ("assistant", "I encountered an issue: I'm having trouble fetching your data right now. Please try again shortly."),
    ]


class SleepingOrchestrator:
    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0
        self.previous_ids: list[str | None] = []

    async def chat(self, message, user_id, previous_response_id=None, singlish=False):
        self.previous_ids.append(previous_response_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.05)
        self.active -= 1
        return ChatResult(response=f"Reply to {message}", tools_used=[], response_id=f"resp_{len(self.previous_ids)}")


def _post_concurrently(services: AppServices, user_id, bodies):
    test_app = FastAPI()
    test_app.include_router(ai_router.router)
    test_app.dependency_overrides[get_services] = lambda: services
    test_app.dependency_overrides[ai_router.get_optional_user_id] = lambda: user_id

    async def scenario():
        transport = httpx.ASGITransport(app=test_app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            return await asyncio.gather(*(client.post("/ai/chat", json=body) for body in bodies))

    return _run(scenario())


def test_chats_on_one_thread_run_one_at_a_time() -> None:
    user_id = uuid4()
    orchestrator = SleepingOrchestrator()
    services = _services(orchestrator)
    thread = _run(services.thread_store.create_thread(str(user_id)))

    responses = _post_concurrently(
        services,
        user_id,
        [{"message": "first", "threadId": thread.id}, {"message": "second", "threadId": thread.id}],
    )

    assert [response.status_code for response in responses] == [200, 200]
    assert orchestrator.max_active == 1
    assert orchestrator.previous_ids == [None, "resp_1"]

    messages = _messages(services, str(user_id), thread.id)
    assert [role for role, _content in messages] == ["user", "assistant", "user", "assistant"]
    assert messages[1][1] == f"Reply to {messages[0][1]}"
    assert messages[3][1] == f"Reply to {messages[2][1]}"


def test_chats_on_different_threads_overlap() -> None:
    user_id = uuid4()
    orchestrator = SleepingOrchestrator()
    services = _services(orchestrator)

    responses = _post_concurrently(services, user_id, [{"message": "first"}, {"message": "second"}])

    assert [response.status_code for response in responses] == [200, 200]
    assert orchestrator.max_active == 2
    assert responses[0].json()["threadId"] != responses[1].json()["threadId"]

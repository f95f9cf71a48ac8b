"""FastAPI router for the financial assistant: `/ai/chat` and thread management."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from foracle.ai.errors import ChatTimeoutError, format_user_friendly_error
from foracle.ai.openai_client import LLMServiceUnavailableError
from foracle.ai.rate_limiter import QuotaInfo
from foracle.ai.threads import Message, Thread, ThreadSummary, new_thread_id
from foracle.ai.tools import short_user_id
from foracle.auth import get_current_user_id, get_optional_user_id
from foracle.dependencies import AppServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

MAX_MESSAGE_CHARS = 2000


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(CamelModel):
    message: Any = None
    thread_id: str | None = None
    singlish_mode: bool = False


class QuotaPayload(CamelModel):
    used: int
    limit: int
    reset_at: datetime


class ChatResponse(CamelModel):
    success: bool
    response: str | None = None
    thread_id: str | None = None
    tools_used: list[str] | None = None
    quota: QuotaPayload | None = None
    error: str | None = None
    error_code: str | None = None


class MessagePayload(CamelModel):
    id: str
    role: str
    content: str
    tools_used: list[str] | None = None
    created_at: datetime


class ThreadPayload(CamelModel):
    id: str
    title: str
    messages: list[MessagePayload] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ThreadSummaryPayload(CamelModel):
    id: str
    title: str
    last_message: str
    message_count: int
    created_at: datetime
    updated_at: datetime


class ThreadResponse(CamelModel):
    success: bool = True
    thread: ThreadPayload
    quota: QuotaPayload | None = None


class ThreadListResponse(CamelModel):
    success: bool = True
    threads: list[ThreadSummaryPayload]
    quota: QuotaPayload


class RenameThreadRequest(CamelModel):
    thread_id: str | None = None
    title: str | None = None


class SuccessResponse(BaseModel):
    success: bool = True


def _quota_payload(info: QuotaInfo) -> QuotaPayload:
    return QuotaPayload(used=info.used, limit=info.limit, reset_at=info.reset_at)


def _chat_json(status_code: int, payload: ChatResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def _chat_error(
    status_code: int,
    error_code: str,
    error: str,
    *,
    thread_id: str | None = None,
    quota: QuotaInfo | None = None,
) -> JSONResponse:
    return _chat_json(
        status_code,
        ChatResponse(
            success=False,
            error=error,
            error_code=error_code,
            thread_id=thread_id,
            quota=_quota_payload(quota) if quota is not None else None,
        ),
    )


def _message_payload(message: Message) -> MessagePayload:
    return MessagePayload(
        id=message.id,
        role=message.role,
        content=message.content,
        tools_used=message.tools_used,
        created_at=message.created_at,
    )


def _thread_payload(thread: Thread) -> ThreadPayload:
    return ThreadPayload(
        id=thread.id,
        title=thread.title,
        messages=[_message_payload(message) for message in thread.messages],
        created_at=thread.created_at,
        updated_at=thread.updated_at,
    )


def _summary_payload(summary: ThreadSummary) -> ThreadSummaryPayload:
    return ThreadSummaryPayload(
        id=summary.id,
        title=summary.title,
        last_message=summary.last_message,
        message_count=summary.message_count,
        created_at=summary.created_at,
        updated_at=summary.updated_at,
    )


async def _parse_chat_request(request: Request) -> ChatRequest | JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        return _chat_error(400, "INVALID_REQUEST", "Request body must be valid JSON.")
    if not isinstance(body, dict):
        return _chat_error(400, "INVALID_REQUEST", "Request body must be a JSON object.")

    try:
        payload = ChatRequest.model_validate(body)
    except ValidationError:
        return _chat_error(400, "INVALID_REQUEST", "Request body has invalid fields.")

    if not isinstance(payload.message, str) or not payload.message.strip():
        return _chat_error(400, "MISSING_MESSAGE", "Message is required.")
    if len(payload.message) > MAX_MESSAGE_CHARS:
        return _chat_error(
            400,
            "MESSAGE_TOO_LONG",
            f"Message is too long. Maximum length is {MAX_MESSAGE_CHARS} characters.",
        )
    return payload


@router.post("/chat")
async def ai_chat(
    request: Request,
    user_id: UUID | None = Depends(get_optional_user_id),
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """
    Chat endpoint: rate limit, persist the user turn, run the orchestrator, persist the reply.

    Example request:
    {"message": "How much did I spend on food in 2026-02?", "threadId": null}

    Example response:
    {
      "success": true,
      "response": "You spend S$650.00 a month on Food ...",
      "threadId": "thread_...",
      "toolsUsed": ["get_expenses_summary"],
      "quota": {"used": 3, "limit": 50, "resetAt": "2026-02-21T00:00:00+08:00"}
    }
    """
    if user_id is None:
        return _chat_error(401, "UNAUTHORIZED", "Please sign in to use the assistant.")

    parsed = await _parse_chat_request(request)
    if isinstance(parsed, JSONResponse):
        return parsed

    owner_id = str(user_id)
    lock_key = parsed.thread_id or new_thread_id()
    try:
        async with services.chat_locks.hold(lock_key):
            return await _handle_chat(services, owner_id, parsed, lock_key)
    except Exception:
        logger.exception("chat_internal_error user=%s", short_user_id(owner_id))
        return _chat_error(500, "INTERNAL_ERROR", "An unexpected error occurred. Please try again.")


async def _handle_chat(services: AppServices, owner_id: str, payload: ChatRequest, lock_key: str) -> JSONResponse:
    store = services.thread_store
    message = payload.message.strip()

    thread = await store.get_thread(owner_id, payload.thread_id) if payload.thread_id else None
    # Unknown or foreign thread ids start a fresh thread instead of failing.
    thread_id = thread.id if thread is not None else (lock_key if not payload.thread_id else new_thread_id())

    check = await services.rate_limiter.acquire(owner_id, thread_id)
    if not check.allowed:
        quota = await services.rate_limiter.get_user_quota_info(owner_id)
        return _chat_error(
            429,
            "RATE_LIMITED",
            check.error or "Rate limit exceeded.",
            thread_id=thread.id if thread is not None else None,
            quota=quota,
        )

    if thread is None:
        thread = await store.create_thread(owner_id, message, thread_id=thread_id)
    await store.add_message_to_thread(owner_id, thread_id, "user", message)

    orchestrator = services.orchestrator
    if orchestrator is None:
        quota = await services.rate_limiter.get_user_quota_info(owner_id)
        return _chat_error(
            503,
            "SERVICE_NOT_CONFIGURED",
            "The assistant is not configured right now. Please try again later.",
            thread_id=thread_id,
            quota=quota,
        )

    try:
        result = await orchestrator.chat(
            message,
            owner_id,
            previous_response_id=thread.last_response_id,
            singlish=payload.singlish_mode,
        )
    except ChatTimeoutError:
        quota = await services.rate_limiter.get_user_quota_info(owner_id)
        return _chat_error(
            504,
            "TIMEOUT",
            "That took too long to process. Please try again.",
            thread_id=thread_id,
            quota=quota,
        )
    except LLMServiceUnavailableError as exc:
        logger.warning("llm_unavailable user=%s status=%s", short_user_id(owner_id), exc.status_code)
        quota = await services.rate_limiter.get_user_quota_info(owner_id)
        return _chat_error(
            503,
            "SERVICE_UNAVAILABLE",
            "The assistant is temporarily unavailable. Please try again shortly.",
            thread_id=thread_id,
            quota=quota,
        )
    except Exception as exc:
        logger.warning("chat_processing_error user=%s error=%s", short_user_id(owner_id), type(exc).__name__)
        friendly = format_user_friendly_error(exc)
        await store.add_message_to_thread(owner_id, thread_id, "assistant", f"I encountered an issue: {friendly}")
        quota = await services.rate_limiter.get_user_quota_info(owner_id)
        return _chat_error(200, "PROCESSING_ERROR", friendly, thread_id=thread_id, quota=quota)

    if result.response_id:
        await store.update_thread_response_id(owner_id, thread_id, result.response_id, result.conversation_id)
    await store.add_message_to_thread(owner_id, thread_id, "assistant", result.response, result.tools_used)

    quota = await services.rate_limiter.get_user_quota_info(owner_id)
    return _chat_json(
        200,
        ChatResponse(
            success=True,
            response=result.response,
            thread_id=thread_id,
            tools_used=result.tools_used,
            quota=_quota_payload(quota),
        ),
    )


@router.get("/threads", response_model=None)
async def get_threads(
    thread_id: str | None = Query(default=None, alias="threadId"),
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    owner_id = str(user_id)
    quota = _quota_payload(await services.rate_limiter.get_user_quota_info(owner_id))

    if thread_id:
        thread = await services.thread_store.get_thread(owner_id, thread_id)
        if thread is None:
            raise HTTPException(status_code=404, detail="Thread not found")
        response = ThreadResponse(thread=_thread_payload(thread), quota=quota)
    else:
        summaries = await services.thread_store.get_user_threads(owner_id)
        response = ThreadListResponse(threads=[_summary_payload(item) for item in summaries], quota=quota)

    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/threads")
async def create_thread(
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    thread = await services.thread_store.create_thread(str(user_id))
    return ThreadResponse(thread=_thread_payload(thread)).model_dump(mode="json", by_alias=True, exclude_none=True)


@router.delete("/threads", response_model=SuccessResponse)
async def delete_thread(
    thread_id: str | None = Query(default=None, alias="threadId"),
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> SuccessResponse:
    if not thread_id:
        raise HTTPException(status_code=400, detail="Thread ID required")

    deleted = await services.thread_store.delete_thread(str(user_id), thread_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Thread not found")
    return SuccessResponse()


@router.patch("/threads", response_model=SuccessResponse)
async def rename_thread(
    payload: RenameThreadRequest,
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> SuccessResponse:
    if not payload.thread_id or payload.title is None:
        raise HTTPException(status_code=400, detail="Thread ID and title required")
    if not payload.title.strip():
        raise HTTPException(status_code=400, detail="Title must not be empty")

    renamed = await services.thread_store.rename_thread(str(user_id), payload.thread_id, payload.title)
    if not renamed:
        raise HTTPException(status_code=404, detail="Thread not found")
    return SuccessResponse()


@router.delete("/threads/messages", response_model=SuccessResponse)
async def clear_thread_messages(
    thread_id: str = Query(alias="threadId", min_length=1),
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> SuccessResponse:
    cleared = await services.thread_store.clear_thread_messages(str(user_id), thread_id)
    if not cleared:
        raise HTTPException(status_code=404, detail="Thread not found")
    return SuccessResponse()

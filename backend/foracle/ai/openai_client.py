"""Minimal OpenAI Responses API wrapper with tool-calling support and retry handling."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class LLMError(Exception):
    """Base exception for LLM client errors."""


class LLMRequestError(LLMError):
    """Raised when the provider rejects a request."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class LLMServiceUnavailableError(LLMRequestError):
    """Raised when the provider is unreachable, unauthorized, or still failing after retries."""


class LLMResponseError(LLMError):
    """Raised when the provider response shape cannot be parsed."""


@dataclass
class ToolCall:
    """One function call emitted by the model."""

    call_id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMResult:
    """Parsed model response payload."""

    response_id: str
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    conversation_id: str | None = None


class OpenAIResponsesClient:
    """Thin client for `POST /responses` with function tools and response chaining."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    def _delay(self, attempt: int) -> float:
        return self.backoff_seconds * (2**attempt) + random.uniform(0, self.backoff_seconds)

    async def create_response(
        self,
        *,
        input_items: list[dict[str, Any]],
        instructions: str,
        tools: list[dict[str, Any]],
        previous_response_id: str | None = None,
    ) -> LLMResult:
        """Send one turn (user message or tool outputs) and parse text plus function calls."""
        body: dict[str, Any] = {
            "model": self.model,
            "instructions": instructions,
            "input": input_items,
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["parameters"],
                    "strict": False,
                }
                for tool in tools
            ]
            body["tool_choice"] = "auto"
        if previous_response_id:
            body["previous_response_id"] = previous_response_id

        url = f"{self.base_url}/responses"
        headers = {"Authorization": f"Bearer {self.api_key}"}

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                    response = await client.post(url, headers=headers, json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt < self.max_retries:
                    logger.warning("llm_transport_retry attempt=%s error=%s", attempt + 1, type(exc).__name__)
                    await asyncio.sleep(self._delay(attempt))
                    continue
                raise LLMServiceUnavailableError(503, "LLM provider unreachable") from exc

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                logger.warning("llm_status_retry attempt=%s status=%s", attempt + 1, response.status_code)
                await asyncio.sleep(self._delay(attempt))
                continue

            if response.status_code in {401, 403}:
                raise LLMServiceUnavailableError(response.status_code, "LLM provider authentication failed")
            if response.status_code in RETRYABLE_STATUS_CODES:
                raise LLMServiceUnavailableError(response.status_code, "LLM provider unavailable after retries")
            if response.status_code >= 400:
                raise LLMRequestError(response.status_code, response.text[:500])

            try:
                payload = response.json()
            except ValueError as exc:
                raise LLMResponseError("Invalid JSON from LLM provider") from exc

            return self._parse_response(payload)

        raise LLMServiceUnavailableError(503, "LLM request failed")

    def _parse_response(self, payload: dict[str, Any]) -> LLMResult:
        response_id = payload.get("id")
        if not isinstance(response_id, str) or not response_id:
            raise LLMResponseError("LLM response missing id")

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        for item in payload.get("output") or []:
            item_type = item.get("type")

            if item_type == "message":
                for part in item.get("content") or []:
                    text = part.get("text")
                    if part.get("type") == "output_text" and isinstance(text, str):
                        text_parts.append(text)
                continue

            if item_type != "function_call":
                continue

            name = str(item.get("name") or "").strip()
            call_id = str(item.get("call_id") or item.get("id") or "").strip()
            args_raw = item.get("arguments", {})

            if isinstance(args_raw, str):
                try:
                    parsed_args = json.loads(args_raw) if args_raw.strip() else {}
                except ValueError:
                    parsed_args = {"_raw": args_raw}
            elif isinstance(args_raw, dict):
                parsed_args = args_raw
            else:
                parsed_args = {}

            if not isinstance(parsed_args, dict):
                parsed_args = {"_raw": parsed_args}

            if name and call_id:
                tool_calls.append(ToolCall(call_id=call_id, name=name, arguments=parsed_args))

        conversation = payload.get("conversation")
        conversation_id = conversation.get("id") if isinstance(conversation, dict) else conversation

        return LLMResult(
            response_id=response_id,
            text="".join(text_parts).strip(),
            tool_calls=tool_calls,
            conversation_id=conversation_id if isinstance(conversation_id, str) else None,
        )

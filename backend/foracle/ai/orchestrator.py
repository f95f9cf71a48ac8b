"""Turns one user message into tool calls and a final reply.

Flow per turn:
1. send the message, system instructions and tool declarations to the provider,
   chaining onto `previous_response_id` when the thread has one;
2. run every requested tool call through the registry with the caller's own id,
   concurrently within a round, and send the results back as `function_call_output`;
3. repeat until the model answers without tool calls or the round cap is hit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Protocol

from foracle.ai.errors import ChatTimeoutError
from foracle.ai.openai_client import LLMResult
from foracle.ai.prompt import build_system_prompt
from foracle.ai.tools import ToolRegistry, short_user_id
from foracle.services.month_dates import now_in_timezone

if TYPE_CHECKING:
    from foracle.vectors.retrieval import RetrievalService
else:
    RetrievalService = Any

logger = logging.getLogger(__name__)

ROUNDS_EXHAUSTED_MESSAGE = (
    "I couldn't complete that request. Please try rephrasing or asking something more specific."
)
EMPTY_RESPONSE_MESSAGE = "I apologize, but I couldn't generate a response."


class LLMClient(Protocol):
    async def create_response(
        self,
        *,
        input_items: list[dict[str, Any]],
        instructions: str,
        tools: list[dict[str, Any]],
        previous_response_id: str | None = None,
    ) -> LLMResult: ...


@dataclass
class ChatResult:
    response: str
    tools_used: list[str] = field(default_factory=list)
    response_id: str | None = None
    conversation_id: str | None = None


def with_data_used_footer(text: str, tools_used: list[str]) -> str:
    if not tools_used or "data used" in text.lower():
        return text
    names = ", ".join(f"`{name}`" for name in tools_used)
    return f"{text}\n\n**Data used:** {names}"


class Orchestrator:
    def __init__(
        self,
        client: LLMClient,
        registry: ToolRegistry,
        *,
        retrieval: RetrievalService | None = None,
        use_retrieval_context: bool = True,
        max_tool_rounds: int = 5,
        chat_timeout_seconds: float = 60.0,
        timezone_name: str = "Asia/Singapore",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.retrieval = retrieval
        self.use_retrieval_context = use_retrieval_context
        self.max_tool_rounds = max_tool_rounds
        self.chat_timeout_seconds = chat_timeout_seconds
        self._clock = clock or (lambda: now_in_timezone(timezone_name))

    async def chat(
        self,
        message: str,
        user_id: str,
        previous_response_id: str | None = None,
        singlish: bool = False,
    ) -> ChatResult:
        try:
            return await asyncio.wait_for(
                self._run_turn(message, user_id, previous_response_id, singlish),
                timeout=self.chat_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("chat_timeout user=%s after=%ss", short_user_id(user_id), self.chat_timeout_seconds)
            raise ChatTimeoutError(f"Chat turn timed out after {self.chat_timeout_seconds:g}s") from exc

    async def _retrieval_context(self, message: str, user_id: str) -> str:
        if self.retrieval is None or not self.use_retrieval_context:
            return ""
        try:
            results = await self.retrieval.search_all(user_id, message, limit=5)
        except Exception:
            logger.warning("retrieval_failed user=%s; continuing without context", short_user_id(user_id), exc_info=True)
            return ""
        return self.retrieval.build_context(results)

    async def _run_turn(
        self,
        message: str,
        user_id: str,
        previous_response_id: str | None,
        singlish: bool,
    ) -> ChatResult:
        instructions = build_system_prompt(
            self._clock(),
            singlish=singlish,
            retrieval_context=await self._retrieval_context(message, user_id),
        )
        tools = self.registry.tool_schemas()

        result = await self.client.create_response(
            input_items=[{"role": "user", "content": message}],
            instructions=instructions,
            tools=tools,
            previous_response_id=previous_response_id,
        )

        tools_used: list[str] = []
        rounds = 0
        while result.tool_calls:
            if rounds >= self.max_tool_rounds:
                logger.warning("tool_rounds_exhausted user=%s rounds=%s", short_user_id(user_id), rounds)
                # The last response still has unanswered calls, so the thread keeps its old continuation.
                return ChatResult(
                    response=ROUNDS_EXHAUSTED_MESSAGE,
                    tools_used=tools_used,
                    response_id=previous_response_id,
                    conversation_id=result.conversation_id,
                )
            rounds += 1

            executions = await asyncio.gather(
                *(self.registry.execute(call.name, call.arguments, user_id) for call in result.tool_calls)
            )

            outputs: list[dict[str, Any]] = []
            for call, execution in zip(result.tool_calls, executions):
                if self.registry.get(call.name) is not None and call.name not in tools_used:
                    tools_used.append(call.name)
                if execution.success:
                    output: Any = execution.data
                else:
                    output = {"error": execution.error, "category": execution.error_category}
                outputs.append(
                    {
                        "type": "function_call_output",
                        "call_id": call.call_id,
                        "output": json.dumps(output, separators=(",", ":"), default=str),
                    }
                )

            result = await self.client.create_response(
                input_items=outputs,
                instructions=instructions,
                tools=tools,
                previous_response_id=result.response_id,
            )

        text = result.text.strip() or EMPTY_RESPONSE_MESSAGE
        return ChatResult(
            response=with_data_used_footer(text, tools_used),
            tools_used=tools_used,
            response_id=result.response_id,
            conversation_id=result.conversation_id,
        )

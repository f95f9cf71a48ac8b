"""Embeddings client over Voyage AI, OpenAI or Gemini, with batching and retries."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Literal

import httpx

logger = logging.getLogger(__name__)

ProviderName = Literal["voyage", "openai", "gemini"]
InputType = Literal["document", "query"]

BATCH_SIZE = 100
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class EmbeddingsError(Exception):
    """Raised when an embeddings request fails or returns an unusable payload."""


@dataclass(frozen=True)
class ProviderSpec:
    model: str
    dimensions: int


PROVIDERS: dict[str, ProviderSpec] = {
    "voyage": ProviderSpec(model="voyage-3-lite", dimensions=512),
    "openai": ProviderSpec(model="text-embedding-3-small", dimensions=1536),
    "gemini": ProviderSpec(model="text-embedding-004", dimensions=768),
}


class EmbeddingsClient:
    """`embed`, `embed_batch` and `embed_query` for one configured provider."""

    def __init__(
        self,
        *,
        provider: ProviderName,
        api_key: str,
        model: str | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if provider not in PROVIDERS:
            raise EmbeddingsError(f"Unsupported embeddings provider: {provider}")
        if not api_key:
            raise EmbeddingsError(f"Missing API key for embeddings provider: {provider}")

        self.provider = provider
        self.api_key = api_key
        self.model = model or PROVIDERS[provider].model
        self.dimensions = PROVIDERS[provider].dimensions
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self._embed_chunk([text], input_type="query")
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), BATCH_SIZE):
            vectors.extend(await self._embed_chunk(texts[offset : offset + BATCH_SIZE], input_type="document"))
        return vectors

    def _request(self, texts: list[str], input_type: InputType) -> tuple[str, dict[str, str], dict[str, Any]]:
        if self.provider == "voyage":
            return (
                "https://api.voyageai.com/v1/embeddings",
                {"Authorization": f"Bearer {self.api_key}"},
                {"model": self.model, "input": texts, "input_type": input_type},
            )
        if self.provider == "openai":
            return (
                "https://api.openai.com/v1/embeddings",
                {"Authorization": f"Bearer {self.api_key}"},
                {"model": self.model, "input": texts},
            )
        task_type = "RETRIEVAL_QUERY" if input_type == "query" else "RETRIEVAL_DOCUMENT"
        return (
            f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:batchEmbedContents",
            {"x-goog-api-key": self.api_key},
            {
                "requests": [
                    {
                        "model": f"models/{self.model}",
                        "content": {"parts": [{"text": text}]},
                        "taskType": task_type,
                    }
                    for text in texts
                ]
            },
        )

    def _parse(self, payload: dict[str, Any], expected: int) -> list[list[float]]:
        try:
            if self.provider == "gemini":
                vectors = [item["values"] for item in payload["embeddings"]]
            else:
                rows = sorted(payload["data"], key=lambda item: item.get("index", 0))
                vectors = [item["embedding"] for item in rows]
        except (KeyError, TypeError) as exc:
            raise EmbeddingsError(f"Unexpected {self.provider} embeddings payload") from exc

        if len(vectors) != expected:
            raise EmbeddingsError(f"Expected {expected} embeddings from {self.provider}, got {len(vectors)}")
        return vectors

    async def _embed_chunk(self, texts: list[str], *, input_type: InputType) -> list[list[float]]:
        if not texts:
            return []

        url, headers, body = self._request(texts, input_type)
        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                    response = await client.post(url, headers=headers, json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_seconds * (2**attempt) + random.uniform(0, self.backoff_seconds))
                    continue
                raise EmbeddingsError(f"{self.provider} embeddings request failed") from exc

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                await asyncio.sleep(self.backoff_seconds * (2**attempt) + random.uniform(0, self.backoff_seconds))
                continue

            if response.status_code >= 400:
                raise EmbeddingsError(f"{self.provider} embeddings API error: {response.status_code}")

            try:
                payload = response.json()
            except ValueError as exc:
                raise EmbeddingsError(f"Invalid JSON from {self.provider} embeddings API") from exc

            vectors = self._parse(payload, len(texts))
            logger.debug("embedded %s text(s) with %s/%s", len(texts), self.provider, self.model)
            return vectors

        raise EmbeddingsError(f"{self.provider} embeddings request failed")


def build_embeddings_client(
    provider: str,
    *,
    voyage_api_key: str = "",
    openai_api_key: str = "",
    gemini_api_key: str = "",
) -> EmbeddingsClient | None:
    """Return a client for the configured provider, or None when its key is not set."""
    keys = {"voyage": voyage_api_key, "openai": openai_api_key, "gemini": gemini_api_key}
    api_key = keys.get(provider, "")
    if not api_key:
        return None
    return EmbeddingsClient(provider=provider, api_key=api_key)

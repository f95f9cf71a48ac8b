from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from foracle.vectors.embeddings import EmbeddingsClient, EmbeddingsError, build_embeddings_client


def _run(coro):
    return asyncio.run(coro)


def _client(provider: str, handler, **kwargs) -> EmbeddingsClient:
    return EmbeddingsClient(
        provider=provider,
        api_key="test-key",
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _openai_style(texts: list[str]) -> dict:
    return {"data": [{"index": index, "embedding": [float(index), 1.0]} for index in range(len(texts))]}


def test_voyage_query_uses_query_input_type() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1, 0.2]}]})

    vector = _run(_client("voyage", handler).embed_query("What is CPF?"))

    assert vector == [0.1, 0.2]
    (request,) = requests
    assert str(request.url) == "https://api.voyageai.com/v1/embeddings"
    assert request.headers["Authorization"] == "Bearer test-key"
    body = json.loads(request.content)
    assert body == {"model": "voyage-3-lite", "input": ["What is CPF?"], "input_type": "query"}


def test_batches_are_split_at_one_hundred() -> None:
    sizes: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        sizes.append(len(body["input"]))
        assert body["input_type"] == "document"
        return httpx.Response(200, json=_openai_style(body["input"]))

    vectors = _run(_client("voyage", handler).embed_batch([f"text {index}" for index in range(150)]))

    assert sizes == [100, 50]
    assert len(vectors) == 150


def test_openai_rows_are_ordered_by_index() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert "input_type" not in body
        return httpx.Response(
            200,
            json={"data": [{"index": 1, "embedding": [2.0]}, {"index": 0, "embedding": [1.0]}]},
        )

    client = _client("openai", handler)

    assert client.dimensions == 1536
    assert _run(client.embed_batch(["a", "b"])) == [[1.0], [2.0]]


def test_gemini_request_and_parse() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"embeddings": [{"values": [0.5, 0.5]}]})

    vector = _run(_client("gemini", handler).embed("Emergency funds"))

    assert vector == [0.5, 0.5]
    (request,) = requests
    assert str(request.url).endswith("/models/text-embedding-004:batchEmbedContents")
    assert request.headers["x-goog-api-key"] == "test-key"
    body = json.loads(request.content)
    assert body["requests"][0]["taskType"] == "RETRIEVAL_DOCUMENT"
    assert body["requests"][0]["content"] == {"parts": [{"text": "Emergency funds"}]}


def test_retryable_status_is_retried() -> None:
    statuses = iter([503, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status != 200:
            return httpx.Response(status, json={"error": "busy"})
        return httpx.Response(200, json=_openai_style(["x"]))

    assert _run(_client("voyage", handler).embed("x")) == [0.0, 1.0]


def test_client_errors_are_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(EmbeddingsError, match="401"):
        _run(_client("voyage", handler).embed("x"))
    assert len(calls) == 1


def test_transport_errors_exhaust_retries() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused")

    with pytest.raises(EmbeddingsError):
        _run(_client("voyage", handler, max_retries=2).embed("x"))
    assert len(calls) == 3


def test_vector_count_mismatch_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

    with pytest.raises(EmbeddingsError, match="Expected 2"):
        _run(_client("voyage", handler).embed_batch(["a", "b"]))


def test_unexpected_payload_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(EmbeddingsError):
        _run(_client("voyage", handler).embed("x"))


def test_empty_batch_makes_no_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert _run(_client("voyage", handler).embed_batch([])) == []


def test_client_configuration() -> None:
    assert build_embeddings_client("voyage") is None
    assert build_embeddings_client("gemini", voyage_api_key="v-key") is None

    client = build_embeddings_client("voyage", voyage_api_key="v-key")
    assert client.provider == "voyage"
    assert client.dimensions == 512

    with pytest.raises(EmbeddingsError):
        EmbeddingsClient(provider="cohere", api_key="key")
    with pytest.raises(EmbeddingsError):
        EmbeddingsClient(provider="voyage", api_key="")

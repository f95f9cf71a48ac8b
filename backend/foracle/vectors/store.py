"""Similarity search over the shared knowledge base and per-user private chunks.

The `user-store` corpus is tenant-scoped: every operation on it requires a
`user_id`, and rows belonging to other users are never returned.
"""

from __future__ import annotations

import json
import math
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from psycopg_pool import AsyncConnectionPool
else:
    AsyncConnectionPool = Any

Corpus = Literal["knowledge-base", "user-store"]
KNOWLEDGE_BASE: Corpus = "knowledge-base"
USER_STORE: Corpus = "user-store"


@dataclass
class StoredChunk:
    doc_id: str
    chunk_index: int
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    id: str = field(default_factory=lambda: f"chunk_{uuid.uuid4().hex}")


@dataclass
class SearchOptions:
    limit: int = 5
    min_similarity: float = 0.5
    doc_id: str | None = None
    user_id: str | None = None


@dataclass
class SearchResult:
    id: str
    doc_id: str
    chunk_index: int
    content: str
    metadata: dict[str, Any]
    similarity: float
    source: Literal["kb", "user"] | None = None


@dataclass
class DocumentInfo:
    doc_id: str
    chunk_count: int


def _require_user(corpus: Corpus, user_id: str | None) -> None:
    if corpus == USER_STORE and not user_id:
        raise ValueError("user_id is required for the user-store corpus")


def cosine_similarity(left: list[float], right: list[float]) -> float:
    if len(left) != len(right):
        raise ValueError("Vectors must have the same dimensions")
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


class VectorStore:
    async def search(self, corpus: Corpus, query_vector: list[float], options: SearchOptions) -> list[SearchResult]:
        raise NotImplementedError

    async def insert_chunks(self, corpus: Corpus, chunks: list[StoredChunk]) -> int:
        raise NotImplementedError

    async def delete_document(self, corpus: Corpus, doc_id: str, user_id: str | None = None) -> int:
        raise NotImplementedError

    async def replace_document(
        self, corpus: Corpus, doc_id: str, chunks: list[StoredChunk], user_id: str | None = None
    ) -> tuple[int, int]:
        """Swap every chunk of `doc_id` for `chunks` in one step. Returns (removed, inserted)."""
        raise NotImplementedError

    async def list_documents(self, corpus: Corpus, user_id: str | None = None) -> list[DocumentInfo]:
        raise NotImplementedError


class InMemoryVectorStore(VectorStore):
    def __init__(self) -> None:
        self._chunks: dict[str, list[StoredChunk]] = {KNOWLEDGE_BASE: [], USER_STORE: []}

    def _visible(self, corpus: Corpus, user_id: str | None) -> list[StoredChunk]:
        rows = self._chunks[corpus]
        if corpus == USER_STORE:
            return [row for row in rows if row.user_id == user_id]
        return list(rows)

    async def search(self, corpus: Corpus, query_vector: list[float], options: SearchOptions) -> list[SearchResult]:
        _require_user(corpus, options.user_id)
        scored = []
        for row in self._visible(corpus, options.user_id):
            if options.doc_id and row.doc_id != options.doc_id:
                continue
            similarity = cosine_similarity(query_vector, row.embedding)
            if similarity < options.min_similarity:
                continue
            scored.append(
                SearchResult(
                    id=row.id,
                    doc_id=row.doc_id,
                    chunk_index=row.chunk_index,
                    content=row.content,
                    metadata=dict(row.metadata),
                    similarity=similarity,
                )
            )
        scored.sort(key=lambda item: item.similarity, reverse=True)
        return scored[: options.limit]

    async def insert_chunks(self, corpus: Corpus, chunks: list[StoredChunk]) -> int:
        for chunk in chunks:
            _require_user(corpus, chunk.user_id)
        self._chunks[corpus].extend(chunks)
        return len(chunks)

    async def delete_document(self, corpus: Corpus, doc_id: str, user_id: str | None = None) -> int:
        _require_user(corpus, user_id)
        rows = self._chunks[corpus]
        keep = [
            row
            for row in rows
            if not (row.doc_id == doc_id and (corpus == KNOWLEDGE_BASE or row.user_id == user_id))
        ]
        removed = len(rows) - len(keep)
        self._chunks[corpus] = keep
        return removed

    async def replace_document(
        self, corpus: Corpus, doc_id: str, chunks: list[StoredChunk], user_id: str | None = None
    ) -> tuple[int, int]:
        for chunk in chunks:
            _require_user(corpus, chunk.user_id)
        removed = await self.delete_document(corpus, doc_id, user_id)
        self._chunks[corpus].extend(chunks)
        return removed, len(chunks)

    async def list_documents(self, corpus: Corpus, user_id: str | None = None) -> list[DocumentInfo]:
        _require_user(corpus, user_id)
        counts: dict[str, int] = defaultdict(int)
        for row in self._visible(corpus, user_id):
            counts[row.doc_id] += 1
        return [DocumentInfo(doc_id=doc_id, chunk_count=count) for doc_id, count in sorted(counts.items())]


def _vector_literal(vector: list[float]) -> str:
    return "[" + ",".join(repr(float(value)) for value in vector) + "]"


class PostgresVectorStore(VectorStore):
    """pgvector tables `kb_chunks` and `user_chunks`; similarity is `1 - cosine distance`."""

    _TABLES = {KNOWLEDGE_BASE: "kb_chunks", USER_STORE: "user_chunks"}

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def search(self, corpus: Corpus, query_vector: list[float], options: SearchOptions) -> list[SearchResult]:
        _require_user(corpus, options.user_id)
        table = self._TABLES[corpus]
        vector = _vector_literal(query_vector)

        conditions = ["embedding IS NOT NULL"]
        params: list[Any] = [vector]
        if corpus == USER_STORE:
            conditions.append("user_id = %s")
            params.append(options.user_id)
        if options.doc_id:
            conditions.append("doc_id = %s")
            params.append(options.doc_id)
        params.extend([vector, options.limit])

        query = f"""
            SELECT id, doc_id, chunk_index, content, metadata,
                   1 - (embedding <=> %s::vector) AS similarity
            FROM {table}
            WHERE {" AND ".join(conditions)}
            ORDER BY embedding <=> %s::vector
            LIMIT %s
        """
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(query, tuple(params))
                rows = await cursor.fetchall()

        results = []
        for row in rows:
            similarity = float(row["similarity"])
            if similarity < options.min_similarity:
                continue
            results.append(
                SearchResult(
                    id=str(row["id"]),
                    doc_id=row["doc_id"],
                    chunk_index=int(row["chunk_index"]),
                    content=row["content"],
                    metadata=row["metadata"] or {},
                    similarity=similarity,
                )
            )
        return results

    async def _insert_rows(self, cursor: Any, corpus: Corpus, chunks: list[StoredChunk]) -> None:
        if corpus == USER_STORE:
            await cursor.executemany(
                """
                INSERT INTO user_chunks (id, user_id, doc_id, chunk_index, content, embedding, metadata)
                VALUES (%s, %s, %s, %s, %s, %s::vector, %s::jsonb)
                """,
                [
                    (
                        chunk.id,
                        chunk.user_id,
                        chunk.doc_id,
                        chunk.chunk_index,
                        chunk.content,
                        _vector_literal(chunk.embedding),
                        json.dumps(chunk.metadata),
                    )
                    for chunk in chunks
                ],
            )
        else:
            await cursor.executemany(
                """
                INSERT INTO kb_chunks (id, doc_id, chunk_index, content, embedding, metadata)
                VALUES (%s, %s, %s, %s, %s::vector, %s::jsonb)
                """,
                [
                    (
                        chunk.id,
                        chunk.doc_id,
                        chunk.chunk_index,
                        chunk.content,
                        _vector_literal(chunk.embedding),
                        json.dumps(chunk.metadata),
                    )
                    for chunk in chunks
                ],
            )

    async def _delete_rows(self, cursor: Any, corpus: Corpus, doc_id: str, user_id: str | None) -> int:
        if corpus == USER_STORE:
            await cursor.execute("DELETE FROM user_chunks WHERE doc_id = %s AND user_id = %s", (doc_id, user_id))
        else:
            await cursor.execute("DELETE FROM kb_chunks WHERE doc_id = %s", (doc_id,))
        return cursor.rowcount

    async def insert_chunks(self, corpus: Corpus, chunks: list[StoredChunk]) -> int:
        if not chunks:
            return 0
        for chunk in chunks:
            _require_user(corpus, chunk.user_id)

        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await self._insert_rows(cursor, corpus, chunks)
        return len(chunks)

    async def delete_document(self, corpus: Corpus, doc_id: str, user_id: str | None = None) -> int:
        _require_user(corpus, user_id)
        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                return await self._delete_rows(cursor, corpus, doc_id, user_id)

    async def replace_document(
        self, corpus: Corpus, doc_id: str, chunks: list[StoredChunk], user_id: str | None = None
    ) -> tuple[int, int]:
        _require_user(corpus, user_id)
        for chunk in chunks:
            _require_user(corpus, chunk.user_id)

        async with self._pool.connection() as connection:
            async with connection.transaction():
                async with connection.cursor() as cursor:
                    removed = await self._delete_rows(cursor, corpus, doc_id, user_id)
                    if chunks:
                        await self._insert_rows(cursor, corpus, chunks)
        return removed, len(chunks)

    async def list_documents(self, corpus: Corpus, user_id: str | None = None) -> list[DocumentInfo]:
        _require_user(corpus, user_id)
        if corpus == USER_STORE:
            query = """
                SELECT doc_id, COUNT(*) AS chunk_count
                FROM user_chunks
                WHERE user_id = %s
                GROUP BY doc_id
                ORDER BY doc_id
            """
            params: tuple[Any, ...] = (user_id,)
        else:
            query = """
                SELECT doc_id, COUNT(*) AS chunk_count
                FROM kb_chunks
                GROUP BY doc_id
                ORDER BY doc_id
            """
            params = ()

        async with self._pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(query, params)
                rows = await cursor.fetchall()
        return [DocumentInfo(doc_id=row["doc_id"], chunk_count=int(row["chunk_count"])) for row in rows]

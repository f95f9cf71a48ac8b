from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from foracle.ai.keyed_lock import KeyedLocks
from foracle.vectors.chunker import ChunkerConfig, chunk_text
from foracle.vectors.store import (
    KNOWLEDGE_BASE,
    USER_STORE,
    Corpus,
    DocumentInfo,
    SearchOptions,
    SearchResult,
    StoredChunk,
    VectorStore,
)

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


class Embedder(Protocol):
    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...

    async def embed_query(self, text: str) -> list[float]: ...


@dataclass
class IngestDocument:
    doc_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class IngestResult:
    doc_id: str
    chunks_created: int
    embeddings_generated: int


class RetrievalService:
    def __init__(self, store: VectorStore, embedder: Embedder, *, chunker_config: ChunkerConfig | None = None) -> None:
        self.store = store
        self.embedder = embedder
        self.chunker_config = chunker_config or ChunkerConfig()
        self._doc_locks = KeyedLocks()

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        min_similarity: float = 0.5,
        doc_id: str | None = None,
    ) -> list[SearchResult]:
        """Search the shared knowledge base."""
        vector = await self.embedder.embed_query(query)
        return await self.store.search(
            KNOWLEDGE_BASE,
            vector,
            SearchOptions(limit=limit, min_similarity=min_similarity, doc_id=doc_id),
        )

    async def search_user(
        self,
        user_id: str,
        query: str,
        *,
        limit: int = 5,
        min_similarity: float = 0.5,
        doc_id: str | None = None,
    ) -> list[SearchResult]:
        if not user_id:
            raise ValueError("user_id is required for user document search")
        vector = await self.embedder.embed_query(query)
        return await self.store.search(
            USER_STORE,
            vector,
            SearchOptions(limit=limit, min_similarity=min_similarity, doc_id=doc_id, user_id=user_id),
        )

    async def search_all(
        self,
        user_id: str,
        query: str,
        *,
        limit: int = 10,
        min_similarity: float = 0.7,
    ) -> list[SearchResult]:
        """Search both corpora concurrently and merge by similarity."""
        if not user_id:
            raise ValueError("user_id is required for user document search")
        vector = await self.embedder.embed_query(query)
        kb_results, user_results = await asyncio.gather(
            self.store.search(KNOWLEDGE_BASE, vector, SearchOptions(limit=limit, min_similarity=min_similarity)),
            self.store.search(
                USER_STORE,
                vector,
                SearchOptions(limit=limit, min_similarity=min_similarity, user_id=user_id),
            ),
        )
        combined = [replace(item, source="kb") for item in kb_results]
        combined.extend(replace(item, source="user") for item in user_results)
        combined.sort(key=lambda item: item.similarity, reverse=True)
        return combined[:limit]

    async def ingest(self, corpus: Corpus, document: IngestDocument, user_id: str | None = None) -> IngestResult:
        """Chunk, embed and store a document, replacing any earlier version with the same doc_id."""
        if corpus == USER_STORE and not user_id:
            raise ValueError("user_id is required for the user-store corpus")

        config = replace(self.chunker_config, base_metadata={**document.metadata, "doc_id": document.doc_id})
        chunks = chunk_text(document.content, config)

        # Concurrent ingests of one document must not interleave their delete and insert.
        async with self._doc_locks.hold(f"{corpus}:{user_id or ''}:{document.doc_id}"):
            vectors = await self.embedder.embed_batch([chunk.content for chunk in chunks]) if chunks else []
            stored = [
                StoredChunk(
                    doc_id=document.doc_id,
                    chunk_index=chunk.metadata["chunk_index"],
                    content=chunk.content,
                    embedding=vector,
                    metadata=chunk.metadata,
                    user_id=user_id if corpus == USER_STORE else None,
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            removed, created = await self.store.replace_document(corpus, document.doc_id, stored, user_id)

        if removed:
            logger.info("replaced %s chunk(s) of doc_id=%s in %s", removed, document.doc_id, corpus)
        return IngestResult(doc_id=document.doc_id, chunks_created=created, embeddings_generated=len(vectors))

    async def delete_document(self, corpus: Corpus, doc_id: str, user_id: str | None = None) -> int:
        return await self.store.delete_document(corpus, doc_id, user_id)

    async def list_documents(self, corpus: Corpus, user_id: str | None = None) -> list[DocumentInfo]:
        return await self.store.list_documents(corpus, user_id)

    def build_context(
        self, results: list[SearchResult], *, max_length: int = 4000, include_metadata: bool = False
    ) -> str:
        return build_context(results, max_length=max_length, include_metadata=include_metadata)


def build_context(results: list[SearchResult], *, max_length: int = 4000, include_metadata: bool = False) -> str:
    """Format results as prompt context, stopping before `max_length` would be exceeded."""
    parts: list[str] = []
    length = 0

    for result in results:
        header = f"[Source: {result.doc_id}, Chunk {result.chunk_index + 1}]"
        if include_metadata and result.metadata:
            header = f"{header}\nMetadata: {json.dumps(result.metadata, sort_keys=True, default=str)}"
        entry = f"{header}\n{result.content}"

        added = len(entry) + (len(CONTEXT_SEPARATOR) if parts else 0)
        if length + added > max_length:
            break
        parts.append(entry)
        length += added

    return CONTEXT_SEPARATOR.join(parts)

"""Knowledge retrieval endpoints: search, ingest into the caller's corpus, delete."""

from __future__ import annotations

import logging
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from foracle.auth import get_current_user_id
from foracle.dependencies import AppServices, get_services
from foracle.vectors.embeddings import EmbeddingsError
from foracle.vectors.retrieval import IngestDocument, RetrievalService
from foracle.vectors.store import USER_STORE, SearchResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vectors", tags=["vectors"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VectorSearchRequest(CamelModel):
    query: str = Field(min_length=1, max_length=2000)
    source: Literal["kb", "user", "all"] = "all"
    limit: int = Field(default=5, ge=1, le=20)
    min_similarity: float = Field(default=0.5, ge=0, le=1)


class SearchHit(CamelModel):
    id: str
    doc_id: str
    chunk_index: int
    content: str
    metadata: dict[str, Any]
    similarity: float
    source: Literal["kb", "user"] | None = None


class VectorSearchResponse(CamelModel):
    success: bool = True
    results: list[SearchHit]
    count: int


class IngestRequest(CamelModel):
    doc_id: str = Field(min_length=1, max_length=200)
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestResponse(CamelModel):
    success: bool = True
    doc_id: str
    chunks_created: int
    embeddings_generated: int


class DocumentPayload(CamelModel):
    doc_id: str
    chunk_count: int


class DocumentListResponse(CamelModel):
    success: bool = True
    documents: list[DocumentPayload]


class DeleteDocumentResponse(CamelModel):
    success: bool = True
    deleted_chunks: int


def _require_retrieval(services: AppServices) -> RetrievalService:
    if services.retrieval is None:
        raise HTTPException(status_code=503, detail="Knowledge retrieval is not configured")
    return services.retrieval


def _hit(result: SearchResult, source: Literal["kb", "user"] | None = None) -> SearchHit:
    return SearchHit(
        id=result.id,
        doc_id=result.doc_id,
        chunk_index=result.chunk_index,
        content=result.content,
        metadata=result.metadata,
        similarity=result.similarity,
        source=result.source or source,
    )


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/search")
async def search_vectors(
    payload: VectorSearchRequest,
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    """
    Similarity search over the knowledge base, the caller's documents, or both.

    Example request:
    {"query": "CPF contribution rates", "source": "kb", "limit": 3, "minSimilarity": 0.6}
    """
    retrieval = _require_retrieval(services)
    owner_id = str(user_id)

    try:
        if payload.source == "kb":
            results = await retrieval.search(payload.query, limit=payload.limit, min_similarity=payload.min_similarity)
            hits = [_hit(item, "kb") for item in results]
        elif payload.source == "user":
            results = await retrieval.search_user(
                owner_id, payload.query, limit=payload.limit, min_similarity=payload.min_similarity
            )
            hits = [_hit(item, "user") for item in results]
        else:
            results = await retrieval.search_all(
                owner_id, payload.query, limit=payload.limit, min_similarity=payload.min_similarity
            )
            hits = [_hit(item) for item in results]
    except EmbeddingsError as exc:
        logger.warning("vector_search_failed source=%s error=%s", payload.source, exc)
        raise HTTPException(status_code=502, detail="Embedding provider request failed") from exc

    return _dump(VectorSearchResponse(results=hits, count=len(hits)))


@router.post("/ingest")
async def ingest_document(
    payload: IngestRequest,
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    """Chunk, embed and store a document in the caller's private corpus, replacing any earlier version."""
    retrieval = _require_retrieval(services)

    try:
        result = await retrieval.ingest(
            USER_STORE,
            IngestDocument(doc_id=payload.doc_id, content=payload.content, metadata=payload.metadata),
            user_id=str(user_id),
        )
    except EmbeddingsError as exc:
        logger.warning("vector_ingest_failed doc_id=%s error=%s", payload.doc_id, exc)
        raise HTTPException(status_code=502, detail="Embedding provider request failed") from exc

    return _dump(
        IngestResponse(
            doc_id=result.doc_id,
            chunks_created=result.chunks_created,
            embeddings_generated=result.embeddings_generated,
        )
    )


@router.get("/documents")
async def list_documents(
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    retrieval = _require_retrieval(services)
    documents = await retrieval.list_documents(USER_STORE, str(user_id))
    return _dump(
        DocumentListResponse(
            documents=[DocumentPayload(doc_id=item.doc_id, chunk_count=item.chunk_count) for item in documents]
        )
    )


@router.delete("/documents")
async def delete_document(
    doc_id: str = Query(alias="docId", min_length=1),
    user_id: UUID = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    retrieval = _require_retrieval(services)
    removed = await retrieval.delete_document(USER_STORE, doc_id, str(user_id))
    if removed == 0:
        raise HTTPException(status_code=404, detail="Document not found")
    return _dump(DeleteDocumentResponse(deleted_chunks=removed))

"""Split documents into overlapping, bounded passages for embedding."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

ChunkStrategy = Literal["paragraph", "sentence", "fixed"]

_PARAGRAPH_BREAK = re.compile(r"\n\n+")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_SPACES = re.compile(r" +")


@dataclass(frozen=True)
class ChunkerConfig:
    max_chunk_size: int = 500
    overlap: int = 50
    strategy: ChunkStrategy = "paragraph"
    base_metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if self.overlap < 0 or self.overlap >= self.max_chunk_size:
            raise ValueError("overlap must be between 0 and max_chunk_size - 1")


@dataclass(frozen=True)
class TextChunk:
    content: str
    metadata: dict[str, Any]


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\t", " ")
    return _SPACES.sub(" ", text).strip()


def _chunk_fixed(text: str, max_size: int, overlap: int) -> list[str]:
    chunks: list[str] = []
    start = 0

    while start < len(text):
        end = min(start + max_size, len(text))
        piece = text[start:end]

        # Prefer a word boundary when it keeps at least half the window.
        if end < len(text):
            last_space = piece.rfind(" ")
            if last_space > max_size * 0.5:
                piece = piece[:last_space]

        stripped = piece.strip()
        if stripped:
            chunks.append(stripped)

        if start + len(piece) >= len(text):
            break
        start += max(len(piece) - overlap, 1)

    return chunks


def _merge_and_split(segments: list[str], max_size: int, overlap: int) -> list[str]:
    chunks: list[str] = []
    current = ""

    for segment in segments:
        trimmed = segment.strip()
        if not trimmed:
            continue

        if len(trimmed) > max_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_chunk_fixed(trimmed, max_size, overlap))
            continue

        candidate = f"{current}\n\n{trimmed}" if current else trimmed
        if len(candidate) <= max_size:
            current = candidate
        else:
            if current:
                chunks.append(current)
            current = trimmed

    if current:
        chunks.append(current)
    return chunks


def chunk_text(text: str, config: ChunkerConfig | None = None) -> list[TextChunk]:
    """
    Chunk `text` deterministically.

    Each chunk's metadata carries `chunk_index`, `total_chunks` and the
    `start_char`/`end_char` span in the normalized text, merged over
    `config.base_metadata`.
    """
    config = config or ChunkerConfig()
    normalized = normalize_text(text)
    if not normalized:
        return []

    if config.strategy == "fixed":
        raw = _chunk_fixed(normalized, config.max_chunk_size, config.overlap)
    elif config.strategy == "sentence":
        raw = _merge_and_split(_SENTENCE_BREAK.split(normalized), config.max_chunk_size, config.overlap)
    else:
        raw = _merge_and_split(_PARAGRAPH_BREAK.split(normalized), config.max_chunk_size, config.overlap)

    chunks: list[TextChunk] = []
    cursor = 0
    for index, content in enumerate(raw):
        found = normalized.find(content, cursor)
        start = found if found != -1 else cursor
        chunks.append(
            TextChunk(
                content=content,
                metadata={
                    **config.base_metadata,
                    "chunk_index": index,
                    "total_chunks": len(raw),
                    "start_char": start,
                    "end_char": start + len(content),
                },
            )
        )
        cursor = start + 1

    return chunks

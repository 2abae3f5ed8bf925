"""Core data types, errors and abstract storage interfaces."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence


class StorageError(Exception):
    """Base class for all storage failures."""


class DocumentNotFoundError(StorageError):
    """Raised when a document id is not present in a store."""

    def __init__(self, doc_id: str) -> None:
        super().__init__(f"document not found: {doc_id}")
        self.doc_id = doc_id


class VectorNotFoundError(StorageError):
    """Raised when no vector is stored under an id."""

    def __init__(self, doc_id: str) -> None:
        super().__init__(f"vector not found: {doc_id}")
        self.doc_id = doc_id


class DimensionMismatchError(StorageError, ValueError):
    """Raised when a vector's length differs from the store's dimension."""

    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"vector dimension mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StorageUnavailableError(StorageError):
    """Raised when a store is closed or a backend cannot be used."""


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class Document:
    """A stored document with free-form string metadata."""

    id: str
    title: str = ""
    content: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    created: datetime | None = None
    updated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; empty metadata is omitted."""
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        data["created"] = _format_time(self.created)
        data["updated"] = _format_time(self.updated)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Document":
        """Build a document from a mapping produced by :meth:`to_dict`."""
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            content=str(data.get("content", "")),
            metadata=dict(data.get("metadata") or {}),
            created=_parse_time(data.get("created")),
            updated=_parse_time(data.get("updated")),
        )


@dataclass
class VectorResult:
    """A document matched by a vector search, with its similarity."""

    document: Document
    similarity: float = 0.0
    score: float = 0.0


@dataclass
class StorageConfig:
    """Settings used to create a storage backend."""

    type: str = ""
    path: str = ""
    max_size: int = 0
    cache_size: int = 0
    sync_interval: timedelta = field(default_factory=timedelta)
    options: dict[str, str] = field(default_factory=dict)


@dataclass
class StorageMetrics:
    """Counters describing a storage backend's activity."""

    document_count: int = 0
    storage_size: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    read_ops: int = 0
    write_ops: int = 0
    last_sync: datetime | None = None
    uptime: timedelta = field(default_factory=timedelta)


class _Closable:
    """Context-manager support for classes that define ``close``."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()  # type: ignore[attr-defined]


class DocumentStorage(_Closable, abc.ABC):
    """Keyed storage of documents."""

    @abc.abstractmethod
    def store(self, doc: Document) -> None:
        """Insert or replace a document."""

    @abc.abstractmethod
    def get(self, doc_id: str) -> Document:
        """Return a document or raise DocumentNotFoundError."""

    @abc.abstractmethod
    def delete(self, doc_id: str) -> None:
        """Remove a document."""

    @abc.abstractmethod
    def exists(self, doc_id: str) -> bool:
        """Tell whether a document is stored."""

    @abc.abstractmethod
    def batch_store(self, docs: Sequence[Document]) -> None:
        """Store several documents."""

    @abc.abstractmethod
    def batch_get(self, ids: Sequence[str]) -> list[Document]:
        """Return the stored documents among the given ids."""

    @abc.abstractmethod
    def batch_delete(self, ids: Sequence[str]) -> None:
        """Remove several documents."""

    @abc.abstractmethod
    def list(self, limit: int, offset: int) -> list[Document]:
        """Return one page of documents."""

    @abc.abstractmethod
    def count(self) -> int:
        """Return the number of stored documents."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the store."""

    @abc.abstractmethod
    def flush(self) -> None:
        """Persist pending state."""

    @abc.abstractmethod
    def get_metrics(self) -> StorageMetrics:
        """Return a snapshot of the store's counters."""


class VectorStorage(_Closable, abc.ABC):
    """Storage and similarity search of vectors keyed by document id."""

    @abc.abstractmethod
    def store_vector(self, doc_id: str, vector: Sequence[float]) -> None:
        """Insert or replace a vector."""

    @abc.abstractmethod
    def get_vector(self, doc_id: str) -> list[float]:
        """Return a vector or raise VectorNotFoundError."""

    @abc.abstractmethod
    def delete_vector(self, doc_id: str) -> None:
        """Remove a vector."""

    @abc.abstractmethod
    def search_similar(self, vector: Sequence[float], limit: int) -> list[VectorResult]:
        """Return the most similar vectors, best first."""

    @abc.abstractmethod
    def search_by_threshold(
        self, vector: Sequence[float], threshold: float
    ) -> list[VectorResult]:
        """Return vectors at least as similar as the threshold."""

    @abc.abstractmethod
    def batch_store_vectors(self, vectors: Mapping[str, Sequence[float]]) -> None:
        """Store several vectors."""

    @abc.abstractmethod
    def get_dimensions(self) -> int:
        """Return the vector dimension."""

    @abc.abstractmethod
    def get_vector_count(self) -> int:
        """Return the number of stored vectors."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the store."""


class IndexStorage(abc.ABC):
    """Term index over documents."""

    @abc.abstractmethod
    def add_document(self, doc: Document) -> None:
        """Index a document."""

    @abc.abstractmethod
    def remove_document(self, doc_id: str) -> None:
        """Remove a document from the index."""

    @abc.abstractmethod
    def update_document(self, doc: Document) -> None:
        """Re-index a document."""

    @abc.abstractmethod
    def search(self, query: str, limit: int) -> list[str]:
        """Return ids of documents matching a query."""

    @abc.abstractmethod
    def search_terms(self, terms: Sequence[str], limit: int) -> list[str]:
        """Return ids of documents matching any of the terms."""

    @abc.abstractmethod
    def get_term_frequency(self, term: str, doc_id: str) -> int:
        """Return how often a term occurs in a document."""

    @abc.abstractmethod
    def get_document_frequency(self, term: str) -> int:
        """Return how many documents hold a term."""

    @abc.abstractmethod
    def get_term_count(self) -> int:
        """Return the number of distinct terms."""

    @abc.abstractmethod
    def get_document_count(self) -> int:
        """Return the number of indexed documents."""

    @abc.abstractmethod
    def optimize(self) -> None:
        """Compact the index."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the index."""


class StorageEngine(_Closable, abc.ABC):
    """A backend bundling document, vector and index storage."""

    @abc.abstractmethod
    def document_storage(self) -> DocumentStorage | None:
        """Return the document store."""

    @abc.abstractmethod
    def vector_storage(self) -> VectorStorage | None:
        """Return the vector store."""

    @abc.abstractmethod
    def index_storage(self) -> IndexStorage | None:
        """Return the index store, if any."""

    @abc.abstractmethod
    def initialize(self, config: StorageConfig) -> None:
        """Apply a configuration."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release all stores."""

    @abc.abstractmethod
    def health(self) -> None:
        """Raise StorageError if the engine cannot serve requests."""

    @abc.abstractmethod
    def get_metrics(self) -> StorageMetrics:
        """Return combined metrics."""


class StorageProvider(abc.ABC):
    """Creates storage engines of one type."""

    @abc.abstractmethod
    def name(self) -> str:
        """Return the storage type this provider creates."""

    @abc.abstractmethod
    def create(self, config: StorageConfig) -> StorageEngine:
        """Create an engine for the configuration."""

    @abc.abstractmethod
    def validate(self, config: StorageConfig) -> None:
        """Raise StorageError if the configuration does not suit this provider."""
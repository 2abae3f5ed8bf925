"""Document storage with an in-process vector collection and offline embeddings."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import math
import threading
import time
from array import array
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from .models import (
    Document,
    DocumentNotFoundError,
    DocumentStorage,
    StorageConfig,
    StorageError,
    StorageMetrics,
    StorageUnavailableError,
    VectorResult,
    VectorStorage,
)

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = 384
DEFAULT_COLLECTION = "documents"
MEMORY_PATH = ":memory:"
_THRESHOLD_CANDIDATES = 100

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF

EmbeddingFunc = Callable[[str], Sequence[float]]


def _fnv1a64(data: bytes) -> int:
    value = _FNV_OFFSET
    for byte in data:
        value = ((value ^ byte) * _FNV_PRIME) & _MASK64
    return value


def offline_embedding(text: str) -> list[float]:
    """Derive a deterministic 384-dimensional vector from text hashes, without any service."""
    data = text.encode()
    sha = hashlib.sha256(data).digest()
    fnv = _fnv1a64(data)

    def hash_byte(i: int) -> int:
        if i % 2 == 0:
            return sha[i % 32]
        return (fnv >> (i % 64)) & 0xFF

    raw = array("f", (hash_byte(i) / 127.5 - 1.0 for i in range(EMBEDDING_DIMENSIONS)))
    norm = array("f", [sum(v * v for v in raw)])[0]
    if norm > 0:
        factor = array("f", [1.0 / (norm * norm)])[0]
        raw = array("f", (v * factor for v in raw))
    return raw.tolist()


def _normalize(vector: Sequence[float]) -> list[float]:
    length = math.sqrt(sum(v * v for v in vector))
    if length == 0:
        return [float(v) for v in vector]
    return [v / length for v in vector]


def _matches(metadata: Mapping[str, str], where: Mapping[str, str] | None) -> bool:
    return not where or all(metadata.get(k) == v for k, v in where.items())


@dataclass
class QueryResult:
    """One hit of a collection query."""

    id: str
    content: str
    metadata: dict[str, str] = field(default_factory=dict)
    similarity: float = 0.0
    embedding: list[float] = field(default_factory=list, repr=False)


@dataclass
class _Entry:
    content: str
    metadata: dict[str, str]
    embedding: list[float]


class Collection:
    """A named set of embedded documents searchable by cosine similarity."""

    def __init__(
        self,
        name: str,
        metadata: Mapping[str, str] | None = None,
        embedding_func: EmbeddingFunc = offline_embedding,
    ) -> None:
        self.name = name
        self.metadata = dict(metadata or {})
        self._embed = embedding_func
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _prepare(self, doc_id: str, content: str, metadata: Mapping[str, str] | None) -> _Entry:
        if not doc_id:
            raise ValueError("document id is empty")
        if not content:
            raise ValueError("document content is empty")
        embedding = _normalize(self._embed(content))
        return _Entry(content=content, metadata=dict(metadata or {}), embedding=embedding)

    def add_document(
        self, doc_id: str, content: str, metadata: Mapping[str, str] | None = None
    ) -> None:
        """Embed and add one document, replacing any with the same id."""
        entry = self._prepare(doc_id, content, metadata)
        with self._lock:
            self._entries[doc_id] = entry

    def add_documents(
        self, docs: Iterable[tuple[str, str, Mapping[str, str] | None]]
    ) -> None:
        """Add several ``(id, content, metadata)`` documents; none are added if one is invalid."""
        prepared = [(doc_id, self._prepare(doc_id, content, meta)) for doc_id, content, meta in docs]
        with self._lock:
            self._entries.update(prepared)

    def delete(
        self,
        where: Mapping[str, str] | None = None,
        ids: Sequence[str] | None = None,
    ) -> None:
        """Remove documents matching the ids and the metadata filter."""
        if not where and not ids:
            raise ValueError("either where or ids must be given")
        with self._lock:
            candidates = list(ids) if ids else list(self._entries)
            for doc_id in candidates:
                entry = self._entries.get(doc_id)
                if entry is not None and _matches(entry.metadata, where):
                    del self._entries[doc_id]

    def query(
        self, text: str, limit: int, where: Mapping[str, str] | None = None
    ) -> list[QueryResult]:
        """Return up to ``limit`` documents most similar to the text, best first."""
        if not text:
            raise ValueError("query text is empty")
        if limit <= 0:
            raise ValueError("limit must be greater than 0")
        query_vector = _normalize(self._embed(text))
        with self._lock:
            hits = [
                QueryResult(
                    id=doc_id,
                    content=entry.content,
                    metadata=dict(entry.metadata),
                    similarity=sum(a * b for a, b in zip(query_vector, entry.embedding)),
                    embedding=list(entry.embedding),
                )
                for doc_id, entry in self._entries.items()
                if _matches(entry.metadata, where)
            ]
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]

    def count(self) -> int:
        """Return the number of documents in the collection."""
        with self._lock:
            return len(self._entries)


def _rfc3339(value: datetime) -> str:
    text = value.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _copy(doc: Document) -> Document:
    return dataclasses.replace(doc, metadata=dict(doc.metadata))


def _sort_key(doc: Document) -> float:
    return doc.created.timestamp() if doc.created is not None else float("-inf")


class ChromemStorage(DocumentStorage, VectorStorage):
    """Documents kept alongside a vector collection, optionally saved to a JSON file."""

    def __init__(self, config: StorageConfig | None = None) -> None:
        self.config = config if config is not None else StorageConfig()
        name = (self.config.options or {}).get("collection_name", DEFAULT_COLLECTION)
        self._collection: Collection | None = Collection(name)
        self._documents: dict[str, Document] = {}
        self._metrics = StorageMetrics()
        self._start = time.monotonic()
        self._lock = threading.RLock()
        if self._persistent:
            try:
                self._load_from_disk()
            except (OSError, ValueError, StorageError) as exc:
                logger.warning("failed to load from disk: %s", exc)

    @property
    def _persistent(self) -> bool:
        return bool(self.config.path) and self.config.path != MEMORY_PATH

    @property
    def _file(self) -> Path:
        return Path(self.config.path + ".json")

    def _require_collection(self) -> Collection:
        if self._collection is None:
            raise StorageUnavailableError("chromem storage is closed")
        return self._collection

    @staticmethod
    def _prepare(doc: Document) -> tuple[Document, tuple[str, str, dict[str, str]]]:
        stored = _copy(doc)
        if stored.created is None:
            stored.created = _now()
        stored.updated = _now()
        metadata = dict(stored.metadata)
        metadata["title"] = stored.title
        metadata["created"] = _rfc3339(stored.created)
        metadata["updated"] = _rfc3339(stored.updated)
        return stored, (stored.id, f"{stored.title} {stored.content}", metadata)

    def _results(self, hits: Iterable[QueryResult]) -> list[VectorResult]:
        return [
            VectorResult(document=_copy(self._documents[hit.id]), similarity=hit.similarity, score=hit.similarity)
            for hit in hits
            if hit.id in self._documents
        ]

    # Document storage

    def store(self, doc: Document) -> None:
        with self._lock:
            collection = self._require_collection()
            stored, entry = self._prepare(doc)
            self._documents[stored.id] = stored
            try:
                collection.add_document(*entry)
            except ValueError as exc:
                self._documents.pop(stored.id, None)
                raise StorageError(f"failed to store in chromem: {exc}") from exc
            self._metrics.write_ops += 1
            self._metrics.document_count = len(self._documents)

    def get(self, doc_id: str) -> Document:
        with self._lock:
            doc = self._documents.get(doc_id)
            if doc is None:
                raise DocumentNotFoundError(doc_id)
            self._metrics.read_ops += 1
            return _copy(doc)

    def delete(self, doc_id: str) -> None:
        with self._lock:
            self._require_collection().delete(ids=[doc_id])
            self._documents.pop(doc_id, None)
            self._metrics.write_ops += 1
            self._metrics.document_count = len(self._documents)

    def exists(self, doc_id: str) -> bool:
        with self._lock:
            return doc_id in self._documents

    def batch_store(self, docs: Sequence[Document]) -> None:
        with self._lock:
            collection = self._require_collection()
            prepared = [self._prepare(doc) for doc in docs]
            try:
                collection.add_documents(entry for _, entry in prepared)
            except ValueError as exc:
                raise StorageError(f"failed to batch store in chromem: {exc}") from exc
            self._documents.update((stored.id, stored) for stored, _ in prepared)
            self._metrics.write_ops += len(prepared)
            self._metrics.document_count = len(self._documents)

    def batch_get(self, ids: Sequence[str]) -> list[Document]:
        with self._lock:
            docs = [_copy(self._documents[i]) for i in ids if i in self._documents]
            self._metrics.read_ops += len(docs)
            return docs

    def batch_delete(self, ids: Sequence[str]) -> None:
        ids = list(ids)
        with self._lock:
            collection = self._require_collection()
            for doc_id in ids:
                try:
                    collection.delete(ids=[doc_id])
                except ValueError as exc:
                    logger.warning("failed to delete %s from chromem: %s", doc_id, exc)
            for doc_id in ids:
                self._documents.pop(doc_id, None)
            self._metrics.write_ops += len(ids)
            self._metrics.document_count = len(self._documents)

    def list(self, limit: int, offset: int) -> list[Document]:
        with self._lock:
            ordered = sorted(self._documents.values(), key=_sort_key, reverse=True)
            start = max(offset, 0)
            page = [_copy(doc) for doc in ordered[start : start + max(limit, 0)]]
            self._metrics.read_ops += len(page)
            return page

    def count(self) -> int:
        with self._lock:
            total = len(self._documents)
            self._metrics.document_count = total
            return total

    # Vector storage

    def store_vector(self, doc_id: str, vector: Sequence[float]) -> None:
        """Vectors are generated from content; this only checks the document exists."""
        self.get(doc_id)

    def get_vector(self, doc_id: str) -> list[float]:
        """Return a placeholder zero vector of the collection's dimension."""
        self.get(doc_id)
        return [0.0] * EMBEDDING_DIMENSIONS

    def delete_vector(self, doc_id: str) -> None:
        self.delete(doc_id)

    def search_similar(self, vector: Sequence[float], limit: int) -> list[VectorResult]:
        """Vector queries are not supported directly; returns the most recent documents."""
        return self.search_by_text("", limit)

    def search_by_text(self, query: str, limit: int) -> list[VectorResult]:
        """Semantic search by text; an empty query returns the most recent documents."""
        with self._lock:
            if not query:
                return [
                    VectorResult(document=doc, similarity=1.0, score=1.0)
                    for doc in self.list(limit, 0)
                ]
            collection = self._require_collection()
            try:
                hits = collection.query(query, limit, None)
            except ValueError as exc:
                raise StorageError(f"chromem query failed: {exc}") from exc
            return self._results(hits)

    def search_by_threshold(
        self, vector: Sequence[float], threshold: float
    ) -> list[VectorResult]:
        results = self.search_by_text("", _THRESHOLD_CANDIDATES)
        return [r for r in results if r.similarity >= threshold]

    def batch_store_vectors(self, vectors: Mapping[str, Sequence[float]]) -> None:
        with self._lock:
            for doc_id in vectors:
                if doc_id not in self._documents:
                    raise DocumentNotFoundError(doc_id)

    def get_dimensions(self) -> int:
        return EMBEDDING_DIMENSIONS

    def get_vector_count(self) -> int:
        with self._lock:
            return len(self._documents)

    # Management

    def close(self) -> None:
        with self._lock:
            if self._collection is None:
                return
            if self._persistent:
                try:
                    self._save_to_disk()
                except (OSError, ValueError) as exc:
                    logger.warning("failed to save to disk: %s", exc)
            self._documents = {}
            self._collection = None

    def flush(self) -> None:
        if self._persistent:
            with self._lock:
                self._save_to_disk()

    def get_metrics(self) -> StorageMetrics:
        with self._lock:
            self._metrics.uptime = timedelta(seconds=time.monotonic() - self._start)
            self._metrics.document_count = len(self._documents)
            return dataclasses.replace(self._metrics)

    # Persistence

    def _save_to_disk(self) -> None:
        target = self._file
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "documents": {doc_id: doc.to_dict() for doc_id, doc in self._documents.items()},
            "timestamp": _now().isoformat(),
        }
        target.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    def _load_from_disk(self) -> None:
        if not self._file.exists():
            return
        data: dict[str, Any] = json.loads(self._file.read_text(encoding="utf-8"))
        documents = {
            doc_id: Document.from_dict(raw)
            for doc_id, raw in (data.get("documents") or {}).items()
        }
        collection = self._require_collection()
        with self._lock:
            self._documents = documents
            for doc in documents.values():
                metadata = dict(doc.metadata)
                metadata["title"] = doc.title
                if doc.created is not None:
                    metadata["created"] = _rfc3339(doc.created)
                if doc.updated is not None:
                    metadata["updated"] = _rfc3339(doc.updated)
                try:
                    collection.add_document(doc.id, f"{doc.title} {doc.content}", metadata)
                except ValueError:
                    continue

    # Extras

    def get_collection(self) -> Collection | None:
        """Return the underlying collection, or None once closed."""
        return self._collection

    def query_with_filter(
        self, query: str, limit: int, where: Mapping[str, str] | None
    ) -> list[VectorResult]:
        """Semantic search restricted to documents whose metadata matches ``where``."""
        with self._lock:
            collection = self._require_collection()
            try:
                hits = collection.query(query, limit, where)
            except ValueError as exc:
                raise StorageError(f"chromem query with filter failed: {exc}") from exc
            return self._results(hits)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            collection = self._require_collection()
            return {
                "collection_name": collection.name,
                "document_count": len(self._documents),
                "vector_dimension": self.get_dimensions(),
                "uptime": timedelta(seconds=time.monotonic() - self._start),
                "read_ops": self._metrics.read_ops,
                "write_ops": self._metrics.write_ops,
            }
"""In-memory document, vector and index storage."""

from __future__ import annotations

import dataclasses
import math
import threading
import time
from datetime import datetime, timedelta, timezone
from itertools import islice
from typing import Mapping, Sequence

from .models import (
    DimensionMismatchError,
    Document,
    DocumentNotFoundError,
    DocumentStorage,
    IndexStorage,
    StorageConfig,
    StorageEngine,
    StorageMetrics,
    StorageUnavailableError,
    VectorNotFoundError,
    VectorResult,
    VectorStorage,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _copy_document(doc: Document) -> Document:
    return dataclasses.replace(doc, metadata=dict(doc.metadata))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for unequal lengths or zero vectors."""
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a)
    norm_b = sum(y * y for y in b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b) + 1e-10)


class MemoryDocumentStorage(DocumentStorage):
    """Documents kept in a dictionary, in insertion order."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._metrics = StorageMetrics(last_sync=_now())
        self._closed = False
        self._lock = threading.Lock()

    def store(self, doc: Document) -> None:
        with self._lock:
            if self._closed:
                raise StorageUnavailableError("document storage is closed")
            stored = _copy_document(doc)
            stored.updated = _now()
            if stored.created is None:
                stored.created = stored.updated
            is_new = stored.id not in self._documents
            self._documents[stored.id] = stored
            self._metrics.write_ops += 1
            if is_new:
                self._metrics.document_count += 1
            self._update_storage_size()

    def get(self, doc_id: str) -> Document:
        with self._lock:
            self._metrics.read_ops += 1
            doc = self._documents.get(doc_id)
            if doc is None:
                self._metrics.cache_misses += 1
                raise DocumentNotFoundError(doc_id)
            self._metrics.cache_hits += 1
            return _copy_document(doc)

    def delete(self, doc_id: str) -> None:
        with self._lock:
            if doc_id not in self._documents:
                raise DocumentNotFoundError(doc_id)
            del self._documents[doc_id]
            self._metrics.write_ops += 1
            self._metrics.document_count -= 1
            self._update_storage_size()

    def exists(self, doc_id: str) -> bool:
        with self._lock:
            self._metrics.read_ops += 1
            return doc_id in self._documents

    def batch_store(self, docs: Sequence[Document]) -> None:
        for doc in docs:
            self.store(doc)

    def batch_get(self, ids: Sequence[str]) -> list[Document]:
        found = []
        for doc_id in ids:
            try:
                found.append(self.get(doc_id))
            except DocumentNotFoundError:
                continue
        return found

    def batch_delete(self, ids: Sequence[str]) -> None:
        for doc_id in ids:
            self.delete(doc_id)

    def list(self, limit: int, offset: int) -> list[Document]:
        with self._lock:
            start = max(offset, 0)
            stop = start + max(limit, 0)
            return [_copy_document(d) for d in islice(self._documents.values(), start, stop)]

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    def close(self) -> None:
        with self._lock:
            self._documents = {}
            self._closed = True

    def flush(self) -> None:
        with self._lock:
            self._metrics.last_sync = _now()

    def get_metrics(self) -> StorageMetrics:
        with self._lock:
            return dataclasses.replace(self._metrics)

    def _update_storage_size(self) -> None:
        size = 0
        for doc in self._documents.values():
            size += sum(len(s.encode()) for s in (doc.id, doc.title, doc.content))
            size += sum(len(k.encode()) + len(v.encode()) for k, v in doc.metadata.items())
        self._metrics.storage_size = size


class MemoryVectorStorage(VectorStorage):
    """Vectors of one fixed dimension, searched by cosine similarity."""

    def __init__(self) -> None:
        self._vectors: dict[str, list[float]] = {}
        self._dimensions = 0
        self._lock = threading.Lock()

    def _check_dimensions(self, vector: Sequence[float]) -> None:
        if len(vector) != self._dimensions:
            raise DimensionMismatchError(self._dimensions, len(vector))

    def store_vector(self, doc_id: str, vector: Sequence[float]) -> None:
        with self._lock:
            if self._dimensions == 0 and len(vector) > 0:
                self._dimensions = len(vector)
            self._check_dimensions(vector)
            self._vectors[doc_id] = [float(x) for x in vector]

    def get_vector(self, doc_id: str) -> list[float]:
        with self._lock:
            vector = self._vectors.get(doc_id)
            if vector is None:
                raise VectorNotFoundError(doc_id)
            return list(vector)

    def delete_vector(self, doc_id: str) -> None:
        with self._lock:
            if doc_id not in self._vectors:
                raise VectorNotFoundError(doc_id)
            del self._vectors[doc_id]

    def _scored(self, vector: Sequence[float]) -> list[VectorResult]:
        results = []
        for doc_id, stored in self._vectors.items():
            similarity = cosine_similarity(vector, stored)
            results.append(
                VectorResult(document=Document(id=doc_id), similarity=similarity, score=similarity)
            )
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results

    def search_similar(self, vector: Sequence[float], limit: int) -> list[VectorResult]:
        with self._lock:
            self._check_dimensions(vector)
            return self._scored(vector)[: max(limit, 0)]

    def search_by_threshold(
        self, vector: Sequence[float], threshold: float
    ) -> list[VectorResult]:
        with self._lock:
            self._check_dimensions(vector)
            return [r for r in self._scored(vector) if r.similarity >= threshold]

    def batch_store_vectors(self, vectors: Mapping[str, Sequence[float]]) -> None:
        for doc_id, vector in vectors.items():
            self.store_vector(doc_id, vector)

    def get_dimensions(self) -> int:
        with self._lock:
            return self._dimensions

    def get_vector_count(self) -> int:
        with self._lock:
            return len(self._vectors)

    def close(self) -> None:
        with self._lock:
            self._vectors = {}


class DummyIndexStorage(IndexStorage):
    """An index that never takes entries; term indexing is done by the engine.

    Its posting table stays empty, so every query finds nothing and every
    count is zero; mutations only drop stale postings for the document.
    """

    def __init__(self) -> None:
        self._postings: dict[str, dict[str, int]] = {}

    def _discard(self, doc_id: str) -> None:
        for postings in self._postings.values():
            postings.pop(doc_id, None)

    def add_document(self, doc: Document) -> None:
        self._discard(doc.id)

    def remove_document(self, doc_id: str) -> None:
        self._discard(doc_id)

    def update_document(self, doc: Document) -> None:
        self._discard(doc.id)

    def search(self, query: str, limit: int) -> list[str]:
        return self.search_terms(query.lower().split(), limit)

    def search_terms(self, terms: Sequence[str], limit: int) -> list[str]:
        found: dict[str, None] = {}
        for term in terms:
            found.update(dict.fromkeys(self._postings.get(term, {})))
        return list(found)[: max(limit, 0)]

    def get_term_frequency(self, term: str, doc_id: str) -> int:
        return self._postings.get(term, {}).get(doc_id, 0)

    def get_document_frequency(self, term: str) -> int:
        return len(self._postings.get(term, {}))

    def get_term_count(self) -> int:
        return len(self._postings)

    def get_document_count(self) -> int:
        return len({doc_id for postings in self._postings.values() for doc_id in postings})

    def optimize(self) -> None:
        self._postings = {term: postings for term, postings in self._postings.items() if postings}

    def close(self) -> None:
        self._postings.clear()


class MemoryStorageEngine(StorageEngine):
    """Storage engine holding everything in process memory."""

    def __init__(self) -> None:
        self.config = StorageConfig()
        self._doc_storage = MemoryDocumentStorage()
        self._vector_storage = MemoryVectorStorage()
        self._start = time.monotonic()
        self._closed = False
        self._lock = threading.Lock()

    def initialize(self, config: StorageConfig) -> None:
        with self._lock:
            self.config = config

    def document_storage(self) -> MemoryDocumentStorage:
        return self._doc_storage

    def vector_storage(self) -> MemoryVectorStorage:
        return self._vector_storage

    def index_storage(self) -> DummyIndexStorage:
        return DummyIndexStorage()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._doc_storage.close()
            self._vector_storage.close()

    def health(self) -> None:
        with self._lock:
            if self._closed:
                raise StorageUnavailableError("storage engine is closed")

    def get_metrics(self) -> StorageMetrics:
        metrics = self._doc_storage.get_metrics()
        metrics.uptime = timedelta(seconds=time.monotonic() - self._start)
        return metrics
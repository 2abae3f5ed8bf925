"""Document and vector storage backed by an SQLite database."""

from __future__ import annotations

import dataclasses
import json
import math
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Mapping, Sequence

from .models import (
    Document,
    DocumentNotFoundError,
    DocumentStorage,
    StorageConfig,
    StorageError,
    StorageMetrics,
    StorageUnavailableError,
    VectorNotFoundError,
    VectorResult,
    VectorStorage,
)

MEMORY_PATH = ":memory:"
DEFAULT_DIMENSIONS = 128
_THRESHOLD_CANDIDATES = 100

_SCHEMA = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = 10000",
    "PRAGMA temp_store = memory",
    "PRAGMA mmap_size = 268435456",
    """CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        metadata TEXT,
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS vectors (
        id TEXT PRIMARY KEY,
        vector_data BLOB NOT NULL,
        dimensions INTEGER NOT NULL,
        created_at DATETIME NOT NULL,
        FOREIGN KEY (id) REFERENCES documents(id) ON DELETE CASCADE
    )""",
    """CREATE TABLE IF NOT EXISTS term_index (
        term TEXT NOT NULL,
        document_id TEXT NOT NULL,
        frequency INTEGER NOT NULL DEFAULT 1,
        created_at DATETIME NOT NULL,
        PRIMARY KEY (term, document_id),
        FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE
    )""",
    "CREATE INDEX IF NOT EXISTS idx_documents_created ON documents(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_term_index_term ON term_index(term)",
    "CREATE INDEX IF NOT EXISTS idx_term_index_doc ON term_index(document_id)",
)

_INSERT_DOCUMENT = (
    "INSERT OR REPLACE INTO documents "
    "(id, title, content, metadata, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)"
)
_INSERT_VECTOR = (
    "INSERT OR REPLACE INTO vectors (id, vector_data, dimensions, created_at) "
    "VALUES (?, ?, ?, ?)"
)
_SELECT_DOCUMENT = "SELECT id, title, content, metadata, created_at, updated_at FROM documents"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


def _from_db_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return datetime.fromisoformat(str(value))


def _parse_metadata(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageError(f"failed to unmarshal metadata: {exc}") from exc
    return dict(data) if data else {}


def _encode_vector(vector: Sequence[float]) -> bytes:
    return json.dumps([float(x) for x in vector]).encode()


def _decode_vector(raw: bytes | str) -> list[float]:
    if isinstance(raw, bytes):
        raw = raw.decode()
    data = json.loads(raw)
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("vector data is not a list")
    return [float(x) for x in data]


def _cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a)
    norm_b = sum(y * y for y in b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


class SQLiteStorage(DocumentStorage, VectorStorage):
    """Documents and their vectors in one SQLite database."""

    def __init__(self, config: StorageConfig | None = None) -> None:
        config = dataclasses.replace(config) if config is not None else StorageConfig()
        if not config.path:
            config.path = MEMORY_PATH
        self.config = config
        self._metrics = StorageMetrics()
        self._start = time.monotonic()
        self._lock = threading.RLock()
        try:
            self._conn: sqlite3.Connection | None = sqlite3.connect(
                config.path, check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as exc:
            raise StorageError(f"failed to open sqlite database: {exc}") from exc
        try:
            self._initialize()
            self.count()
        except StorageError:
            self._conn.close()
            self._conn = None
            raise

    def _initialize(self) -> None:
        with self._locked() as conn:
            for query in _SCHEMA:
                try:
                    conn.execute(query)
                except sqlite3.Error as exc:
                    raise StorageError(
                        f"failed to initialize database: {query}: {exc}"
                    ) from exc

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise StorageUnavailableError("sqlite storage is closed")
            yield self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._locked() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @staticmethod
    def _row_to_document(row: Sequence[Any]) -> Document:
        doc_id, title, content, metadata, created, updated = row
        return Document(
            id=doc_id,
            title=title,
            content=content,
            metadata=_parse_metadata(metadata),
            created=_from_db_time(created),
            updated=_from_db_time(updated),
        )

    @staticmethod
    def _document_params(doc: Document) -> tuple[Any, ...]:
        updated = _now()
        created = doc.created if doc.created is not None else updated
        return (
            doc.id,
            doc.title,
            doc.content,
            json.dumps(doc.metadata or {}),
            _to_db_time(created),
            _to_db_time(updated),
        )

    def _add_ops(self, reads: int = 0, writes: int = 0) -> None:
        with self._lock:
            self._metrics.read_ops += reads
            self._metrics.write_ops += writes

    # Document storage

    def store(self, doc: Document) -> None:
        params = self._document_params(doc)
        with self._locked() as conn:
            try:
                conn.execute(_INSERT_DOCUMENT, params)
            except sqlite3.Error as exc:
                raise StorageError(f"failed to store document: {exc}") from exc
            self._metrics.write_ops += 1

    def get(self, doc_id: str) -> Document:
        with self._locked() as conn:
            try:
                row = conn.execute(f"{_SELECT_DOCUMENT} WHERE id = ?", (doc_id,)).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to get document: {exc}") from exc
            if row is None:
                raise DocumentNotFoundError(doc_id)
            doc = self._row_to_document(row)
            self._metrics.read_ops += 1
            return doc

    def delete(self, doc_id: str) -> None:
        with self._locked() as conn:
            try:
                cursor = conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
            except sqlite3.Error as exc:
                raise StorageError(f"failed to delete document: {exc}") from exc
            if cursor.rowcount == 0:
                raise DocumentNotFoundError(doc_id)
            self._metrics.write_ops += 1

    def exists(self, doc_id: str) -> bool:
        with self._locked() as conn:
            try:
                row = conn.execute(
                    "SELECT 1 FROM documents WHERE id = ? LIMIT 1", (doc_id,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to check document existence: {exc}") from exc
            return row is not None

    def batch_store(self, docs: Sequence[Document]) -> None:
        docs = list(docs)
        try:
            with self._transaction() as conn:
                for doc in docs:
                    try:
                        conn.execute(_INSERT_DOCUMENT, self._document_params(doc))
                    except sqlite3.Error as exc:
                        raise StorageError(
                            f"failed to store document {doc.id}: {exc}"
                        ) from exc
        except sqlite3.Error as exc:
            raise StorageError(f"failed to commit transaction: {exc}") from exc
        self._add_ops(writes=len(docs))

    def batch_get(self, ids: Sequence[str]) -> list[Document]:
        ids = list(ids)
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        with self._locked() as conn:
            try:
                rows = conn.execute(
                    f"{_SELECT_DOCUMENT} WHERE id IN ({placeholders})", ids
                ).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to query documents: {exc}") from exc
            docs = [self._row_to_document(row) for row in rows]
            self._metrics.read_ops += len(docs)
            return docs

    def batch_delete(self, ids: Sequence[str]) -> None:
        ids = list(ids)
        if not ids:
            return
        placeholders = ",".join("?" * len(ids))
        with self._locked() as conn:
            try:
                cursor = conn.execute(
                    f"DELETE FROM documents WHERE id IN ({placeholders})", ids
                )
            except sqlite3.Error as exc:
                raise StorageError(f"failed to batch delete documents: {exc}") from exc
            self._metrics.write_ops += max(cursor.rowcount, 0)

    def list(self, limit: int, offset: int) -> list[Document]:
        with self._locked() as conn:
            try:
                rows = conn.execute(
                    f"{_SELECT_DOCUMENT} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                    (limit, offset),
                ).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to query documents: {exc}") from exc
            docs = [self._row_to_document(row) for row in rows]
            self._metrics.read_ops += len(docs)
            return docs

    def count(self) -> int:
        with self._locked() as conn:
            try:
                (total,) = conn.execute("SELECT COUNT(*) FROM documents").fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to count documents: {exc}") from exc
            self._metrics.document_count = total
            return total

    # Vector storage

    def store_vector(self, doc_id: str, vector: Sequence[float]) -> None:
        with self._locked() as conn:
            try:
                conn.execute(
                    _INSERT_VECTOR,
                    (doc_id, _encode_vector(vector), len(vector), _to_db_time(_now())),
                )
            except sqlite3.Error as exc:
                raise StorageError(f"failed to store vector: {exc}") from exc

    def get_vector(self, doc_id: str) -> list[float]:
        with self._locked() as conn:
            try:
                row = conn.execute(
                    "SELECT vector_data FROM vectors WHERE id = ?", (doc_id,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to get vector: {exc}") from exc
        if row is None:
            raise VectorNotFoundError(doc_id)
        try:
            return _decode_vector(row[0])
        except ValueError as exc:
            raise StorageError(f"failed to unmarshal vector: {exc}") from exc

    def delete_vector(self, doc_id: str) -> None:
        with self._locked() as conn:
            try:
                conn.execute("DELETE FROM vectors WHERE id = ?", (doc_id,))
            except sqlite3.Error as exc:
                raise StorageError(f"failed to delete vector: {exc}") from exc

    def search_similar(self, vector: Sequence[float], limit: int) -> list[VectorResult]:
        query = (
            "SELECT v.id, v.vector_data, d.title, d.content, d.metadata, "
            "d.created_at, d.updated_at FROM vectors v JOIN documents d ON v.id = d.id"
        )
        with self._locked() as conn:
            try:
                rows = conn.execute(query).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to query vectors: {exc}") from exc

        results = []
        for doc_id, raw_vector, title, content, metadata, created, updated in rows:
            try:
                stored = _decode_vector(raw_vector)
            except ValueError:
                continue
            try:
                meta = _parse_metadata(metadata)
            except StorageError:
                meta = {}
            similarity = _cosine_similarity(vector, stored)
            if similarity > 0:
                doc = Document(
                    id=doc_id,
                    title=title,
                    content=content,
                    metadata=meta,
                    created=_from_db_time(created),
                    updated=_from_db_time(updated),
                )
                results.append(
                    VectorResult(document=doc, similarity=similarity, score=similarity)
                )
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[: max(limit, 0)]

    def search_by_threshold(
        self, vector: Sequence[float], threshold: float
    ) -> list[VectorResult]:
        candidates = self.search_similar(vector, _THRESHOLD_CANDIDATES)
        return [r for r in candidates if r.similarity >= threshold]

    def batch_store_vectors(self, vectors: Mapping[str, Sequence[float]]) -> None:
        try:
            with self._transaction() as conn:
                for doc_id, vector in vectors.items():
                    try:
                        conn.execute(
                            _INSERT_VECTOR,
                            (
                                doc_id,
                                _encode_vector(vector),
                                len(vector),
                                _to_db_time(_now()),
                            ),
                        )
                    except sqlite3.Error as exc:
                        raise StorageError(
                            f"failed to store vector {doc_id}: {exc}"
                        ) from exc
        except sqlite3.Error as exc:
            raise StorageError(f"failed to commit transaction: {exc}") from exc

    def get_dimensions(self) -> int:
        try:
            with self._locked() as conn:
                row = conn.execute("SELECT dimensions FROM vectors LIMIT 1").fetchone()
        except (sqlite3.Error, StorageError):
            return DEFAULT_DIMENSIONS
        return DEFAULT_DIMENSIONS if row is None else int(row[0])

    def get_vector_count(self) -> int:
        try:
            with self._locked() as conn:
                (total,) = conn.execute("SELECT COUNT(*) FROM vectors").fetchone()
        except (sqlite3.Error, StorageError):
            return 0
        return int(total)

    # Management

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def flush(self) -> None:
        with self._locked() as conn:
            try:
                conn.execute("PRAGMA optimize")
            except sqlite3.Error as exc:
                raise StorageError(f"failed to optimize database: {exc}") from exc

    def get_metrics(self) -> StorageMetrics:
        try:
            self.count()
        except StorageError:
            pass
        with self._lock:
            self._metrics.uptime = timedelta(seconds=time.monotonic() - self._start)
            return dataclasses.replace(self._metrics)
from datetime import datetime, timedelta, timezone

import pytest

from ctxstore.memory import (
    DummyIndexStorage,
    MemoryDocumentStorage,
    MemoryStorageEngine,
    MemoryVectorStorage,
    cosine_similarity,
)
from ctxstore.models import (
    DimensionMismatchError,
    Document,
    DocumentNotFoundError,
    StorageConfig,
    StorageUnavailableError,
    VectorNotFoundError,
)


def _docs():
    return [
        Document(id="batch-doc-1", title="批量文档1", content="批量测试内容1", metadata={"batch": "1"}),
        Document(id="batch-doc-2", title="批量文档2", content="批量测试内容2", metadata={"batch": "2"}),
        Document(id="batch-doc-3", title="批量文档3", content="批量测试内容3", metadata={"batch": "3"}),
    ]


# cosine similarity

def test_cosine_identical_vectors():
    assert cosine_similarity([0.1, 0.2, 0.3], [0.1, 0.2, 0.3]) == pytest.approx(1.0, abs=1e-8)


def test_cosine_orthogonal_and_degenerate():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_symmetric_and_scale_invariant():
    a, b = [0.3, -0.4, 0.5], [0.9, 0.1, -0.2]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    scaled = [x * 3 for x in a]
    assert cosine_similarity(scaled, b) == pytest.approx(cosine_similarity(a, b))


# document storage

def test_store_and_get_round_trip():
    storage = MemoryDocumentStorage()
    doc = Document(id="test-doc-1", title="测试文档", content="这是一个测试文档的内容",
                   metadata={"author": "test-user", "type": "test"})
    storage.store(doc)
    got = storage.get("test-doc-1")
    assert (got.id, got.title, got.content, got.metadata) == (doc.id, doc.title, doc.content, doc.metadata)
    assert got.created == got.updated
    assert storage.exists("test-doc-1") is True


def test_store_keeps_given_created_time():
    created = datetime(2020, 1, 1, tzinfo=timezone.utc)
    storage = MemoryDocumentStorage()
    storage.store(Document(id="a", created=created))
    got = storage.get("a")
    assert got.created == created
    assert got.updated > created


def test_returned_documents_are_copies():
    storage = MemoryDocumentStorage()
    storage.store(Document(id="a", metadata={"k": "v"}))
    storage.get("a").metadata["k"] = "changed"
    assert storage.get("a").metadata == {"k": "v"}


def test_get_missing_counts_miss():
    storage = MemoryDocumentStorage()
    with pytest.raises(DocumentNotFoundError):
        storage.get("non-existent-doc")
    metrics = storage.get_metrics()
    assert metrics.cache_misses == metrics.read_ops
    assert metrics.cache_hits == 0


def test_replacing_document_keeps_count():
    storage = MemoryDocumentStorage()
    storage.store(Document(id="a", title="one"))
    storage.store(Document(id="a", title="two"))
    metrics = storage.get_metrics()
    assert metrics.document_count == storage.count()
    assert storage.get("a").title == "two"


def test_batch_operations():
    storage = MemoryDocumentStorage()
    docs = _docs()
    storage.batch_store(docs)
    ids = [d.id for d in docs]
    assert [d.id for d in storage.batch_get(ids + ["missing"])] == ids
    assert storage.count() == len(docs)
    assert storage.get_metrics().write_ops == len(docs)
    storage.batch_delete(ids)
    assert storage.count() == 0
    assert storage.get_metrics().document_count == 0


def test_batch_delete_stops_on_missing():
    storage = MemoryDocumentStorage()
    docs = _docs()
    storage.batch_store(docs)
    with pytest.raises(DocumentNotFoundError):
        storage.batch_delete([docs[0].id, "missing", docs[1].id])
    assert not storage.exists(docs[0].id)
    assert storage.exists(docs[1].id)


def test_delete_missing_raises():
    with pytest.raises(DocumentNotFoundError):
        MemoryDocumentStorage().delete("non-existent-doc")


def test_list_pagination():
    storage = MemoryDocumentStorage()
    docs = _docs()
    storage.batch_store(docs)
    ids = [d.id for d in docs]
    assert [d.id for d in storage.list(10, 0)] == ids
    assert [d.id for d in storage.list(1, 1)] == ids[1:2]
    assert storage.list(0, 0) == []
    assert storage.list(10, len(docs)) == []


def test_storage_size_tracks_contents():
    storage = MemoryDocumentStorage()
    storage.store(Document(id="a", content="short"))
    small = storage.get_metrics().storage_size
    storage.store(Document(id="b", content="a much longer body of text"))
    assert storage.get_metrics().storage_size > small
    storage.batch_delete(["a", "b"])
    assert storage.get_metrics().storage_size == 0


def test_flush_updates_last_sync():
    storage = MemoryDocumentStorage()
    before = storage.get_metrics().last_sync
    storage.flush()
    assert storage.get_metrics().last_sync >= before


def test_closed_document_storage():
    storage = MemoryDocumentStorage()
    storage.store(Document(id="a"))
    storage.close()
    assert storage.count() == 0
    with pytest.raises(StorageUnavailableError):
        storage.store(Document(id="b"))


# vector storage

def test_vector_round_trip_and_copy():
    vectors = MemoryVectorStorage()
    vector = [0.1, 0.2, 0.3, 0.4, 0.5]
    vectors.store_vector("vector-doc-1", vector)
    got = vectors.get_vector("vector-doc-1")
    assert got == vector
    got[0] = 9.0
    assert vectors.get_vector("vector-doc-1") == vector
    assert vectors.get_dimensions() == len(vector)


def test_dimension_mismatch():
    vectors = MemoryVectorStorage()
    vectors.store_vector("a", [1.0, 2.0, 3.0])
    with pytest.raises(DimensionMismatchError) as info:
        vectors.store_vector("b", [1.0, 2.0])
    assert (info.value.expected, info.value.got) == (3, 2)
    with pytest.raises(DimensionMismatchError):
        vectors.search_similar([1.0], 5)
    with pytest.raises(DimensionMismatchError):
        vectors.search_by_threshold([1.0], 0.5)


def test_search_similar_orders_and_limits():
    vectors = MemoryVectorStorage()
    vectors.batch_store_vectors({
        "x": [1.0, 0.0, 0.0],
        "y": [0.0, 1.0, 0.0],
        "xy": [1.0, 1.0, 0.0],
    })
    results = vectors.search_similar([1.0, 0.0, 0.0], 2)
    assert len(results) == 2
    assert results[0].document.id == "x"
    assert results[0].similarity >= results[1].similarity
    assert all(r.score == r.similarity for r in results)


def test_search_by_threshold_filters():
    vectors = MemoryVectorStorage()
    vectors.batch_store_vectors({"x": [1.0, 0.0], "y": [0.0, 1.0], "xy": [1.0, 1.0]})
    results = vectors.search_by_threshold([1.0, 0.0], 0.5)
    assert {r.document.id for r in results} == {"x", "xy"}
    sims = [r.similarity for r in results]
    assert sims == sorted(sims, reverse=True)


def test_delete_vector_and_missing():
    vectors = MemoryVectorStorage()
    vectors.store_vector("a", [1.0])
    vectors.delete_vector("a")
    assert vectors.get_vector_count() == 0
    with pytest.raises(VectorNotFoundError):
        vectors.delete_vector("a")
    with pytest.raises(VectorNotFoundError):
        vectors.get_vector("non-existent-vector")


def test_vector_close_clears():
    vectors = MemoryVectorStorage()
    data = {"a": [1.0, 2.0], "b": [2.0, 1.0]}
    vectors.batch_store_vectors(data)
    assert vectors.get_vector_count() == len(data)
    vectors.close()
    assert vectors.get_vector_count() == 0


# index and engine

def test_dummy_index_holds_nothing():
    index = DummyIndexStorage()
    index.add_document(Document(id="a", content="text"))
    assert index.search("text", 10) == []
    assert index.search_terms(["text"], 10) == []
    assert index.get_term_count() == 0
    assert index.get_document_count() == 0
    assert index.get_term_frequency("text", "a") == 0


def test_engine_metrics_follow_document_storage():
    engine = MemoryStorageEngine()
    docs = _docs()
    engine.document_storage().batch_store(docs)
    metrics = engine.get_metrics()
    assert metrics.document_count == len(docs)
    assert metrics.uptime >= timedelta(0)
    assert engine.index_storage().search("q", 1) == []


def test_engine_initialize_keeps_config():
    engine = MemoryStorageEngine()
    config = StorageConfig(type="memory", cache_size=10)
    engine.initialize(config)
    assert engine.config == config


def test_engine_close_is_idempotent():
    engine = MemoryStorageEngine()
    engine.health()
    engine.document_storage().store(Document(id="a"))
    engine.close()
    engine.close()
    with pytest.raises(StorageUnavailableError):
        engine.health()
    assert engine.document_storage().count() == 0


def test_engine_context_manager():
    with MemoryStorageEngine() as engine:
        engine.vector_storage().store_vector("a", [1.0, 0.0])
    assert engine.vector_storage().get_vector_count() == 0
    with pytest.raises(StorageUnavailableError):
        engine.health()
# ctxstore

This package stores documents and their vectors so that conversation context
can be kept around. Three backends share one set of interfaces, which are
defined in `ctxstore.models`:

- **memory** (`ctxstore.memory`) keeps everything in dictionaries inside the process. It searches stored vectors by cosine similarity.
- **sqlite** (`ctxstore.sqlite`) keeps documents and vectors in an SQLite database. The path `":memory:"` or an empty path gives a database that lives only in memory. A file path gives one that persists.
- **chromem** (`ctxstore.chromem`) is an embedded collection. It builds its own deterministic embeddings from text through `offline_embedding` and needs no service to do so. It can be saved to a JSON file.

`ctxstore.context_types` holds plain data types that a context engine reports: `Document`, `VectorResult`, `Context`, `CacheStats` and `EngineStats`. Each one has a `to_dict()` method.

The package uses only the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Choosing a backend

```python
from ctxstore.factory import StorageFactory, default_storage_config
from ctxstore.models import StorageConfig

factory = StorageFactory()
print(sorted(factory.get_available_types()))   # ['chromem', 'memory', 'sqlite']

engine = factory.create_storage(StorageConfig(type="sqlite", path=":memory:"))
docs = engine.document_storage()
vectors = engine.vector_storage()
```

- An empty `type` means `"memory"`, which is also the type that `default_storage_config()` returns.
- An unknown type raises `StorageError`.
- `register_provider()` adds a `StorageProvider` of your own, or replaces an existing one with the same name.
- `new_sqlite_db(path)` and `new_chromem_db(path)` open a store directly, without going through the factory.

## Documents

```python
from ctxstore.models import Document, DocumentNotFoundError

docs.store(Document(id="go-concurrency", title="Go concurrency",
                    content="goroutines and channels",
                    metadata={"language": "go"}))

doc = docs.get("go-concurrency")
docs.exists("go-concurrency")        # True
docs.count()                         # 1
docs.list(10, 0)                     # one page: limit, offset

try:
    docs.get("missing")
except DocumentNotFoundError:
    ...
```

The order that `list` returns depends on the backend:

- sqlite and chromem return the newest documents first, by `created`.
- memory returns documents in the order they were inserted.

The batch calls are `batch_store`, `batch_get` and `batch_delete`. `get_metrics()` returns a `StorageMetrics` with these fields:

- the document count
- the read and write counters
- the uptime

What happens when you delete a document that does not exist depends on the backend:

- memory raises `DocumentNotFoundError` from `delete`.
- sqlite raises `DocumentNotFoundError` from `delete`.
- chromem ignores it.

## Vectors

```python
from ctxstore.sqlite import SQLiteStorage

store = SQLiteStorage(StorageConfig(type="sqlite", path=":memory:"))
store.store(Document(id="a", title="A", content="alpha"))
store.store_vector("a", [0.1, 0.2, 0.3, 0.4, 0.5])

store.search_similar([0.1, 0.2, 0.3, 0.4, 0.5], 5)      # [VectorResult(...)]
store.search_by_threshold([0.1, 0.2, 0.3, 0.4, 0.5], 0.5)
store.get_dimensions()                                   # 5
store.close()
```

Results come back best first.

**sqlite.** `search_similar` drops any result whose similarity is not positive. `search_by_threshold` filters the best 100 matches. When no vectors are stored, `get_dimensions()` returns 128.

**memory.** `MemoryVectorStorage` takes its dimension from the first vector you store. After that, a vector of any other length raises `DimensionMismatchError`. The function `cosine_similarity(a, b)` is also available on its own.

**Missing vectors.** `get_vector` on an id with no vector raises `VectorNotFoundError`.

**Closing.** Every backend can be used as a context manager, and leaving the `with` block closes the store.

## Text search on the embedded collection

```python
from ctxstore.chromem import ChromemStorage

store = ChromemStorage(StorageConfig(type="chromem", path=":memory:",
                                     options={"collection_name": "notes"}))
store.batch_store([
    Document(id="ml", title="Machine learning", content="models and training"),
    Document(id="web", title="Web development", content="frontend and backend"),
])
for hit in store.search_by_text("training models", 3):
    print(hit.document.id, hit.similarity)

store.query_with_filter("models", 5, {"title": "Machine learning"})
store.get_stats()["collection_name"]     # 'notes'
```

**What gets embedded.** Each document is embedded as its title and content joined together. Its metadata also gets `title`, `created` and `updated` added, and `query_with_filter` can filter on those entries.

**Searching by text.** `search_by_text` with an empty query returns the most recent documents, each with similarity 1.0.

**No vector search.** This backend does not accept vectors from outside:

- `search_similar` ignores the vector it is given and behaves like an empty text query.
- `search_by_threshold` ignores the vector and behaves like an empty text query as well.
- `get_vector` returns a zero vector of 384 dimensions.
- `store_vector` only checks that the document exists.

**Persistence.** Suppose `path` is set to something other than `":memory:"`. The documents are then saved to `<path>.json` on `flush()` and on `close()`. They are loaded back the next time a store is opened with that path, and their embeddings are computed again.

`get_collection()` returns the underlying `Collection`, or `None` once the store is closed.

## What this package does not do

**No term index.** There is no working term index:

- The memory engine's `index_storage()` returns a `DummyIndexStorage`. It never takes entries, so every search on it finds nothing and every count is zero.
- The sqlite and chromem engines return `None` from `index_storage()`.

**No context engine.** Nothing here builds contexts or summarises conversations. The types in `ctxstore.context_types` are only data containers.

**No command-line tool and no server.** The package is a library only.
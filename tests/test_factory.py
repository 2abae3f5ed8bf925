import pytest

from ctxstore.factory import (
    ChromemStorageProvider,
    ChromemStorageWrapper,
    MemoryStorageProvider,
    SQLiteStorageProvider,
    SQLiteStorageWrapper,
    StorageFactory,
    StorageType,
    default_storage_config,
    new_chromem_db,
    new_sqlite_db,
)
from ctxstore.memory import MemoryStorageEngine
from ctxstore.models import (
    Document,
    DocumentNotFoundError,
    StorageConfig,
    StorageError,
    StorageProvider,
    StorageUnavailableError,
)


class _CustomProvider(StorageProvider):
    def name(self):
        return "custom"

    def create(self, config):
        engine = MemoryStorageEngine()
        engine.initialize(config)
        return engine

    def validate(self, config):
        if config.type != "custom":
            raise StorageError("wrong type")


def test_available_types_are_builtin_backends():
    factory = StorageFactory()
    assert sorted(factory.get_available_types()) == ["chromem", "memory", "sqlite"]


def test_storage_type_values():
    assert StorageType.MEMORY.value == "memory"
    assert StorageType.SQLITE == "sqlite"
    assert StorageType("chromem") is StorageType.CHROMEM


def test_create_memory_storage_roundtrip():
    engine = StorageFactory().create_storage(StorageConfig(type="memory"))
    assert isinstance(engine, MemoryStorageEngine)
    assert engine.config.type == "memory"
    engine.document_storage().store(Document(id="a", title="t", content="c"))
    assert engine.document_storage().get("a").content == "c"
    assert engine.get_metrics().document_count == 1


def test_create_sqlite_storage_wrapper():
    engine = StorageFactory().create_storage(StorageConfig(type="sqlite", path=":memory:"))
    assert isinstance(engine, SQLiteStorageWrapper)
    assert engine.index_storage() is None
    assert engine.document_storage() is engine.vector_storage()
    docs = engine.document_storage()
    docs.store(Document(id="d1", title="title", content="body", metadata={"k": "v"}))
    assert docs.get("d1").metadata == {"k": "v"}
    assert engine.get_metrics().document_count == 1
    engine.close()
    with pytest.raises(StorageUnavailableError):
        docs.get("d1")


def test_create_chromem_storage_wrapper():
    engine = StorageFactory().create_storage(StorageConfig(type="chromem", path=":memory:"))
    assert isinstance(engine, ChromemStorageWrapper)
    assert engine.index_storage() is None
    store = engine.document_storage()
    store.store(Document(id="x", title="Title", content="Content"))
    assert store.exists("x") is True
    assert engine.get_metrics().document_count == 1
    assert engine.vector_storage().get_dimensions() == 384
    engine.close()
    assert store.get_collection() is None


def test_unknown_type_raises():
    with pytest.raises(StorageError, match="unknown storage type: badger"):
        StorageFactory().create_storage(StorageConfig(type="badger"))


def test_empty_type_fails_validation_of_memory_provider():
    with pytest.raises(StorageError, match="invalid config for memory storage"):
        StorageFactory().create_storage(StorageConfig(type=""))


def test_uppercase_type_is_looked_up_but_fails_validation():
    with pytest.raises(StorageError, match="invalid storage type for sqlite provider: SQLITE"):
        StorageFactory().create_storage(StorageConfig(type="SQLITE"))


@pytest.mark.parametrize(
    "provider, good, bad",
    [
        (MemoryStorageProvider(), "memory", "sqlite"),
        (SQLiteStorageProvider(), "sqlite", "memory"),
        (ChromemStorageProvider(), "chromem", "sqlite"),
    ],
)
def test_provider_validate(provider, good, bad):
    assert provider.name() == good
    provider.validate(StorageConfig(type=good))
    with pytest.raises(StorageError, match=f"invalid storage type for {good} provider: {bad}"):
        provider.validate(StorageConfig(type=bad))


def test_register_custom_provider():
    factory = StorageFactory()
    factory.register_provider(_CustomProvider())
    assert "custom" in factory.get_available_types()
    engine = factory.create_storage(StorageConfig(type="custom"))
    assert engine.config.type == "custom"
    engine.health()
    engine.close()
    with pytest.raises(StorageUnavailableError):
        engine.health()


def test_default_storage_config():
    config = default_storage_config()
    assert config.type == "memory"
    assert config.path == ""
    assert config.max_size == 1024 * 1024 * 1024
    assert config.cache_size == 1000
    assert config.options == {}
    engine = StorageFactory().create_storage(config)
    assert isinstance(engine, MemoryStorageEngine)


def test_default_storage_config_options_not_shared():
    first = default_storage_config()
    first.options["a"] = "b"
    assert default_storage_config().options == {}


def test_new_sqlite_db_in_memory():
    storage = new_sqlite_db("")
    try:
        assert storage.config.path == ":memory:"
        assert storage.config.type == "sqlite"
        storage.store(Document(id="s", title="t", content="c"))
        assert storage.count() == 1
    finally:
        storage.close()


def test_new_sqlite_db_file(tmp_path):
    path = str(tmp_path / "test.db")
    storage = new_sqlite_db(path)
    storage.store(Document(id="p", title="persisted", content="body"))
    storage.close()
    reopened = new_sqlite_db(path)
    try:
        assert reopened.get("p").title == "persisted"
    finally:
        reopened.close()


def test_new_chromem_db_persists(tmp_path):
    path = str(tmp_path / "store")
    storage = new_chromem_db(path)
    assert storage.config.type == "chromem"
    storage.store(Document(id="c1", title="Title", content="Body", metadata={"k": "v"}))
    storage.close()
    reopened = new_chromem_db(path)
    try:
        doc = reopened.get("c1")
        assert doc.title == "Title"
        assert doc.metadata == {"k": "v"}
        with pytest.raises(DocumentNotFoundError):
            reopened.get("missing")
    finally:
        reopened.close()


def test_wrapper_context_manager_closes_storage():
    with StorageFactory().create_storage(StorageConfig(type="sqlite")) as engine:
        docs = engine.document_storage()
        docs.store(Document(id="z", title="t", content="c"))
        assert docs.exists("z") is True
    with pytest.raises(StorageUnavailableError):
        docs.count()
"""Storage providers, engine wrappers and the factory that picks between them."""

from __future__ import annotations

from enum import Enum

from .chromem import ChromemStorage
from .memory import MemoryStorageEngine
from .models import (
    DocumentStorage,
    IndexStorage,
    StorageConfig,
    StorageEngine,
    StorageError,
    StorageMetrics,
    StorageProvider,
    VectorStorage,
)
from .sqlite import SQLiteStorage


class StorageType(str, Enum):
    """Names of the built-in storage backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    CHROMEM = "chromem"


def _check_type(config: StorageConfig, expected: StorageType, provider: str) -> None:
    if config.type != expected.value:
        raise StorageError(f"invalid storage type for {provider} provider: {config.type}")


class MemoryStorageProvider(StorageProvider):
    """Creates in-memory storage engines."""

    def name(self) -> str:
        return StorageType.MEMORY.value

    def create(self, config: StorageConfig) -> MemoryStorageEngine:
        engine = MemoryStorageEngine()
        engine.initialize(config)
        return engine

    def validate(self, config: StorageConfig) -> None:
        _check_type(config, StorageType.MEMORY, "memory")


class SQLiteStorageWrapper(StorageEngine):
    """Presents an SQLite store as a storage engine."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self.storage = storage

    def document_storage(self) -> DocumentStorage:
        return self.storage

    def vector_storage(self) -> VectorStorage:
        return self.storage

    def index_storage(self) -> IndexStorage | None:
        return None

    def initialize(self, config: StorageConfig) -> None:
        return None

    def close(self) -> None:
        self.storage.close()

    def health(self) -> None:
        return None

    def get_metrics(self) -> StorageMetrics:
        return self.storage.get_metrics()


class ChromemStorageWrapper(StorageEngine):
    """Presents a chromem store as a storage engine."""

    def __init__(self, storage: ChromemStorage) -> None:
        self.storage = storage

    def document_storage(self) -> DocumentStorage:
        return self.storage

    def vector_storage(self) -> VectorStorage:
        return self.storage

    def index_storage(self) -> IndexStorage | None:
        return None

    def initialize(self, config: StorageConfig) -> None:
        return None

    def close(self) -> None:
        self.storage.close()

    def health(self) -> None:
        return None

    def get_metrics(self) -> StorageMetrics:
        return self.storage.get_metrics()


class SQLiteStorageProvider(StorageProvider):
    """Creates SQLite-backed storage engines."""

    def name(self) -> str:
        return StorageType.SQLITE.value

    def create(self, config: StorageConfig) -> SQLiteStorageWrapper:
        return SQLiteStorageWrapper(SQLiteStorage(config))

    def validate(self, config: StorageConfig) -> None:
        _check_type(config, StorageType.SQLITE, "sqlite")


class ChromemStorageProvider(StorageProvider):
    """Creates chromem-backed storage engines."""

    def name(self) -> str:
        return StorageType.CHROMEM.value

    def create(self, config: StorageConfig) -> ChromemStorageWrapper:
        return ChromemStorageWrapper(ChromemStorage(config))

    def validate(self, config: StorageConfig) -> None:
        _check_type(config, StorageType.CHROMEM, "chromem")


class StorageFactory:
    """Creates storage engines by type name from registered providers."""

    def __init__(self) -> None:
        self._providers: dict[str, StorageProvider] = {}
        self.register_provider(MemoryStorageProvider())
        self.register_provider(SQLiteStorageProvider())
        self.register_provider(ChromemStorageProvider())

    def register_provider(self, provider: StorageProvider) -> None:
        """Add a provider, replacing any with the same name."""
        self._providers[provider.name()] = provider

    def create_storage(self, config: StorageConfig) -> StorageEngine:
        """Create an engine for the configured type; an empty type means memory."""
        storage_type = config.type.lower() or StorageType.MEMORY.value
        provider = self._providers.get(storage_type)
        if provider is None:
            raise StorageError(f"unknown storage type: {storage_type}")
        try:
            provider.validate(config)
        except StorageError as exc:
            raise StorageError(f"invalid config for {storage_type} storage: {exc}") from exc
        return provider.create(config)

    def get_available_types(self) -> list[str]:
        """Return the names of all registered providers."""
        return list(self._providers)


def default_storage_config() -> StorageConfig:
    """Return the default configuration: in-memory, 1 GiB limit, 1000 cache entries."""
    return StorageConfig(
        type=StorageType.MEMORY.value,
        path="",
        max_size=1024 * 1024 * 1024,
        cache_size=1000,
        options={},
    )


def new_sqlite_db(path: str) -> SQLiteStorage:
    """Open an SQLite store at the path (an empty path means in memory)."""
    return SQLiteStorage(StorageConfig(type=StorageType.SQLITE.value, path=path))


def new_chromem_db(path: str) -> ChromemStorage:
    """Open a chromem store, persisted to ``<path>.json`` unless the path is empty or in memory."""
    return ChromemStorage(StorageConfig(type=StorageType.CHROMEM.value, path=path))
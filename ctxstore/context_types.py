"""Result and statistics types of the context engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any


def _nanoseconds(value: timedelta) -> int:
    return (value.days * 86400 + value.seconds) * 1_000_000_000 + value.microseconds * 1000


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Document:
    """A document known to the context engine."""

    id: str
    title: str = ""
    content: str = ""
    created: datetime | None = None
    meta: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; empty meta is omitted."""
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "created": _format_time(self.created),
        }
        if self.meta:
            data["meta"] = dict(self.meta)
        return data


@dataclass
class VectorResult:
    """A document found by similarity search."""

    document: Document
    similarity: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping."""
        return {"document": self.document.to_dict(), "similarity": self.similarity}


@dataclass
class Context:
    """Context built for a task."""

    id: str
    task: str = ""
    content: str = ""
    quality: float = 0.0
    created: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping."""
        return {
            "id": self.id,
            "task": self.task,
            "content": self.content,
            "quality": self.quality,
            "created": _format_time(self.created),
        }


@dataclass
class CacheStats:
    """Cache counters."""

    hit_count: int = 0
    miss_count: int = 0
    evict_count: int = 0
    item_count: int = 0
    hit_ratio: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping."""
        return {
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "evict_count": self.evict_count,
            "item_count": self.item_count,
            "hit_ratio": self.hit_ratio,
        }


@dataclass
class EngineStats:
    """Overall state of the context engine."""

    document_count: int = 0
    cache_stats: CacheStats = field(default_factory=CacheStats)
    vector_layer_ok: bool = False
    index_layer_ok: bool = False
    memory_layer_ok: bool = False
    last_query_time: timedelta = field(default_factory=timedelta)
    total_queries: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; durations are in nanoseconds."""
        return {
            "document_count": self.document_count,
            "cache_stats": self.cache_stats.to_dict(),
            "vector_layer_ok": self.vector_layer_ok,
            "index_layer_ok": self.index_layer_ok,
            "memory_layer_ok": self.memory_layer_ok,
            "last_query_time": _nanoseconds(self.last_query_time),
            "total_queries": self.total_queries,
        }
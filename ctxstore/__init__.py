"""Document and vector storage backends (memory, SQLite, embedded collection) for context engines."""

__version__ = "0.1.0"
__all__ = ["models", "context_types", "memory", "sqlite", "chromem", "factory"]
"""Utilities module for chat-search."""

from chat_search.utils.errors import (
    ChatSearchError,
    ValidationError,
    ConfigurationError,
    EmbeddingError,
    StorageError,
    RetrievalError,
    IngestionError,
    SessionParseError,
)
from chat_search.utils.logging import setup_logging, StructuredLogger, get_logger

__all__ = [
    "ChatSearchError",
    "ValidationError",
    "ConfigurationError",
    "EmbeddingError",
    "StorageError",
    "RetrievalError",
    "IngestionError",
    "SessionParseError",
    "setup_logging",
    "StructuredLogger",
    "get_logger",
]

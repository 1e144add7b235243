"""Services module for chat-search."""

from chat_search.services.embedding_service import EmbeddingService
from chat_search.services.ingestion_service import IngestionService
from chat_search.services.retrieval_service import RetrievalService

__all__ = [
    "EmbeddingService",
    "IngestionService",
    "RetrievalService",
]

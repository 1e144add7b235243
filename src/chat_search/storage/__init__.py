"""Storage module for chat-search."""

from chat_search.storage.models import (
    Message,
    Session,
    PendingRecord,
    IndexRecord,
    SearchCandidate,
    QueryResult,
    IngestSummary,
    make_record_id,
)
from chat_search.storage.postgres_client import PostgresClient
from chat_search.storage.corpus_store import CorpusStore, PgVectorCorpusStore

__all__ = [
    "Message",
    "Session",
    "PendingRecord",
    "IndexRecord",
    "SearchCandidate",
    "QueryResult",
    "IngestSummary",
    "make_record_id",
    "PostgresClient",
    "CorpusStore",
    "PgVectorCorpusStore",
]

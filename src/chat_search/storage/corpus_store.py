"""
Corpus store over PostgreSQL + pgvector.

One table holds every indexed chat message with its embedding and a
generated ``tsvector`` column, so vector similarity and full-text search
run against the same corpus.
"""

import logging
import re
import time
from typing import Any, Dict, List, Protocol

from chat_search.storage.models import IndexRecord, SearchCandidate
from chat_search.storage.postgres_client import PostgresClient
from chat_search.utils.errors import StorageError


logger = logging.getLogger("chat-search.corpus")

# Cap on OR-fallback terms to keep the tsquery reasonable
MAX_FALLBACK_TOKENS = 12


class CorpusStore(Protocol):
    """Operations the ingestion pipeline and hybrid resolver need from a store."""

    async def upsert(self, records: List[IndexRecord]) -> int:
        """Persist records in one call; raise StorageError on any failure."""

    async def search_vector(self, embedding: List[float], limit: int) -> List[SearchCandidate]:
        """Return up to *limit* records ranked by vector similarity."""

    async def search_lexical(self, query: str, limit: int) -> List[SearchCandidate]:
        """Return up to *limit* records ranked by full-text relevance."""


def vector_literal(embedding: List[float]) -> str:
    """Render an embedding in pgvector's text input format."""
    return "[" + ",".join(str(float(x)) for x in embedding) + "]"


def fallback_tokens(query: str) -> List[str]:
    """Word tokens used for the OR fallback of a lexical search."""
    tokens = [t for t in re.findall(r"[A-Za-z0-9]+", query) if len(t) >= 3]
    return tokens[:MAX_FALLBACK_TOKENS]


class PgVectorCorpusStore:
    """CorpusStore backed by a pgvector table with a generated tsvector column."""

    def __init__(self, pg_client: PostgresClient, table: str = "chat_sessions", dimensions: int = 1536):
        """
        Initialize corpus store.

        Args:
            pg_client: Connected Postgres client
            table: Table holding the corpus (validated identifier, see config)
            dimensions: Embedding dimensionality; 0 leaves the column unsized
        """
        self.pg = pg_client
        self.table = table
        self.dimensions = dimensions

    def schema_statements(self) -> List[str]:
        """DDL that creates the corpus table and its indexes if missing."""
        vector_type = f"vector({self.dimensions})" if self.dimensions else "vector"
        statements = [
            "CREATE EXTENSION IF NOT EXISTS vector",
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                record_id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                sender TEXT NOT NULL,
                message TEXT NOT NULL,
                embedding {vector_type} NOT NULL,
                fts TSVECTOR GENERATED ALWAYS AS (to_tsvector('english', message)) STORED,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {self.table}_fts_idx ON {self.table} USING gin (fts)",
            f"CREATE INDEX IF NOT EXISTS {self.table}_session_idx ON {self.table} (session_id)",
        ]
        # HNSW needs a fixed dimensionality
        if self.dimensions:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS {self.table}_embedding_idx "
                f"ON {self.table} USING hnsw (embedding vector_cosine_ops)"
            )
        return statements

    async def ensure_schema(self) -> None:
        """Create the vector extension, corpus table and indexes."""
        try:
            await self.pg.transaction([(sql, ()) for sql in self.schema_statements()])
            logger.info(f"Corpus schema ready: table={self.table}, dims={self.dimensions or 'unsized'}")
        except Exception as e:
            logger.error(f"Failed to create corpus schema: {e}")
            raise StorageError(f"Failed to create corpus schema: {e}") from e

    async def upsert(self, records: List[IndexRecord]) -> int:
        """
        Upsert records keyed on record_id in a single transaction.

        Args:
            records: Fully embedded records

        Returns:
            Number of records written

        Raises:
            StorageError: If the write fails (nothing is committed)
        """
        if not records:
            return 0

        query = f"""
        INSERT INTO {self.table} (record_id, session_id, sender, message, embedding)
        VALUES ($1, $2, $3, $4, $5::vector)
        ON CONFLICT (record_id) DO UPDATE SET
            session_id = EXCLUDED.session_id,
            sender = EXCLUDED.sender,
            message = EXCLUDED.message,
            embedding = EXCLUDED.embedding
        """
        args = [
            (r.record_id, r.session_id, r.sender, r.message, vector_literal(r.embedding))
            for r in records
        ]

        try:
            start_time = time.time()
            await self.pg.execute_many(query, args)
            latency_ms = int((time.time() - start_time) * 1000)
            logger.info(f"Upserted {len(records)} records into {self.table} in {latency_ms}ms")
            return len(records)
        except Exception as e:
            logger.error(f"Upsert of {len(records)} records failed: {e}")
            raise StorageError(f"Failed to upsert {len(records)} records: {e}") from e

    async def search_vector(self, embedding: List[float], limit: int) -> List[SearchCandidate]:
        """
        Rank records by cosine similarity to *embedding*.

        Score is ``1 - cosine_distance`` so higher means more similar.
        """
        # pgvector uses <=> for cosine distance
        query = f"""
        SELECT record_id AS id, message,
               1 - (embedding <=> $1::vector) AS score
        FROM {self.table}
        ORDER BY embedding <=> $1::vector, record_id
        LIMIT $2
        """
        try:
            rows = await self.pg.fetch_all(query, vector_literal(embedding), limit)
        except Exception as e:
            logger.error(f"Vector search failed: {e}")
            raise StorageError(f"Vector search failed: {e}") from e

        return self._to_candidates(rows)

    async def search_lexical(self, query: str, limit: int) -> List[SearchCandidate]:
        """
        Rank records by full-text relevance to *query*.

        Runs with AND semantics (plainto_tsquery) first; when that finds
        nothing, retries with the query's word tokens OR-ed together.
        Score is ``ts_rank_cd`` with normalization 32, i.e. in [0, 1).
        """
        strict_sql = f"""
        SELECT record_id AS id, message,
               ts_rank_cd(fts, q, 32) AS score
        FROM {self.table}, plainto_tsquery('english', $1) AS q
        WHERE fts @@ q
        ORDER BY score DESC, record_id
        LIMIT $2
        """
        try:
            rows = await self.pg.fetch_all(strict_sql, query, limit)

            if not rows:
                tokens = fallback_tokens(query)
                if len(tokens) > 1:
                    or_sql = strict_sql.replace("plainto_tsquery", "websearch_to_tsquery")
                    rows = await self.pg.fetch_all(or_sql, " OR ".join(tokens), limit)
        except Exception as e:
            logger.error(f"Lexical search failed: {e}")
            raise StorageError(f"Lexical search failed: {e}") from e

        return self._to_candidates(rows)

    def _to_candidates(self, rows: List[Dict[str, Any]]) -> List[SearchCandidate]:
        candidates = []
        for row in rows:
            try:
                candidates.append(SearchCandidate(
                    id=str(row["id"]),
                    message=row["message"],
                    score=float(row["score"] if row["score"] is not None else 0.0),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise StorageError(f"Malformed search row: {e}") from e
        return candidates

    async def health_check(self) -> Dict[str, Any]:
        """Check the corpus table is reachable and report its size."""
        try:
            count = await self.pg.fetch_val(f"SELECT count(*) FROM {self.table}")
            return {"status": "healthy", "table": self.table, "records": int(count or 0)}
        except Exception as e:
            return {"status": "unhealthy", "table": self.table, "error": str(e)}

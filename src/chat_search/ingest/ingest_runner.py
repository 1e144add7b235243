"""
Offline ingestion runner.

Owns the lifecycle of the Postgres pool, embedding client and corpus
store for one pass over an NDJSON session log.
"""

import io
import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

from chat_search.config import Config
from chat_search.services.embedding_service import EmbeddingService
from chat_search.services.ingestion_service import IngestionService
from chat_search.storage.corpus_store import PgVectorCorpusStore
from chat_search.storage.models import IngestSummary
from chat_search.storage.postgres_client import PostgresClient

logger = logging.getLogger("chat-search.ingest")

STDIN_SOURCE = "-"


@contextmanager
def open_source(source: str) -> Iterator[TextIO]:
    """Yield a text stream for a file path, or stdin for ``-``."""
    # Undecodable bytes become U+FFFD instead of aborting the stream
    if source == STDIN_SOURCE:
        stream = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
        try:
            yield stream
        finally:
            # Leave the process's stdin open
            stream.detach()
        return

    with open(source, "r", encoding="utf-8", errors="replace") as handle:
        yield handle


def format_summary(summary: IngestSummary) -> str:
    """Human-readable end-of-run report."""
    return "\n".join([
        "",
        "--- Indexing Complete ---",
        f"Total lines read: {summary.lines_read}",
        f"Successfully indexed messages: {summary.succeeded}",
        f"Failed messages: {summary.failed}",
        "-------------------------",
    ])


class IngestRunner:
    """Wires and runs the ingestion pipeline against the configured store."""

    def __init__(
        self,
        config: Config,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        init_schema: bool = False
    ):
        """
        Initialize runner.

        Args:
            config: Configuration object
            batch_size: Override for BATCH_SIZE
            concurrency: Override for INGEST_CONCURRENCY
            init_schema: Create the corpus table and indexes before ingesting
        """
        self.config = config
        self.batch_size = batch_size or config.batch_size
        self.concurrency = concurrency or config.ingest_concurrency
        self.init_schema = init_schema

        self.pg_client: Optional[PostgresClient] = None
        self.ingestion_service: Optional[IngestionService] = None

    async def initialize(self) -> None:
        """Initialize all services."""
        logger.info("Initializing ingestion services...")

        self.pg_client = PostgresClient(
            dsn=self.config.database_dsn,
            min_pool_size=self.config.postgres_pool_min,
            max_pool_size=self.config.postgres_pool_max,
            command_timeout=self.config.postgres_command_timeout
        )
        await self.pg_client.connect()

        pg_health = await self.pg_client.health_check()
        if pg_health["status"] != "healthy":
            raise RuntimeError(f"Postgres unhealthy: {pg_health.get('error')}")
        logger.info("  Postgres: OK")

        corpus_store = PgVectorCorpusStore(
            self.pg_client,
            table=self.config.corpus_table,
            dimensions=self.config.openai_embed_dims
        )
        if self.init_schema:
            await corpus_store.ensure_schema()

        embedding_service = EmbeddingService(
            api_key=self.config.openai_api_key,
            model=self.config.openai_embed_model,
            dimensions=self.config.openai_embed_dims,
            timeout=self.config.openai_timeout,
            max_retries=self.config.openai_max_retries,
            batch_size=self.config.openai_batch_size,
            base_url=self.config.openai_base_url
        )
        embed_health = await embedding_service.health_check()
        if embed_health["status"] != "healthy":
            raise RuntimeError(f"Embedding API unhealthy: {embed_health.get('error')}")
        logger.info(
            f"  Embedding API: OK ({self.config.openai_embed_model}, "
            f"latency={embed_health.get('api_latency_ms')}ms)"
        )

        self.ingestion_service = IngestionService(
            embedding_service=embedding_service,
            corpus_store=corpus_store,
            batch_size=self.batch_size,
            concurrency=self.concurrency
        )
        logger.info(f"  Ingestion: batch_size={self.batch_size}, concurrency={self.concurrency}")

    async def shutdown(self) -> None:
        """Shutdown all services."""
        if self.pg_client:
            await self.pg_client.close()

    async def run(self, source: str) -> IngestSummary:
        """
        Stream *source* through the pipeline.

        Args:
            source: NDJSON file path, or ``-`` for stdin

        Returns:
            Aggregate ingestion counters
        """
        try:
            await self.initialize()
            logger.info(f"Starting to stream and index: {source}")
            with open_source(source) as stream:
                return await self.ingestion_service.ingest(stream)
        finally:
            await self.shutdown()

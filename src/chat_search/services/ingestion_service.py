"""
Streaming batch ingestion of chat session logs.

Reads newline-delimited JSON sessions, flattens them into message records,
and embeds + upserts them one fixed-size batch at a time. At most one
batch is being filled while at most ``concurrency`` batches are in flight,
so memory stays bounded no matter how long the log is.
"""

import asyncio
import json
import time
from typing import AsyncIterable, AsyncIterator, Iterable, List, Set, Tuple, Union

from chat_search.services.embedding_service import EmbeddingService
from chat_search.storage.corpus_store import CorpusStore
from chat_search.storage.models import (
    IndexRecord,
    IngestSummary,
    Message,
    PendingRecord,
    Session,
    make_record_id,
)
from chat_search.utils.errors import SessionParseError
from chat_search.utils.logging import get_logger


logger = get_logger("ingestion")

Lines = Union[Iterable[str], AsyncIterable[str]]


def parse_session(line: str, line_number: int = 0) -> Session:
    """
    Parse one NDJSON line into a Session.

    Args:
        line: Raw line text
        line_number: 1-based position in the stream, for error reporting

    Returns:
        Parsed session

    Raises:
        SessionParseError: If the line is not a JSON object with an ``id``
            and a ``messages`` list
    """
    try:
        payload = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise SessionParseError(f"Invalid JSON: {e}", line_number) from e

    if not isinstance(payload, dict):
        raise SessionParseError("Session must be a JSON object", line_number)

    session_id = payload.get("id")
    if isinstance(session_id, bool) or not isinstance(session_id, (str, int)) or session_id == "":
        raise SessionParseError("Session id is missing or invalid", line_number)

    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list):
        raise SessionParseError("Session messages must be a list", line_number)

    messages = []
    for raw in raw_messages:
        if isinstance(raw, dict):
            messages.append(Message(role=raw.get("role"), content=raw.get("content")))
        else:
            # Keeps message positions stable for record ids
            messages.append(Message(role=None, content=None))

    return Session(id=str(session_id), messages=messages)


def pending_records(session: Session) -> List[PendingRecord]:
    """Index candidates for every indexable message of *session*, in order."""
    return [
        PendingRecord(
            record_id=make_record_id(session.id, index),
            session_id=session.id,
            sender=message.role,
            message=message.content,
        )
        for index, message in enumerate(session.messages)
        if message.is_indexable
    ]


async def _iterate(lines: Lines) -> AsyncIterator[str]:
    if hasattr(lines, "__aiter__"):
        async for line in lines:
            yield line
    else:
        for line in lines:
            yield line


class IngestionService:
    """Batch ingestion pipeline driving the embedding service and corpus store."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        corpus_store: CorpusStore,
        batch_size: int = 100,
        concurrency: int = 1
    ):
        """
        Initialize ingestion service.

        Args:
            embedding_service: Client used once per batch
            corpus_store: Store receiving one upsert per batch
            batch_size: Records per batch
            concurrency: Max batches flushed concurrently (1 = sequential)
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        self.embedding_service = embedding_service
        self.corpus_store = corpus_store
        self.batch_size = batch_size
        self.concurrency = concurrency

    async def ingest(self, lines: Lines) -> IngestSummary:
        """
        Ingest a stream of NDJSON session lines.

        Blank lines and sessions without indexable messages are skipped.
        Unparseable lines count as one failure each. A failed batch counts
        all of its records as failed and never stops the run.

        Args:
            lines: Sync or async iterable of raw lines

        Returns:
            Aggregate counters for the run
        """
        summary = IngestSummary()
        batch: List[PendingRecord] = []
        in_flight: Set[asyncio.Task] = set()
        start_time = time.time()

        async def flush(records: List[PendingRecord]) -> None:
            summary.batches += 1
            if self.concurrency == 1:
                self._tally(summary, await self.process_batch(records))
                return

            while len(in_flight) >= self.concurrency:
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    in_flight.discard(task)
                    self._tally(summary, task.result())
            in_flight.add(asyncio.ensure_future(self.process_batch(records)))

        try:
            async for line in _iterate(lines):
                summary.lines_read += 1
                line_number = summary.lines_read

                if not line.strip():
                    summary.skipped_lines += 1
                    continue

                try:
                    session = parse_session(line, line_number)
                except SessionParseError as e:
                    logger.warning(
                        f"Could not parse line {line_number}. Skipping.",
                        {"line_number": line_number, "error": str(e)}
                    )
                    summary.failed += 1
                    continue

                records = pending_records(session)
                if not records:
                    summary.skipped_lines += 1
                    continue

                for record in records:
                    batch.append(record)
                    if len(batch) >= self.batch_size:
                        await flush(batch)
                        batch = []

            if batch:
                await flush(batch)

            if in_flight:
                results = await asyncio.gather(*in_flight)
                in_flight.clear()
                for result in results:
                    self._tally(summary, result)
        finally:
            # Batches still running are cancelled before the caller closes the pool
            if in_flight:
                for task in in_flight:
                    task.cancel()
                await asyncio.gather(*in_flight, return_exceptions=True)

        logger.info(
            "Indexing complete",
            {**summary.to_dict(), "duration_ms": int((time.time() - start_time) * 1000)}
        )
        return summary

    async def process_batch(self, batch: List[PendingRecord]) -> Tuple[int, int]:
        """
        Embed and upsert one batch as an all-or-nothing unit.

        Args:
            batch: Pending records, in order

        Returns:
            (succeeded, failed) record counts
        """
        if not batch:
            return 0, 0

        logger.info(f"Processing a batch of {len(batch)} messages", {"batch_size": len(batch)})

        try:
            embeddings = await self.embedding_service.generate_embeddings_batch(
                [record.message for record in batch]
            )
            # Guards custom embedding clients; EmbeddingService validates this itself
            if len(embeddings) != len(batch):
                raise ValueError(
                    f"received {len(embeddings)} embeddings for {len(batch)} messages"
                )
        except Exception as e:
            logger.error(
                f"Embedding failed for batch: {e}",
                {"batch_size": len(batch), "stage": "embed"}
            )
            return 0, len(batch)

        records = [
            IndexRecord.from_pending(pending, embedding)
            for pending, embedding in zip(batch, embeddings)
        ]

        try:
            await self.corpus_store.upsert(records)
        except Exception as e:
            logger.error(
                f"Error inserting batch: {e}",
                {"batch_size": len(batch), "stage": "upsert"}
            )
            return 0, len(batch)

        logger.info(f"Successfully indexed {len(batch)} messages", {"batch_size": len(batch)})
        return len(batch), 0

    @staticmethod
    def _tally(summary: IngestSummary, result: Tuple[int, int]) -> None:
        succeeded, failed = result
        summary.succeeded += succeeded
        summary.failed += failed

"""Data models for chat-search."""

import hashlib
from dataclasses import dataclass, field
from typing import List, Optional


MESSAGE_ROLES = ("user", "assistant")


def make_record_id(session_id: str, message_index: int) -> str:
    """
    Derive a deterministic record id for one message of a session.

    Re-ingesting the same session yields the same ids, so the store's
    upsert overwrites instead of duplicating.
    """
    digest = hashlib.sha256(f"{session_id}::{message_index}".encode("utf-8")).hexdigest()
    return f"msg_{digest[:32]}"


@dataclass
class Message:
    """One turn of a chat session."""
    role: Optional[str]
    content: Optional[str]

    @property
    def is_indexable(self) -> bool:
        return (
            self.role in MESSAGE_ROLES
            and isinstance(self.content, str)
            and bool(self.content.strip())
        )


@dataclass
class Session:
    """A transcript unit read from the export log."""
    id: str
    messages: List[Message] = field(default_factory=list)


@dataclass
class PendingRecord:
    """Index candidate waiting in a batch for its embedding."""
    record_id: str
    session_id: str
    sender: str
    message: str


@dataclass
class IndexRecord:
    """Record persisted to the corpus store."""
    record_id: str
    session_id: str
    sender: str
    message: str
    embedding: List[float]

    @classmethod
    def from_pending(cls, pending: PendingRecord, embedding: List[float]) -> "IndexRecord":
        return cls(
            record_id=pending.record_id,
            session_id=pending.session_id,
            sender=pending.sender,
            message=pending.message,
            embedding=embedding,
        )


@dataclass
class SearchCandidate:
    """Single hit from one search path (vector or lexical)."""
    id: str
    message: str
    score: float


@dataclass
class QueryResult:
    """Fused hybrid search result."""
    id: str
    message: str
    similarity: float

    def to_dict(self) -> dict:
        return {"id": self.id, "message": self.message, "similarity": self.similarity}


@dataclass
class IngestSummary:
    """Aggregate counters for one ingestion run."""
    lines_read: int = 0
    succeeded: int = 0
    failed: int = 0
    batches: int = 0
    skipped_lines: int = 0

    def to_dict(self) -> dict:
        return {
            "lines_read": self.lines_read,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "batches": self.batches,
            "skipped_lines": self.skipped_lines,
        }

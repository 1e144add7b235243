"""Offline ingestion entry point for chat-search."""

from chat_search.ingest.ingest_runner import IngestRunner, format_summary, open_source

__all__ = ["IngestRunner", "format_summary", "open_source"]

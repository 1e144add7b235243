"""
Ingestion entry point.

Usage:
    python -m chat_search.ingest sessions.ndjson
    cat sessions.ndjson | python -m chat_search.ingest -
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from chat_search.config import load_config, validate_config
from chat_search.ingest.ingest_runner import IngestRunner, format_summary
from chat_search.utils.logging import setup_logging

logger = logging.getLogger("chat-search.ingest")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Embed and index NDJSON chat sessions for hybrid search"
    )
    parser.add_argument(
        "source",
        nargs="?",
        help="NDJSON file to ingest, or '-' for stdin (default: INGEST_FILE_PATH)"
    )
    parser.add_argument("--batch-size", type=int, help="Messages per embedding/upsert batch")
    parser.add_argument("--concurrency", type=int, help="Batches flushed concurrently")
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the vector extension, corpus table and indexes first"
    )
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main ingestion entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
        validate_config(config)
        # Logs go to stderr so stdout carries only the summary
        setup_logging(config.log_level, stream=sys.stderr)

        source = args.source or config.ingest_file_path
        if not source:
            logger.error("No input given: pass a path or '-', or set INGEST_FILE_PATH")
            return 2

        runner = IngestRunner(
            config,
            batch_size=args.batch_size,
            concurrency=args.concurrency,
            init_schema=args.init_schema
        )
        summary = await runner.run(source)

    except KeyboardInterrupt:
        logger.info("Ingestion stopped by user")
        return 130
    except Exception as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        return 1

    print(format_summary(summary))
    return 0


def cli() -> None:
    load_dotenv()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

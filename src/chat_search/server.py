"""
chat-search HTTP server.

Answers hybrid (semantic + keyword) search requests over indexed chat
sessions. Browser clients call it cross-origin, so every response carries
permissive CORS headers and OPTIONS preflights are acknowledged.

Usage:
    python -m chat_search.server

Configuration via .env file (see .env.example)
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from chat_search import __version__
from chat_search.config import Config, load_config, validate_config
from chat_search.services.embedding_service import EmbeddingService
from chat_search.services.retrieval_service import RetrievalService
from chat_search.storage.corpus_store import PgVectorCorpusStore
from chat_search.storage.postgres_client import PostgresClient
from chat_search.utils.errors import ValidationError
from chat_search.utils.logging import setup_logging


logger = logging.getLogger("chat-search.server")

QUERY_REQUIRED = "Query is required."

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


class CORSHeadersMiddleware(BaseHTTPMiddleware):
    """Attach permissive cross-origin headers to every response."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response


async def hybrid_search(request: Request) -> Response:
    """Resolve ``{"query": ...}`` into a JSON array of ranked messages."""
    if request.method == "OPTIONS":
        return Response(status_code=200)

    try:
        body = await request.json()
    except ValueError:
        body = None

    query = body.get("query") if isinstance(body, dict) else None
    if not isinstance(query, str) or not query.strip():
        return JSONResponse({"error": QUERY_REQUIRED}, status_code=400)

    retrieval_service: Optional[RetrievalService] = request.app.state.retrieval_service
    if retrieval_service is None:
        return JSONResponse({"error": "Server not ready"}, status_code=503)

    try:
        results = await retrieval_service.hybrid_search(query, body.get("limit"))
    except ValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.error(f"hybrid_search error: {e}", exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)

    return JSONResponse([result.to_dict() for result in results])


async def health(request: Request) -> JSONResponse:
    """Health check endpoint."""
    health_data = {
        "status": "ok",
        "service": "chat-search",
        "version": __version__,
        "environment": os.getenv("ENVIRONMENT", "prod"),
    }

    state = request.app.state
    if state.embedding_service:
        health_data["embedding"] = state.embedding_service.get_model_info()

    if state.pg_client:
        health_data["postgres"] = await state.pg_client.health_check()

    if state.corpus_store and hasattr(state.corpus_store, "health_check"):
        health_data["corpus"] = await state.corpus_store.health_check()

    return JSONResponse(health_data)


def build_retrieval_service(
    config: Config,
    embedding_service: EmbeddingService,
    corpus_store
) -> RetrievalService:
    """Wire a RetrievalService from configuration."""
    return RetrievalService(
        embedding_service=embedding_service,
        corpus_store=corpus_store,
        fusion_method=config.fusion_method,
        semantic_weight=config.semantic_weight,
        full_text_weight=config.full_text_weight,
        k=config.rrf_constant,
        default_limit=config.search_match_count,
        max_query_chars=config.search_max_query_chars,
        timeout=config.search_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: Starlette):
    """Create collaborators on startup unless they were injected; close them on shutdown."""
    state = app.state
    if state.retrieval_service is not None:
        yield
        return

    load_dotenv()
    config = load_config()
    validate_config(config)
    setup_logging(config.log_level)

    logger.info(f"Starting chat-search v{__version__}")
    logger.info(f"  Embedding model: {config.openai_embed_model} ({config.openai_embed_dims or 'default'} dims)")
    logger.info(f"  Corpus table: {config.corpus_table}")
    logger.info(f"  Fusion: {config.fusion_method} (semantic={config.semantic_weight}, full_text={config.full_text_weight})")

    pg_client = PostgresClient(
        dsn=config.database_dsn,
        min_pool_size=config.postgres_pool_min,
        max_pool_size=config.postgres_pool_max,
        command_timeout=config.postgres_command_timeout,
    )
    await pg_client.connect()

    try:
        embedding_service = EmbeddingService(
            api_key=config.openai_api_key,
            model=config.openai_embed_model,
            dimensions=config.openai_embed_dims,
            timeout=config.openai_timeout,
            max_retries=config.openai_max_retries,
            batch_size=config.openai_batch_size,
            base_url=config.openai_base_url,
        )
        corpus_store = PgVectorCorpusStore(
            pg_client,
            table=config.corpus_table,
            dimensions=config.openai_embed_dims,
        )

        state.pg_client = pg_client
        state.embedding_service = embedding_service
        state.corpus_store = corpus_store
        state.retrieval_service = build_retrieval_service(config, embedding_service, corpus_store)

        logger.info(f"chat-search v{__version__} ready on {config.http_host}:{config.http_port}")
        yield
    finally:
        await pg_client.close()
        logger.info(f"chat-search v{__version__} stopped")


def create_app(
    retrieval_service: Optional[RetrievalService] = None,
    embedding_service: Optional[EmbeddingService] = None,
    corpus_store=None,
    pg_client: Optional[PostgresClient] = None,
) -> Starlette:
    """
    Build the Starlette application.

    Collaborators passed in are used as-is and the lifespan skips creating
    its own; otherwise they are built from environment configuration.
    """
    app = Starlette(
        debug=os.getenv("LOG_LEVEL") == "DEBUG",
        middleware=[
            Middleware(ProxyHeadersMiddleware, trusted_hosts="*"),
            Middleware(CORSHeadersMiddleware),
        ],
        routes=[
            Route("/", health),
            Route("/health", health),
            Route("/hybrid-search", hybrid_search, methods=["POST", "OPTIONS"]),
        ],
        lifespan=lifespan,
    )
    app.state.retrieval_service = retrieval_service
    app.state.embedding_service = embedding_service
    app.state.corpus_store = corpus_store
    app.state.pg_client = pg_client
    return app


app = create_app()


def main() -> None:
    load_dotenv()

    try:
        config = load_config()
        validate_config(config)
    except ValueError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Failed to load config: {e}")
        raise SystemExit(1)

    setup_logging(config.log_level)
    logger.info(f"Starting chat-search v{__version__} on port {config.http_port}")

    uvicorn.run(
        app,
        host=config.http_host,
        port=config.http_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()

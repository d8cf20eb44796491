"""Application entry point for the QuizLive server."""

from __future__ import annotations

import socket

from quiz_live.config import settings
from quiz_live.constants.network_constants import WEBSOCKET_PATH
from quiz_live.core.evaluator import LLMEvaluator
from quiz_live.core.session_engine import SessionEngine
from quiz_live.core.storage.document_store import DocumentStore, InMemoryDocumentStore
from quiz_live.core.storage.mongo_store import MongoDocumentStore
from quiz_live.server.api_server import run_api_server
from quiz_live.utils.logging_config import configure_logging


def _determine_ws_url(port: int) -> str:
    """Best-effort determination of the local IP for the realtime URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"ws://{ip_address}:{port}{WEBSOCKET_PATH}"


def _build_store() -> DocumentStore:
    if settings.mongo_uri:
        return MongoDocumentStore(settings.mongo_uri, settings.mongo_db)
    return InMemoryDocumentStore()


def main() -> None:
    """Initialize logging, wire the session engine and serve the API."""
    logger = configure_logging()
    logger.info("Starting QuizLive server...")

    store = _build_store()
    if isinstance(store, InMemoryDocumentStore):
        logger.warning("MONGO_URI is not set; sessions are kept in memory only")

    evaluator = LLMEvaluator.from_settings(settings)
    engine = SessionEngine.from_settings(store, evaluator if evaluator.is_configured() else None, settings)
    logger.info("Realtime endpoint available at %s", _determine_ws_url(settings.port))
    run_api_server(engine, host=settings.host, port=settings.port, cors_origins=settings.cors_origins_list)


if __name__ == "__main__":
    main()

"""Quart application exposing the knowledge base over HTTP."""
from typing import Optional

import structlog
from pydantic import BaseModel, Field, ValidationError
from quart import Quart, jsonify, request

from cardano_rag import config
from cardano_rag.llm_client import ollama_client
from cardano_rag.logs import configure_logging
from cardano_rag.rag.errors import (
    EmbeddingError,
    EmbeddingProviderUnavailable,
    GenerationUnavailable,
    InvalidCategoryFilter,
    VectorStoreUnavailable,
)
from cardano_rag.rag.service import get_knowledge_base

configure_logging()

logger = structlog.get_logger()

app = Quart(__name__)

MAX_QUESTION_LENGTH = 2000


class QueryRequest(BaseModel):
    """Body of /api/query and /api/answer."""

    question: str = Field(..., min_length=1, max_length=MAX_QUESTION_LENGTH)
    category: Optional[str] = None
    top_k: Optional[int] = Field(None, ge=1, le=50)


def _error(error: Exception, status_code: int, message: str = None):
    return jsonify({"error": message or str(error), "kind": type(error).__name__}), status_code


async def _parse_query_request() -> QueryRequest:
    data = await request.get_json(silent=True)
    if data is None:
        data = {}
    return QueryRequest(**data)


async def _run_query(generate_answer: bool):
    try:
        query = await _parse_query_request()
    except (ValidationError, TypeError) as e:
        logger.warning("invalid_query_request", error=str(e))
        return _error(e, 400, "Invalid request body: 'question' must be a non-empty string")

    logger.info(
        "query_request_received",
        question_length=len(query.question),
        category=query.category,
        top_k=query.top_k,
        answer=generate_answer,
    )

    try:
        knowledge_base = await get_knowledge_base()
        if generate_answer:
            response = await knowledge_base.answer(
                query.question, category=query.category, top_k=query.top_k
            )
        else:
            response = await knowledge_base.query(
                query.question, category=query.category, top_k=query.top_k
            )
    except InvalidCategoryFilter as e:
        return _error(e, 400)
    except (EmbeddingProviderUnavailable, GenerationUnavailable, VectorStoreUnavailable) as e:
        logger.error("query_dependency_unavailable", error=str(e), error_type=type(e).__name__)
        return _error(e, 503)
    except EmbeddingError as e:
        logger.error("query_embedding_failed", error=str(e))
        return _error(e, 502)

    return jsonify(response.to_dict())


@app.route("/api/query", methods=["POST"])
async def query():
    """Retrieve ranked context for a question.

    Expects JSON body:
    {
        "question": "How do I write an Aiken validator?",
        "category": "core",  // optional
        "top_k": 5  // optional
    }
    """
    return await _run_query(generate_answer=False)


@app.route("/api/answer", methods=["POST"])
async def answer():
    """Retrieve context and generate an answer with the chat model."""
    return await _run_query(generate_answer=True)


@app.route("/api/collections")
async def collections():
    """Per-collection vector counts and store metadata."""
    try:
        knowledge_base = await get_knowledge_base()
    except VectorStoreUnavailable as e:
        return _error(e, 503)
    return jsonify(knowledge_base.collections())


@app.route("/health/ready")
async def health_ready():
    """Readiness probe - check if app can serve requests.

    Checks:
    - Ollama service is reachable
    - The embedding model is available
    - The vector store can be loaded
    """
    checks = {
        "status": "healthy",
        "ollama": False,
        "models": False,
        "vector_store": False,
    }

    try:
        models = await ollama_client.list_models()
        checks["ollama"] = True

        if config.EMBEDDING_MODEL in models:
            checks["models"] = True
        else:
            checks["status"] = "unhealthy"
            checks["error"] = f"Missing embedding model: {config.EMBEDDING_MODEL}"

        await get_knowledge_base()
        checks["vector_store"] = True

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)
        return jsonify(checks), 503


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.before_serving
async def start_watcher():
    if not config.WATCH_SOURCE:
        return

    from cardano_rag.rag.ingest import IngestPipeline
    from cardano_rag.rag.watcher import DocumentWatcher

    knowledge_base = await get_knowledge_base()
    pipeline = IngestPipeline(
        embedder=knowledge_base.router.embedder,
        vector_store=knowledge_base.router.vector_store,
        settings=knowledge_base.settings,
    )
    app.watcher = DocumentWatcher(pipeline)
    await app.watcher.start()


@app.after_serving
async def stop_watcher():
    watcher = getattr(app, "watcher", None)
    if watcher is not None:
        watcher.stop()


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found", "kind": "NotFound"}), 404


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error", "kind": "InternalServerError"}), 500


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)

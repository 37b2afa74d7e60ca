"""
Commerce RAG Admin Server

FastAPI surface for operators of the semantic index and the agent.

Endpoints:
- GET /health: Health check with the indexed document count and sync counters
- POST /admin/rag/search: Direct semantic search
- POST /admin/rag/backfill: Run (or simulate) a backfill
- POST /admin/rag/reprocess-failures: Retry dead-lettered entities
- GET /admin/rag/backfill/failures: List recorded failures
- POST /admin/agent/ask: Natural-language question to the agent

Authentication happens upstream; the actor is taken from the
X-Actor-Id / X-Actor-Role headers for log correlation only.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .bootstrap import Components, build_components
from .common.config import load_config
from .common.errors import RagError, ValidationError
from .common.events import configure_logging
from .common.schemas import AgentAskInput, ReprocessInput
from .indexer.inputs import build_backfill_input, parse_single_entity_type, positive_int_or_default
from .retriever.tools import create_correlation_context

logger = logging.getLogger("commerce_rag.server")

GENERIC_ERROR_MESSAGE = "Não foi possível concluir a operação."


# =============================================================================
# Request Models
# =============================================================================

class SearchRequest(BaseModel):
    """Direct semantic search; invalid values are rejected by the Synchronizer"""
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    top_k: Any = Field(default=None, alias="topK")
    entity_types: Optional[List[Any]] = Field(default=None, alias="entityTypes")


class BackfillRequest(BaseModel):
    """Loosely typed on purpose: invalid numbers fall back to configured defaults"""
    model_config = ConfigDict(populate_by_name=True)

    entity_types: Optional[List[Any]] = Field(default=None, alias="entityTypes")
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    from_date: Any = Field(default=None, alias="fromDate")
    to_date: Any = Field(default=None, alias="toDate")
    dry_run: bool = Field(default=False, alias="dryRun")
    batch_size: Any = Field(default=None, alias="batchSize")
    max_attempts: Any = Field(default=None, validation_alias=AliasChoices("maxAttempts", "maxItemAttempts"))
    failure_threshold: Any = Field(
        default=None, validation_alias=AliasChoices("failureThreshold", "failureAlertThreshold")
    )


class ReprocessRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_type: Optional[str] = Field(default=None, alias="entityType")
    include_permanent: bool = Field(default=False, alias="includePermanent")
    limit: Any = None
    max_attempts: Any = Field(default=None, validation_alias=AliasChoices("maxAttempts", "maxItemAttempts"))


# =============================================================================
# App Factory
# =============================================================================

def create_app(components: Optional[Components] = None) -> FastAPI:
    """
    Build the admin app.

    Injected components are used as-is and left open on shutdown; otherwise
    they are built from configuration at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.components is None
        if owned:
            app.state.components = build_components(load_config())
        logger.info("[Server] Ready")

        yield

        logger.info("[Server] Shutting down...")
        if owned:
            await app.state.components.close()
            app.state.components = None

    app = FastAPI(
        title="Commerce RAG Admin",
        description="Semantic index maintenance and natural-language store questions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.components = components

    def get_components() -> Components:
        if app.state.components is None:
            raise RagError("Serviço não inicializado.", status_code=503)
        return app.state.components

    # ---------- Error handling ---------- #

    @app.exception_handler(RagError)
    async def rag_error_handler(request: Request, exc: RagError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} failed", exc_info=exc)
        return JSONResponse(status_code=500, content={"mensagem": GENERIC_ERROR_MESSAGE})

    # ---------- Endpoints ---------- #

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        current = get_components()
        return {
            "status": "healthy",
            "document_count": await current.document_index.count_documents(),
            "sync": current.synchronizer.metrics.snapshot(),
        }

    @app.post("/admin/rag/search")
    async def rag_search(body: SearchRequest):
        current = get_components()
        return await current.synchronizer.search_response(body.query, body.top_k, body.entity_types)

    @app.post("/admin/rag/backfill")
    async def rag_backfill(body: BackfillRequest):
        current = get_components()
        backfill_input = build_backfill_input(
            current.config.backfill,
            entity_types=body.entity_types,
            entity_id=body.entity_id,
            from_date=body.from_date,
            to_date=body.to_date,
            dry_run=body.dry_run,
            batch_size=body.batch_size,
            max_attempts=body.max_attempts,
            failure_threshold=body.failure_threshold,
        )
        report = await current.backfill_engine.run_backfill(backfill_input)
        return {
            "mensagem": (
                "Simulação de backfill concluída com sucesso."
                if report.dry_run
                else "Backfill concluído com sucesso."
            ),
            "relatorio": {
                "dryRun": report.dry_run,
                "total": report.total,
                "sucesso": report.success,
                "falhas": report.failures,
                "duracaoMs": report.elapsed_ms,
                "detalhes": report.details(),
            },
        }

    @app.post("/admin/rag/reprocess-failures")
    async def rag_reprocess_failures(body: ReprocessRequest):
        current = get_components()
        settings = current.config.backfill
        report = await current.backfill_engine.reprocess_failures(ReprocessInput(
            entity_type=parse_single_entity_type(body.entity_type),
            include_permanent=body.include_permanent,
            limit=positive_int_or_default(body.limit, settings.failure_list_limit),
            max_item_attempts=positive_int_or_default(body.max_attempts, settings.max_item_attempts),
        ))
        return {
            "mensagem": "Reprocessamento de falhas concluído.",
            "relatorio": {"total": report.total, "sucesso": report.success, "falhas": report.failures},
        }

    @app.get("/admin/rag/backfill/failures")
    async def rag_list_failures(
        entityType: Optional[str] = None,
        includePermanent: Optional[str] = None,
        limit: Optional[str] = None,
    ):
        current = get_components()
        failures = await current.failure_ledger.list_failures(
            entity_type=parse_single_entity_type(entityType),
            include_permanent=includePermanent == "true",
            limit=positive_int_or_default(limit, current.config.backfill.failure_list_limit),
        )
        return {
            "mensagem": (
                "Falhas de backfill recuperadas com sucesso."
                if failures
                else "Nenhuma falha de backfill registrada."
            ),
            "total": len(failures),
            "falhas": [failure.to_dict() for failure in failures],
        }

    @app.post("/admin/agent/ask")
    async def agent_ask(
        body: Dict[str, Any],
        x_actor_id: Optional[str] = Header(None),
        x_actor_role: Optional[str] = Header(None),
    ):
        current = get_components()
        try:
            ask_input = AgentAskInput.model_validate(body)
        except PydanticValidationError as e:
            raise ValidationError("Parâmetros inválidos para a consulta do agente.") from e

        context = create_correlation_context(actor_user_id=x_actor_id or "", actor_role=x_actor_role or "")
        answer = await current.orchestrator.ask(ask_input, context)
        return answer.to_response()

    return app


app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the admin server"""
    import uvicorn

    load_dotenv()
    config = load_config()
    configure_logging(config.server.log_level)

    logger.info(f"[Server] Starting server on {config.server.host}:{config.server.port}")
    uvicorn.run(
        "commerce_rag.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()

"""
Component wiring

Builds every collaborator once from configuration. The embedding provider
is selected here and never re-checked per call.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .common.config import CommerceRagConfig, load_config
from .common.database import Database
from .common.document_index import DocumentIndex
from .common.embedding_service import EmbeddingService
from .common.failure_ledger import FailureLedger
from .indexer.backfill import BackfillEngine
from .indexer.source_repository import SourceRepository
from .indexer.synchronizer import Synchronizer
from .retriever.analytics import AnalyticsRepository
from .retriever.orchestrator import Orchestrator
from .retriever.tools import ToolRouter

logger = logging.getLogger("commerce_rag.bootstrap")


@dataclass
class Components:
    config: CommerceRagConfig
    database: Database
    embedding_service: EmbeddingService
    document_index: DocumentIndex
    failure_ledger: FailureLedger
    source_repository: SourceRepository
    synchronizer: Synchronizer
    backfill_engine: BackfillEngine
    analytics: AnalyticsRepository
    tool_router: ToolRouter
    orchestrator: Orchestrator

    async def close(self) -> None:
        await self.embedding_service.close()
        self.database.close()


def build_components(
    config: Optional[CommerceRagConfig] = None,
    database: Optional[Database] = None,
    embedding_service: Optional[EmbeddingService] = None,
) -> Components:
    config = config or load_config()
    database = database or Database(config.database.path)
    database.init_schema()

    embedding_service = embedding_service or EmbeddingService.from_config(config.embedding)
    document_index = DocumentIndex(database)
    failure_ledger = FailureLedger(database)
    source_repository = SourceRepository(database)
    synchronizer = Synchronizer(document_index, embedding_service)
    backfill_engine = BackfillEngine(source_repository, failure_ledger, synchronizer, config.backfill)
    analytics = AnalyticsRepository(database)
    tool_router = ToolRouter(analytics, synchronizer, config.agent)
    orchestrator = Orchestrator(tool_router, config.agent)

    logger.info(f"Components ready (database={database.path}, provider={embedding_service.provider.name})")

    return Components(
        config=config,
        database=database,
        embedding_service=embedding_service,
        document_index=document_index,
        failure_ledger=failure_ledger,
        source_repository=source_repository,
        synchronizer=synchronizer,
        backfill_engine=backfill_engine,
        analytics=analytics,
        tool_router=tool_router,
        orchestrator=orchestrator,
    )

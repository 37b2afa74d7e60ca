"""
Commerce RAG Common Module

Shared infrastructure for the indexer and the retriever.
"""

from .config import CommerceRagConfig, load_config
from .database import Database
from .document_index import DocumentIndex
from .embedding_service import EmbeddingService, create_embedding_provider
from .errors import RagError, ValidationError, is_permanent_failure
from .events import SyncMetrics, log_event
from .failure_ledger import FailureLedger

__all__ = [
    "CommerceRagConfig",
    "load_config",
    "Database",
    "DocumentIndex",
    "EmbeddingService",
    "create_embedding_provider",
    "RagError",
    "ValidationError",
    "is_permanent_failure",
    "SyncMetrics",
    "log_event",
    "FailureLedger",
]

"""
Commerce RAG Schemas

Indexed documents, sync inputs, backfill reports and agent tool contracts.
"""

from .documents import (
    EntityType,
    ALL_ENTITY_TYPES,
    parse_entity_type,
    normalize_entity_types,
    CanonicalDocument,
    SearchHit,
    SearchResult,
    FailureRecord,
    ProductSyncInput,
    CustomerSyncInput,
    ManagerSyncInput,
    OrderSyncInput,
    OrderItemSyncInput,
)
from .backfill import (
    BackfillFilter,
    BackfillInput,
    BackfillReport,
    EntityStats,
    ReprocessInput,
    ReprocessReport,
)
from .tools import (
    ToolName,
    AgentRoute,
    CorrelationContext,
    DateRange,
    SqlAnalyticsInput,
    RagOperationalInput,
    RagStrategicInput,
    HybridMergeInput,
    TOOL_INPUT_MODELS,
    RagDocument,
    ContextBlock,
    SqlAnalyticsOutput,
    RagOperationalOutput,
    RagStrategicOutput,
    HybridMergeOutput,
    AgentAskInput,
    SourceCitation,
    AgentAnswer,
)

__all__ = [
    "EntityType",
    "ALL_ENTITY_TYPES",
    "parse_entity_type",
    "normalize_entity_types",
    "CanonicalDocument",
    "SearchHit",
    "SearchResult",
    "FailureRecord",
    "ProductSyncInput",
    "CustomerSyncInput",
    "ManagerSyncInput",
    "OrderSyncInput",
    "OrderItemSyncInput",
    "BackfillFilter",
    "BackfillInput",
    "BackfillReport",
    "EntityStats",
    "ReprocessInput",
    "ReprocessReport",
    "ToolName",
    "AgentRoute",
    "CorrelationContext",
    "DateRange",
    "SqlAnalyticsInput",
    "RagOperationalInput",
    "RagStrategicInput",
    "HybridMergeInput",
    "TOOL_INPUT_MODELS",
    "RagDocument",
    "ContextBlock",
    "SqlAnalyticsOutput",
    "RagOperationalOutput",
    "RagStrategicOutput",
    "HybridMergeOutput",
    "AgentAskInput",
    "SourceCitation",
    "AgentAnswer",
]

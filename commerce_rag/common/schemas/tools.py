"""
Agent tool contracts

Closed tool set, routes, tool inputs/outputs (tagged by `tool`) and the
answer payload returned by the Orchestrator.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolName(str, Enum):
    """The four operations exposed to the agent"""
    SQL_ANALYTICS_QUERY = "sql_analytics_query"
    RAG_OPERATIONAL_SEARCH = "rag_operational_search"
    RAG_STRATEGIC_SEARCH = "rag_strategic_search"
    HYBRID_CONTEXT_MERGE = "hybrid_context_merge"


class AgentRoute(str, Enum):
    SQL_ANALYTICS = "SQL_ANALYTICS"
    RAG_OPERATIONAL = "RAG_OPERATIONAL"
    RAG_STRATEGIC = "RAG_STRATEGIC"
    HYBRID = "HYBRID"


@dataclass
class CorrelationContext:
    """Per-request tracing metadata; threaded through calls, never persisted"""
    correlation_id: str
    actor_user_id: str = ""
    actor_role: str = ""
    started_at: float = field(default_factory=time.time)

    @classmethod
    def create(cls, actor_user_id: str = "", actor_role: str = "") -> "CorrelationContext":
        return cls(correlation_id=str(uuid.uuid4()), actor_user_id=actor_user_id, actor_role=actor_role)


# ============================================================================
# Tool inputs
# ============================================================================

class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_date: Optional[str] = Field(default=None, alias="from", description="Start date (YYYY-MM-DD)")
    to_date: Optional[str] = Field(default=None, alias="to", description="End date (YYYY-MM-DD)")


class SqlAnalyticsInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")


class RagOperationalInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    top_k: Optional[int] = Field(default=None, alias="topK")
    entity_types: Optional[List[str]] = Field(default=None, alias="entityTypes")


class RagStrategicInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    top_k: Optional[int] = Field(default=None, alias="topK")
    topic_filters: Optional[List[str]] = Field(default=None, alias="topicFilters")


class HybridMergeInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    top_k: Optional[int] = Field(default=None, alias="topK")
    entity_types: Optional[List[str]] = Field(default=None, alias="entityTypes")
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")


TOOL_INPUT_MODELS = {
    ToolName.SQL_ANALYTICS_QUERY: SqlAnalyticsInput,
    ToolName.RAG_OPERATIONAL_SEARCH: RagOperationalInput,
    ToolName.RAG_STRATEGIC_SEARCH: RagStrategicInput,
    ToolName.HYBRID_CONTEXT_MERGE: HybridMergeInput,
}


# ============================================================================
# Tool outputs
# ============================================================================

class RagDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_type: str = Field(alias="entityType")
    entity_id: str = Field(alias="entityId")
    score: float
    snippet: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ContextBlock(BaseModel):
    source: ToolName
    content: str
    confidence: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SqlAnalyticsOutput(BaseModel):
    tool: Literal["sql_analytics_query"] = "sql_analytics_query"
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    query_description: str = ""
    latency_ms: float = 0.0


class RagOperationalOutput(BaseModel):
    tool: Literal["rag_operational_search"] = "rag_operational_search"
    documents: List[RagDocument] = Field(default_factory=list)
    latency_ms: float = 0.0


class RagStrategicOutput(BaseModel):
    tool: Literal["rag_strategic_search"] = "rag_strategic_search"
    documents: List[RagDocument] = Field(default_factory=list)
    latency_ms: float = 0.0


class HybridMergeOutput(BaseModel):
    tool: Literal["hybrid_context_merge"] = "hybrid_context_merge"
    blocks: List[ContextBlock] = Field(default_factory=list)
    latency_ms: float = 0.0


# ============================================================================
# Agent ask
# ============================================================================

class AgentAskInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    top_k: Optional[int] = Field(default=None, alias="topK")
    entity_types: Optional[List[str]] = Field(default=None, alias="entityTypes")
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")


class SourceCitation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(alias="tipo")
    id: str
    title: str = Field(alias="titulo")
    score: Optional[float] = None


class AgentAnswer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(alias="mensagem")
    answer: str = Field(alias="resposta")
    route: AgentRoute = Field(alias="rota")
    tools_used: List[ToolName] = Field(default_factory=list, alias="ferramentasUsadas")
    sources: List[SourceCitation] = Field(default_factory=list, alias="fontes")
    advisories: List[str] = Field(default_factory=list, alias="avisos")

    def to_response(self) -> Dict[str, Any]:
        """pt-BR keyed payload; avisos only when there is something to say"""
        body = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not self.advisories:
            body.pop("avisos", None)
        return body

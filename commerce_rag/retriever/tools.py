"""
Tool Router

The four agent tools over the analytics repository and the Synchronizer:
- sql_analytics_query: exact aggregates picked by an ordered keyword cascade
- rag_operational_search: semantic search with an entity-type filter
- rag_strategic_search: semantic search with topic filters
- hybrid_context_merge: SQL + operational search run concurrently and merged

Every call is validated, timed and logged under the caller's correlation id.
"""

import asyncio
import hmac
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..common.config import AgentConfig
from ..common.errors import AuthorizationError, UnknownToolError, ValidationError
from ..common.events import log_event
from ..common.schemas import (
    TOOL_INPUT_MODELS,
    ContextBlock,
    CorrelationContext,
    DateRange,
    EntityType,
    HybridMergeInput,
    HybridMergeOutput,
    RagDocument,
    RagOperationalInput,
    RagOperationalOutput,
    RagStrategicInput,
    RagStrategicOutput,
    SqlAnalyticsInput,
    SqlAnalyticsOutput,
    ToolName,
    normalize_entity_types,
)
from ..indexer.synchronizer import Synchronizer, validate_top_k
from .analytics import AnalyticsRepository

logger = logging.getLogger("commerce_rag.retriever.tools")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class AnalyticsQuery(str, Enum):
    SALES_METRICS = "sales_metrics"
    TOP_PRODUCTS = "top_products"
    ORDER_STATUS_COUNTS = "order_status_counts"
    CUSTOMER_METRICS = "customer_metrics"
    LOW_STOCK = "low_stock"
    DAILY_REVENUE = "daily_revenue"


@dataclass(frozen=True)
class AnalyticsRule:
    query: AnalyticsQuery
    keywords: Tuple[str, ...]
    description: str


# Order matters: the first rule whose keywords appear in the question wins
ANALYTICS_CASCADE: Tuple[AnalyticsRule, ...] = (
    AnalyticsRule(
        AnalyticsQuery.SALES_METRICS,
        ("vendas", "venda", "faturamento", "receita", "revenue"),
        "Métricas de vendas agregadas",
    ),
    AnalyticsRule(
        AnalyticsQuery.TOP_PRODUCTS,
        ("produto mais vendido", "top produto", "mais vendidos", "ranking"),
        "Ranking de produtos mais vendidos",
    ),
    AnalyticsRule(
        AnalyticsQuery.ORDER_STATUS_COUNTS,
        ("status pedido", "pedidos por status", "status dos pedidos"),
        "Contagem de pedidos por status",
    ),
    AnalyticsRule(
        AnalyticsQuery.CUSTOMER_METRICS,
        ("cliente", "clientes", "customer"),
        "Métricas de clientes",
    ),
    AnalyticsRule(
        AnalyticsQuery.LOW_STOCK,
        ("estoque", "inventário", "stock", "estoque baixo"),
        "Alertas de estoque baixo",
    ),
    AnalyticsRule(
        AnalyticsQuery.DAILY_REVENUE,
        ("diário", "diario", "dia a dia", "daily", "por dia"),
        "Receita diária",
    ),
)

DEFAULT_ANALYTICS_RULE = AnalyticsRule(AnalyticsQuery.SALES_METRICS, (), "Métricas gerais de vendas")

TOPIC_ENTITY_MAP: Dict[str, EntityType] = {
    "products": EntityType.PRODUCT,
    "produtos": EntityType.PRODUCT,
    "customers": EntityType.CUSTOMER,
    "clientes": EntityType.CUSTOMER,
    "orders": EntityType.ORDER,
    "pedidos": EntityType.ORDER,
    "managers": EntityType.MANAGER,
    "gestores": EntityType.MANAGER,
}


def select_analytics_rule(question: str) -> AnalyticsRule:
    text = question.lower()
    for rule in ANALYTICS_CASCADE:
        if any(keyword in text for keyword in rule.keywords):
            return rule
    return DEFAULT_ANALYTICS_RULE


def map_topics_to_entity_types(topics: Optional[Sequence[str]]) -> List[EntityType]:
    """Free-text topics through the fixed vocabulary; canonical type names pass as-is"""
    result: List[EntityType] = []
    for topic in topics or []:
        if not isinstance(topic, str):
            continue
        key = topic.strip().lower()
        entity_type = TOPIC_ENTITY_MAP.get(key)
        if entity_type is None:
            mapped = normalize_entity_types([key])
            entity_type = mapped[0] if mapped else None
        if entity_type is not None and entity_type not in result:
            result.append(entity_type)
    return result


def validate_date_range(date_range: Optional[DateRange]) -> None:
    if date_range is None:
        return
    if date_range.from_date is not None and not DATE_PATTERN.match(date_range.from_date):
        raise ValidationError("Data inicial inválida. Use o formato AAAA-MM-DD.")
    if date_range.to_date is not None and not DATE_PATTERN.match(date_range.to_date):
        raise ValidationError("Data final inválida. Use o formato AAAA-MM-DD.")


def create_correlation_context(actor_user_id: str = "", actor_role: str = "") -> CorrelationContext:
    return CorrelationContext.create(actor_user_id=actor_user_id, actor_role=actor_role)


@dataclass
class ToolRequest:
    tool: Union[ToolName, str]
    input: Union[BaseModel, Dict[str, Any], None] = None


class ToolRouter:
    """
    Dispatches tool calls over a closed set of tool names.

    Unknown names raise UnknownToolError; there is no fallback tool.
    """

    def __init__(
        self,
        analytics: AnalyticsRepository,
        synchronizer: Synchronizer,
        config: Optional[AgentConfig] = None,
    ):
        self.analytics = analytics
        self.synchronizer = synchronizer
        self.config = config or AgentConfig()
        self._handlers: Dict[ToolName, Callable[[Any, CorrelationContext], Awaitable[BaseModel]]] = {
            ToolName.SQL_ANALYTICS_QUERY: self.sql_analytics_query,
            ToolName.RAG_OPERATIONAL_SEARCH: self.rag_operational_search,
            ToolName.RAG_STRATEGIC_SEARCH: self.rag_strategic_search,
            ToolName.HYBRID_CONTEXT_MERGE: self.hybrid_context_merge,
        }
        missing = set(ToolName) - set(self._handlers)
        if missing:
            raise RuntimeError(f"Tools without handler: {sorted(t.value for t in missing)}")

    # ---------- Dispatch ---------- #

    @staticmethod
    def parse_tool_name(tool: Union[ToolName, str]) -> ToolName:
        if isinstance(tool, ToolName):
            return tool
        try:
            return ToolName(tool)
        except ValueError:
            raise UnknownToolError(str(tool)) from None

    async def execute(
        self,
        tool: Union[ToolName, str],
        raw_input: Union[BaseModel, Dict[str, Any], None],
        context: CorrelationContext,
    ) -> BaseModel:
        tool_name = self.parse_tool_name(tool)
        log_event(
            logger, logging.INFO, "mcp_tool_dispatch",
            correlationId=context.correlation_id,
            tool=tool_name.value,
            actorUserId=context.actor_user_id,
            actorRole=context.actor_role,
        )
        payload = self._parse_input(tool_name, raw_input)
        return await self._handlers[tool_name](payload, context)

    async def execute_chain(self, requests: Sequence[ToolRequest], context: CorrelationContext) -> List[BaseModel]:
        """Run several tool calls one after another"""
        results = []
        for request in requests:
            results.append(await self.execute(request.tool, request.input, context))
        return results

    def validate_service_auth(self, token: Optional[str]) -> None:
        expected = self.config.service_token
        if not expected:
            return
        if not token or not hmac.compare_digest(token, expected):
            raise AuthorizationError("Token de serviço MCP inválido.")

    @staticmethod
    def _parse_input(tool_name: ToolName, raw_input: Union[BaseModel, Dict[str, Any], None]) -> BaseModel:
        model = TOOL_INPUT_MODELS[tool_name]
        if isinstance(raw_input, model):
            return raw_input
        if isinstance(raw_input, BaseModel):
            raw_input = raw_input.model_dump(by_alias=True)
        try:
            return model.model_validate(raw_input or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Parâmetros inválidos para a ferramenta {tool_name.value}.") from e

    async def _instrumented(
        self,
        tool_name: ToolName,
        context: CorrelationContext,
        operation: Callable[[], Awaitable[BaseModel]],
    ) -> BaseModel:
        started = time.perf_counter()
        try:
            output = await operation()
        except Exception as e:
            log_event(
                logger, logging.ERROR, "mcp_tool_call",
                correlationId=context.correlation_id,
                tool=tool_name.value,
                status="error",
                durationMs=_elapsed_ms(started),
                error=str(e),
                actorUserId=context.actor_user_id,
                actorRole=context.actor_role,
            )
            raise

        output.latency_ms = _elapsed_ms(started)
        log_event(
            logger, logging.INFO, "mcp_tool_call",
            correlationId=context.correlation_id,
            tool=tool_name.value,
            status="success",
            durationMs=output.latency_ms,
            actorUserId=context.actor_user_id,
            actorRole=context.actor_role,
        )
        return output

    # ---------- Tools ---------- #

    async def sql_analytics_query(self, payload: SqlAnalyticsInput, context: CorrelationContext) -> SqlAnalyticsOutput:
        async def run() -> SqlAnalyticsOutput:
            question = (payload.question or "").strip()
            if not question:
                raise ValidationError("Informe a pergunta para a consulta analítica.")
            validate_date_range(payload.date_range)

            rule = select_analytics_rule(question)
            rows = await self._run_analytics(rule.query, payload.date_range)
            return SqlAnalyticsOutput(rows=rows, row_count=len(rows), query_description=rule.description)

        return await self._instrumented(ToolName.SQL_ANALYTICS_QUERY, context, run)

    async def rag_operational_search(self, payload: RagOperationalInput, context: CorrelationContext) -> RagOperationalOutput:
        async def run() -> RagOperationalOutput:
            query = (payload.query or "").strip()
            if not query:
                raise ValidationError("Informe a consulta para pesquisa operacional.")
            top_k = validate_top_k(payload.top_k, self.config.default_top_k)
            documents = await self._search(query, top_k, normalize_entity_types(payload.entity_types))
            return RagOperationalOutput(documents=documents)

        return await self._instrumented(ToolName.RAG_OPERATIONAL_SEARCH, context, run)

    async def rag_strategic_search(self, payload: RagStrategicInput, context: CorrelationContext) -> RagStrategicOutput:
        async def run() -> RagStrategicOutput:
            query = (payload.query or "").strip()
            if not query:
                raise ValidationError("Informe a consulta para pesquisa estratégica.")
            top_k = validate_top_k(payload.top_k, self.config.default_top_k)
            documents = await self._search(query, top_k, map_topics_to_entity_types(payload.topic_filters))
            return RagStrategicOutput(documents=documents)

        return await self._instrumented(ToolName.RAG_STRATEGIC_SEARCH, context, run)

    async def hybrid_context_merge(self, payload: HybridMergeInput, context: CorrelationContext) -> HybridMergeOutput:
        async def run() -> HybridMergeOutput:
            question = (payload.question or "").strip()
            if not question:
                raise ValidationError("Informe a pergunta para a consulta híbrida.")

            # Both sides finish before anything is merged or raised
            sql_result, rag_result = await asyncio.gather(
                self.sql_analytics_query(
                    SqlAnalyticsInput(question=question, date_range=payload.date_range), context
                ),
                self.rag_operational_search(
                    RagOperationalInput(query=question, top_k=payload.top_k, entity_types=payload.entity_types),
                    context,
                ),
                return_exceptions=True,
            )
            for result in (sql_result, rag_result):
                if isinstance(result, BaseException):
                    raise result

            return HybridMergeOutput(blocks=merge_context_blocks(sql_result, rag_result))

        return await self._instrumented(ToolName.HYBRID_CONTEXT_MERGE, context, run)

    # ---------- Helpers ---------- #

    async def _search(self, query: str, top_k: int, entity_types: List[EntityType]) -> List[RagDocument]:
        results = await self.synchronizer.search(query, top_k, entity_types)
        return [
            RagDocument(
                entity_type=result.entity_type,
                entity_id=result.entity_id,
                score=result.score,
                snippet=result.snippet,
                metadata=result.metadata,
            )
            for result in results
        ]

    async def _run_analytics(self, query: AnalyticsQuery, date_range: Optional[DateRange]) -> List[Dict[str, Any]]:
        if query == AnalyticsQuery.SALES_METRICS:
            return await self.analytics.get_sales_metrics(date_range)
        if query == AnalyticsQuery.TOP_PRODUCTS:
            return await self.analytics.get_top_products(date_range, self.config.top_products_limit)
        if query == AnalyticsQuery.ORDER_STATUS_COUNTS:
            return await self.analytics.get_order_status_counts(date_range)
        if query == AnalyticsQuery.CUSTOMER_METRICS:
            return await self.analytics.get_customer_metrics()
        if query == AnalyticsQuery.LOW_STOCK:
            return await self.analytics.get_low_stock_products(self.config.low_stock_threshold)
        if query == AnalyticsQuery.DAILY_REVENUE:
            return await self.analytics.get_daily_revenue(date_range)
        raise ValueError(f"Unsupported analytics query: {query}")


def merge_context_blocks(sql_output: SqlAnalyticsOutput, rag_output: RagOperationalOutput) -> List[ContextBlock]:
    """One SQL block (confidence 1.0) when rows exist, one block per hit, by confidence desc"""
    blocks: List[ContextBlock] = []
    if sql_output.row_count > 0:
        blocks.append(ContextBlock(
            source=ToolName.SQL_ANALYTICS_QUERY,
            content=json.dumps(sql_output.rows, ensure_ascii=False, default=str),
            confidence=1.0,
            metadata={"rowCount": sql_output.row_count, "queryDescription": sql_output.query_description},
        ))
    for document in rag_output.documents:
        blocks.append(ContextBlock(
            source=ToolName.RAG_OPERATIONAL_SEARCH,
            content=document.snippet,
            confidence=document.score,
            metadata={"entityType": document.entity_type, "entityId": document.entity_id, **document.metadata},
        ))
    blocks.sort(key=lambda block: block.confidence, reverse=True)
    return blocks


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)

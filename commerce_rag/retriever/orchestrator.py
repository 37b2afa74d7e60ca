"""
Orchestrator

Answers a free-text question end to end:
1. Validate (non-empty, length limit)
2. Guardrails (SQL/prompt injection)
3. Classify the route
4. Invoke the tool(s) for the route
5. Format the answer, collect sources
6. Add advisories and log the total duration
"""

import logging
import time
from typing import Optional, Union

from ..common.config import AgentConfig
from ..common.events import log_event
from ..common.schemas import (
    AgentAnswer,
    AgentAskInput,
    AgentRoute,
    CorrelationContext,
    HybridMergeInput,
    RagOperationalInput,
    RagStrategicInput,
    SqlAnalyticsInput,
    ToolName,
)
from .formatter import (
    EXACT_DATA_ADVISORY,
    NO_SOURCES_ADVISORY,
    format_hybrid_answer,
    format_operational_answer,
    format_sql_answer,
    format_strategic_answer,
    hybrid_sources,
    rag_sources,
    sql_sources,
)
from .query_router import classify_route, enforce_guardrails, has_sql_intent, validate_question
from .tools import ToolRouter

logger = logging.getLogger("commerce_rag.retriever.orchestrator")

SUCCESS_MESSAGE = "Consulta processada com sucesso."


class Orchestrator:
    """Routes natural-language questions to the agent tools"""

    def __init__(self, tool_router: ToolRouter, config: Optional[AgentConfig] = None):
        self.tools = tool_router
        self.config = config or AgentConfig()

    async def ask(self, ask_input: Union[AgentAskInput, str], context: CorrelationContext) -> AgentAnswer:
        started = time.perf_counter()
        if isinstance(ask_input, str):
            ask_input = AgentAskInput(question=ask_input)

        question = validate_question(ask_input.question, self.config.max_question_length)
        enforce_guardrails(question)

        route = classify_route(question)
        log_event(
            logger, logging.INFO, "agent_route_classified",
            correlationId=context.correlation_id,
            question=question[:200],
            route=route.value,
        )

        if route == AgentRoute.SQL_ANALYTICS:
            result = await self.tools.execute(
                ToolName.SQL_ANALYTICS_QUERY,
                SqlAnalyticsInput(question=question, date_range=ask_input.date_range),
                context,
            )
            tools_used = [ToolName.SQL_ANALYTICS_QUERY]
            answer = format_sql_answer(result)
            sources = sql_sources(result)
        elif route == AgentRoute.RAG_OPERATIONAL:
            result = await self.tools.execute(
                ToolName.RAG_OPERATIONAL_SEARCH,
                RagOperationalInput(query=question, top_k=ask_input.top_k, entity_types=ask_input.entity_types),
                context,
            )
            tools_used = [ToolName.RAG_OPERATIONAL_SEARCH]
            answer = format_operational_answer(result)
            sources = rag_sources(result)
        elif route == AgentRoute.RAG_STRATEGIC:
            result = await self.tools.execute(
                ToolName.RAG_STRATEGIC_SEARCH,
                RagStrategicInput(query=question, top_k=ask_input.top_k, topic_filters=ask_input.entity_types),
                context,
            )
            tools_used = [ToolName.RAG_STRATEGIC_SEARCH]
            answer = format_strategic_answer(result)
            sources = rag_sources(result)
        elif route == AgentRoute.HYBRID:
            result = await self.tools.execute(
                ToolName.HYBRID_CONTEXT_MERGE,
                HybridMergeInput(
                    question=question,
                    top_k=ask_input.top_k,
                    entity_types=ask_input.entity_types,
                    date_range=ask_input.date_range,
                ),
                context,
            )
            tools_used = [
                ToolName.SQL_ANALYTICS_QUERY,
                ToolName.RAG_OPERATIONAL_SEARCH,
                ToolName.HYBRID_CONTEXT_MERGE,
            ]
            answer = format_hybrid_answer(result)
            sources = hybrid_sources(result)
        else:
            raise ValueError(f"Unsupported route: {route}")

        advisories = []
        if has_sql_intent(question) and route not in (AgentRoute.SQL_ANALYTICS, AgentRoute.HYBRID):
            advisories.append(EXACT_DATA_ADVISORY)
        if not sources:
            advisories.append(NO_SOURCES_ADVISORY)

        log_event(
            logger, logging.INFO, "agent_ask_completed",
            correlationId=context.correlation_id,
            route=route.value,
            toolsUsed=[tool.value for tool in tools_used],
            sourceCount=len(sources),
            durationMs=round((time.perf_counter() - started) * 1000, 3),
        )

        return AgentAnswer(
            message=SUCCESS_MESSAGE,
            answer=answer,
            route=route,
            tools_used=tools_used,
            sources=sources,
            advisories=advisories,
        )

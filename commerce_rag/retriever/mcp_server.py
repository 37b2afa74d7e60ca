"""
Commerce RAG MCP Server.

Transport: stdio.

Exposes the agent tools (exact analytics, operational and strategic
semantic search, hybrid merge) plus `agent_ask`, which runs the whole
Orchestrator pipeline. Tool errors surface as ToolError carrying the
pt-BR user message; internal details stay in the logs.
"""

import argparse
import logging
from typing import Annotated, Any, Dict, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations
from pydantic import BaseModel, Field

from ..bootstrap import build_components
from ..common.config import load_config
from ..common.errors import RagError
from ..common.events import configure_logging
from ..common.schemas import AgentAskInput, CorrelationContext, ToolName
from .orchestrator import Orchestrator
from .tools import ToolRouter, create_correlation_context

logger = logging.getLogger("commerce_rag.retriever.mcp_server")

GENERIC_ERROR_MESSAGE = "Não foi possível concluir a operação."

_DATE_RANGE_DESCRIPTION = "optional period as {'from': 'YYYY-MM-DD', 'to': 'YYYY-MM-DD'}"
_TOKEN_DESCRIPTION = "service token, required when the server is configured with one"
_ACTOR_DESCRIPTION = "id of the user on whose behalf the call is made"
_ROLE_DESCRIPTION = "role of the user on whose behalf the call is made"


class CommerceMCPServerApp:
    """
    MCP application over a ToolRouter and an Orchestrator.

    Every call gets a fresh correlation context; when a service token is
    configured the caller must present it.
    """
    def __init__(
            self,
            tool_router: ToolRouter,
            orchestrator: Orchestrator,
            mcp_server_name: str = "commerce_rag_mcp",
        ) -> None:
        self.tools = tool_router
        self.orchestrator = orchestrator
        self.mcp = FastMCP(name=mcp_server_name)

        # ---------- MCP Tools: SQL Analytics ---------- #
        @self.mcp.tool(
            name=ToolName.SQL_ANALYTICS_QUERY.value,
            description=(
                "Exact aggregates over the store database (sales totals, top products, "
                "order status counts, customer counts, low stock, daily revenue). "
                "The aggregate is picked from the keywords of the question."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_sql_analytics_query(
            question: Annotated[str, Field(description="question in natural language")],
            date_range: Annotated[Optional[Dict[str, str]], Field(description=_DATE_RANGE_DESCRIPTION)] = None,
            service_token: Annotated[Optional[str], Field(description=_TOKEN_DESCRIPTION)] = None,
            actor_user_id: Annotated[str, Field(description=_ACTOR_DESCRIPTION)] = "",
            actor_role: Annotated[str, Field(description=_ROLE_DESCRIPTION)] = "",
        ) -> Dict[str, Any]:
            return await self._call_tool(
                ToolName.SQL_ANALYTICS_QUERY,
                {"question": question, "dateRange": date_range},
                service_token, actor_user_id, actor_role,
            )

        # ---------- MCP Tools: Operational Search ---------- #
        @self.mcp.tool(
            name=ToolName.RAG_OPERATIONAL_SEARCH.value,
            description=(
                "Semantic search over indexed products, customers, managers, orders and order items. "
                "Unknown entity types are ignored."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_rag_operational_search(
            query: Annotated[str, Field(description="search text")],
            top_k: Annotated[Optional[int], Field(description="number of results, between 1 and 20 (default 5)")] = None,
            entity_types: Annotated[Optional[List[str]], Field(description="entity types to search (product, customer, manager, order, order_item)")] = None,
            service_token: Annotated[Optional[str], Field(description=_TOKEN_DESCRIPTION)] = None,
            actor_user_id: Annotated[str, Field(description=_ACTOR_DESCRIPTION)] = "",
            actor_role: Annotated[str, Field(description=_ROLE_DESCRIPTION)] = "",
        ) -> Dict[str, Any]:
            return await self._call_tool(
                ToolName.RAG_OPERATIONAL_SEARCH,
                {"query": query, "topK": top_k, "entityTypes": entity_types},
                service_token, actor_user_id, actor_role,
            )

        # ---------- MCP Tools: Strategic Search ---------- #
        @self.mcp.tool(
            name=ToolName.RAG_STRATEGIC_SEARCH.value,
            description=(
                "Semantic search filtered by free-text topics "
                "(produtos/products, clientes/customers, pedidos/orders, gestores/managers)."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_rag_strategic_search(
            query: Annotated[str, Field(description="search text")],
            top_k: Annotated[Optional[int], Field(description="number of results, between 1 and 20 (default 5)")] = None,
            topic_filters: Annotated[Optional[List[str]], Field(description="topics to restrict the search to")] = None,
            service_token: Annotated[Optional[str], Field(description=_TOKEN_DESCRIPTION)] = None,
            actor_user_id: Annotated[str, Field(description=_ACTOR_DESCRIPTION)] = "",
            actor_role: Annotated[str, Field(description=_ROLE_DESCRIPTION)] = "",
        ) -> Dict[str, Any]:
            return await self._call_tool(
                ToolName.RAG_STRATEGIC_SEARCH,
                {"query": query, "topK": top_k, "topicFilters": topic_filters},
                service_token, actor_user_id, actor_role,
            )

        # ---------- MCP Tools: Hybrid Merge ---------- #
        @self.mcp.tool(
            name=ToolName.HYBRID_CONTEXT_MERGE.value,
            description=(
                "Runs the exact analytics query and the operational search concurrently and "
                "returns one list of context blocks ordered by confidence."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_hybrid_context_merge(
            question: Annotated[str, Field(description="question in natural language")],
            top_k: Annotated[Optional[int], Field(description="number of semantic results, between 1 and 20 (default 5)")] = None,
            entity_types: Annotated[Optional[List[str]], Field(description="entity types for the semantic side")] = None,
            date_range: Annotated[Optional[Dict[str, str]], Field(description=_DATE_RANGE_DESCRIPTION)] = None,
            service_token: Annotated[Optional[str], Field(description=_TOKEN_DESCRIPTION)] = None,
            actor_user_id: Annotated[str, Field(description=_ACTOR_DESCRIPTION)] = "",
            actor_role: Annotated[str, Field(description=_ROLE_DESCRIPTION)] = "",
        ) -> Dict[str, Any]:
            return await self._call_tool(
                ToolName.HYBRID_CONTEXT_MERGE,
                {"question": question, "topK": top_k, "entityTypes": entity_types, "dateRange": date_range},
                service_token, actor_user_id, actor_role,
            )

        # ---------- MCP Tools: Agent Ask ---------- #
        @self.mcp.tool(
            name="agent_ask",
            description=(
                "Answers a question about the store in Portuguese. The question is checked against "
                "guardrails, routed to analytics, semantic search or both, and answered with sources."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_agent_ask(
            question: Annotated[str, Field(description="question in natural language (max 2000 characters)")],
            top_k: Annotated[Optional[int], Field(description="number of semantic results, between 1 and 20 (default 5)")] = None,
            entity_types: Annotated[Optional[List[str]], Field(description="entity types for the semantic side")] = None,
            date_range: Annotated[Optional[Dict[str, str]], Field(description=_DATE_RANGE_DESCRIPTION)] = None,
            service_token: Annotated[Optional[str], Field(description=_TOKEN_DESCRIPTION)] = None,
            actor_user_id: Annotated[str, Field(description=_ACTOR_DESCRIPTION)] = "",
            actor_role: Annotated[str, Field(description=_ROLE_DESCRIPTION)] = "",
        ) -> Dict[str, Any]:
            context = self._authorize(service_token, actor_user_id, actor_role)
            try:
                ask_input = AgentAskInput.model_validate({
                    "question": question,
                    "topK": top_k,
                    "entityTypes": entity_types,
                    "dateRange": date_range,
                })
                answer = await self.orchestrator.ask(ask_input, context)
            except RagError as e:
                raise ToolError(e.message) from e
            except Exception as e:
                logger.exception(f"agent_ask failed (correlationId={context.correlation_id}): {e}")
                raise ToolError(GENERIC_ERROR_MESSAGE) from e
            return answer.to_response()

    def _authorize(self, service_token: Optional[str], actor_user_id: str, actor_role: str) -> CorrelationContext:
        try:
            self.tools.validate_service_auth(service_token)
        except RagError as e:
            raise ToolError(e.message) from e
        return create_correlation_context(actor_user_id=actor_user_id, actor_role=actor_role)

    async def _call_tool(
            self,
            tool: ToolName,
            raw_input: Dict[str, Any],
            service_token: Optional[str],
            actor_user_id: str,
            actor_role: str,
        ) -> Dict[str, Any]:
        context = self._authorize(service_token, actor_user_id, actor_role)
        payload = {key: value for key, value in raw_input.items() if value is not None}
        try:
            output: BaseModel = await self.tools.execute(tool, payload, context)
        except RagError as e:
            raise ToolError(e.message) from e
        except Exception as e:
            logger.exception(f"{tool.value} failed (correlationId={context.correlation_id}): {e}")
            raise ToolError(GENERIC_ERROR_MESSAGE) from e
        return output.model_dump(mode="json", by_alias=True)

    def run(self) -> None:
        """stdio only"""
        self.mcp.run(transport="stdio")


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    config = load_config()

    parser = argparse.ArgumentParser(description="Run the commerce RAG MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=config.agent.mcp_server_name,
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="SQLite database path (overrides COMMERCE_RAG_DB_PATH).",
    )
    args = parser.parse_args(argv)

    # stdout carries the protocol, logs go to stderr
    configure_logging(config.server.log_level)
    if args.db_path:
        config.database.path = args.db_path

    components = build_components(config)

    app = CommerceMCPServerApp(
        tool_router=components.tool_router,
        orchestrator=components.orchestrator,
        mcp_server_name=args.server_name,
    )
    logger.info(f"Starting MCP server '{args.server_name}' on stdio")
    app.run()


if __name__ == "__main__":
    main()

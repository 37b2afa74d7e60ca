"""
Retriever - Natural-Language Questions over the Store

Routes free-text questions to exact analytics, semantic search or both.

Key Components:
- query_router: Guardrails and keyword route classification
- AnalyticsRepository: Read-only aggregate queries
- ToolRouter: The four agent tools, timed and logged
- Orchestrator: Validate, classify, invoke, format, cite

Pipeline:
1. Validate the question and scan it for unsafe patterns
2. Classify the route (SQL, operational, strategic, hybrid)
3. Invoke the tool(s) for the route
4. Format the answer, collect sources, add advisories
"""

from .analytics import AnalyticsRepository
from .orchestrator import Orchestrator
from .query_router import classify_route, enforce_guardrails
from .tools import ToolRouter, create_correlation_context

__all__ = [
    "AnalyticsRepository",
    "Orchestrator",
    "classify_route",
    "enforce_guardrails",
    "ToolRouter",
    "create_correlation_context",
]

"""
Query Router

Validates free-text questions, rejects unsafe ones and classifies a route.

Classification is a hand-tuned keyword heuristic, not a trained model.
Precedence (first match wins):
1. exact-aggregate intent AND (strategic OR operational intent) -> HYBRID
2. exact-aggregate intent alone -> SQL_ANALYTICS
3. strategic intent -> RAG_STRATEGIC
4. operational intent -> RAG_OPERATIONAL
5. anything else -> RAG_OPERATIONAL
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from ..common.errors import GuardrailError, ValidationError
from ..common.schemas import AgentRoute

MAX_QUESTION_LENGTH = 2000

GUARDRAIL_MESSAGE = "A pergunta contém conteúdo não permitido. Reformule sua consulta."

SQL_INTENT_KEYWORDS: Tuple[str, ...] = (
    "quantas", "quantos", "quanto", "total", "soma", "média", "media",
    "faturamento", "receita", "vendas", "venda", "pedidos", "estoque",
    "inventário", "inventario", "ranking", "mais vendido", "mais vendidos",
    "top", "cancelados", "canceladas", "entregues", "criados", "contagem",
    "contabilizar", "contar", "últimos dias", "ultimos dias", "último mês",
    "ultimo mes", "clientes cadastrados", "clientes com pedidos",
)

STRATEGIC_KEYWORDS: Tuple[str, ...] = (
    "estratégia", "estrategia", "tendência", "tendencia", "análise", "analise",
    "insight", "padrão", "padrao", "perfil", "comportamento", "recomendação",
    "recomendacao", "segmento", "segmentação", "segmentacao",
)

OPERATIONAL_KEYWORDS: Tuple[str, ...] = (
    "produto", "produtos", "descreva", "detalhe", "informações", "informacoes",
    "sobre o", "sobre a", "características", "caracteristicas", "similar",
    "parecido", "semelhante", "cliente", "pedido", "gestor",
)

UNSAFE_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # SQL injection
        r"drop\s+table",
        r"delete\s+from",
        r"truncate",
        r"alter\s+table",
        r"insert\s+into",
        r"update\s+.*\s+set",
        r";\s*--",
        r"union\s+select",
        r"exec\s*\(",
        r"xp_cmdshell",
        # Markup injection
        r"script>",
        r"<iframe",
        r"javascript:",
        # Prompt injection
        r"ignore\s+(previous|above|all)\s+(instructions|prompts)",
        r"you\s+are\s+now",
        r"pretend\s+you",
        r"system\s*prompt",
        r"forget\s+(your|all|previous)",
    )
)


@dataclass(frozen=True)
class IntentMatch:
    """Which keyword tables matched a question"""
    sql: bool
    strategic: bool
    operational: bool


def _matches_any(text: str, keywords: Tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def detect_intents(question: str) -> IntentMatch:
    text = question.lower()
    return IntentMatch(
        sql=_matches_any(text, SQL_INTENT_KEYWORDS),
        strategic=_matches_any(text, STRATEGIC_KEYWORDS),
        operational=_matches_any(text, OPERATIONAL_KEYWORDS),
    )


def classify_route(question: str) -> AgentRoute:
    """Pure function of the lowercased question and the keyword tables"""
    intents = detect_intents(question)
    if intents.sql:
        if intents.strategic or intents.operational:
            return AgentRoute.HYBRID
        return AgentRoute.SQL_ANALYTICS
    if intents.strategic:
        return AgentRoute.RAG_STRATEGIC
    return AgentRoute.RAG_OPERATIONAL


def has_sql_intent(question: str) -> bool:
    return detect_intents(question).sql


def validate_question(question: Optional[str], max_length: int = MAX_QUESTION_LENGTH) -> str:
    """Trimmed question, or ValidationError"""
    normalized = (question or "").strip()
    if not normalized:
        raise ValidationError("Informe uma pergunta para o agente.")
    if len(normalized) > max_length:
        raise ValidationError(f"A pergunta deve ter no máximo {max_length} caracteres.")
    return normalized


def find_unsafe_patterns(question: str) -> List[str]:
    text = question.lower()
    return [pattern.pattern for pattern in UNSAFE_PATTERNS if pattern.search(text)]


def enforce_guardrails(question: str) -> None:
    """Reject SQL-, markup- and prompt-injection shaped questions"""
    if find_unsafe_patterns(question):
        raise GuardrailError(GUARDRAIL_MESSAGE)

"""
Answer Formatter

Turns tool outputs into pt-BR answer text and source citations.
"""

from typing import Any, List, Union

from ..common.schemas import (
    HybridMergeOutput,
    RagOperationalOutput,
    RagStrategicOutput,
    SourceCitation,
    SqlAnalyticsOutput,
    ToolName,
)

EXACT_DATA_ADVISORY = "A pergunta parece exigir dados exatos. A resposta pode não refletir métricas precisas."
NO_SOURCES_ADVISORY = "Nenhuma fonte de dados encontrada para a pergunta informada."


def format_column_name(column: str) -> str:
    """total_revenue_cents -> Total Revenue Cents"""
    return " ".join(word[:1].upper() + word[1:] for word in column.replace("_", " ").split(" "))


def format_number(value: Union[int, float]) -> str:
    """pt-BR grouping: 1234567 -> 1.234.567, 1234.5 -> 1.234,5"""
    if isinstance(value, int):
        text = f"{value:,}"
    else:
        text = f"{value:,.3f}".rstrip("0").rstrip(".")
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "sim" if value else "não"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def _percent(score: float) -> str:
    return f"{score * 100:.1f}%"


def format_sql_answer(result: SqlAnalyticsOutput) -> str:
    if result.row_count == 0:
        return "Nenhum dado encontrado para a consulta informada."

    lines = [f"**{result.query_description}**\n"]
    for row in result.rows:
        entries = " | ".join(f"{format_column_name(key)}: {format_value(value)}" for key, value in row.items())
        lines.append(f"- {entries}")
    return "\n".join(lines)


def format_operational_answer(result: RagOperationalOutput) -> str:
    if not result.documents:
        return "Nenhum documento encontrado para a pesquisa informada."

    lines = [f"Encontrados {len(result.documents)} resultado(s):\n"]
    for doc in result.documents:
        lines.append(f"- [{doc.entity_type}] {doc.snippet} (relevância: {_percent(doc.score)})")
    return "\n".join(lines)


def format_strategic_answer(result: RagStrategicOutput) -> str:
    if not result.documents:
        return "Nenhum documento estratégico encontrado para a pesquisa informada."

    lines = [f"Encontrados {len(result.documents)} resultado(s) estratégico(s):\n"]
    for doc in result.documents:
        lines.append(f"- [{doc.entity_type}] {doc.snippet} (relevância: {_percent(doc.score)})")
    return "\n".join(lines)


def format_hybrid_answer(result: HybridMergeOutput) -> str:
    if not result.blocks:
        return "Nenhum dado encontrado para a consulta híbrida."

    lines = ["**Resultado combinado (SQL + RAG)**\n"]
    for block in result.blocks:
        label = "SQL" if block.source == ToolName.SQL_ANALYTICS_QUERY else "RAG"
        lines.append(f"- [{label}] {block.content[:300]} (confiança: {_percent(block.confidence)})")
    return "\n".join(lines)


# ---------- Sources ---------- #

def sql_sources(result: SqlAnalyticsOutput) -> List[SourceCitation]:
    """Cited only when the query returned rows"""
    if result.row_count == 0:
        return []
    return [SourceCitation(type="sql", id="sql_analytics", title=result.query_description)]


def rag_sources(result: Union[RagOperationalOutput, RagStrategicOutput]) -> List[SourceCitation]:
    return [
        SourceCitation(type=doc.entity_type, id=doc.entity_id, title=doc.snippet[:100], score=doc.score)
        for doc in result.documents
    ]


def hybrid_sources(result: HybridMergeOutput) -> List[SourceCitation]:
    return [
        SourceCitation(
            type="sql" if block.source == ToolName.SQL_ANALYTICS_QUERY else "rag",
            id=f"hybrid_block_{index}",
            title=block.content[:100],
            score=block.confidence,
        )
        for index, block in enumerate(result.blocks)
    ]

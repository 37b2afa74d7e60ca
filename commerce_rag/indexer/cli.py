#!/usr/bin/env python3
"""
Backfill CLI

Reindexes the semantic document index from the store database, or retries
the entities recorded in the failure ledger.

Usage:
    commerce-rag-backfill                                  # every entity type
    commerce-rag-backfill --entity-type product,order --dry-run
    commerce-rag-backfill --entity-type product --entity-id 42
    commerce-rag-backfill --reprocess-failures --include-permanent

Prints one JSON summary on stdout. Fatal errors print
{"evento": "rag_backfill_erro", ...} on stderr and exit with 1.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from ..bootstrap import build_components
from ..common.config import CommerceRagConfig, load_config
from ..common.errors import RagError, ValidationError
from ..common.events import configure_logging
from ..common.schemas import ReprocessInput
from .inputs import build_backfill_input, parse_entity_type_list, positive_int_or_default

logger = logging.getLogger("commerce_rag.indexer.cli")

UNEXPECTED_ERROR_MESSAGE = "Erro inesperado ao executar o backfill."


def build_parser(config: CommerceRagConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commerce-rag-backfill",
        description="Reindex the semantic document index from the store database.",
    )
    parser.add_argument(
        "--entity-type",
        default=None,
        help="Comma-separated entity types (product,customer,manager,order,order_item). Default: all.",
    )
    parser.add_argument("--entity-id", default=None, help="Reindex a single entity (requires one entity type).")
    parser.add_argument("--from", dest="from_date", default=None, help="Start date (ISO, e.g. 2024-01-01T00:00:00Z).")
    parser.add_argument("--to", dest="to_date", default=None, help="End date (ISO, e.g. 2024-01-31T23:59:59Z).")
    parser.add_argument(
        "--batch-size",
        default=None,
        help=f"Rows per batch (default: {config.backfill.batch_size}).",
    )
    parser.add_argument(
        "--max-attempts",
        default=None,
        help=f"Attempts per item (default: {config.backfill.max_item_attempts}).",
    )
    parser.add_argument(
        "--failure-threshold",
        default=None,
        help=f"Failure-rate alert threshold in [0, 1] (default: {config.backfill.failure_alert_threshold}).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Only count rows, write nothing.")
    parser.add_argument("--reprocess-failures", action="store_true", help="Retry entities in the failure ledger.")
    parser.add_argument(
        "--include-permanent",
        action="store_true",
        help="Include permanent failures when reprocessing.",
    )
    parser.add_argument(
        "--failure-limit",
        default=None,
        help=f"Maximum failures per reprocessing run (default: {config.backfill.failure_list_limit}).",
    )
    parser.add_argument("--db-path", default=None, help="SQLite database path (overrides COMMERCE_RAG_DB_PATH).")
    return parser


def _split_entity_types(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [part.strip() for part in value.split(",")]


async def run(args: argparse.Namespace, config: CommerceRagConfig) -> Dict[str, Any]:
    """Execute the requested operation and return the JSON summary"""
    entity_types = _split_entity_types(args.entity_type)
    if args.entity_id and (entity_types is None or len(parse_entity_type_list(entity_types)) != 1):
        raise ValidationError("Informe apenas um entity_type ao usar entity-id.")

    components = build_components(config)
    try:
        engine = components.backfill_engine

        if args.reprocess_failures:
            types = parse_entity_type_list(entity_types)
            report = await engine.reprocess_failures(ReprocessInput(
                entity_type=types[0] if len(types) == 1 else None,
                include_permanent=args.include_permanent,
                limit=positive_int_or_default(args.failure_limit, config.backfill.failure_list_limit),
                max_item_attempts=positive_int_or_default(args.max_attempts, config.backfill.max_item_attempts),
            ))
            return {
                "evento": "rag_backfill_reprocessamento",
                "mensagem": "Reprocessamento de falhas concluído.",
                "total": report.total,
                "sucesso": report.success,
                "falhas": report.failures,
            }

        backfill_input = build_backfill_input(
            config.backfill,
            entity_types=entity_types,
            entity_id=args.entity_id,
            from_date=args.from_date,
            to_date=args.to_date,
            dry_run=args.dry_run,
            batch_size=args.batch_size,
            max_attempts=args.max_attempts,
            failure_threshold=args.failure_threshold,
        )
        report = await engine.run_backfill(backfill_input)
        return {
            "evento": "rag_backfill",
            "mensagem": "Simulação concluída com sucesso." if report.dry_run else "Backfill concluído com sucesso.",
            "total": report.total,
            "sucesso": report.success,
            "falhas": report.failures,
            "duracaoMs": report.elapsed_ms,
            "detalhes": report.details(),
        }
    finally:
        await components.close()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    config = load_config()
    args = build_parser(config).parse_args(argv)

    configure_logging(config.server.log_level)
    if args.db_path:
        config.database.path = args.db_path

    try:
        summary = asyncio.run(run(args, config))
    except RagError as e:
        print(json.dumps({"evento": "rag_backfill_erro", "mensagem": e.message}, ensure_ascii=False), file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception(f"Backfill failed: {e}")
        print(
            json.dumps({"evento": "rag_backfill_erro", "mensagem": UNEXPECTED_ERROR_MESSAGE}, ensure_ascii=False),
            file=sys.stderr,
        )
        return 1

    print(json.dumps(summary, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())

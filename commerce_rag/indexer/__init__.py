"""
Indexer - Relational to Vector Index Synchronization

Keeps the semantic document index consistent with the store database.

Key Components:
- Synchronizer: Renders canonical snapshots, embeds and upserts them
- SourceRepository: Counts and pages source rows per entity type
- BackfillEngine: Batched, retrying, dead-letter-aware reconciliation

Pipeline:
1. Count matching source rows per entity type
2. Page through them in batches (orders with their items)
3. Sync each item with bounded retries
4. Record failures in the ledger; alert on a high failure rate
"""

from .backfill import BackfillEngine
from .source_repository import SourceRepository
from .synchronizer import Synchronizer

__all__ = [
    "BackfillEngine",
    "SourceRepository",
    "Synchronizer",
]

"""
Commerce RAG

Semantic indexing and natural-language query routing for the commerce back office.

Philosophy:
- Every indexed document is reproducible from its markdown snapshot
- Embeddings are deterministic unless an external provider is configured
- Exact numbers come from SQL, descriptions come from the vector index
- Failed reindexing is never lost: it lands in the failure ledger

Usage:
    from commerce_rag.common import load_config, Database, DocumentIndex
    from commerce_rag.indexer import Synchronizer, BackfillEngine
    from commerce_rag.retriever import ToolRouter, Orchestrator
"""

__version__ = "0.1.0"

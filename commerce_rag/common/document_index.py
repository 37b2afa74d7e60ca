"""
Document Index

sqlite-backed vector document store keyed by (entity_type, entity_id).
Ranking is cosine similarity computed with numpy over the candidate rows.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

from .database import Database, utc_now_iso
from .embedding_service import batch_cosine_similarity
from .schemas import CanonicalDocument, EntityType, SearchHit

logger = logging.getLogger("commerce_rag.common.document_index")


def serialize_embedding(embedding: Sequence[float]) -> str:
    """Fixed 6-decimal precision so identical vectors serialize identically"""
    return json.dumps([round(float(v), 6) for v in embedding])


def serialize_metadata(metadata: Dict[str, Any]) -> str:
    return json.dumps(metadata, sort_keys=True, ensure_ascii=False, default=str)


class DocumentIndex:
    """
    Upsert/delete/search over rag_documents.

    An upsert with unchanged content, embedding, metadata and source timestamp
    leaves updated_at untouched, so re-syncing stores a byte-identical row.
    """

    def __init__(self, database: Database):
        self.db = database

    async def upsert_document(self, document: CanonicalDocument, conn: Optional[sqlite3.Connection] = None) -> None:
        await self.db.execute(
            """
            INSERT INTO rag_documents (
                entity_type, entity_id, content_markdown, embedding,
                metadata_json, source_updated_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (entity_type, entity_id)
            DO UPDATE SET
                updated_at = CASE
                    WHEN rag_documents.content_markdown = excluded.content_markdown
                     AND rag_documents.embedding = excluded.embedding
                     AND rag_documents.metadata_json = excluded.metadata_json
                     AND rag_documents.source_updated_at IS excluded.source_updated_at
                    THEN rag_documents.updated_at
                    ELSE excluded.updated_at
                END,
                content_markdown = excluded.content_markdown,
                embedding = excluded.embedding,
                metadata_json = excluded.metadata_json,
                source_updated_at = excluded.source_updated_at
            """,
            (
                document.entity_type.value,
                document.entity_id,
                document.content_markdown,
                serialize_embedding(document.embedding),
                serialize_metadata(document.metadata),
                document.source_updated_at,
                document.updated_at or utc_now_iso(),
            ),
            conn=conn,
        )

    async def delete_document(
        self,
        entity_type: EntityType,
        entity_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        deleted = await self.db.execute(
            "DELETE FROM rag_documents WHERE entity_type = ? AND entity_id = ?",
            (entity_type.value, entity_id),
            conn=conn,
        )
        return deleted > 0

    async def get_document(self, entity_type: EntityType, entity_id: str) -> Optional[CanonicalDocument]:
        row = await self.db.fetch_one(
            "SELECT * FROM rag_documents WHERE entity_type = ? AND entity_id = ?",
            (entity_type.value, entity_id),
        )
        return self._row_to_document(row) if row else None

    async def get_raw_row(self, entity_type: EntityType, entity_id: str) -> Optional[Dict[str, Any]]:
        """Stored row exactly as persisted"""
        return await self.db.fetch_one(
            "SELECT * FROM rag_documents WHERE entity_type = ? AND entity_id = ?",
            (entity_type.value, entity_id),
        )

    async def count_documents(self, entity_type: Optional[EntityType] = None) -> int:
        if entity_type is None:
            return int(await self.db.fetch_value("SELECT COUNT(*) FROM rag_documents"))
        return int(await self.db.fetch_value(
            "SELECT COUNT(*) FROM rag_documents WHERE entity_type = ?",
            (entity_type.value,),
        ))

    async def search_documents(
        self,
        embedding: List[float],
        top_k: int,
        entity_types: Optional[List[EntityType]] = None,
    ) -> List[SearchHit]:
        """
        Rank documents by cosine similarity to the embedding.

        Args:
            embedding: Query vector
            top_k: Maximum number of hits
            entity_types: Restrict to these types; empty or None means all

        Returns:
            Hits ordered by descending score
        """
        if entity_types:
            placeholders = ", ".join("?" for _ in entity_types)
            rows = await self.db.fetch_all(
                f"SELECT * FROM rag_documents WHERE entity_type IN ({placeholders})",
                [entity_type.value for entity_type in entity_types],
            )
        else:
            rows = await self.db.fetch_all("SELECT * FROM rag_documents")

        candidates = []
        vectors = []
        skipped = 0
        for row in rows:
            vector = json.loads(row["embedding"])
            if len(vector) != len(embedding):
                skipped += 1
                continue
            candidates.append(row)
            vectors.append(vector)

        if skipped:
            logger.warning(f"Skipped {skipped} documents with a different embedding dimension")

        scores = batch_cosine_similarity(embedding, vectors)
        ranked = sorted(zip(candidates, scores), key=lambda pair: pair[1], reverse=True)

        return [
            SearchHit(
                entity_type=EntityType(row["entity_type"]),
                entity_id=row["entity_id"],
                content_markdown=row["content_markdown"],
                metadata=json.loads(row["metadata_json"] or "{}"),
                score=float(score),
            )
            for row, score in ranked[:top_k]
        ]

    @staticmethod
    def _row_to_document(row: Dict[str, Any]) -> CanonicalDocument:
        return CanonicalDocument(
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            content_markdown=row["content_markdown"],
            embedding=json.loads(row["embedding"]),
            metadata=json.loads(row["metadata_json"] or "{}"),
            source_updated_at=row["source_updated_at"],
            updated_at=row["updated_at"],
        )

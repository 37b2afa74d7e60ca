"""
Backfill run inputs and reports.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .documents import ALL_ENTITY_TYPES, EntityType


@dataclass
class BackfillFilter:
    """Row filter applied when counting and loading source batches"""
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    entity_id: Optional[str] = None


@dataclass
class BackfillInput:
    entity_types: List[EntityType] = field(default_factory=lambda: list(ALL_ENTITY_TYPES))
    filter: BackfillFilter = field(default_factory=BackfillFilter)
    dry_run: bool = False
    batch_size: int = 100
    max_item_attempts: int = 3
    failure_alert_threshold: float = 0.1


@dataclass
class EntityStats:
    total: int = 0
    success: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "success": self.success, "failures": self.failures}


@dataclass
class BackfillReport:
    """Aggregate result of one run; returned, never persisted"""
    dry_run: bool
    started_at: str
    total: int = 0
    success: int = 0
    failures: int = 0
    finished_at: Optional[str] = None
    elapsed_ms: int = 0
    per_entity: Dict[EntityType, EntityStats] = field(
        default_factory=lambda: {entity_type: EntityStats() for entity_type in ALL_ENTITY_TYPES}
    )

    @property
    def failure_rate(self) -> float:
        return self.failures / self.total if self.total else 0.0

    def details(self) -> Dict[str, Dict[str, int]]:
        return {entity_type.value: stats.to_dict() for entity_type, stats in self.per_entity.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dryRun": self.dry_run,
            "total": self.total,
            "success": self.success,
            "failures": self.failures,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "elapsedMs": self.elapsed_ms,
            "perEntity": self.details(),
        }


@dataclass
class ReprocessInput:
    entity_type: Optional[EntityType] = None
    include_permanent: bool = False
    limit: int = 200
    max_item_attempts: int = 3


@dataclass
class ReprocessReport:
    total: int = 0
    success: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "success": self.success, "failures": self.failures}

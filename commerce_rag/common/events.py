"""
Structured event logging and indexing metrics.

Events are logged as one JSON object per line so they can be grepped and
shipped without a custom formatter.
"""

import json
import logging
import sys
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> Dict[str, Any]:
    """Log a structured event and return the payload that was logged"""
    payload: Dict[str, Any] = {"event": event}
    payload.update({key: value for key, value in fields.items() if value is not None})
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
    return payload


def configure_logging(level: str = "INFO") -> None:
    """Root handler for the CLI and server entry points"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


@dataclass
class SyncMetrics:
    """Counters for one Synchronizer instance, used to enrich index events"""
    indexed_count: int = 0
    fail_count: int = 0
    deleted_count: int = 0
    last_embedding_latency_ms: Optional[float] = None

    def record_success(self, embedding_latency_ms: float) -> None:
        self.indexed_count += 1
        self.last_embedding_latency_ms = embedding_latency_ms

    def record_failure(self) -> None:
        self.fail_count += 1

    def snapshot(self) -> Dict[str, Any]:
        return asdict(self)

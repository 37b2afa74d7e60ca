"""
Parsing of backfill options shared by the CLI and the admin HTTP surface.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from ..common.config import BackfillConfig
from ..common.errors import ValidationError
from ..common.schemas import (
    ALL_ENTITY_TYPES,
    BackfillFilter,
    BackfillInput,
    EntityType,
    parse_entity_type,
)


def parse_entity_type_list(values: Optional[Iterable[Any]]) -> List[EntityType]:
    """Explicit types must all be valid; nothing given means every type"""
    if values is None:
        return list(ALL_ENTITY_TYPES)
    values = list(values)
    if not values:
        return list(ALL_ENTITY_TYPES)

    raw = [value for value in values if not (isinstance(value, str) and not value.strip())]
    if not raw:
        raise ValidationError("Informe pelo menos um entity_type válido.")

    result: List[EntityType] = []
    for value in raw:
        entity_type = parse_entity_type(value)
        if entity_type is None:
            raise ValidationError("Informe um entity_type válido.")
        if entity_type not in result:
            result.append(entity_type)
    return result


def parse_single_entity_type(value: Any) -> Optional[EntityType]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    entity_type = parse_entity_type(value)
    if entity_type is None:
        raise ValidationError("Informe um entity_type válido.")
    return entity_type


def parse_date(value: Any) -> Optional[str]:
    """ISO date or datetime to the UTC timestamp format stored in the database"""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if not isinstance(value, str):
        raise ValidationError("Data informada é inválida.")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError("Data informada é inválida.") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def positive_int_or_default(value: Any, default: int) -> int:
    """Invalid or non-positive values fall back to the default"""
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if isinstance(value, float) and parsed != value:
        return default
    return parsed if parsed > 0 else default


def threshold_or_default(value: Any, default: float) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if 0 <= parsed <= 1 else default


def build_backfill_input(
    config: BackfillConfig,
    entity_types: Optional[Iterable[Any]] = None,
    entity_id: Optional[str] = None,
    from_date: Any = None,
    to_date: Any = None,
    dry_run: bool = False,
    batch_size: Any = None,
    max_attempts: Any = None,
    failure_threshold: Any = None,
) -> BackfillInput:
    """Validate raw options into a BackfillInput"""
    types = parse_entity_type_list(entity_types)
    normalized_id = entity_id.strip() if isinstance(entity_id, str) and entity_id.strip() else None
    if normalized_id and len(types) != 1:
        raise ValidationError("Informe apenas um entity_type ao usar entityId.")

    return BackfillInput(
        entity_types=types,
        filter=BackfillFilter(
            from_date=parse_date(from_date),
            to_date=parse_date(to_date),
            entity_id=normalized_id,
        ),
        dry_run=bool(dry_run),
        batch_size=positive_int_or_default(batch_size, config.batch_size),
        max_item_attempts=positive_int_or_default(max_attempts, config.max_item_attempts),
        failure_alert_threshold=threshold_or_default(failure_threshold, config.failure_alert_threshold),
    )

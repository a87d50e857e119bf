from sqlalchemy.orm import Session

from opai.models.history import HistoryLog


def write_history_log(
    db: Session,
    tenant_id: str,
    actor_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    details: dict | None = None,
) -> HistoryLog:
    """Stage a history entry on the caller's session.

    The entry is flushed but never committed, so it shares the outcome of
    the surrounding unit of work.
    """
    entry = HistoryLog(
        tenant_id=tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
        created_by=actor_id,
    )
    db.add(entry)
    db.flush()
    return entry

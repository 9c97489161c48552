"""Operator queue for failures that left (or may have left) state half-applied.

Alerts are written through their own session so they survive the rollback of
the operation that raised them.
"""
import json
import logging
import uuid

from sqlalchemy.orm import Session

from bathhouse.core.errors import InconsistentStateError
from bathhouse.models.operator_alert import OperatorAlert

logger = logging.getLogger(__name__)


def report_inconsistency(db: Session, operation: str, entity_id: str, message: str, details: dict | None = None) -> InconsistentStateError:
    """Log, persist an operator alert and return the error for the caller to raise."""
    details = details or {}
    logger.critical("Inconsistent state in %s for %s: %s (%s)", operation, entity_id, message, details)
    alert_db = Session(bind=db.get_bind())
    try:
        alert_db.add(OperatorAlert(
            id=str(uuid.uuid4()),
            operation=operation,
            entity_id=entity_id or "",
            message=message,
            details_json=json.dumps(details, ensure_ascii=False, default=str),
        ))
        alert_db.commit()
    except Exception:
        alert_db.rollback()
        logger.exception("Could not persist operator alert for %s %s", operation, entity_id)
    finally:
        alert_db.close()
    return InconsistentStateError(message, operation=operation, entityId=entity_id)


def list_open_alerts(db: Session, limit: int = 50) -> list[OperatorAlert]:
    return (
        db.query(OperatorAlert)
        .filter(OperatorAlert.resolved == False)  # noqa: E712
        .order_by(OperatorAlert.created_at.desc())
        .limit(limit)
        .all()
    )


def resolve_alert(db: Session, alert_id: str) -> bool:
    alert = db.get(OperatorAlert, alert_id)
    if not alert:
        return False
    alert.resolved = True
    db.commit()
    return True

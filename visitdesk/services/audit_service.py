import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from visitdesk.core.timeutil import to_iso
from visitdesk.db.models import AuditEvent

logger = logging.getLogger(__name__)


def write_audit_event(
    db: Session,
    operator_id: int | None,
    action: str,
    table_name: str,
    record_id: int | None = None,
    old_data: dict[str, Any] | None = None,
    new_data: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditEvent | None:
    """Append an audit row in its own commit. Failures are logged, never raised."""
    row = AuditEvent(
        operator_id=operator_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        old_data=json.dumps(old_data, ensure_ascii=False, default=str) if old_data else None,
        new_data=json.dumps(new_data, ensure_ascii=False, default=str) if new_data else None,
        ip_address=ip_address or None,
        user_agent=user_agent[:255] if user_agent else None,
    )
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("audit logging failed for %s on %s/%s: %s", action, table_name, record_id, exc)
        return None
    return row


def list_audit_events(db: Session, limit: int = 200) -> list[AuditEvent]:
    return (
        db.query(AuditEvent)
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .limit(limit)
        .all()
    )


def serialize_audit_event(row: AuditEvent) -> dict:
    return {
        "id": row.id,
        "operatorId": row.operator_id,
        "action": row.action,
        "tableName": row.table_name,
        "recordId": row.record_id,
        "oldData": json.loads(row.old_data) if row.old_data else None,
        "newData": json.loads(row.new_data) if row.new_data else None,
        "ipAddress": row.ip_address,
        "userAgent": row.user_agent,
        "createdAt": to_iso(row.created_at),
    }

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from visitdesk.api.deps import get_app_settings, require_roles
from visitdesk.core.config import Settings
from visitdesk.core.exceptions import ValidationError
from visitdesk.core.timeutil import to_iso, utcnow
from visitdesk.db.models import OperatorRole
from visitdesk.db.session import get_db
from visitdesk.services import audit_service, query_service
from visitdesk.services.auth_service import Principal

router = APIRouter()
admin_only = require_roles(OperatorRole.admin.value)


@router.get("/stats")
def admin_stats(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    _: Principal = Depends(admin_only),
):
    return query_service.get_stats(db, settings.DISPLAY_TIMEZONE)


@router.get("/export")
def admin_export(
    startDate: str | None = None,
    endDate: str | None = None,
    format: str = "csv",
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    _: Principal = Depends(admin_only),
):
    export_format = format.lower()
    if export_format not in ("csv", "json"):
        raise ValidationError("format must be csv or json", code="INVALID_FORMAT")

    now = utcnow()
    records = query_service.export_visitors(
        db,
        settings.DISPLAY_TIMEZONE,
        start_date=startDate,
        end_date=endDate,
        default_days=settings.EXPORT_DEFAULT_DAYS,
        now=now,
    )
    if export_format == "json":
        return {
            "exportDate": to_iso(now),
            "recordCount": len(records),
            "data": [query_service.export_row(record, now) for record in records],
        }

    filename = query_service.export_filename(startDate, endDate, settings.EXPORT_DEFAULT_DAYS, now)
    return Response(
        content=query_service.render_csv(records, now).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/audit-logs")
def admin_audit_logs(
    limit: int = 200,
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    rows = audit_service.list_audit_events(db, limit=min(max(limit, 1), 1000))
    return {"data": [audit_service.serialize_audit_event(row) for row in rows]}

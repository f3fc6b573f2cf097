import csv
import io
import math
from datetime import date, datetime, timedelta

from sqlalchemy import DateTime, Float, case, cast, distinct, extract, func, literal, literal_column, or_
from sqlalchemy.orm import Session

from visitdesk.core.exceptions import ValidationError
from visitdesk.core.timeutil import day_bounds_utc, duration_minutes, local_date, parse_date, to_iso, utcnow
from visitdesk.db.models import VisitorRecord, VisitorStatus

SORT_COLUMNS = {
    "checkin_time": VisitorRecord.checkin_time,
    "checkout_time": VisitorRecord.checkout_time,
    "visitor_name": VisitorRecord.visitor_name,
    "host_employee": VisitorRecord.host_employee,
    "host_email": VisitorRecord.host_email,
    "status": VisitorRecord.status,
}
DEFAULT_SORT = "checkin_time"

CSV_HEADERS = [
    "ID",
    "Name",
    "Mobile",
    "Host",
    "Email",
    "Purpose",
    "Check-in",
    "Check-out",
    "Status",
    "Created By",
    "Duration (minutes)",
]


def _parse_day(value: str, field: str) -> date:
    try:
        return parse_date(value)
    except ValueError as exc:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format", code="INVALID_DATE") from exc


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_visitors(
    db: Session,
    tz_name: str,
    date_filter: str | None = None,
    status: str | None = None,
    host_email: str | None = None,
    host_employee: str | None = None,
    search: str | None = None,
    created_by: str | None = None,
    page: int = 1,
    limit: int = 50,
    max_limit: int = 100,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> dict:
    page = max(1, page)
    limit = min(max_limit, max(1, limit))
    sort_key = sort_by if sort_by in SORT_COLUMNS else DEFAULT_SORT
    order = "ASC" if (sort_order or "").upper() == "ASC" else "DESC"

    query = db.query(VisitorRecord)
    if date_filter:
        start, end = day_bounds_utc(_parse_day(date_filter, "date"), tz_name)
        query = query.filter(VisitorRecord.checkin_time >= start, VisitorRecord.checkin_time < end)
    if status:
        if status not in {s.value for s in VisitorStatus}:
            raise ValidationError("status must be checked_in or checked_out", code="INVALID_STATUS")
        query = query.filter(VisitorRecord.status == status)
    if host_email:
        query = query.filter(VisitorRecord.host_email == host_email.strip())
    if host_employee:
        pattern = f"%{_escape_like(host_employee.strip())}%"
        query = query.filter(VisitorRecord.host_employee.ilike(pattern, escape="\\"))
    if search and search.strip():
        pattern = f"%{_escape_like(search.strip())}%"
        query = query.filter(
            or_(
                VisitorRecord.visitor_name.ilike(pattern, escape="\\"),
                VisitorRecord.mobile.ilike(pattern, escape="\\"),
                VisitorRecord.host_employee.ilike(pattern, escape="\\"),
                VisitorRecord.host_email.ilike(pattern, escape="\\"),
                VisitorRecord.purpose.ilike(pattern, escape="\\"),
            )
        )
    if created_by:
        query = query.filter(VisitorRecord.created_by == created_by)

    total = query.order_by(None).count()

    column = SORT_COLUMNS[sort_key]
    if order == "ASC":
        query = query.order_by(column.asc(), VisitorRecord.id.asc())
    else:
        query = query.order_by(column.desc(), VisitorRecord.id.desc())
    rows = query.offset((page - 1) * limit).limit(limit).all()

    return {
        "rows": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
            "hasNext": page * limit < total,
            "hasPrev": page > 1,
        },
        "filters": {
            "date": date_filter,
            "status": status,
            "host_email": host_email,
            "host_employee": host_employee,
            "search": search,
            "sortBy": sort_key,
            "sortOrder": order,
        },
    }


def _visit_minutes(dialect: str, now: datetime):
    """SQL expression for a visit's length in minutes, open visits measured to now."""
    end = func.coalesce(VisitorRecord.checkout_time, literal(now, DateTime))
    if dialect == "sqlite":
        return (func.julianday(end) - func.julianday(VisitorRecord.checkin_time)) * 1440.0
    if dialect in ("mysql", "mariadb"):
        return cast(func.timestampdiff(literal_column("SECOND"), VisitorRecord.checkin_time, end), Float) / 60.0
    return extract("epoch", end - VisitorRecord.checkin_time) / 60.0


def summarize_window(db: Session, start: datetime | None, end: datetime | None, now: datetime) -> dict:
    """Aggregate counts over check-ins in [start, end)."""
    filters = []
    if start is not None:
        filters.append(VisitorRecord.checkin_time >= start)
    if end is not None:
        filters.append(VisitorRecord.checkin_time < end)

    dialect = db.get_bind().dialect.name
    total, active, checked_out, hosts, visitors, first, last, avg_minutes = (
        db.query(
            func.count(VisitorRecord.id),
            func.sum(case((VisitorRecord.status == VisitorStatus.checked_in.value, 1), else_=0)),
            func.sum(case((VisitorRecord.status == VisitorStatus.checked_out.value, 1), else_=0)),
            func.count(distinct(VisitorRecord.host_email)),
            func.count(distinct(VisitorRecord.visitor_name)),
            func.min(VisitorRecord.checkin_time),
            func.max(VisitorRecord.checkin_time),
            func.avg(_visit_minutes(dialect, now)),
        )
        .filter(*filters)
        .one()
    )
    return {
        "total": total or 0,
        "active": int(active or 0),
        "checkedOut": int(checked_out or 0),
        "uniqueHosts": hosts or 0,
        "uniqueVisitors": visitors or 0,
        "firstCheckin": to_iso(first),
        "lastCheckin": to_iso(last),
        "avgVisitDurationMinutes": round(max(float(avg_minutes), 0.0), 1) if avg_minutes is not None else None,
    }


def get_stats(db: Session, tz_name: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    today = local_date(now, tz_name)
    today_start, today_end = day_bounds_utc(today, tz_name)
    week_start, _ = day_bounds_utc(today - timedelta(days=6), tz_name)
    month_start, _ = day_bounds_utc(today - timedelta(days=29), tz_name)

    daily: dict[date, dict] = {}
    for offset in range(7):
        day = today - timedelta(days=offset)
        daily[day] = {"date": day.isoformat(), "count": 0, "active": 0}
    week_rows = (
        db.query(VisitorRecord.checkin_time, VisitorRecord.status)
        .filter(VisitorRecord.checkin_time >= week_start, VisitorRecord.checkin_time < today_end)
        .all()
    )
    for checkin, status in week_rows:
        bucket = daily.get(local_date(checkin, tz_name))
        if bucket is None:
            continue
        bucket["count"] += 1
        if status == VisitorStatus.checked_in.value:
            bucket["active"] += 1

    top_hosts = (
        db.query(
            VisitorRecord.host_email,
            func.count(VisitorRecord.id).label("visitor_count"),
            func.sum(case((VisitorRecord.status == VisitorStatus.checked_in.value, 1), else_=0)),
        )
        .group_by(VisitorRecord.host_email)
        .order_by(func.count(VisitorRecord.id).desc(), VisitorRecord.host_email.asc())
        .limit(10)
        .all()
    )

    all_time = summarize_window(db, None, None, now)
    return {
        "today": summarize_window(db, today_start, today_end, now),
        "week": {
            "summary": summarize_window(db, week_start, today_end, now),
            "daily": list(daily.values()),
        },
        "month": {"summary": summarize_window(db, month_start, today_end, now)},
        "allTime": {
            "total": all_time["total"],
            "totalHosts": all_time["uniqueHosts"],
            "uniqueVisitors": all_time["uniqueVisitors"],
            "firstVisitor": all_time["firstCheckin"],
            "lastVisitor": all_time["lastCheckin"],
            "avgVisitDurationMinutes": all_time["avgVisitDurationMinutes"],
        },
        "topHosts": [
            {"hostEmail": host, "visitorCount": count, "activeCount": int(active or 0)}
            for host, count, active in top_hosts
        ],
        "timestamp": to_iso(now),
    }


def export_visitors(
    db: Session,
    tz_name: str,
    start_date: str | None = None,
    end_date: str | None = None,
    default_days: int = 7,
    now: datetime | None = None,
) -> list[VisitorRecord]:
    now = now or utcnow()
    query = db.query(VisitorRecord)
    if start_date:
        start, _ = day_bounds_utc(_parse_day(start_date, "startDate"), tz_name)
        query = query.filter(VisitorRecord.checkin_time >= start)
    if end_date:
        _, end = day_bounds_utc(_parse_day(end_date, "endDate"), tz_name)
        query = query.filter(VisitorRecord.checkin_time < end)
    if not start_date and not end_date:
        query = query.filter(VisitorRecord.checkin_time >= now - timedelta(days=default_days))
    return query.order_by(VisitorRecord.checkin_time.desc(), VisitorRecord.id.desc()).all()


def export_row(record: VisitorRecord, now: datetime) -> dict:
    return {
        "id": record.id,
        "visitor_name": record.visitor_name,
        "mobile": record.mobile,
        "host_employee": record.host_employee,
        "host_email": record.host_email,
        "purpose": record.purpose,
        "checkin_time": to_iso(record.checkin_time),
        "checkout_time": to_iso(record.checkout_time),
        "status": record.status,
        "created_by": record.created_by,
        "duration_minutes": duration_minutes(record.checkin_time, record.checkout_time or now),
    }


def render_csv(records: list[VisitorRecord], now: datetime | None = None) -> str:
    """CSV text with a UTF-8 byte-order mark so spreadsheet tools pick the encoding."""
    now = now or utcnow()
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        row = export_row(record, now)
        writer.writerow(
            [
                row["id"],
                row["visitor_name"],
                row["mobile"] or "",
                row["host_employee"] or "",
                row["host_email"],
                row["purpose"],
                row["checkin_time"],
                row["checkout_time"] or "",
                row["status"],
                row["created_by"] or "",
                row["duration_minutes"],
            ]
        )
    return "\ufeff" + buffer.getvalue()


def export_filename(
    start_date: str | None, end_date: str | None, default_days: int = 7, now: datetime | None = None
) -> str:
    now = now or utcnow()
    if start_date or end_date:
        window = f"{start_date or 'start'}-to-{end_date or 'today'}"
    else:
        window = f"last-{default_days}-days"
    return f"visitors-{window}-{now.date().isoformat()}.csv"

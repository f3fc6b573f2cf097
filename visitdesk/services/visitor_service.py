"""Visitor ledger: check-in, check-out and edits of visitor records.

The only status edge is checked_in -> checked_out. It is taken with a single
conditional UPDATE so concurrent check-outs of one visitor cannot both win.
"""

import base64
import binascii
import logging
import re
from datetime import datetime

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from visitdesk.core.exceptions import ConflictError, NotFoundError, StorageError, ValidationError
from visitdesk.core.timeutil import duration_minutes, to_iso, utcnow
from visitdesk.db.models import VisitorRecord, VisitorStatus
from visitdesk.services.audit_service import write_audit_event
from visitdesk.services.notification_service import NotificationDispatcher, Photo, VisitorSnapshot
from visitdesk.services.qr_service import build_qr_payload, new_pass_id, render_qr_png

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DATA_URL_RE = re.compile(r"^data:image/(?P<subtype>[\w.+-]+);base64,", re.IGNORECASE)

PUBLIC_KIOSK = "public_kiosk"

FIELD_LIMITS = {
    "visitor_name": 100,
    "host_employee": 100,
    "host_email": 100,
}
EDITABLE_FIELDS = ("visitor_name", "mobile", "host_employee", "host_email", "purpose")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_mobile(mobile: str | None, digits: int) -> str | None:
    mobile = _clean(mobile)
    if mobile is None:
        return None
    if len(mobile) != digits or not mobile.isascii() or not mobile.isdigit():
        raise ValidationError(f"Mobile number must be {digits} digits", code="INVALID_MOBILE")
    return mobile


def validate_email(host_email: str) -> str:
    if not EMAIL_RE.match(host_email):
        raise ValidationError("Invalid host email format", code="INVALID_EMAIL")
    return host_email


def _check_lengths(values: dict) -> None:
    for field, limit in FIELD_LIMITS.items():
        value = values.get(field)
        if value is not None and len(value) > limit:
            raise ValidationError(f"{field} must be at most {limit} characters", code="FIELD_TOO_LONG")


def decode_photo(photo_base64: str | None) -> Photo | None:
    raw = _clean(photo_base64)
    if raw is None:
        return None
    subtype = "jpeg"
    match = DATA_URL_RE.match(raw)
    if match:
        subtype = match.group("subtype").lower()
        if subtype == "jpg":
            subtype = "jpeg"
        raw = raw[match.end():]
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Photo must be base64 encoded image data", code="INVALID_PHOTO") from exc
    if not data:
        return None
    return Photo(data=data, subtype=subtype)


def snapshot(record: VisitorRecord) -> VisitorSnapshot:
    return VisitorSnapshot(
        id=record.id,
        pass_id=record.pass_id,
        visitor_name=record.visitor_name,
        mobile=record.mobile,
        host_employee=record.host_employee,
        host_email=record.host_email,
        purpose=record.purpose,
        checkin_time=record.checkin_time,
        checkout_time=record.checkout_time,
        status=record.status,
    )


def serialize_visitor(
    record: VisitorRecord,
    include_photo: bool = False,
    include_qr: bool = False,
    now: datetime | None = None,
) -> dict:
    data = {
        "id": record.id,
        "pass_id": record.pass_id,
        "visitor_name": record.visitor_name,
        "mobile": record.mobile,
        "host_employee": record.host_employee,
        "host_email": record.host_email,
        "purpose": record.purpose,
        "checkin_time": to_iso(record.checkin_time),
        "checkout_time": to_iso(record.checkout_time),
        "status": record.status,
        "created_by": record.created_by,
    }
    if include_qr:
        data["qr_code_data"] = record.qr_code_data
        data["duration_minutes"] = duration_minutes(record.checkin_time, record.checkout_time or now or utcnow())
    if include_photo:
        data["photo_base64"] = record.photo_base64
    return data


def _audit_view(record: VisitorRecord) -> dict:
    return {field: getattr(record, field) for field in EDITABLE_FIELDS}


def create_visitor(
    db: Session,
    visitor_name: str | None,
    host_email: str | None,
    purpose: str | None,
    mobile: str | None = None,
    host_employee: str | None = None,
    photo_base64: str | None = None,
    created_by: str = PUBLIC_KIOSK,
    operator_id: int | None = None,
    mobile_digits: int = 10,
    notifier: NotificationDispatcher | None = None,
    audit: bool = True,
    ip_address: str = "",
    user_agent: str = "",
) -> tuple[VisitorRecord, bytes]:
    """Insert a checked-in visitor and queue the host alert.

    Returns the stored row and the rendered QR pass PNG.
    """
    visitor_name = _clean(visitor_name)
    host_email = _clean(host_email)
    purpose = _clean(purpose)
    if not visitor_name or not host_email or not purpose:
        raise ValidationError(
            "Missing required fields: visitor_name, host_email, and purpose are required",
            code="MISSING_FIELDS",
        )
    validate_email(host_email)
    mobile = validate_mobile(mobile, mobile_digits)
    host_employee = _clean(host_employee)
    _check_lengths({"visitor_name": visitor_name, "host_employee": host_employee, "host_email": host_email})
    photo = decode_photo(photo_base64)

    checkin_time = utcnow()
    pass_id = new_pass_id()
    qr_payload = build_qr_payload(
        pass_id=pass_id,
        name=visitor_name,
        mobile=mobile,
        host=host_employee,
        purpose=purpose,
        checkin_time=checkin_time,
        status=VisitorStatus.checked_in.value,
    )
    qr_png = render_qr_png(qr_payload)

    record = VisitorRecord(
        pass_id=pass_id,
        visitor_name=visitor_name,
        mobile=mobile,
        host_employee=host_employee,
        host_email=host_email,
        purpose=purpose,
        photo_base64=_clean(photo_base64) if photo else None,
        qr_code_data=qr_payload,
        checkin_time=checkin_time,
        checkout_time=None,
        status=VisitorStatus.checked_in.value,
        created_by=created_by,
        created_at=checkin_time,
    )
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except (OperationalError, InterfaceError):
        # Lost connection: the storage-unavailable handler answers 503.
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("visitor insert failed for host %s", host_email)
        raise StorageError("Failed to create visitor", code="VISITOR_CREATION_ERROR") from exc

    logger.info("visitor %s checked in (pass %s) by %s", record.id, pass_id, created_by)

    if audit:
        write_audit_event(
            db,
            operator_id=operator_id,
            action="CREATE_VISITOR",
            table_name="visitor_records",
            record_id=record.id,
            new_data={**_audit_view(record), "status": record.status, "pass_id": pass_id},
            ip_address=ip_address,
            user_agent=user_agent,
        )

    if notifier is not None:
        try:
            notifier.notify_check_in(snapshot(record), qr_png, photo)
        except Exception:
            logger.exception("could not queue check-in notification for visitor %s", record.id)

    return record, qr_png


def get_visitor(db: Session, visitor_id: int) -> VisitorRecord:
    record = db.get(VisitorRecord, visitor_id)
    if record is None:
        raise NotFoundError("Visitor not found", code="VISITOR_NOT_FOUND")
    return record


def check_out(
    db: Session,
    visitor_id: int,
    operator_id: int | None = None,
    operator_name: str | None = None,
    notifier: NotificationDispatcher | None = None,
    audit: bool = True,
    ip_address: str = "",
    user_agent: str = "",
) -> VisitorRecord:
    now = utcnow()
    try:
        updated = (
            db.query(VisitorRecord)
            .filter(
                VisitorRecord.id == visitor_id,
                VisitorRecord.status == VisitorStatus.checked_in.value,
            )
            .update(
                {
                    VisitorRecord.status: VisitorStatus.checked_out.value,
                    VisitorRecord.checkout_time: now,
                    VisitorRecord.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except (OperationalError, InterfaceError):
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("checkout update failed for visitor %s", visitor_id)
        raise StorageError("Failed to check out visitor", code="CHECKOUT_ERROR") from exc

    if updated == 0:
        db.expire_all()
        existing = db.get(VisitorRecord, visitor_id)
        if existing is None:
            raise NotFoundError("Visitor not found", code="VISITOR_NOT_FOUND")
        raise ConflictError("Visitor already checked out", code="ALREADY_CHECKED_OUT")

    db.expire_all()
    record = get_visitor(db, visitor_id)
    logger.info("visitor %s checked out by %s", visitor_id, operator_name or "-")

    if audit:
        write_audit_event(
            db,
            operator_id=operator_id,
            action="CHECKOUT_VISITOR",
            table_name="visitor_records",
            record_id=visitor_id,
            old_data={"status": VisitorStatus.checked_in.value},
            new_data={"status": record.status, "checkout_time": to_iso(record.checkout_time)},
            ip_address=ip_address,
            user_agent=user_agent,
        )

    if notifier is not None:
        try:
            notifier.notify_check_out(snapshot(record))
        except Exception:
            logger.exception("could not queue check-out notification for visitor %s", visitor_id)

    return record


def update_visitor(
    db: Session,
    visitor_id: int,
    changes: dict,
    operator_id: int | None = None,
    mobile_digits: int = 10,
    audit: bool = True,
    ip_address: str = "",
    user_agent: str = "",
) -> VisitorRecord:
    """Edit descriptive fields. Status, timestamps and the QR payload never change here."""
    record = get_visitor(db, visitor_id)
    before = _audit_view(record)

    updates: dict = {}
    for field in EDITABLE_FIELDS:
        if field not in changes or changes[field] is None:
            continue
        value = _clean(changes[field])
        if field in ("visitor_name", "host_email", "purpose") and not value:
            raise ValidationError(f"{field} cannot be empty", code="MISSING_FIELDS")
        updates[field] = value
    if "host_email" in updates:
        validate_email(updates["host_email"])
    if "mobile" in updates:
        updates["mobile"] = validate_mobile(updates["mobile"], mobile_digits)
    _check_lengths(updates)

    if not updates:
        return record

    for field, value in updates.items():
        setattr(record, field, value)
    record.updated_at = utcnow()
    try:
        db.commit()
        db.refresh(record)
    except (OperationalError, InterfaceError):
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("visitor update failed for %s", visitor_id)
        raise StorageError("Failed to update visitor", code="UPDATE_VISITOR_ERROR") from exc

    if audit:
        write_audit_event(
            db,
            operator_id=operator_id,
            action="UPDATE_VISITOR",
            table_name="visitor_records",
            record_id=visitor_id,
            old_data=before,
            new_data=_audit_view(record),
            ip_address=ip_address,
            user_agent=user_agent,
        )
    return record


def get_photo(db: Session, visitor_id: int) -> Photo:
    record = get_visitor(db, visitor_id)
    photo = decode_photo(record.photo_base64) if record.photo_base64 else None
    if photo is None:
        raise NotFoundError("Visitor photo not found", code="PHOTO_NOT_FOUND")
    return photo

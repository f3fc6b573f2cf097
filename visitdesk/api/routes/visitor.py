import logging
from time import perf_counter

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from visitdesk.api.deps import (
    client_meta,
    get_app_settings,
    get_checkin_operator,
    get_current_operator,
    get_notifier,
    parse_visitor_id,
    require_roles,
)
from visitdesk.core.config import Settings
from visitdesk.core.timeutil import to_iso
from visitdesk.db.models import OperatorRole
from visitdesk.db.session import get_db
from visitdesk.schemas.visitor import CheckoutResponse, VisitorCreate, VisitorUpdate
from visitdesk.services import query_service, visitor_service
from visitdesk.services.auth_service import Principal
from visitdesk.services.notification_service import NotificationDispatcher
from visitdesk.services.qr_service import to_data_url

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("")
def create_visitor(
    payload: VisitorCreate,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    notifier: NotificationDispatcher = Depends(get_notifier),
    principal: Principal | None = Depends(get_checkin_operator),
):
    started = perf_counter()
    record, qr_png = visitor_service.create_visitor(
        db=db,
        visitor_name=payload.visitor_name,
        mobile=payload.mobile,
        host_employee=payload.host_employee,
        host_email=payload.host_email,
        purpose=payload.purpose,
        photo_base64=payload.photo_base64,
        created_by=principal.username if principal else visitor_service.PUBLIC_KIOSK,
        operator_id=principal.id if principal else None,
        mobile_digits=settings.MOBILE_DIGITS,
        notifier=notifier,
        audit=settings.AUDIT_LOG_ENABLED,
        **client_meta(request),
    )
    logger.info("visitor.create completed in %.1fms id=%s", (perf_counter() - started) * 1000, record.id)
    return {
        "success": True,
        "id": record.id,
        "qrCode": to_data_url(qr_png),
        "message": "Visitor checked-in successfully!",
        "visitor": {
            "id": record.id,
            "visitorId": record.pass_id,
            "name": record.visitor_name,
            "host": record.host_employee,
            "hostEmail": record.host_email,
            "purpose": record.purpose,
            "checkinTime": to_iso(record.checkin_time),
            "status": record.status,
        },
    }


@router.get("")
def list_visitors(
    date: str | None = None,
    status: str | None = None,
    host_email: str | None = None,
    host_employee: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 50,
    sortBy: str | None = None,
    sortOrder: str | None = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    principal: Principal = Depends(get_current_operator),
):
    created_by = None
    if settings.SCOPE_RECEPTION_TO_OWN_VISITORS and principal.role == OperatorRole.reception.value:
        created_by = principal.username
    result = query_service.list_visitors(
        db,
        tz_name=settings.DISPLAY_TIMEZONE,
        date_filter=date,
        status=status,
        host_email=host_email,
        host_employee=host_employee,
        search=search,
        created_by=created_by,
        page=page,
        limit=limit,
        max_limit=settings.LIST_MAX_LIMIT,
        sort_by=sortBy,
        sort_order=sortOrder,
    )
    return {
        "visitors": [visitor_service.serialize_visitor(row) for row in result["rows"]],
        "pagination": result["pagination"],
        "filters": result["filters"],
    }


@router.get("/{visitor_id}")
def get_visitor(
    visitor_id: str,
    includePhoto: bool = False,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_operator),
):
    record = visitor_service.get_visitor(db, parse_visitor_id(visitor_id))
    return visitor_service.serialize_visitor(record, include_photo=includePhoto, include_qr=True)


@router.get("/{visitor_id}/photo")
def get_visitor_photo(
    visitor_id: str,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_operator),
):
    photo = visitor_service.get_photo(db, parse_visitor_id(visitor_id))
    return Response(
        content=photo.data,
        media_type=f"image/{photo.subtype}",
        headers={"Cache-Control": "private, max-age=3600"},
    )


@router.put("/{visitor_id}/checkout", response_model=CheckoutResponse)
def checkout_visitor(
    visitor_id: str,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    notifier: NotificationDispatcher = Depends(get_notifier),
    principal: Principal = Depends(get_current_operator),
):
    record = visitor_service.check_out(
        db,
        parse_visitor_id(visitor_id),
        operator_id=principal.id,
        operator_name=principal.username,
        notifier=notifier,
        audit=settings.AUDIT_LOG_ENABLED,
        **client_meta(request),
    )
    return {
        "success": True,
        "message": "Visitor checked out successfully",
        "checkoutTime": to_iso(record.checkout_time),
        "visitor": {"id": record.id, "name": record.visitor_name, "host": record.host_employee},
    }


@router.put("/{visitor_id}")
def update_visitor(
    visitor_id: str,
    payload: VisitorUpdate,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    principal: Principal = Depends(require_roles(OperatorRole.admin.value, OperatorRole.reception.value)),
):
    record = visitor_service.update_visitor(
        db,
        parse_visitor_id(visitor_id),
        payload.model_dump(exclude_unset=True),
        operator_id=principal.id,
        mobile_digits=settings.MOBILE_DIGITS,
        audit=settings.AUDIT_LOG_ENABLED,
        **client_meta(request),
    )
    return {
        "success": True,
        "message": "Visitor updated successfully",
        "visitor": visitor_service.serialize_visitor(record),
    }

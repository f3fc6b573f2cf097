import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from visitdesk.core.config import Settings
from visitdesk.core.exceptions import AuthenticationError, AuthorizationError, ValidationError
from visitdesk.core.security import TokenExpired, decode_token
from visitdesk.db.models import Operator
from visitdesk.db.session import get_db
from visitdesk.services.auth_service import Principal, principal_for
from visitdesk.services.notification_service import NotificationDispatcher

bearer_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def client_address(request: Request) -> str:
    """Peer address as seen by the ASGI server.

    uvicorn rewrites it from X-Forwarded-For only for proxies listed in
    FORWARDED_ALLOW_IPS, so callers cannot choose it with a header.
    """
    return request.client.host if request.client else "unknown"


def client_meta(request: Request) -> dict:
    ip_address = client_address(request)
    return {"ip_address": ip_address, "user_agent": request.headers.get("user-agent", "")}


def _principal_from_token(token: str, db: Session, settings: Settings) -> Principal:
    try:
        payload = decode_token(token, settings)
    except TokenExpired:
        raise AuthenticationError("Token expired", code="TOKEN_EXPIRED")
    except ValueError:
        raise AuthenticationError("Invalid token", status_code=403, code="INVALID_TOKEN")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type", status_code=403, code="INVALID_TOKEN")

    try:
        operator_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token", status_code=403, code="INVALID_TOKEN")

    operator = db.get(Operator, operator_id)
    if operator is None:
        raise AuthenticationError("Operator not found", code="INVALID_TOKEN")
    if not operator.is_active:
        raise AuthorizationError("Account is disabled", code="ACCOUNT_DISABLED")
    return principal_for(operator)


def get_current_operator(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Principal:
    if not credentials:
        raise AuthenticationError("Access denied - No token provided", code="NO_TOKEN")
    return _principal_from_token(credentials.credentials, db, settings)


def get_checkin_operator(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Principal | None:
    """Kiosk mode accepts anonymous check-ins; otherwise a valid token is required."""
    if not settings.PUBLIC_CHECKIN:
        return get_current_operator(credentials, db, settings)
    if not credentials:
        return None
    try:
        return _principal_from_token(credentials.credentials, db, settings)
    except (AuthenticationError, AuthorizationError) as exc:
        logger.debug("ignoring unusable token on public endpoint: %s", exc.code)
        return None


def require_roles(*roles: str):
    def dependency(principal: Principal = Depends(get_current_operator)) -> Principal:
        if principal.role not in roles:
            raise AuthorizationError(
                "Insufficient permissions",
                code="INSUFFICIENT_PERMISSIONS",
                requiredRoles=list(roles),
            )
        return principal

    return dependency


def parse_visitor_id(raw: str) -> int:
    try:
        visitor_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid visitor ID", code="INVALID_ID")
    if visitor_id <= 0:
        raise ValidationError("Invalid visitor ID", code="INVALID_ID")
    return visitor_id

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from visitdesk.api.deps import client_meta, get_app_settings
from visitdesk.core.config import Settings
from visitdesk.db.session import get_db
from visitdesk.schemas.auth import AuthResponse, LoginRequest
from visitdesk.services import auth_service

router = APIRouter()


@router.post("/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return auth_service.login(
        db=db,
        username=payload.username,
        password=payload.password,
        audit=settings.AUDIT_LOG_ENABLED,
        settings=settings,
        **client_meta(request),
    )

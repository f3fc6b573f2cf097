import time

from fastapi import APIRouter, Request
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from visitdesk.core.timeutil import to_iso, utcnow
from visitdesk.db.models import Operator, VisitorRecord

router = APIRouter()


@router.get("/health")
def health(request: Request):
    state = request.app.state
    status = "OK"

    database: dict = {"status": "disconnected"}
    if state.store.ping():
        db = state.store.session()
        try:
            database = {
                "status": "healthy",
                "totalVisitors": db.query(func.count(VisitorRecord.id)).scalar() or 0,
                "totalOperators": db.query(func.count(Operator.id)).scalar() or 0,
            }
        except SQLAlchemyError as exc:
            database = {"status": "unhealthy", "error": str(exc.__class__.__name__)}
        finally:
            db.close()
    if database["status"] != "healthy":
        status = "DEGRADED"

    if not state.settings.mail_configured:
        email = "not_configured"
    else:
        email = "healthy" if state.mailer.verify() else "unhealthy"
    if email == "unhealthy":
        status = "DEGRADED"

    return {
        "status": status,
        "timestamp": to_iso(utcnow()),
        "uptime": round(time.monotonic() - state.started_at, 3),
        "database": database,
        "services": {
            "email": email,
            "notificationQueue": state.notifier.pending(),
        },
        "environment": state.settings.ENVIRONMENT,
    }

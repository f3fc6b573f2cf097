import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from visitdesk.api.routes import api_router
from visitdesk.core.config import Settings, get_settings
from visitdesk.core.exceptions import register_exception_handlers
from visitdesk.core.logging import setup_logging
from visitdesk.db.base import Base
from visitdesk.db.session import Store
from visitdesk.middleware.limits import BodySizeLimitMiddleware, FixedWindowRateLimiter, RateLimitMiddleware
from visitdesk.middleware.request_context import RequestContextMiddleware
from visitdesk.services.auth_service import ensure_bootstrap_admin
from visitdesk.services.mail_service import SmtpMailer
from visitdesk.services.notification_service import Mailer, NotificationDispatcher

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    mailer: Mailer | None = None,
    store: Store | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(logging.DEBUG if settings.DEBUG else logging.INFO)

    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
    app.state.settings = settings
    app.state.store = store or Store.from_settings(settings)
    app.state.mailer = mailer or SmtpMailer(settings)
    app.state.notifier = NotificationDispatcher(
        app.state.mailer,
        workers=settings.MAIL_WORKERS,
        max_queue=settings.MAIL_QUEUE_SIZE,
        display_timezone=settings.DISPLAY_TIMEZONE,
        company=settings.SMTP_FROM_NAME,
        send_checkout_emails=settings.SEND_CHECKOUT_EMAILS,
    )
    app.state.started_at = time.monotonic()

    app.include_router(api_router, prefix=settings.API_PREFIX)

    # Last added runs first: request context wraps everything.
    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=FixedWindowRateLimiter(settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS),
            exempt_paths=(f"{settings.API_PREFIX}/health",),
        )
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.MAX_BODY_SIZE_MB * 1024 * 1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app, debug_details=settings.is_development)

    @app.on_event("startup")
    def on_startup():
        state = app.state
        state.store.connect_with_retry(
            max_attempts=settings.DB_CONNECT_MAX_RETRIES,
            initial_delay=settings.DB_CONNECT_INITIAL_DELAY,
            factor=settings.DB_CONNECT_BACKOFF_FACTOR,
            max_delay=settings.DB_CONNECT_MAX_DELAY,
        )
        if settings.DB_AUTO_CREATE:
            Base.metadata.create_all(bind=state.store.engine)
        db = state.store.session()
        try:
            ensure_bootstrap_admin(db, settings)
        finally:
            db.close()

        if not settings.mail_configured:
            logger.warning("SMTP is not configured; host notifications will fail and be logged")
        elif not state.mailer.verify():
            logger.warning("mail transport verification failed; notifications may not be delivered")
        state.notifier.start()
        logger.info(
            "%s started (environment=%s, public check-in=%s)",
            settings.APP_NAME,
            settings.ENVIRONMENT,
            settings.PUBLIC_CHECKIN,
        )

    @app.on_event("shutdown")
    def on_shutdown():
        state = app.state
        state.notifier.stop(timeout=settings.SMTP_TIMEOUT + 5)
        state.store.dispose()
        state.mailer.close()
        logger.info("%s shut down", settings.APP_NAME)

    return app


app = create_app()

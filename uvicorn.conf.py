import uvicorn

from visitdesk.core.config import get_settings

settings = get_settings()

app = "visitdesk.main:app"
host = settings.BACKEND_HOST
port = settings.BACKEND_PORT
log_level = "debug" if settings.DEBUG else "info"
# Rate limits and the mail queue are per process.
workers = 1 if settings.DEBUG or settings.is_sqlite else 2
proxy_headers = True
forwarded_allow_ips = settings.FORWARDED_ALLOW_IPS


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=log_level,
        workers=workers,
        proxy_headers=proxy_headers,
        forwarded_allow_ips=forwarded_allow_ips,
        reload=settings.DEBUG,
    )

import math
import threading
import time
from typing import Callable

from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from visitdesk.api.deps import client_address
from visitdesk.core.exceptions import PayloadTooLarge, RateLimitExceeded, error_response


class FixedWindowRateLimiter:
    """Per-key request counter over fixed windows, shared by every request."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}
        self._last_sweep = clock()

    def hit(self, key: str) -> tuple[bool, int]:
        """Count one request. Returns (allowed, retry_after_seconds)."""
        now = self.clock()
        with self._lock:
            if now - self._last_sweep > self.window_seconds:
                self._sweep(now)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
        if count > self.max_requests:
            return False, max(math.ceil(started + self.window_seconds - now), 1)
        return True, 0

    def _sweep(self, now: float) -> None:
        expired = [key for key, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: FixedWindowRateLimiter, exempt_paths: tuple[str, ...] = ()):
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = exempt_paths

    async def dispatch(self, request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)
        allowed, retry_after = self.limiter.hit(client_address(request))
        if not allowed:
            response = error_response(RateLimitExceeded("Too many requests", retryAfter=retry_after))
            response.headers["Retry-After"] = str(retry_after)
            return response
        return await call_next(request)


class BodySizeLimitMiddleware:
    """Rejects bodies over max_bytes with 413.

    A declared Content-Length is checked up front. Bodies sent without one
    (chunked uploads) are read into memory up to the limit before the
    application sees them.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = Headers(scope=scope).get("content-length")
        if declared is not None:
            if declared.isdigit() and int(declared) > self.max_bytes:
                await self._reject(scope, receive, send)
                return
            # The server enforces the declared framing.
            await self.app(scope, receive, send)
            return

        buffered: list[Message] = []
        received = 0
        while True:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_bytes:
                await self._reject(scope, receive, send)
                return
            if not message.get("more_body", False):
                break

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = error_response(PayloadTooLarge(f"Request body exceeds {self.max_bytes} bytes"))
        await response(scope, receive, send)

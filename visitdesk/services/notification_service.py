import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Callable, Protocol

from visitdesk.core.timeutil import format_display_time, format_duration
from visitdesk.services.email_templates import PHOTO_CID, QR_CID, render_checkin_email, render_checkout_email

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, msg: EmailMessage) -> None: ...

    def verify(self) -> bool: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class VisitorSnapshot:
    """Read-only copy of a visitor row handed to the workers."""

    id: int
    pass_id: str
    visitor_name: str
    mobile: str | None
    host_employee: str | None
    host_email: str
    purpose: str
    checkin_time: datetime
    checkout_time: datetime | None
    status: str


@dataclass(frozen=True)
class Photo:
    data: bytes
    subtype: str = "jpeg"


@dataclass
class _Job:
    label: str
    run: Callable[[], None]


class NotificationDispatcher:
    """Bounded queue of mail jobs drained by a fixed pool of worker threads."""

    def __init__(
        self,
        mailer: Mailer,
        workers: int = 2,
        max_queue: int = 100,
        display_timezone: str = "UTC",
        company: str = "Visitor Management System",
        send_checkout_emails: bool = False,
    ):
        self.mailer = mailer
        self.workers = max(workers, 1)
        self.max_queue = max(max_queue, 1)
        self.display_timezone = display_timezone
        self.company = company
        self.send_checkout_emails = send_checkout_emails
        self._jobs: deque[_Job] = deque()
        self._cond = threading.Condition()
        self._threads: list[threading.Thread] = []
        self._running = 0
        self._stopping = False
        self.dropped = 0
        self.failed = 0
        self.sent = 0

    def start(self) -> None:
        with self._cond:
            if self._threads:
                return
            self._stopping = False
            for index in range(self.workers):
                thread = threading.Thread(target=self._worker, name=f"notify-{index}", daemon=True)
                self._threads.append(thread)
                thread.start()
        logger.info("notification dispatcher started with %d workers", self.workers)

    def submit(self, label: str, run: Callable[[], None]) -> bool:
        with self._cond:
            if self._stopping:
                logger.warning("notification %s dropped: dispatcher is stopping", label)
                return False
            if len(self._jobs) >= self.max_queue:
                oldest = self._jobs.popleft()
                self.dropped += 1
                logger.warning("notification queue full, dropped oldest job %s", oldest.label)
            self._jobs.append(_Job(label=label, run=run))
            self._cond.notify()
        return True

    def pending(self) -> int:
        with self._cond:
            return len(self._jobs) + self._running

    def drain(self, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: not self._jobs and self._running == 0, timeout=timeout)

    def stop(self, timeout: float = 10.0) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join(timeout)
        if self._jobs:
            logger.warning("notification dispatcher stopped with %d unsent jobs", len(self._jobs))
        logger.info("notification dispatcher stopped")

    def _worker(self) -> None:
        while True:
            with self._cond:
                while not self._jobs and not self._stopping:
                    self._cond.wait()
                if not self._jobs:
                    return
                job = self._jobs.popleft()
                self._running += 1
            try:
                job.run()
                self.sent += 1
                logger.info("notification %s sent", job.label)
            except Exception:
                self.failed += 1
                logger.exception("notification %s failed", job.label)
            finally:
                with self._cond:
                    self._running -= 1
                    self._cond.notify_all()

    def notify_check_in(self, visitor: VisitorSnapshot, qr_png: bytes, photo: Photo | None = None) -> bool:
        def run():
            self.mailer.send(self.build_check_in_message(visitor, qr_png, photo))

        return self.submit(f"check-in:{visitor.id}", run)

    def notify_check_out(self, visitor: VisitorSnapshot) -> bool:
        if not self.send_checkout_emails:
            return False

        def run():
            self.mailer.send(self.build_check_out_message(visitor))

        return self.submit(f"check-out:{visitor.id}", run)

    def build_check_in_message(
        self, visitor: VisitorSnapshot, qr_png: bytes, photo: Photo | None = None
    ) -> EmailMessage:
        data = {
            "visitor_name": visitor.visitor_name,
            "mobile": visitor.mobile,
            "host_employee": visitor.host_employee,
            "purpose": visitor.purpose,
            "pass_id": visitor.pass_id,
            "checkin_display": format_display_time(visitor.checkin_time, self.display_timezone)["fullDateTime"],
        }
        subject, text, html = render_checkin_email(data, has_photo=photo is not None, company=self.company)
        msg = EmailMessage()
        msg["To"] = visitor.host_email
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        html_part = msg.get_payload()[1]
        html_part.add_related(
            qr_png,
            maintype="image",
            subtype="png",
            cid=f"<{QR_CID}>",
            filename=f"visitor-qr-{visitor.id}.png",
        )
        if photo is not None:
            html_part.add_related(
                photo.data,
                maintype="image",
                subtype=photo.subtype,
                cid=f"<{PHOTO_CID}>",
                filename=f"visitor-{visitor.id}.{'jpg' if photo.subtype == 'jpeg' else photo.subtype}",
            )
        return msg

    def build_check_out_message(self, visitor: VisitorSnapshot) -> EmailMessage:
        checkout_time = visitor.checkout_time
        data = {
            "visitor_name": visitor.visitor_name,
            "host_employee": visitor.host_employee,
            "checkin_display": format_display_time(visitor.checkin_time, self.display_timezone)["fullDateTime"],
            "checkout_display": format_display_time(checkout_time, self.display_timezone)["fullDateTime"],
            "duration": format_duration(visitor.checkin_time, checkout_time),
        }
        subject, text, html = render_checkout_email(data, company=self.company)
        msg = EmailMessage()
        msg["To"] = visitor.host_email
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

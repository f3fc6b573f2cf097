import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from visitdesk.core.config import Settings
from visitdesk.core.exceptions import NotificationError

logger = logging.getLogger(__name__)


class SmtpMailer:
    """Outbound SMTP channel. One connection per message."""

    def __init__(self, settings: Settings):
        self.host = settings.SMTP_HOST.strip()
        self.port = settings.SMTP_PORT
        self.username = settings.SMTP_USERNAME
        self.password = settings.SMTP_PASSWORD
        self.security = settings.SMTP_SECURITY.lower()
        self.timeout = settings.SMTP_TIMEOUT
        self.from_email = settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME
        self.from_name = settings.SMTP_FROM_NAME

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_email)

    @property
    def sender(self) -> str:
        return formataddr((self.from_name, self.from_email))

    def _connect(self) -> smtplib.SMTP:
        if self.security == "ssl":
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            if self.security == "starttls":
                server.starttls()
        if self.username and self.password:
            server.login(self.username, self.password)
        return server

    def send(self, msg: EmailMessage) -> None:
        if not self.configured:
            raise NotificationError("Email not configured")
        if not msg.get("From"):
            msg["From"] = self.sender
        try:
            with self._connect() as server:
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"SMTP send to {msg.get('To')} failed: {exc}") from exc

    def verify(self) -> bool:
        if not self.configured:
            return False
        try:
            with self._connect() as server:
                server.noop()
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("mail transport verification failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        # Connections are per message; nothing is held open.
        logger.debug("mail transport closed")

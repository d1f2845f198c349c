"""
Mail provider capability.

SmtpMailProvider talks to an SMTP relay (Gmail by default). When no
credentials are configured the app is wired with DisabledMailProvider,
which refuses every send so the dispatcher can report the service as
unavailable.
"""
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Optional, Protocol


class MailUnavailableError(Exception):
    """Raised by a mail provider that cannot deliver at all."""


@dataclass(frozen=True)
class MailMessage:
    from_address: str
    to: str
    subject: str
    html: str
    reply_to: Optional[str] = None


class MailProvider(Protocol):
    def send(self, message: MailMessage) -> str:
        """Send message and return its Message-ID."""
        ...


class SmtpMailProvider:
    """Email delivery over SMTP (blocking; call from a worker thread)."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build(self, message: MailMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = message.from_address
        msg["To"] = message.to
        if message.reply_to:
            msg["Reply-To"] = message.reply_to
        domain = self.username.split("@", 1)[-1] if self.username and "@" in self.username else None
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(message.html, subtype="html")
        return msg

    def send(self, message: MailMessage) -> str:
        msg = self._build(message)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)
        return msg["Message-ID"]


class DisabledMailProvider:
    """Degraded mode: no mail transport configured."""

    def send(self, message: MailMessage) -> str:
        raise MailUnavailableError("Email service not configured")


def sender_address(display_name: str, user: Optional[str]) -> str:
    """Format the From header, e.g. 'Inbox Cleaner Pro <me@gmail.com>'."""
    return formataddr((display_name, user or "no-reply@localhost"))

"""
Outbound notifications for the leave workflow.

``NotificationPort`` is the contract the workflow depends on. ``send`` never raises:
delivery failures are logged and reported as ``False`` so a committed transition is
never rolled back by a mail outage. Concrete adapters implement ``_deliver``.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import settings

logger = logging.getLogger(__name__)

_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_template(name: str, **context: Any) -> str:
    return _env.get_template(name).render(**context)


class NotificationPort(ABC):
    async def send(self, to_address: str, subject: str, body: str, is_html: bool = False) -> bool:
        return await self._safe_deliver([to_address], subject, body, is_html, bcc=False)

    async def send_bulk(self, to_addresses: Iterable[str], subject: str, body: str) -> bool:
        """One message to many recipients, addressed by BCC for privacy."""
        recipients = [a for a in to_addresses if a]
        if not recipients:
            return True
        return await self._safe_deliver(recipients, subject, body, False, bcc=True)

    async def _safe_deliver(
        self,
        recipients: List[str],
        subject: str,
        body: str,
        is_html: bool,
        bcc: bool,
    ) -> bool:
        try:
            await self._deliver(recipients, subject, body, is_html, bcc)
        except Exception:
            logger.exception("Notification delivery failed: subject=%r recipients=%d", subject, len(recipients))
            return False
        return True

    @abstractmethod
    async def _deliver(
        self,
        recipients: List[str],
        subject: str,
        body: str,
        is_html: bool,
        bcc: bool,
    ) -> None:
        ...


class SmtpNotificationPort(NotificationPort):
    """SMTP adapter. The blocking smtplib call runs in the default executor."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_email: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or username

    def _build_message(self, recipients: List[str], subject: str, body: str, is_html: bool, bcc: bool) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email or ""
        if not bcc:
            msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "html" if is_html else "plain", "utf-8"))
        return msg

    def _send_sync(self, recipients: List[str], subject: str, body: str, is_html: bool, bcc: bool) -> None:
        msg = self._build_message(recipients, subject, body, is_html, bcc)
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg, to_addrs=recipients)

    async def _deliver(self, recipients: List[str], subject: str, body: str, is_html: bool, bcc: bool) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_sync, recipients, subject, body, is_html, bcc)
        logger.info("Email sent: subject=%r recipients=%d", subject, len(recipients))


class LoggingNotificationPort(NotificationPort):
    """Used when no SMTP host is configured (local development)."""

    async def _deliver(self, recipients: List[str], subject: str, body: str, is_html: bool, bcc: bool) -> None:
        logger.info("Email (not sent, SMTP not configured): to=%s subject=%r", recipients, subject)


_notifier: Optional[NotificationPort] = None


def get_notifier() -> NotificationPort:
    global _notifier
    if _notifier is None:
        if settings.smtp_host:
            _notifier = SmtpNotificationPort(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                from_email=settings.mail_from,
            )
        else:
            _notifier = LoggingNotificationPort()
    return _notifier


# ----- Leave workflow messages -----


def parent_approval_link(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/parent-response/{token}"


async def notify_parent_approval_request(
    notifier: NotificationPort,
    parent_email: str,
    student_name: str,
    reason: str,
    from_date: str,
    to_date: str,
    approval_link: str,
) -> bool:
    body = render_template(
        "parent_approval_request.html",
        student_name=student_name,
        reason=reason,
        from_date=from_date,
        to_date=to_date,
        approval_link=approval_link,
    )
    return await notifier.send(parent_email, f"Action Required: Leave Request for {student_name}", body, is_html=True)


async def notify_student_leave_status(
    notifier: NotificationPort,
    student_email: str,
    status_label: str,
    comments: Optional[str] = None,
) -> bool:
    body = render_template(
        "student_leave_status.html",
        status=status_label,
        approved=status_label == "APPROVED",
        comments=comments,
    )
    return await notifier.send(student_email, f"Leave Request {status_label}", body, is_html=True)


async def notify_student_approval_otp(
    notifier: NotificationPort,
    student_email: str,
    mentor_name: str,
    code: str,
    context: Dict[str, Any],
) -> bool:
    body = render_template("approval_otp.html", mentor_name=mentor_name, code=code, **context)
    return await notifier.send(student_email, "Leave approval code", body, is_html=True)

"""Outbound email for sign-in codes and invitations."""

from __future__ import annotations

import asyncio
import html
import smtplib
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import structlog

logger = structlog.get_logger(__name__)


class Notifier(ABC):
    """Abstract base for notification channels."""

    @abstractmethod
    async def send_otp_email(self, to: str, code: str) -> None:
        """Deliver a sign-in code."""

    @abstractmethod
    async def send_invitation_email(
        self, to: str, inviter_name: str, tenant_name: str, link: str
    ) -> None:
        """Deliver a workspace invitation."""


@dataclass(frozen=True, slots=True)
class SentMessage:
    to: str
    subject: str
    body: str


class LogNotifier(Notifier):
    """Development notifier: logs that a message was sent.

    The most recent ``max_messages`` are kept in ``outbox`` so tests and local
    tooling can read codes back; ``max_messages=0`` keeps nothing.
    """

    def __init__(self, max_messages: int = 100) -> None:
        self.outbox: deque[SentMessage] = deque(maxlen=max_messages)

    async def send_otp_email(self, to: str, code: str) -> None:
        self.outbox.append(SentMessage(to=to, subject="Your sign-in code", body=code))
        logger.info("otp_email_queued", to=to)

    async def send_invitation_email(
        self, to: str, inviter_name: str, tenant_name: str, link: str
    ) -> None:
        self.outbox.append(
            SentMessage(
                to=to,
                subject=f"{inviter_name} invited you to {tenant_name}",
                body=link,
            )
        )
        logger.info("invitation_email_queued", to=to, tenant=tenant_name)

    def last_code_for(self, to: str) -> str | None:
        for message in reversed(self.outbox):
            if message.to == to and message.subject == "Your sign-in code":
                return message.body
        return None


@dataclass
class SmtpConfig:
    host: str
    port: int = 587
    username: str | None = None
    password: str | None = None
    from_email: str = "no-reply@localhost"
    use_tls: bool = True
    timeout_seconds: float = 10.0


class SmtpNotifier(Notifier):
    """Delivers email over SMTP.

    ``smtplib`` is blocking, so each send runs in a worker thread with the
    socket timeout from the config.
    """

    def __init__(self, config: SmtpConfig) -> None:
        self._config = config

    async def send_otp_email(self, to: str, code: str) -> None:
        text = (
            f"Your sign-in code is {code}\n\n"
            "It expires in 10 minutes. If you did not request it, ignore this email."
        )
        body_html = (
            f"<p>Your sign-in code is <strong>{html.escape(code)}</strong></p>"
            "<p>It expires in 10 minutes.</p>"
        )
        await asyncio.to_thread(self._send, to, "Your sign-in code", body_html, text)

    async def send_invitation_email(
        self, to: str, inviter_name: str, tenant_name: str, link: str
    ) -> None:
        # Header values must stay on one line
        subject = " ".join(f"{inviter_name} invited you to {tenant_name}".split())
        text = f"{inviter_name} invited you to join {tenant_name}.\n\nAccept: {link}"
        body_html = (
            f"<p>{html.escape(inviter_name)} invited you to join {html.escape(tenant_name)}.</p>"
            f'<p><a href="{html.escape(link, quote=True)}">Accept</a></p>'
        )
        await asyncio.to_thread(self._send, to, subject, body_html, text)

    def _send(self, to: str, subject: str, body_html: str, body_text: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._config.from_email
        msg["To"] = to
        msg.attach(MIMEText(body_text, "plain"))
        msg.attach(MIMEText(body_html, "html"))

        with smtplib.SMTP(
            self._config.host, self._config.port, timeout=self._config.timeout_seconds
        ) as server:
            if self._config.use_tls:
                server.starttls()
            if self._config.username and self._config.password:
                server.login(self._config.username, self._config.password)
            server.sendmail(self._config.from_email, [to], msg.as_string())
        logger.info("email_sent", to=to, subject=subject)

"""
auth/notifier.py -- Outbound account emails (verification, password reset, welcome).

The core treats notification as fire-and-forget: workflows call
notify_safely(), which logs and absorbs delivery failures. A failed send never
rolls back the token that was just stored -- the user can ask for a resend.

Two implementations:
  SmtpNotifier -- stdlib smtplib. Port 465 uses implicit TLS (SMTP_SSL),
                  anything else uses STARTTLS, matching common providers.
  LogNotifier  -- used when SMTP_HOST is empty. Logs that a message would have
                  been sent. The action link is logged only in DEBUG mode, so a
                  production log never contains a usable token.
"""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("nadlan.auth.notifier")


class Notifier(Protocol):
    def send_verification(self, email: str, raw_token: str, name: str) -> None: ...

    def send_password_reset(self, email: str, raw_token: str, name: str) -> None: ...

    def send_welcome(self, email: str, name: str) -> None: ...


def verification_link(frontend_url: str, raw_token: str) -> str:
    return f"{frontend_url.rstrip('/')}/verify-email/{raw_token}"


def reset_link(frontend_url: str, raw_token: str) -> str:
    return f"{frontend_url.rstrip('/')}/reset-password/{raw_token}"


class SmtpNotifier:
    def __init__(self, settings: Settings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._user = settings.smtp_user
        self._password = settings.smtp_password
        # Gmail and most relays require From to match the authenticated user.
        self._from = settings.from_email or settings.smtp_user
        self._timeout = settings.smtp_timeout_seconds
        self._frontend_url = settings.frontend_url

    def send_verification(self, email: str, raw_token: str, name: str) -> None:
        link = verification_link(self._frontend_url, raw_token)
        self._send(
            email,
            "Verify your email address - Nadlan",
            f"Hello {name},\n\nConfirm your email address by opening the link below.\n"
            f"The link is valid for 24 hours.\n\n{link}\n",
        )

    def send_password_reset(self, email: str, raw_token: str, name: str) -> None:
        link = reset_link(self._frontend_url, raw_token)
        self._send(
            email,
            "Password reset - Nadlan",
            f"Hello {name},\n\nA password reset was requested for your account.\n"
            f"The link is valid for 10 minutes. Ignore this email if it was not you.\n\n{link}\n",
        )

    def send_welcome(self, email: str, name: str) -> None:
        self._send(email, "Welcome to Nadlan!", f"Hello {name},\n\nYour email address is confirmed. Welcome aboard.\n")

    def _send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self._from
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        if self._port == 465:
            with smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout) as smtp:
                self._deliver(smtp, msg)
        else:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                smtp.starttls()
                self._deliver(smtp, msg)
        logger.info("Sent '%s' email to %s", subject, to)

    def _deliver(self, smtp: smtplib.SMTP, msg: EmailMessage) -> None:
        if self._user:
            smtp.login(self._user, self._password)
        smtp.send_message(msg)


class LogNotifier:
    def __init__(self, settings: Settings) -> None:
        self._frontend_url = settings.frontend_url
        self._debug = settings.debug

    def send_verification(self, email: str, raw_token: str, name: str) -> None:
        self._log("verification", email, verification_link(self._frontend_url, raw_token))

    def send_password_reset(self, email: str, raw_token: str, name: str) -> None:
        self._log("password reset", email, reset_link(self._frontend_url, raw_token))

    def send_welcome(self, email: str, name: str) -> None:
        self._log("welcome", email, None)

    def _log(self, kind: str, email: str, link: str | None) -> None:
        if self._debug and link:
            logger.info("SMTP not configured; %s email for %s: %s", kind, email, link)
        else:
            logger.info("SMTP not configured; %s email for %s not sent", kind, email)


def build_notifier(settings: Settings) -> Notifier:
    return SmtpNotifier(settings) if settings.smtp_enabled else LogNotifier(settings)


def notify_safely(send: Callable[..., None], *args) -> None:
    """Call a notifier method; log and absorb any delivery failure."""
    try:
        send(*args)
    except Exception:
        logger.exception("Notification %s failed", getattr(send, "__name__", "send"))

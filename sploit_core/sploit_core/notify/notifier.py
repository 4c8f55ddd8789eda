"""
Operator notifications.

Delivery is fire-and-forget: a failed send is logged at CRITICAL together
with the message body and never retried.
"""

from __future__ import annotations
import logging
import smtplib
import threading
from email.message import EmailMessage
from email.utils import formatdate
from typing import List, Optional, Protocol

from ..errors import NotifyError

logger = logging.getLogger('sploit.notify')

ERROR_SUBJECT = "An error occurred with Sploit"


class Notifier(Protocol):
    def send(self, subject: str, body: str) -> None: ...


class SmtpNotifier:
    """Plain SMTP delivery, STARTTLS when the server offers it, PLAIN auth when a user is set."""

    def __init__(self, host: str, sender: str, recipients: List[str],
                 user: str = "", password: str = "", timeout: float = 30.0) -> None:
        if ":" in host:
            server, _, port = host.rpartition(":")
            self.server, self.port = server, int(port)
        else:
            self.server, self.port = host, 25
        self.sender = sender
        self.recipients = recipients
        self.user = user
        self.password = password
        self.timeout = timeout

    def build_message(self, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.set_content(body)
        return msg

    def deliver(self, subject: str, body: str) -> None:
        """Send one message; raises NotifyError."""
        msg = self.build_message(subject, body)
        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg, from_addr=self.sender, to_addrs=self.recipients)
        except (smtplib.SMTPException, OSError) as e:
            raise NotifyError(f"smtp delivery to {self.server}:{self.port} failed: {e}") from e

    def send(self, subject: str, body: str) -> None:
        try:
            self.deliver(subject, body)
        except NotifyError as e:
            logger.critical(f"{e}\n\nSubject: {subject}\nBody: {body}")
            return
        logger.debug(f"Sent notification '{subject}'")


class LogNotifier:
    """Used when no SMTP relay is configured: notifications only go to the log."""

    def send(self, subject: str, body: str) -> None:
        logger.warning(f"{subject}\n{body}")


class ErrorReporter:
    """Logs an operational error at CRITICAL and mails it to the operator."""

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier
        self._lock = threading.Lock()
        self.reported = 0

    def report(self, message: str, exc: Optional[BaseException] = None) -> None:
        if exc is not None:
            message = f"{message}:\n{exc}"
        logger.critical(message)
        with self._lock:
            self.reported += 1
        self.notifier.send(ERROR_SUBJECT, message)

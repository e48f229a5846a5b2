"""E-mail notifications sent over SMTP."""

from __future__ import annotations

import smtplib
from typing import Optional

from redisfallback.config import EmailConfig
from redisfallback.logger import Logger


def build_message(email: EmailConfig, ip: str, reason: str) -> str:
    """Compose the raw mail text, headers included."""
    subject = f"[IP Sentry] IP {ip} has been banned"
    if email.subject is not None:
        custom = email.subject(ip, reason)
        if custom:
            subject = custom
    body = f"[IP Sentry] IP {ip} has been banned for {reason}"
    if email.body is not None:
        custom = email.body(ip, reason)
        if custom:
            body = custom
    return (
        f"From: {email.from_addr}\r\n"
        f"To: {','.join(email.to)}\r\n"
        f"Cc: {','.join(email.cc)}\r\n"
        f"Subject: {subject}\r\n"
        f"\r\n"
        f"{body}"
    )


def send_email(email: Optional[EmailConfig], logger: Logger, ip: str, reason: str) -> None:
    """Send a notification; does nothing without settings and logs failures."""
    if email is None:
        return
    message = build_message(email, ip, reason)
    try:
        with smtplib.SMTP(email.host, email.port) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            if email.username:
                server.login(email.username, email.password)
            server.sendmail(email.from_addr, email.to, message.encode("utf-8"))
    except (smtplib.SMTPException, OSError) as exc:
        logger.error(exc, "Failed to send email")
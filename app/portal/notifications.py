"""
Outbound email over SMTP (settings from SMTP_* / EMAIL_FROM).

Sending never raises: callers get (sent, detail) and decide what to report.
"""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, body: str, *, html: str | None = None) -> tuple[bool, str]:
    cfg = current_app.config
    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    email_from = (cfg.get("EMAIL_FROM") or "").strip()
    if not smtp_server:
        logger.warning("Email to %s not sent: SMTP_SERVER is not configured", to)
        return False, "SMTP server not configured"
    if not email_from:
        logger.warning("Email to %s not sent: EMAIL_FROM is not configured", to)
        return False, "Email from address not configured"

    if html:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html, "html"))
    else:
        msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = email_from
    msg["To"] = to

    try:
        server = smtplib.SMTP(smtp_server, int(cfg.get("SMTP_PORT") or 587), timeout=15)
        try:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            username = (cfg.get("SMTP_USERNAME") or "").strip()
            password = (cfg.get("SMTP_PASSWORD") or "").strip()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        finally:
            server.quit()
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed sending to %s: %s", to, e)
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("SMTP error sending to %s", to)
        return False, f"SMTP error: {e}"

    logger.info("Sent email to %s (subject=%r)", to, subject)
    return True, "sent"


def send_approval_email(
    *,
    applicant_name: str | None,
    email: str,
    temporary_password: str,
    agent_id: str,
    login_url: str,
) -> tuple[bool, str]:
    ctx = {
        "applicant_name": applicant_name or email,
        "email": email,
        "temporary_password": temporary_password,
        "agent_id": agent_id,
        "login_url": login_url,
    }
    return send_email(
        email,
        "Your consultant application has been approved",
        render_template("emails/approval.txt", **ctx),
        html=render_template("emails/approval.html", **ctx),
    )


def send_rejection_email(*, applicant_name: str | None, email: str) -> tuple[bool, str]:
    ctx = {"applicant_name": applicant_name or email}
    return send_email(
        email,
        "Update on your consultant application",
        render_template("emails/rejection.txt", **ctx),
        html=render_template("emails/rejection.html", **ctx),
    )

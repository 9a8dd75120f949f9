from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .report import render_text
from .runtime import DeploymentRun, RunResult
from .settings import Settings


def send_email(settings: Settings, subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - SDO_ENABLE_EMAIL=true
      - SDO_SMTP_HOST / SDO_SMTP_PORT
      - SDO_SMTP_USER / SDO_SMTP_PASSWORD
      - SDO_EMAIL_FROM / SDO_EMAIL_TO
    """
    if not settings.enable_email:
        return False
    if not all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    ):
        return False

    try:
        msg = MIMEMultipart()
        msg["From"] = settings.email_from
        msg["To"] = settings.email_to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        return True
    except (OSError, smtplib.SMTPException):
        return False


def notify_run(settings: Settings, run: DeploymentRun) -> bool:
    """Email the outcome of a finished run."""
    mark = "OK" if run.result is RunResult.SUCCEEDED else "FAILED"
    subject = f"[{mark}] deployment of {run.unit}: {run.result.value}"
    return send_email(settings, subject, render_text(run))

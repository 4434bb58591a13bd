from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from . import db
from .settings import settings


def send_email(subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - NK_ENABLE_EMAIL=true
      - NK_SMTP_HOST / NK_SMTP_PORT
      - NK_SMTP_USER / NK_SMTP_PASSWORD
      - NK_EMAIL_FROM / NK_EMAIL_TO
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

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError) as e:
        db.log_event("WARN", f"Alert email not sent: {type(e).__name__}: {e}")
        return False


def recovery_alert(pass_name: str, restarted: list[str], failed: list[dict[str, str]]) -> bool:
    """Email a summary of a recovery pass that touched any container."""
    if not restarted and not failed:
        return False
    status = "FAILURES" if failed else "OK"
    subject = f"[{status}] {pass_name}: restarted {len(restarted)}, failed {len(failed)}"
    lines = [f"Recovery pass: {pass_name}", ""]
    lines += [f"restarted: {name}" for name in restarted]
    lines += [f"FAILED: {f['name']} ({f['error']})" for f in failed]
    return send_email(subject, "\n".join(lines))

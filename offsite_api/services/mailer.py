# offsite_api/services/mailer.py
import logging
import smtplib
from email.message import EmailMessage
from typing import Iterable, Sequence, Tuple

from flask import current_app

log = logging.getLogger(__name__)

# (filename, bytes, mime type e.g. "application/pdf")
Attachment = Tuple[str, bytes, str]


class MailerNotConfigured(RuntimeError):
    pass


def send_with_attachment(recipients: Iterable[str], subject: str, body: str,
                         attachments: Sequence[Attachment] = ()) -> None:
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    if not host:
        raise MailerNotConfigured("SMTP_HOST is not set")
    to = [r for r in recipients if r]
    if not to:
        raise ValueError("no recipients")

    msg = EmailMessage()
    msg["From"] = cfg.get("MAIL_FROM") or cfg.get("SMTP_USERNAME") or "no-reply@offsite.local"
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    msg.set_content(body)
    for filename, data, mime in attachments:
        maintype, _, subtype = (mime or "application/octet-stream").partition("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype or "octet-stream", filename=filename)

    with smtplib.SMTP(host, int(cfg.get("SMTP_PORT") or 587), timeout=30) as s:
        if cfg.get("SMTP_TLS"):
            s.starttls()
        if cfg.get("SMTP_USERNAME") and cfg.get("SMTP_PASSWORD"):
            s.login(cfg["SMTP_USERNAME"], cfg["SMTP_PASSWORD"])
        s.send_message(msg)
    log.info("mail %r sent to %s recipient(s)", subject, len(to))

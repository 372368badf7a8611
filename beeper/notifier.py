"""Message delivery.

The dispatcher only needs something with ``async send(recipient, content,
kind) -> bool``. ``SmtpNotifier`` is the production transport: it composes a
plain-text and an HTML body and sends them with aiosmtplib.
"""
import email.message
import email.policy
import html
import logging
from email.utils import formataddr
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import aiosmtplib

from .config import Settings
from .errors import DeliveryFailure
from .timefmt import format_local, now_local

logger = logging.getLogger(__name__)

ON_TIME_DELIVERY = "on-time delivery"

DEFAULT_HTML_TEMPLATE = """<!doctype html>
<html><head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1"><title>Motorola Beeper</title></head>
<body style="margin:0;background:#f4f5f7;padding:24px;">
<div style="max-width:560px;margin:0 auto;background:#ffffff;border:1px solid #e5e7eb;border-radius:16px;overflow:hidden;">
  <div style="padding:14px 18px;border-bottom:1px solid #f1f5f9;display:flex;align-items:center;">
    <div style="font-weight:900;font-size:14px;letter-spacing:1px;color:#111;">MOTOROLA FLEX</div>
    <div style="margin-left:auto;font-size:12px;color:#9ca3af;">{{TYPE}}</div>
  </div>
  <div style="padding:20px;">
    <div style="font-size:12px;font-weight:700;color:#9ca3af;letter-spacing:1.5px;">MSG</div>
    <div style="font-family:'Courier New',monospace;font-size:18px;color:#111;line-height:1.6;word-break:break-word;background:rgba(0,0,0,0.03);padding:8px 12px;border-radius:8px;">{{MSG_HTML}}</div>
    <div style="font-size:12px;font-weight:700;color:#9ca3af;letter-spacing:1.5px;margin-top:14px;">EMAIL</div>
    <div style="font-family:Verdana,Arial,sans-serif;font-size:14px;color:#1f2937;">{{EMAIL}}</div>
    <div style="font-size:12px;font-weight:700;color:#9ca3af;letter-spacing:1.5px;margin-top:14px;">TIM</div>
    <div style="font-family:Verdana,Arial,sans-serif;font-size:14px;color:#1f2937;">{{TIM}}</div>
  </div>
</div>
</body></html>
"""


class Notifier(Protocol):
    async def send(self, recipient: str, content: str, kind: str) -> bool:
        ...


def render_text(recipient: str, content: str, sent_at: str) -> str:
    return f"[MSG]\n{content or ''}\n\n[EMAIL] {recipient or ''}\n[TIM] {sent_at}"


def render_html(template: str, recipient: str, content: str, sent_at: str, kind: str) -> str:
    body = html.escape(content or "", quote=False).replace("\r\n", "<br>").replace("\n", "<br>")
    return (
        template.replace("{{MSG_HTML}}", body)
        .replace("{{EMAIL}}", html.escape(recipient or "", quote=False))
        .replace("{{TIM}}", html.escape(sent_at, quote=False))
        .replace("{{TYPE}}", html.escape(kind or "Beeper", quote=False))
    )


def load_template(path: Optional[Path]) -> str:
    if path is None:
        return DEFAULT_HTML_TEMPLATE
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("mail template %s unreadable, using the built-in layout: %s", path, exc)
        return DEFAULT_HTML_TEMPLATE


class SmtpNotifier:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.template = load_template(settings.mail_template)

    def info(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "host": s.smtp_host,
            "port": s.smtp_port,
            "secure": s.smtp_secure,
            "user": "configured" if s.smtp_user else "missing",
        }

    def build_message(self, recipient: str, content: str, kind: str) -> email.message.EmailMessage:
        s = self.settings
        sent_at = format_local(now_local())
        message = email.message.EmailMessage(policy=email.policy.default)
        message["From"] = formataddr((s.mail_from_name, s.sender_address))
        message["To"] = recipient
        message["Subject"] = s.mail_subject
        message.set_content(render_text(recipient, content, sent_at), subtype="plain", charset="utf-8")
        message.add_alternative(render_html(self.template, recipient, content, sent_at, kind), subtype="html", charset="utf-8")
        return message

    def _client(self) -> aiosmtplib.SMTP:
        s = self.settings
        return aiosmtplib.SMTP(
            hostname=s.smtp_host,
            port=s.smtp_port,
            use_tls=s.smtp_secure,
            # None lets aiosmtplib upgrade plain connections when the server offers STARTTLS
            start_tls=False if s.smtp_secure else None,
            username=s.smtp_user or None,
            password=(s.smtp_pass or "") if s.smtp_user else None,
            timeout=s.smtp_timeout,
        )

    async def _deliver(self, message: email.message.EmailMessage) -> None:
        try:
            async with self._client() as smtp:
                await smtp.send_message(message)
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise DeliveryFailure(str(exc)) from exc

    async def send(self, recipient: str, content: str, kind: str = ON_TIME_DELIVERY) -> bool:
        message = self.build_message(recipient, content, kind)
        try:
            await self._deliver(message)
        except DeliveryFailure as exc:
            logger.error("mail to %s failed: %s", recipient, exc)
            return False
        logger.info("mail to %s sent", recipient)
        return True

    async def verify(self) -> Dict[str, Any]:
        try:
            async with self._client() as smtp:
                await smtp.noop()
        except (aiosmtplib.SMTPException, OSError) as exc:
            code = getattr(exc, "code", None) or getattr(exc, "errno", None)
            message = getattr(exc, "message", None) or str(exc)
            return {"success": False, "code": code, "message": message}
        return {"success": True}

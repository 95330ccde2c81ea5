"""
app/services/mailer.py — Transactional e-mail via the Resend HTTP API
=====================================================================

Templates live in ``app/templates/email/`` and are rendered with Jinja2
(autoescaping on: names and messages come straight from visitors).

The API key is read from ``RESEND_API_KEY`` at send time, so a key added
to ``.env`` after start-up is picked up without a restart.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from config_loader import get_secret

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def country_flag(country_code: Optional[str]) -> str:
    """ISO country code → regional-indicator flag emoji."""
    if not country_code or len(country_code) != 2 or not country_code.isalpha():
        return ""
    return "".join(chr(127397 + ord(c)) for c in country_code.upper())


_env.filters["flag"] = country_flag


class MailerError(Exception):
    """Delivery failed (missing key, HTTP error, or API-level error)."""


def render(template_name: str, **context) -> str:
    return _env.get_template(template_name).render(**context)


class Mailer:
    def __init__(
        self,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        contact_from: str = "",
        confirmation_from: str = "",
        report_from: str = "",
        owner_address: str = "",
        owner_name: str = "",
    ) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self.contact_from = contact_from
        self.confirmation_from = confirmation_from
        self.report_from = report_from
        self.owner_address = owner_address
        self.owner_name = owner_name

    @classmethod
    def from_config(cls, cfg: dict) -> "Mailer":
        return cls(
            api_url=cfg.get("api_url", "https://api.resend.com/emails"),
            timeout=float(cfg.get("timeout_seconds", 10.0)),
            contact_from=cfg.get("contact_from", ""),
            confirmation_from=cfg.get("confirmation_from", ""),
            report_from=cfg.get("report_from", ""),
            owner_address=cfg.get("owner_address", ""),
            owner_name=cfg.get("owner_name", ""),
        )

    async def send(
        self,
        sender: str,
        to: Union[str, List[str]],
        subject: str,
        html: str,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        """POST one message. Returns the provider message id."""
        api_key = get_secret("RESEND_API_KEY")
        if not api_key:
            raise MailerError("RESEND_API_KEY is not configured")

        payload = {
            "from": sender,
            "to": [to] if isinstance(to, str) else to,
            "subject": subject,
            "html": html,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
            resp.raise_for_status()
            message_id = resp.json().get("id")
        except httpx.HTTPStatusError as e:
            raise MailerError(f"Resend returned {e.response.status_code}: {e.response.text}") from e
        except httpx.HTTPError as e:
            raise MailerError(str(e)) from e
        except (ValueError, AttributeError) as e:
            raise MailerError(f"Unreadable Resend response: {e}") from e

        logger.info("MAIL_SENT | %s | %s | id=%s", payload["to"], subject, message_id)
        return message_id

    # ── Composed messages ────────────────────────────────────────────────────

    async def send_contact_notification(self, name: str, email: str, subject: str, message: str) -> Optional[str]:
        html = render("contact_notification.html", name=name, email=email, subject=subject, message=message)
        return await self.send(
            self.contact_from, self.owner_address,
            f"Portfolio Contact: {subject}", html, reply_to=email,
        )

    async def send_contact_confirmation(self, name: str, email: str, subject: str, message: str) -> Optional[str]:
        html = render(
            "contact_confirmation.html",
            name=name, subject=subject, message=message, owner_name=self.owner_name,
        )
        return await self.send(self.confirmation_from, email, "Thank you for contacting me!", html)

    async def send_report(self, to: str, report: dict) -> Optional[str]:
        html = render("analytics_report.html", **report)
        subject = f"📊 Portfolio Analytics Report - {report['report_type'].capitalize()}"
        return await self.send(self.report_from, to, subject, html)

"""
Transactional email via the Brevo (Sendinblue) v3 HTTP API, plus the HTML
bodies of the order update emails.
"""
import html
import logging
from datetime import datetime
from typing import List, Optional

import httpx

from config import Settings
from errors import EmailError

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"

STATUS_LABELS = {
    "pending": "Pending",
    "priced": "Priced (Quote Sent)",
    "in_progress": "In Progress",
    "completed": "Completed",
}


def status_label(status: Optional[str]) -> str:
    return STATUS_LABELS.get(status, status or "")


def long_date(value: Optional[datetime]) -> str:
    if value is None:
        return "To be confirmed"
    return f"{value:%B} {value.day}, {value.year}"


def format_price(price) -> str:
    if price is None:
        return "Not set"
    if isinstance(price, float) and price.is_integer():
        return str(int(price))
    return str(price)


class BrevoMailer:
    def __init__(self, settings: Settings, timeout: float = 10.0):
        self.settings = settings
        self.timeout = timeout

    def send(self, to: str, subject: str, html_body: str) -> None:
        if not self.settings.brevo_api_key:
            logger.info("Email delivery disabled (no BREVO_API_KEY); skipped mail to %s", to)
            return
        payload = {
            "sender": {"name": self.settings.email_sender_name, "email": self.settings.email_from},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html_body,
        }
        headers = {"api-key": self.settings.brevo_api_key, "accept": "application/json"}
        try:
            resp = httpx.post(BREVO_SEND_URL, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise EmailError(f"Brevo send failed: {e}") from e
        logger.info("Email sent to %s", to)


def custom_order_email(order: dict, changes: List[str], frontend_url: str) -> str:
    name = html.escape(order.get("name") or "there")
    rows = [f"<p><strong>Status:</strong> {html.escape(status_label(order.get('status')))}</p>"]
    if order.get("price") is not None:
        rows.append(f"<p><strong>Price:</strong> &#8377;{html.escape(format_price(order['price']))}</p>")
    rows.append(f"<p><strong>Expected delivery:</strong> {long_date(order.get('expectedDelivery'))}</p>")
    change_list = "".join(f"<li>{html.escape(c)}</li>" for c in changes)
    return (
        "<!DOCTYPE html><html><body style=\"font-family:Arial\">"
        "<h2>Custom Order Update</h2>"
        f"<p>Hello <strong>{name}</strong>,</p>"
        f"{''.join(rows)}"
        f"<ul>{change_list}</ul>"
        f"<p><a href=\"{html.escape(frontend_url)}/order-custom\">View Order</a></p>"
        "</body></html>"
    )


def order_status_email(order: dict, frontend_url: str) -> str:
    name = html.escape(order.get("name") or "there")
    status = html.escape((order.get("status") or "").capitalize())
    return (
        "<!DOCTYPE html><html><body style=\"font-family:Arial\">"
        "<h2>Order Update</h2>"
        f"<p>Hello <strong>{name}</strong>,</p>"
        f"<p>Your order is now <strong>{status}</strong>.</p>"
        f"<p><a href=\"{html.escape(frontend_url)}/orders\">View Order</a></p>"
        "</body></html>"
    )

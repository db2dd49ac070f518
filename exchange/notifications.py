"""
Outbound notifications.

The lifecycle service only publishes intents ("approved", "credit assigned")
to a queue. Delivery happens later in ``NotificationDispatcher`` and can never
fail or undo the transition that produced the intent.
"""

import html
import logging
import re
import smtplib
import threading
from collections import deque
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    EXCHANGE_APPROVED = "exchange_approved"
    ITEM_RECEIVED = "item_received"
    CREDIT_ASSIGNED = "credit_assigned"


@dataclass
class NotificationIntent:
    kind: NotificationKind
    recipient: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    id: Optional[str]
    success: bool
    error: Optional[str] = None


class NotificationQueue:
    def __init__(self):
        self._items: deque[NotificationIntent] = deque()
        self._lock = threading.Lock()

    def publish(self, intent: NotificationIntent) -> None:
        with self._lock:
            self._items.append(intent)

    def drain(self) -> list[NotificationIntent]:
        # Concurrent drains each get a disjoint share of the queued intents.
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._items)


def strip_tags(markup: str) -> str:
    text = re.sub(r"<[^>]*>", "", markup)
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


class EmailSender:
    def __init__(self, settings):
        self.settings = settings
        if not settings.smtp_configured:
            logger.warning("No SMTP host configured. Email sending will be mocked.")

    def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> DeliveryResult:
        text_body = text_body or strip_tags(html_body)

        if not self.settings.smtp_configured:
            logger.info("MOCK EMAIL SENT to %s: %s", to, subject)
            return DeliveryResult(id="mock_email_id", success=True)

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.settings.EMAIL_FROM
        message["To"] = to
        message["Message-ID"] = make_msgid()
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30) as smtp:
                if self.settings.SMTP_USE_TLS:
                    smtp.starttls()
                if self.settings.SMTP_USERNAME:
                    smtp.login(self.settings.SMTP_USERNAME, self.settings.SMTP_PASSWORD or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending email to %s: %s", to, e)
            return DeliveryResult(id=None, success=False, error=str(e))

        logger.info("Email sent to %s: %s", to, subject)
        return DeliveryResult(id=message["Message-ID"], success=True)


FOOTER = '<p style="font-size: 12px; color: #777;">This is an automated message from SwapCred.</p>'


def _e(value: Any) -> str:
    return html.escape(str(value if value is not None else ""))


def render_approval(context: dict, settings) -> tuple[str, str]:
    warehouse = context.get("warehouse_info") or {}
    address = ", ".join(
        str(warehouse[k]) for k in
        ("address_line1", "address_line2", "city", "state", "postal_code", "country")
        if warehouse.get(k)
    )
    contact = ""
    if warehouse.get("contact_person"):
        contact += f"<p><strong>Contact:</strong> {_e(warehouse['contact_person'])}</p>"
    if warehouse.get("contact_phone"):
        contact += f"<p><strong>Phone:</strong> {_e(warehouse['contact_phone'])}</p>"

    body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #4CAF50;">Your Exchange Request is Approved!</h2>
      <p>Great news! Your exchange request for the following item has been approved:</p>
      <h3>{_e(context.get('product_name'))}</h3>
      <p><strong>Brand:</strong> {_e(context.get('brand'))}</p>
      <p><strong>Condition:</strong> {_e(context.get('condition'))}</p>
      <h3>Where to Ship Your Item</h3>
      <p><strong>{_e(warehouse.get('name') or 'SwapCred Warehouse')}</strong><br>{_e(address)}</p>
      {contact}
      <ol>
        <li>Package your item carefully</li>
        <li>Ship it to the warehouse address above</li>
        <li>Update your shipping details in your account</li>
        <li>Once we receive your item, we'll process your credit</li>
      </ol>
      <p><a href="{_e(settings.DASHBOARD_URL)}">View Exchange Details</a></p>
      <hr>
      {FOOTER}
    </div>
    """
    return "Your Exchange Request Has Been Approved", body


def render_item_received(context: dict, settings) -> tuple[str, str]:
    body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #4CAF50;">Item Received</h2>
      <p>We have received your {_e(context.get('product_name') or 'item')} at our warehouse.</p>
      <p>Our team will inspect it and assign credit to your account soon.</p>
      <p>Thank you for your patience.</p>
      <hr>
      {FOOTER}
    </div>
    """
    return "Your item has been received", body


def render_credit_assigned(context: dict, settings) -> tuple[str, str]:
    amount = context.get("credit_amount")
    total = context.get("total_loyalty_points")
    if total is None:
        total = amount
    body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #3f51b5;">Your Credit Has Been Approved!</h2>
      <p>We've processed your exchange request and approved credit for your account.</p>
      <p>You've received <strong>{_e(amount)}</strong> loyalty points.</p>
      <p><strong>Total Balance: {_e(total)}</strong></p>
      <h3>Exchanged Item</h3>
      <p><strong>{_e(context.get('product_name'))}</strong></p>
      <p><strong>Brand:</strong> {_e(context.get('brand'))}</p>
      <p>Your points can be applied at checkout on your next purchase.</p>
      <p><a href="{_e(settings.SHOP_URL)}">Shop Now</a></p>
      <hr>
      {FOOTER}
    </div>
    """
    return "Your SwapCred Credit Has Been Approved", body


RENDERERS = {
    NotificationKind.EXCHANGE_APPROVED: render_approval,
    NotificationKind.ITEM_RECEIVED: render_item_received,
    NotificationKind.CREDIT_ASSIGNED: render_credit_assigned,
}


class NotificationDispatcher:
    """Consumes queued intents and delivers them by email."""

    def __init__(self, queue: NotificationQueue, sender: EmailSender, settings):
        self.queue = queue
        self.sender = sender
        self.settings = settings

    def dispatch_pending(self) -> list[DeliveryResult]:
        results = []
        for intent in self.queue.drain():
            results.append(self.dispatch(intent))
        return results

    def dispatch(self, intent: NotificationIntent) -> DeliveryResult:
        try:
            subject, body = RENDERERS[intent.kind](intent.context, self.settings)
            result = self.sender.send(intent.recipient, subject, body)
        except Exception as e:
            # Delivery problems never reach the caller of the lifecycle operation.
            logger.exception("Failed to deliver %s notification to %s", intent.kind.value, intent.recipient)
            return DeliveryResult(id=None, success=False, error=str(e))

        if not result.success:
            logger.error("Notification %s to %s not delivered: %s", intent.kind.value, intent.recipient, result.error)
        return result

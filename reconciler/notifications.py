"""Best-effort owner notifications.

Nothing in here may fail a webhook: by the time a notification is attempted
the financial write has been committed, and a 500 would only make Stripe
redeliver an event that already took effect.
"""

import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Protocol

from reconciler.store import StateWriter

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    PAYMENT_FAILED = "payment_failed"
    TRANSFER_FAILED = "transfer_failed"
    PAYOUT_FAILED = "payout_failed"
    ACCOUNT_DEAUTHORIZED = "account_deauthorized"


class Notifier(Protocol):
    def send(self, kind: NotificationKind, to: str, context: dict[str, Any]) -> None: ...


def format_amount(amount_cents: int | None, currency: str | None) -> str:
    amount = (amount_cents or 0) / 100
    return f"{amount:,.2f} {(currency or '').upper()}".strip()


def render(kind: NotificationKind, context: dict[str, Any]) -> tuple[str, str]:
    """Subject and plain-text body for one notification."""

    amount = format_amount(context.get("amount_cents"), context.get("currency"))
    business_name = context.get("business_name") or "your business"
    dashboard_url = context.get("dashboard_url", "")

    if kind is NotificationKind.PAYMENT_FAILED:
        subject = f"Payment Failed - {amount}"
        lines = [
            f"A customer payment of {amount} to {business_name} failed.",
            f"Reason: {context.get('failure_message') or 'unknown'}",
        ]
        if context.get("customer_email"):
            lines.append(f"Customer: {context['customer_email']}")
    elif kind is NotificationKind.TRANSFER_FAILED:
        subject = f"Transfer Failed - {amount}"
        lines = [f"Transfer {context.get('transfer_id')} of {amount} to {business_name} was reversed."]
    elif kind is NotificationKind.PAYOUT_FAILED:
        subject = f"Payout Failed - {amount} to your bank account"
        lines = [
            f"A payout of {amount} to the bank account of {business_name} failed.",
            f"Reason: {context.get('failure_message') or context.get('failure_code') or 'unknown'}",
        ]
    else:
        subject = f"Stripe Account Disconnected - {business_name}"
        lines = [
            f"Stripe account {context.get('account_id')} was disconnected from {business_name}.",
            "You will not be able to collect payments until you reconnect it.",
        ]

    lines.append(f"Manage payments: {dashboard_url}")
    return subject, "\n\n".join(lines)


class LoggingNotifier:
    """Records notifications in the log instead of delivering them."""

    def send(self, kind: NotificationKind, to: str, context: dict[str, Any]) -> None:
        subject, _ = render(kind, context)
        logger.info("Notification %s for %s: %s", kind.value, to, subject)


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        from_address: str = "Payments <noreply@localhost>",
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    def send(self, kind: NotificationKind, to: str, context: dict[str, Any]) -> None:
        subject, body = render(kind, context)
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to

        if self.port == 465:
            server = smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context(), timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())

        try:
            if self.username:
                server.login(self.username, self.password or "")
            server.sendmail(self.from_address.split("<")[-1].rstrip(">"), [to], msg.as_string())
        finally:
            server.quit()


class NotificationDispatcher:
    def __init__(self, notifier: Notifier, dashboard_url: str):
        self.notifier = notifier
        self.dashboard_url = dashboard_url

    def notify(
        self,
        store: StateWriter,
        kind: NotificationKind,
        business_id: str | None,
        context: dict[str, Any],
    ) -> bool:
        """Tell the business owner about ``kind``. Never raises."""

        try:
            if not business_id:
                logger.warning("No business to notify about %s", kind.value)
                return False
            owner = store.owner_contact(business_id)
            if owner is None:
                logger.warning("No owner email for business %s", business_id)
                return False

            self.notifier.send(
                kind,
                owner.owner_email,
                {**context, "business_name": owner.name, "dashboard_url": self.dashboard_url},
            )
        except Exception:
            logger.exception("Failed to send %s notification for business %s", kind.value, business_id)
            return False

        logger.info("%s notification sent to %s", kind.value, owner.owner_email)
        return True

"""Shared helpers for building signed Stripe webhook deliveries."""

import hashlib
import hmac
import time

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "jwt-test-secret"
EVENT_CREATED = 1_700_000_000


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, kind, to, context):
        self.sent.append((kind, to, context))


class EventFactory:
    """Builds Stripe-shaped event payloads."""

    def event(self, type, obj, account=None, event_id="evt_1", created=EVENT_CREATED):
        event = {"id": event_id, "object": "event", "type": type, "created": created, "data": {"object": obj}}
        if account:
            event["account"] = account
        return event

    def payment_intent(self, type="payment_intent.succeeded", id="pi_1", amount=5000, payment_type="deposit",
                       business_id="biz_1", appointment_id="apt_1", error=None):
        metadata = {"business_id": business_id, "payment_type": payment_type, "customer_email": "cust@example.com"}
        if appointment_id:
            metadata["appointment_id"] = appointment_id
        obj = {
            "id": id,
            "object": "payment_intent",
            "amount": amount,
            "currency": "usd",
            "application_fee_amount": 150,
            "metadata": metadata,
            "last_payment_error": error,
        }
        return self.event(type, obj)

    def charge_refunded(self, amount=5000, amount_refunded=5000, payment_intent="pi_1", refunds=None):
        obj = {
            "id": "ch_1",
            "object": "charge",
            "amount": amount,
            "amount_refunded": amount_refunded,
            "refunded": amount_refunded >= amount,
            "currency": "usd",
            "payment_intent": payment_intent,
            "refunds": {"object": "list", "data": refunds or []},
        }
        return self.event("charge.refunded", obj)

    def transfer(self, type="transfer.created", id="tr_1", destination="acct_1", source_transaction="pi_1"):
        obj = {
            "id": id,
            "object": "transfer",
            "amount": 4500,
            "currency": "usd",
            "destination": destination,
            "source_transaction": source_transaction,
            "metadata": {},
            "created": EVENT_CREATED,
        }
        return self.event(type, obj)

    def payout(self, type="payout.paid", id="po_1", account="acct_1", failure_code=None, failure_message=None):
        obj = {
            "id": id,
            "object": "payout",
            "amount": 12000,
            "currency": "usd",
            "arrival_date": EVENT_CREATED + 86400,
            "method": "standard",
            "type": "bank_account",
            "destination": {"id": "ba_1", "object": "bank_account", "last4": "6789"},
            "failure_code": failure_code,
            "failure_message": failure_message,
            "created": EVENT_CREATED,
        }
        return self.event(type, obj, account=account)

    def account(self, id="acct_1", charges=True, payouts=True, details=True, business_id="biz_1", currently_due=None):
        obj = {
            "id": id,
            "object": "account",
            "charges_enabled": charges,
            "payouts_enabled": payouts,
            "details_submitted": details,
            "metadata": {"business_id": business_id} if business_id else {},
            "requirements": {"currently_due": currently_due or []},
        }
        return self.event("account.updated", obj)

    def deauthorized(self, account="acct_1"):
        return self.event(
            "account.application.deauthorized",
            {"id": "ca_1", "object": "application", "name": "Dashboard"},
            account=account,
        )

"""Routing of verified Stripe Connect events to their handlers.

Each delivery is one unit of work: the handler's writes are committed
together, and only then are owner notifications attempted. A handler that
raises rolls its writes back and the delivery is reported as failed so Stripe
sends it again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from sqlalchemy.orm import Session, sessionmaker

from reconciler.accounts import AccountStatusSynchronizer
from reconciler.events import (
    AccountDeauthorized,
    AccountUpdated,
    ChargeRefunded,
    Envelope,
    PaymentIntent,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    PayoutFailed,
    PayoutPaid,
    StripePayout,
    StripeTransfer,
    TransferCreated,
    TransferReversed,
)
from reconciler.logging_config import account_id_ctx, event_id_ctx, event_type_ctx
from reconciler.models import utcnow
from reconciler.notifications import NotificationDispatcher, NotificationKind
from reconciler.reconcile import AppointmentReconciler
from reconciler.store import StateWriter

logger = logging.getLogger(__name__)

PAYMENT_TYPES = ("deposit", "balance", "full")


class DispatchOutcome(str, Enum):
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class PendingNotification:
    kind: NotificationKind
    business_id: str | None
    context: dict[str, Any] = field(default_factory=dict)


class HandlerContext:
    def __init__(self, session: Session):
        self.store = StateWriter(session)
        self.reconciler = AppointmentReconciler(self.store)
        self.accounts = AccountStatusSynchronizer(self.store)


Handler = Callable[[HandlerContext, Any], list[PendingNotification]]


def _occurred_at(event: Envelope) -> datetime:
    if event.created:
        return datetime.fromtimestamp(event.created, tz=timezone.utc)
    return utcnow()


def _timestamp(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _payment_type(intent: PaymentIntent) -> str:
    payment_type = intent.metadata.get("payment_type")
    return payment_type if payment_type in PAYMENT_TYPES else "full"


def _owner_of_account(ctx: HandlerContext, account_id: str | None) -> str | None:
    if not account_id:
        return None
    integration = ctx.store.integration_for_account(account_id)
    if integration is None:
        logger.warning("No business found for account %s", account_id)
        return None
    return integration.business_id


# -- account events -------------------------------------------------------------


def handle_account_updated(ctx: HandlerContext, event: AccountUpdated) -> list[PendingNotification]:
    ctx.accounts.sync_account(event.data.object)
    return []


def handle_account_deauthorized(ctx: HandlerContext, event: AccountDeauthorized) -> list[PendingNotification]:
    # The body is the Application; the account lives on the envelope.
    integration = ctx.accounts.deauthorize(event.account)
    if integration is None:
        return []
    return [
        PendingNotification(
            NotificationKind.ACCOUNT_DEAUTHORIZED,
            integration.business_id,
            {"account_id": event.account},
        )
    ]


# -- payment intent events ------------------------------------------------------


def _transaction_values(intent: PaymentIntent, status: str) -> dict[str, Any]:
    return {
        "business_id": intent.metadata["business_id"],
        "appointment_id": intent.metadata.get("appointment_id") or None,
        "stripe_payment_intent_id": intent.id,
        "amount_cents": intent.amount,
        "application_fee_cents": intent.application_fee_amount or 0,
        "currency": intent.currency,
        "status": status,
        "payment_type": _payment_type(intent),
    }


def handle_payment_succeeded(ctx: HandlerContext, event: PaymentIntentSucceeded) -> list[PendingNotification]:
    intent = event.data.object
    if not intent.metadata.get("business_id"):
        logger.warning("PaymentIntent %s has no business_id", intent.id)
        return []

    values = _transaction_values(intent, "succeeded")
    values.update(
        customer_email=intent.receipt_email or intent.metadata.get("customer_email"),
        customer_phone=intent.metadata.get("customer_phone"),
        description=intent.description,
    )
    # A refund that was already recorded wins over a late or repeated success.
    transaction = ctx.store.upsert_transaction(values, only_from=("pending", "failed", "succeeded"))
    if transaction.status != "succeeded":
        logger.info("PaymentIntent %s is already %s, not marking paid", intent.id, transaction.status)
        return []

    if transaction.appointment_id:
        ctx.reconciler.apply_payment(transaction, _occurred_at(event))

    logger.info("Payment succeeded: %s for business %s", intent.id, transaction.business_id)
    return []


def handle_payment_failed(ctx: HandlerContext, event: PaymentIntentFailed) -> list[PendingNotification]:
    intent = event.data.object
    business_id = intent.metadata.get("business_id")
    if not business_id:
        logger.warning("PaymentIntent %s has no business_id", intent.id)
        return []

    error = intent.last_payment_error
    values = _transaction_values(intent, "failed")
    values["failure_reason"] = error.message if error else None
    transaction = ctx.store.upsert_transaction(values, only_from=("pending", "failed"))
    if transaction.status != "failed":
        logger.info("Ignoring late failure for PaymentIntent %s (status %s)", intent.id, transaction.status)
        return []

    # Appointment payment columns stay as they are.
    logger.warning("Payment failed: %s - %s", intent.id, error.message if error else None)
    return [
        PendingNotification(
            NotificationKind.PAYMENT_FAILED,
            business_id,
            {
                "amount_cents": intent.amount,
                "currency": intent.currency,
                "failure_code": error.code if error else None,
                "failure_message": error.message if error else None,
                "customer_email": intent.metadata.get("customer_email") or intent.receipt_email,
                "appointment_id": transaction.appointment_id,
            },
        )
    ]


# -- transfer events ------------------------------------------------------------


def _transfer_values(transfer: StripeTransfer, status: str) -> dict[str, Any]:
    values = {
        "stripe_transfer_id": transfer.id,
        "stripe_account_id": transfer.destination,
        "amount_cents": transfer.amount,
        "currency": transfer.currency,
        "status": status,
        "source_transaction": transfer.source_transaction,
        "description": transfer.description,
        "stripe_metadata": transfer.metadata,
    }
    if transfer.created is not None:
        values["created_at"] = _timestamp(transfer.created)
    return values


def _link_source(ctx: HandlerContext, row, transfer: StripeTransfer) -> None:
    if not transfer.source_transaction or row.transaction_id:
        return
    transaction = ctx.store.transaction_for_source(transfer.source_transaction)
    if transaction is None:
        logger.warning("Could not link transfer %s to source %s", transfer.id, transfer.source_transaction)
        return
    ctx.store.link_transfer(row, transaction)


def handle_transfer_created(ctx: HandlerContext, event: TransferCreated) -> list[PendingNotification]:
    transfer = event.data.object
    # A reversal may have been delivered first; it stays failed.
    row = ctx.store.upsert_transfer(_transfer_values(transfer, "created"), keep_failed=True)
    _link_source(ctx, row, transfer)

    logger.info(
        "Transfer created: %s - %s %s to %s", transfer.id, transfer.amount, transfer.currency, transfer.destination
    )
    return []


def handle_transfer_reversed(ctx: HandlerContext, event: TransferReversed) -> list[PendingNotification]:
    transfer = event.data.object
    logger.error("Transfer failed/reversed: %s", transfer.id)

    row = ctx.store.upsert_transfer(_transfer_values(transfer, "failed"))
    _link_source(ctx, row, transfer)
    if not ctx.store.mark_transaction_transfer_failed(transfer.id):
        logger.warning("No transaction linked to transfer %s", transfer.id)

    business_id = _owner_of_account(ctx, transfer.destination)
    if business_id is None:
        return []
    return [
        PendingNotification(
            NotificationKind.TRANSFER_FAILED,
            business_id,
            {"amount_cents": transfer.amount, "currency": transfer.currency, "transfer_id": transfer.id},
        )
    ]


# -- payout events --------------------------------------------------------------


def _payout_values(payout: StripePayout, account_id: str, status: str) -> dict[str, Any]:
    values = {
        "stripe_payout_id": payout.id,
        "stripe_account_id": account_id,
        "amount_cents": payout.amount,
        "currency": payout.currency,
        "status": status,
        "method": payout.method,
        "type": payout.type,
        "description": payout.description,
        "arrival_date": _timestamp(payout.arrival_date),
    }
    if payout.created is not None:
        values["created_at"] = _timestamp(payout.created)
    return values


def handle_payout_paid(ctx: HandlerContext, event: PayoutPaid) -> list[PendingNotification]:
    payout = event.data.object
    if not event.account:
        logger.warning("Payout %s has no account ID", payout.id)
        return []

    values = _payout_values(payout, event.account, "paid")
    values.update(bank_account_last4=payout.bank_account_last4, paid_at=_occurred_at(event))
    row = ctx.store.upsert_payout(values, keep_failed=True)
    if row.status == "failed":
        logger.warning("Ignoring late payout.paid for failed payout %s", payout.id)
        return []

    logger.info("Payout paid: %s - %s %s to account %s", payout.id, payout.amount, payout.currency, event.account)
    return []


def handle_payout_failed(ctx: HandlerContext, event: PayoutFailed) -> list[PendingNotification]:
    payout = event.data.object
    if not event.account:
        logger.warning("Failed payout %s has no account ID", payout.id)
        return []

    values = _payout_values(payout, event.account, "failed")
    values.update(failure_code=payout.failure_code, failure_message=payout.failure_message)
    ctx.store.upsert_payout(values)
    logger.error("Payout failed: %s - %s", payout.id, payout.failure_message)

    business_id = _owner_of_account(ctx, event.account)
    if business_id is None:
        return []
    return [
        PendingNotification(
            NotificationKind.PAYOUT_FAILED,
            business_id,
            {
                "amount_cents": payout.amount,
                "currency": payout.currency,
                "failure_code": payout.failure_code,
                "failure_message": payout.failure_message,
                "account_id": event.account,
            },
        )
    ]


# -- charge events --------------------------------------------------------------


def handle_charge_refunded(ctx: HandlerContext, event: ChargeRefunded) -> list[PendingNotification]:
    charge = event.data.object
    if not charge.payment_intent:
        logger.warning("Refunded charge %s has no payment_intent", charge.id)
        return []

    full = charge.fully_refunded
    status = "refunded" if full else "partially_refunded"

    transaction = ctx.store.transaction_by_payment_intent(charge.payment_intent)
    if transaction is None:
        logger.warning("No transaction for refunded charge %s (payment intent %s)", charge.id, charge.payment_intent)
    elif charge.amount_refunded < (transaction.refunded_amount_cents or 0):
        # amount_refunded is cumulative, so a smaller value is an older event.
        logger.info(
            "Ignoring stale refund total %s for charge %s (have %s)",
            charge.amount_refunded,
            charge.id,
            transaction.refunded_amount_cents,
        )
    else:
        ctx.store.record_refund_totals(transaction, charge.id, charge.amount_refunded, status)
        ctx.reconciler.apply_refund(transaction, full)

    for refund in charge.refunds.data if charge.refunds else []:
        ctx.store.upsert_refund(
            {
                "stripe_refund_id": refund.id,
                "stripe_charge_id": charge.id,
                "stripe_payment_intent_id": charge.payment_intent,
                "business_id": transaction.business_id if transaction else None,
                "amount_cents": refund.amount,
                "currency": refund.currency,
                "status": refund.status,
                "reason": refund.reason,
                "created_at": _timestamp(refund.created) or _occurred_at(event),
            }
        )

    logger.info("Charge refunded: %s - %s cents (%s)", charge.id, charge.amount_refunded, status)
    return []


HANDLERS: dict[str, Handler] = {
    "account.updated": handle_account_updated,
    "account.application.deauthorized": handle_account_deauthorized,
    "payment_intent.succeeded": handle_payment_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
    "transfer.created": handle_transfer_created,
    "transfer.reversed": handle_transfer_reversed,
    "payout.paid": handle_payout_paid,
    "payout.failed": handle_payout_failed,
    "charge.refunded": handle_charge_refunded,
}


class WebhookDispatcher:
    def __init__(
        self,
        session_factory: sessionmaker,
        notifications: NotificationDispatcher,
        handlers: dict[str, Handler] | None = None,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.handlers = dict(HANDLERS if handlers is None else handlers)

    def dispatch(self, event: Envelope) -> DispatchOutcome:
        handler = self.handlers.get(event.type)
        if handler is None:
            # Stripe adds event types over time; acknowledging them is correct.
            logger.info("Ignoring unhandled event type %s", event.type)
            return DispatchOutcome.IGNORED

        tokens = (
            event_id_ctx.set(event.id or ""),
            event_type_ctx.set(event.type),
            account_id_ctx.set(event.account or ""),
        )
        try:
            with self.session_factory() as session:
                ctx = HandlerContext(session)
                try:
                    pending = handler(ctx, event)
                    session.commit()
                except Exception:
                    session.rollback()
                    logger.exception("Webhook handler failed for %s", event.type)
                    return DispatchOutcome.FAILED

                for notification in pending:
                    self.notifications.notify(
                        ctx.store, notification.kind, notification.business_id, notification.context
                    )
            return DispatchOutcome.PROCESSED
        finally:
            account_id_ctx.reset(tokens[2])
            event_type_ctx.reset(tokens[1])
            event_id_ctx.reset(tokens[0])

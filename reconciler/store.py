"""Idempotent writes of Stripe objects into the local tables.

Every row owned by a Stripe object is written with ``INSERT ... ON CONFLICT
(<stripe id>) DO UPDATE``, so redelivered or concurrently delivered events
converge on one row per Stripe ID. The unique constraint is the only
concurrency control; nothing here takes locks.
"""

import logging
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from reconciler.models import (
    Appointment,
    Business,
    BusinessIntegration,
    PaymentTransaction,
    Payout,
    Refund,
    Transfer,
    utcnow,
)

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class StateWriter:
    """Data store access for one webhook delivery, bound to one session."""

    def __init__(self, session: Session):
        self.session = session

    def _upsert(self, model, key: str, values: dict[str, Any], where=None):
        dialect = self.session.get_bind().dialect.name
        try:
            insert = _INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"Upserts are not supported on {dialect}") from None

        values = {**values, "updated_at": utcnow()}
        stmt = insert(model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[key],
            set_={name: stmt.excluded[name] for name in values if name != key},
            where=where,
        )
        self.session.execute(stmt)

        # Re-read so callers see what is stored, including when ``where`` skipped the update.
        return self.session.scalars(
            select(model)
            .where(getattr(model, key) == values[key])
            .execution_options(populate_existing=True)
        ).one()

    # -- transactions ---------------------------------------------------------

    def upsert_transaction(self, values: dict[str, Any], only_from: tuple[str, ...] | None = None) -> PaymentTransaction:
        """Write a transaction keyed by payment intent.

        ``only_from`` restricts which existing statuses may be overwritten, so
        a late event cannot move a transaction backwards.
        """

        where = PaymentTransaction.status.in_(only_from) if only_from else None
        return self._upsert(PaymentTransaction, "stripe_payment_intent_id", values, where=where)

    def transaction_by_payment_intent(self, payment_intent_id: str) -> PaymentTransaction | None:
        return self.session.scalars(
            select(PaymentTransaction).where(PaymentTransaction.stripe_payment_intent_id == payment_intent_id)
        ).one_or_none()

    def transaction_for_source(self, source_id: str) -> PaymentTransaction | None:
        """Find the transaction a transfer came from, by charge ID or payment intent ID."""

        return self.session.scalars(
            select(PaymentTransaction).where(
                or_(
                    PaymentTransaction.stripe_charge_id == source_id,
                    PaymentTransaction.stripe_payment_intent_id == source_id,
                )
            )
        ).first()

    def record_refund_totals(
        self,
        transaction: PaymentTransaction,
        charge_id: str,
        amount_refunded: int,
        status: str,
    ) -> None:
        transaction.status = status
        transaction.refunded_amount_cents = amount_refunded
        transaction.stripe_charge_id = charge_id
        self.session.flush()

    # -- transfers ------------------------------------------------------------

    def upsert_transfer(self, values: dict[str, Any], keep_failed: bool = False) -> Transfer:
        where = Transfer.status != "failed" if keep_failed else None
        return self._upsert(Transfer, "stripe_transfer_id", values, where=where)

    def link_transfer(self, transfer: Transfer, transaction: PaymentTransaction) -> None:
        transfer.transaction_id = transaction.id
        transaction.stripe_transfer_id = transfer.stripe_transfer_id
        transaction.transfer_status = transfer.status
        self.session.flush()

    def mark_transaction_transfer_failed(self, stripe_transfer_id: str) -> int:
        result = self.session.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.stripe_transfer_id == stripe_transfer_id)
            .values(transfer_status="failed", updated_at=utcnow())
        )
        return result.rowcount

    # -- payouts and refunds --------------------------------------------------

    def upsert_payout(self, values: dict[str, Any], keep_failed: bool = False) -> Payout:
        where = Payout.status != "failed" if keep_failed else None
        return self._upsert(Payout, "stripe_payout_id", values, where=where)

    def upsert_refund(self, values: dict[str, Any]) -> Refund:
        return self._upsert(Refund, "stripe_refund_id", values)

    # -- integrations ---------------------------------------------------------

    def upsert_integration(self, values: dict[str, Any]) -> BusinessIntegration:
        return self._upsert(BusinessIntegration, "account_id", values)

    def integration_for_account(self, account_id: str) -> BusinessIntegration | None:
        return self.session.scalars(
            select(BusinessIntegration).where(
                BusinessIntegration.account_id == account_id,
                BusinessIntegration.provider == "stripe_connect",
            )
        ).one_or_none()

    def integration_for_business(self, business_id: str) -> BusinessIntegration | None:
        return self.session.scalars(
            select(BusinessIntegration).where(
                BusinessIntegration.business_id == business_id,
                BusinessIntegration.provider == "stripe_connect",
            )
        ).first()

    # -- read-only lookups ----------------------------------------------------

    def appointment(self, appointment_id: str) -> Appointment | None:
        return self.session.get(Appointment, appointment_id)

    def transaction(self, transaction_id: str) -> PaymentTransaction | None:
        return self.session.get(PaymentTransaction, transaction_id)

    def owner_contact(self, business_id: str) -> Business | None:
        business = self.session.get(Business, business_id)
        if business is None or not business.owner_email:
            return None
        return business

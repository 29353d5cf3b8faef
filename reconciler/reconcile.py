import logging
from datetime import datetime

from reconciler.models import Appointment, PaymentTransaction
from reconciler.store import StateWriter

logger = logging.getLogger(__name__)


def _sides_for(payment_type: str | None) -> tuple[str, ...]:
    if payment_type in ("deposit", "balance"):
        return (payment_type,)
    return ("deposit", "balance")


class AppointmentReconciler:
    """Derives an appointment's deposit/balance columns from its transactions.

    Failed payments never reach this class: a failed attempt leaves whatever
    the appointment already had, so the customer can simply pay again.
    """

    def __init__(self, store: StateWriter):
        self.store = store

    def _appointment_for(self, transaction: PaymentTransaction) -> Appointment | None:
        if not transaction.appointment_id:
            return None
        appointment = self.store.appointment(transaction.appointment_id)
        if appointment is None:
            logger.warning(
                "Transaction %s references unknown appointment %s",
                transaction.stripe_payment_intent_id,
                transaction.appointment_id,
            )
        return appointment

    def _claimed_by_other(self, appointment: Appointment, side: str, transaction: PaymentTransaction) -> bool:
        linked_id = getattr(appointment, f"{side}_transaction_id")
        if not linked_id or linked_id == transaction.id:
            return False
        linked = self.store.transaction(linked_id)
        return linked is not None and linked.status == "succeeded"

    def apply_payment(self, transaction: PaymentTransaction, paid_at: datetime) -> bool:
        appointment = self._appointment_for(transaction)
        if appointment is None:
            return False

        payment_type = transaction.payment_type
        updated = False
        for side in _sides_for(payment_type):
            # A side settled by another succeeded transaction stays with it.
            if self._claimed_by_other(appointment, side, transaction):
                logger.warning(
                    "Appointment %s %s already settled by another transaction, skipping %s",
                    appointment.id,
                    side,
                    transaction.stripe_payment_intent_id,
                )
                continue
            setattr(appointment, f"{side}_paid_at", paid_at)
            setattr(appointment, f"{side}_transaction_id", transaction.id)
            if side == "deposit":
                appointment.deposit_amount_cents = transaction.amount_cents
            else:
                # A full payment leaves nothing outstanding.
                appointment.balance_amount_cents = transaction.amount_cents if payment_type == "balance" else 0
            updated = True

        self.store.session.flush()
        if updated:
            logger.info("Appointment %s payment status updated: %s paid", appointment.id, payment_type)
        return updated

    def apply_refund(self, transaction: PaymentTransaction, full: bool) -> bool:
        """Clear the paid columns of a fully refunded transaction.

        A partial refund still counts as paid, so the appointment is left alone.
        Only columns this transaction set are cleared; a later payment for the
        same side keeps its columns.
        """

        if not full:
            return False
        appointment = self._appointment_for(transaction)
        if appointment is None:
            return False

        cleared = False
        for side in _sides_for(transaction.payment_type):
            if getattr(appointment, f"{side}_transaction_id") != transaction.id:
                continue
            for field in ("paid_at", "amount_cents", "transaction_id"):
                setattr(appointment, f"{side}_{field}", None)
            cleared = True

        self.store.session.flush()
        if cleared:
            logger.info("Appointment %s payment status cleared due to refund", appointment.id)
        return cleared

import logging

from reconciler.events import ConnectedAccount
from reconciler.models import BusinessIntegration, utcnow
from reconciler.store import StateWriter

logger = logging.getLogger(__name__)


class AccountStatusSynchronizer:
    """Mirrors connected account lifecycle changes onto ``business_integrations``."""

    def __init__(self, store: StateWriter):
        self.store = store

    def sync_account(self, account: ConnectedAccount) -> BusinessIntegration | None:
        """Recompute ``is_active`` from the account's capabilities. Safe to replay."""

        integration = self.store.integration_for_account(account.id)
        business_id = account.metadata.get("business_id") or (integration.business_id if integration else None)

        if not business_id:
            logger.warning("Account %s has no business_id metadata and no integration", account.id)
            return None
        if integration is not None and integration.deauthorized:
            logger.warning("Ignoring update for deauthorized account %s", account.id)
            return integration

        is_active = account.charges_enabled and account.payouts_enabled and account.details_submitted
        requirements_due = account.requirements.currently_due if account.requirements else []

        integration = self.store.upsert_integration(
            {
                "account_id": account.id,
                "business_id": business_id,
                "provider": "stripe_connect",
                "is_active": is_active,
                "charges_enabled": account.charges_enabled,
                "payouts_enabled": account.payouts_enabled,
                "details_submitted": account.details_submitted,
                "requirements_due": requirements_due,
            }
        )
        logger.info("Account %s updated: active=%s", account.id, is_active)
        return integration

    def deauthorize(self, account_id: str | None) -> BusinessIntegration | None:
        """Disconnect the integration for ``account_id``.

        Returns the integration only when this call changed it, so the caller
        knows whether the owner still needs to hear about it.
        """

        if not account_id:
            logger.warning("Deauthorization event missing account ID")
            return None

        logger.warning("Account %s has been deauthorized", account_id)
        integration = self.store.integration_for_account(account_id)
        if integration is None:
            logger.warning("No integration found for deauthorized account %s", account_id)
            return None
        if integration.deauthorized:
            logger.info("Account %s was already deauthorized", account_id)
            return None

        integration.is_active = False
        integration.deauthorized = True
        integration.deauthorized_at = utcnow()
        integration.charges_enabled = False
        integration.payouts_enabled = False
        self.store.session.flush()

        logger.info("Account %s deauthorized for business %s", account_id, integration.business_id)
        return integration

from dataclasses import dataclass, field

import stripe


@dataclass
class AccountStatus:
    account_id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    currently_due: list[str] = field(default_factory=list)
    eventually_due: list[str] = field(default_factory=list)
    past_due: list[str] = field(default_factory=list)
    pending_verification: list[str] = field(default_factory=list)

    @property
    def onboarding_complete(self) -> bool:
        return (
            self.charges_enabled
            and self.payouts_enabled
            and self.details_submitted
            and not self.currently_due
        )

    def next_steps(self) -> list[str]:
        if self.onboarding_complete:
            return []
        steps = []
        if not self.details_submitted:
            steps.append("Complete business information")
        if self.currently_due:
            steps.append("Provide additional verification documents")
        if not self.charges_enabled:
            steps.append("Verify identity to enable charges")
        if not self.payouts_enabled:
            steps.append("Add bank account for payouts")
        return steps


class AccountStatusClient:
    """Reads connected account capabilities from Stripe with an explicit API key."""

    def __init__(self, api_key: str | None, site_url: str):
        self.api_key = api_key
        self.site_url = site_url.rstrip("/")

    def get_account_status(self, account_id: str) -> AccountStatus:
        account = stripe.Account.retrieve(account_id, api_key=self.api_key)
        requirements = account.get("requirements") or {}
        return AccountStatus(
            account_id=account["id"],
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
            currently_due=list(requirements.get("currently_due") or []),
            eventually_due=list(requirements.get("eventually_due") or []),
            past_due=list(requirements.get("past_due") or []),
            pending_verification=list(requirements.get("pending_verification") or []),
        )

    def create_onboarding_link(self, account_id: str, return_url: str | None = None) -> str:
        link = stripe.AccountLink.create(
            account=account_id,
            refresh_url=f"{self.site_url}/settings/payments?refresh=true",
            return_url=return_url or f"{self.site_url}/settings/payments?onboarding=complete",
            type="account_onboarding",
            api_key=self.api_key,
        )
        return link["url"]

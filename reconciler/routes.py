import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from reconciler.auth import current_business_id
from reconciler.models import utcnow
from reconciler.store import StateWriter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe/connect")


class OnboardingLinkRequest(BaseModel):
    return_url: Optional[str] = None


@router.get("/onboarding")
def onboarding_status(request: Request, business_id: str = Depends(current_business_id)):
    client = request.app.state.account_client

    with request.app.state.session_factory() as db:
        store = StateWriter(db)
        integration = store.integration_for_business(business_id)
        if not integration:
            return {"configured": False, "complete": False, "message": "Stripe Connect not configured"}

        try:
            status = client.get_account_status(integration.account_id)
        except stripe.StripeError:
            logger.exception("Error checking onboarding status for account %s", integration.account_id)
            raise HTTPException(status_code=500, detail="Failed to check onboarding status")
        complete = status.onboarding_complete

        if complete and not integration.is_active and not integration.deauthorized:
            integration.is_active = True
            integration.charges_enabled = status.charges_enabled
            integration.payouts_enabled = status.payouts_enabled
            integration.details_submitted = status.details_submitted
            integration.requirements_due = []
            integration.onboarding_completed_at = utcnow()
            db.commit()
            logger.info("Onboarding completed for business %s", business_id)

    return {
        "configured": True,
        "complete": complete,
        "charges_enabled": status.charges_enabled,
        "payouts_enabled": status.payouts_enabled,
        "details_submitted": status.details_submitted,
        "requirements": {
            "currently_due": status.currently_due,
            "eventually_due": status.eventually_due,
            "past_due": status.past_due,
            "pending_verification": status.pending_verification,
        },
        "next_steps": status.next_steps(),
    }


@router.post("/onboarding")
def onboarding_link(
    request: Request,
    body: Optional[OnboardingLinkRequest] = None,
    business_id: str = Depends(current_business_id),
):
    with request.app.state.session_factory() as db:
        integration = StateWriter(db).integration_for_business(business_id)

    if not integration:
        raise HTTPException(status_code=400, detail="Stripe Connect not configured. Create an account first.")

    try:
        url = request.app.state.account_client.create_onboarding_link(
            integration.account_id,
            return_url=body.return_url if body else None,
        )
    except stripe.StripeError:
        logger.exception("Error creating onboarding link for account %s", integration.account_id)
        raise HTTPException(status_code=500, detail="Failed to generate onboarding link")
    return {"success": True, "account_link": url}

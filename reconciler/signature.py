import logging

import stripe

logger = logging.getLogger(__name__)


class SignatureError(Exception):
    """The webhook could not be authenticated."""


class WebhookVerifier:
    """Checks the ``Stripe-Signature`` header against the raw request body.

    Fails closed: a missing header, an unconfigured secret, a bad signature
    and a timestamp outside the tolerance window are all rejected the same way.
    """

    def __init__(self, secret: str | None, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.secret = secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature_header: str | None) -> None:
        if not signature_header:
            raise SignatureError("Missing stripe-signature header")
        if not self.secret:
            logger.error("Connect webhook secret is not configured, rejecting delivery")
            raise SignatureError("Webhook not configured")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureError("Invalid signature") from exc

        try:
            stripe.WebhookSignature.verify_header(text, signature_header, self.secret, self.tolerance)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise SignatureError("Invalid signature") from exc

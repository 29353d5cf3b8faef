import logging
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import sessionmaker

from reconciler.config import Settings, get_settings
from reconciler.database import Base, make_engine, make_session_factory
from reconciler.events import EventParseError, parse_event
from reconciler.handlers import DispatchOutcome, WebhookDispatcher
from reconciler.logging_config import configure_logging
from reconciler.notifications import LoggingNotifier, NotificationDispatcher, Notifier, SmtpNotifier
from reconciler.routes import router
from reconciler.signature import SignatureError, WebhookVerifier
from reconciler.stripe_service import AccountStatusClient

logger = logging.getLogger(__name__)


def default_notifier(settings: Settings) -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.email_from_address,
        )
    return LoggingNotifier()


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    notifier: Optional[Notifier] = None,
    account_client: Optional[AccountStatusClient] = None,
) -> FastAPI:
    """Build the webhook service.

    Every collaborator can be passed in; anything left out is built from
    ``settings``. Run with ``uvicorn reconciler.main:create_app --factory``.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if session_factory is None:
        engine = make_engine(settings.database_url)
        Base.metadata.create_all(bind=engine)
        session_factory = make_session_factory(engine)

    app = FastAPI(title="Connect Webhook Reconciler")
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.verifier = WebhookVerifier(
        settings.stripe_connect_webhook_secret,
        tolerance=settings.webhook_tolerance_seconds,
    )
    app.state.dispatcher = WebhookDispatcher(
        session_factory,
        NotificationDispatcher(notifier or default_notifier(settings), settings.payments_dashboard_url),
    )
    app.state.account_client = account_client or AccountStatusClient(settings.stripe_secret_key, settings.site_url)

    app.include_router(router)

    @app.post("/stripe/connect/webhook")
    async def stripe_connect_webhook(request: Request, stripe_signature: str = Header(None)):
        # Raw body: the signature covers the exact bytes Stripe sent.
        payload = await request.body()

        try:
            request.app.state.verifier.verify(payload, stripe_signature)
        except SignatureError as exc:
            raise HTTPException(status_code=401, detail=str(exc))

        try:
            event = parse_event(payload)
        except EventParseError:
            logger.warning("Rejecting authentic but malformed webhook body")
            raise HTTPException(status_code=400, detail="Invalid payload")

        # Blocking database and SMTP work runs in the threadpool.
        outcome = await run_in_threadpool(request.app.state.dispatcher.dispatch, event)
        if outcome is DispatchOutcome.FAILED:
            raise HTTPException(status_code=500, detail="Webhook handler failed")
        if outcome is DispatchOutcome.IGNORED:
            return {"received": True, "ignored": True}
        return {"received": True}

    return app

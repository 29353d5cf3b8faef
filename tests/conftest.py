import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from reconciler import models  # noqa: F401  (registers the tables)
from reconciler.config import Settings
from reconciler.database import Base
from reconciler.main import create_app
from tests.helpers import JWT_SECRET, WEBHOOK_SECRET, EventFactory, RecordingNotifier, sign


@pytest.fixture
def events():
    return EventFactory()


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        stripe_secret_key="sk_test_123",
        stripe_connect_webhook_secret=WEBHOOK_SECRET,
        jwt_secret=JWT_SECRET,
        site_url="https://dashboard.example.com",
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def account_client(mocker):
    return mocker.Mock()


@pytest.fixture
def app(settings, session_factory, notifier, account_client):
    return create_app(
        settings=settings,
        session_factory=session_factory,
        notifier=notifier,
        account_client=account_client,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def post_event(client):
    """POST a correctly signed event to the webhook endpoint."""

    def _post(event):
        payload = json.dumps(event)
        return client.post(
            "/stripe/connect/webhook",
            content=payload,
            headers={"stripe-signature": sign(payload), "content-type": "application/json"},
        )

    return _post

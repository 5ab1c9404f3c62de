import os

# Must be set before the app modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["ENABLE_SMS"] = "false"
os.environ["ENABLE_EMAIL"] = "false"

import pytest
from fastapi.testclient import TestClient

import models
from database import engine, SessionLocal
from main import app
from routers.utils import get_notifier
from services.notification_service import DeliveryResult


class RecordingNotifier:
    """Stands in for NotificationService and keeps every code it was asked to send."""

    def __init__(self):
        self.sent = []

    def send_code(self, channel, endpoint, otp):
        self.sent.append((getattr(channel, "value", channel), endpoint, otp))
        return DeliveryResult(channel=getattr(channel, "value", channel))

    @property
    def last_code(self):
        return self.sent[-1][2]


@pytest.fixture(autouse=True)
def reset_database():
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    recorder = RecordingNotifier()
    app.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
def client(notifier):
    return TestClient(app)


@pytest.fixture
def signup(client):
    def _signup(
        name="Test User",
        email="tester@example.com",
        mobile="+15551234567",
        password="Secret123!",
        passkey=None,
    ):
        payload = {"name": name, "email": email, "mobile": mobile, "password": password}
        if passkey is not None:
            payload["passkey"] = passkey
        return client.post("/api/auth/signup", json=payload)

    return _signup


@pytest.fixture
def auth_headers(signup):
    res = signup()
    assert res.status_code == 201
    return {"Authorization": f"Bearer {res.json()['data']['token']}"}

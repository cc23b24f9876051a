import re

import pytest
from fastapi.testclient import TestClient

from catalog_access.core.config import Settings
from catalog_access.core.email_client import EmailSender
from catalog_access.main import create_app
from catalog_access.repositories.memory import MemoryStorage
from catalog_access.services.user_service import seed_primary_admin

ADMIN_PHONE = "9000000001"
ADMIN_PASSWORD = "admin-pass-1"

_TOKEN_RE = re.compile(r"token=([a-f0-9]{64})")


class RecordingEmailSender(EmailSender):
    """Email collaborator that records messages instead of sending them."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: list[dict] = []

    def send(self, to_email, subject, text_body, html_body=None):
        self.sent.append({"to": to_email, "subject": subject, "text": text_body})
        return self.succeed

    def last_token(self) -> str:
        match = _TOKEN_RE.search(self.sent[-1]["text"])
        assert match, "no access link in the last email"
        return match.group(1)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        STORAGE_BACKEND="memory",
        SESSION_SECRET="test-session-secret",
        BASE_URL="http://catalog.test",
        ADMIN_PHONE=ADMIN_PHONE,
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        ADMIN_NAME="Root Admin",
        CLEANUP_PROBABILITY=0.0,
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def mailer() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def app(settings, storage, mailer):
    application = create_app(settings, storage=storage, email_sender=mailer)
    seed_primary_admin(storage, settings)
    return application


@pytest.fixture
def make_client(app):
    """Build a client that looks like one device: fixed IP and user agent."""

    def _make(ip: str = "1.1.1.1", user_agent: str = "UA1") -> TestClient:
        return TestClient(app, headers={"X-Forwarded-For": ip, "User-Agent": user_agent})

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def issue_token(make_client, mailer):
    """Request an access link for ``email`` and return the raw token."""

    def _issue(email: str = "alice@example.com", ip: str = "10.0.0.1") -> str:
        res = make_client(ip=ip).post("/api/auth/request-access", json={"email": email})
        assert res.status_code == 200, res.text
        return mailer.last_token()

    return _issue


@pytest.fixture
def admin_client(make_client) -> TestClient:
    c = make_client(ip="5.5.5.5", user_agent="AdminBrowser")
    res = c.post(
        "/api/auth/admin-login",
        json={"phone": ADMIN_PHONE, "password": ADMIN_PASSWORD},
    )
    assert res.status_code == 200, res.text
    return c


@pytest.fixture
def onboard(make_client, issue_token):
    """
    Full first-visit flow: issue, redeem, complete profile.

    Returns (client, token, body of complete-profile).
    """

    def _onboard(
        email: str = "alice@example.com",
        ip: str = "1.1.1.1",
        user_agent: str = "UA1",
        name: str = "Alice",
        phone: str = "9876543210",
        city: str = "Pune",
    ):
        token = issue_token(email)
        c = make_client(ip=ip, user_agent=user_agent)
        redeemed = c.get("/api/auth/validate-token", params={"token": token})
        assert redeemed.status_code == 200, redeemed.text
        res = c.post(
            "/api/auth/complete-profile",
            json={
                "name": name,
                "phone": phone,
                "city": city,
                "email": email,
                "tokenId": redeemed.json()["tokenId"],
            },
        )
        assert res.status_code == 200, res.text
        return c, token, res.json()

    return _onboard

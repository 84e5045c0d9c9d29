import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import create_document
from mailer import MailDeliveryError, Mailer
from main import create_app


class RecordingMailer(Mailer):
    """Mailer that keeps messages in memory instead of talking to SMTP."""

    def __init__(self, settings):
        super().__init__(settings)
        self.sent = []
        self.fail = False

    def send(self, recipient, subject, html):
        if self.fail:
            raise MailDeliveryError("SMTP unavailable")
        self.sent.append({"recipient": recipient, "subject": subject, "html": html})


@pytest.fixture
def settings():
    return Settings(
        access_token_secret="test-access-secret",
        refresh_token_secret="test-refresh-secret",
        email_verify_token_secret="test-email-verify-secret",
        password_reset_token_secret="test-password-reset-secret",
        bcrypt_rounds=4,
        frontend_url="http://frontend.local",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def mailer(settings):
    return RecordingMailer(settings)


@pytest.fixture
def app(settings, db, mailer):
    return create_app(settings, db=db, mailer=mailer)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(app, db):
    counter = {"n": 0}

    def _make_user(role="user", verified=True, password="secret123", **overrides):
        counter["n"] += 1
        n = counter["n"]
        data = {
            "email": f"user{n}@mail.com",
            "username": f"user{n}",
            "password_hash": app.state.hasher.hash(password),
            "first_name": "Olena",
            "last_name": "Koval",
            "is_verified": verified,
            "role": role,
            "avatar": None,
            "bio": None,
        }
        data.update(overrides)
        return create_document(db, "user", data)

    return _make_user


@pytest.fixture
def auth_header(app):
    def _auth_header(user):
        token = app.state.tokens.create_access_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _auth_header

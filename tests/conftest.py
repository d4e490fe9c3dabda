"""Shared fixtures: an app per test on in-memory SQLite, with a recording push client."""

from __future__ import annotations

import pytest
from firebase_admin import exceptions, messaging

from app import create_app
from config import Config
from extensions import db
from notifications.push import SendResult


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "portal@example.com"
    GRIEVANCE_ADMIN_EMAIL = "admin@example.com"
    GRIEVANCE_ADMIN_UID = "admin-uid"
    GRIEVANCE_USER_EMAIL = "user@example.com"
    GRIEVANCE_MAIL_SENDER = ""
    GRIEVANCE_CHANNEL = "email"
    GRIEVANCE_NOTIFY_ON = "status"
    GRIEVANCE_CLICK_TARGET = "https://grievances.example.com/"
    FIREBASE_CREDENTIALS = None
    LOG_LEVEL = "DEBUG"


class FakePushClient:
    """Records sends.

    Tokens listed in ``stale`` come back as unregistered, tokens in ``rejected``
    fail with some other FCM error, and ``down`` makes the whole send raise.
    """

    def __init__(self, stale=(), rejected=()) -> None:
        self.calls: list[tuple[list[str], object]] = []
        self.stale = set(stale)
        self.rejected = set(rejected)
        self.down = False

    def _result(self, token):
        if token in self.stale:
            return SendResult(token=token, success=False, error=messaging.UnregisteredError("token not registered"))
        if token in self.rejected:
            return SendResult(token=token, success=False, error=exceptions.InvalidArgumentError("invalid payload"))
        return SendResult(token=token, success=True)

    def send(self, tokens, payload):
        tokens = list(tokens)
        self.calls.append((tokens, payload))
        if self.down:
            raise exceptions.UnavailableError("FCM is unavailable")
        return [self._result(t) for t in tokens]


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
def make_app(push_client):
    """Build an app with config overrides, e.g. ``make_app(GRIEVANCE_CHANNEL="push")``."""
    contexts = []

    def _make(**overrides):
        config = type("OverrideConfig", (TestingConfig,), overrides)
        app = create_app(config, push_client=push_client)
        ctx = app.app_context()
        ctx.push()
        db.create_all()
        contexts.append(ctx)
        return app

    yield _make

    for ctx in reversed(contexts):
        db.session.remove()
        db.drop_all()
        ctx.pop()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


def file_grievance(client, title="Forgot anniversary", client_id="u1", **fields):
    body = {"title": title, "client_id": client_id, "severity": "High", "category": "Forgetfulness"}
    body.update(fields)
    resp = client.post("/grievances/", json=body)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()

"""Push channel: token lookup, payloads and unregistered-token cleanup."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

from conftest import file_grievance
from extensions import db
from notifications import push
from notifications.models import FcmToken
from notifications.push import FirebasePushClient


@pytest.fixture
def push_app(make_app):
    return make_app(GRIEVANCE_CHANNEL="push", GRIEVANCE_NOTIFY_ON="updates")


def _add_tokens(uid, *tokens):
    for token in tokens:
        db.session.add(FcmToken(token=token, uid=uid))
    db.session.commit()


def _warnings(caplog):
    return [r for r in caplog.records if r.name == "notifications.notifier" and r.levelno >= logging.WARNING]


def test_filing_pushes_to_admin_devices(push_app, push_client):
    _add_tokens("admin-uid", "admin-phone", "admin-laptop")

    file_grievance(push_app.test_client(), title="Forgot anniversary")

    assert len(push_client.calls) == 1
    tokens, payload = push_client.calls[0]
    assert sorted(tokens) == ["admin-laptop", "admin-phone"]
    assert "Forgot anniversary" in payload.title
    assert payload.click_target == "https://grievances.example.com/"
    assert payload.icon == "/icons/icon-192.png"


def test_appended_update_pushes_update_text_to_owner(push_app, push_client):
    _add_tokens("u1", "owner-phone")
    client = push_app.test_client()
    g = file_grievance(client, client_id="u1")
    push_client.calls.clear()

    client.post(f"/admin/grievances/{g['id']}/updates", json={"text": "Fixed it"})

    assert len(push_client.calls) == 1
    tokens, payload = push_client.calls[0]
    assert tokens == ["owner-phone"]
    assert payload.body == "Fixed it"
    assert "Forgot anniversary" in payload.title


def test_no_owner_tokens_sends_nothing_and_logs_once(push_app, push_client, caplog):
    _add_tokens("admin-uid", "admin-phone")
    client = push_app.test_client()
    g = file_grievance(client, client_id="u1")
    push_client.calls.clear()
    caplog.clear()

    with caplog.at_level(logging.WARNING, logger="notifications.notifier"):
        client.post(f"/admin/grievances/{g['id']}/updates", json={"text": "Fixed it"})

    assert push_client.calls == []
    assert len(_warnings(caplog)) == 1


def test_unregistered_tokens_are_deleted(push_app, push_client):
    _add_tokens("u1", "fresh", "stale")
    push_client.stale.add("stale")
    client = push_app.test_client()
    g = file_grievance(client, client_id="u1")

    client.post(f"/admin/grievances/{g['id']}/updates", json={"text": "Fixed it"})

    db.session.expire_all()
    remaining = [t.token for t in FcmToken.query.all()]
    assert remaining == ["fresh"]


def test_status_variant_pushes_new_status(make_app, push_client):
    app = make_app(GRIEVANCE_CHANNEL="push", GRIEVANCE_NOTIFY_ON="status")
    _add_tokens("u1", "owner-phone")
    client = app.test_client()
    g = file_grievance(client, client_id="u1")

    client.post(f"/admin/grievances/{g['id']}/status", json={"status": "Working"})

    tokens, payload = push_client.calls[-1]
    assert tokens == ["owner-phone"]
    assert payload.body == "The new status is: Working"


def test_token_registration_moves_token_between_users(push_app):
    client = push_app.test_client()

    assert client.put("/notifications/tokens/dev-1", json={"uid": "u1"}).status_code == 200
    assert client.put("/notifications/tokens/dev-1", json={"uid": "u2"}).status_code == 200

    rows = FcmToken.query.all()
    assert [(r.token, r.uid) for r in rows] == [("dev-1", "u2")]

    client.delete("/notifications/tokens/dev-1")
    assert FcmToken.query.count() == 0


def test_token_registration_requires_uid(push_app):
    resp = push_app.test_client().put("/notifications/tokens/dev-1", json={})
    assert resp.status_code == 400


def test_push_outage_is_logged_and_filing_still_succeeds(push_app, push_client, caplog):
    _add_tokens("admin-uid", "admin-phone")
    push_client.down = True

    with caplog.at_level(logging.ERROR, logger="notifications.notifier"):
        file_grievance(push_app.test_client())

    assert len(push_client.calls) == 1
    assert "Push send failed for 1 token(s)" in caplog.text
    assert [t.token for t in FcmToken.query.all()] == ["admin-phone"]


def test_rejected_token_is_logged_but_kept(push_app, push_client, caplog):
    _add_tokens("admin-uid", "admin-phone", "admin-laptop")
    push_client.rejected.add("admin-laptop")

    with caplog.at_level(logging.ERROR, logger="notifications.notifier"):
        file_grievance(push_app.test_client())

    assert "Failure sending notification to admin-laptop" in caplog.text
    db.session.expire_all()
    assert sorted(t.token for t in FcmToken.query.all()) == ["admin-laptop", "admin-phone"]


def test_many_admin_devices_go_out_in_batches(push_app, monkeypatch):
    tokens = [f"admin-device-{i:03d}" for i in range(501)]
    _add_tokens("admin-uid", *tokens)
    batches = []

    def fake_send_each(messages, app=None):
        batches.append([m.token for m in messages])
        return SimpleNamespace(
            success_count=len(messages),
            failure_count=0,
            responses=[SimpleNamespace(success=True, exception=None) for _ in messages],
        )

    monkeypatch.setattr(push.messaging, "send_each", fake_send_each)
    push_app.extensions["notifier"].push_client = FirebasePushClient(None)
    hub = push_app.extensions["live_queries"]

    with hub.subscribe() as sub:
        assert sub.next_snapshot(timeout=1) == []
        resp = push_app.test_client().post("/grievances/", json={"title": "Late again", "client_id": "u1"})

        assert resp.status_code == 201
        assert [len(b) for b in batches] == [500, 1]
        assert sorted(batches[0] + batches[1]) == sorted(tokens)
        assert [g["title"] for g in sub.next_snapshot(timeout=1)] == ["Late again"]

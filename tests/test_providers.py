"""HTTP tests for the Mailgun, SendGrid and SparkPost webhooks."""

from __future__ import annotations

import base64
import json

import pytest
from conftest import FakeRTClient
from fastapi.testclient import TestClient

from rtmail.api.main import create_app

RAW = "From: sender@example.net\r\nTo: help@example.com\r\nSubject: hi\r\n\r\nbody\r\n"


@pytest.fixture
def rt_client():
    return FakeRTClient(known={"help@example.com", "sales@example.com"}, failing={"broken@example.com"})


@pytest.fixture
def client(rt_client):
    return TestClient(create_app(rt_client=rt_client, topic_arn=""))


# Mailgun


def test_mailgun_relayed(client, rt_client):
    resp = client.post("/mg/mx/mime", data={"recipient": "help@example.com", "body-mime": RAW})

    assert resp.status_code == 204
    assert rt_client.posts == [("help@example.com", RAW)]


def test_mailgun_body_as_file_part(client, rt_client):
    resp = client.post(
        "/mg/mx/mime",
        data={"recipient": "help@example.com"},
        files={"body-mime": ("message.mime", RAW.encode("utf-8"), "message/rfc822")},
    )

    assert resp.status_code == 204
    assert rt_client.posts == [("help@example.com", RAW)]


def test_mailgun_unknown_recipient(client):
    resp = client.post("/mg/mx/mime", data={"recipient": "nobody@example.com", "body-mime": RAW})
    assert resp.status_code == 404


def test_mailgun_rt_failure(client):
    resp = client.post("/mg/mx/mime", data={"recipient": "broken@example.com", "body-mime": RAW})
    assert resp.status_code == 503


def test_mailgun_missing_recipient(client, rt_client):
    resp = client.post("/mg/mx/mime", data={"body-mime": RAW})

    assert resp.status_code == 400
    assert rt_client.posts == []


# SendGrid


def _sendgrid(client, envelope, email=RAW):
    data = {"email": email}
    if envelope is not None:
        data["envelope"] = envelope if isinstance(envelope, str) else json.dumps(envelope)
    return client.post("/sendgrid/mx", data=data)


def test_sendgrid_relays_every_recipient(client, rt_client):
    resp = _sendgrid(client, {"to": ["nobody@example.com", "sales@example.com"], "from": "sender@example.net"})

    assert resp.status_code == 204
    assert [r for r, _ in rt_client.posts] == ["nobody@example.com", "sales@example.com"]


def test_sendgrid_all_not_found(client):
    resp = _sendgrid(client, {"to": ["a@x.example", "b@x.example"], "from": "sender@example.net"})
    assert resp.status_code == 404


def test_sendgrid_rt_failure(client):
    resp = _sendgrid(client, {"to": ["help@example.com", "broken@example.com"], "from": "s@example.net"})
    assert resp.status_code == 503


@pytest.mark.parametrize("envelope", [None, "{not json", {"to": [], "from": "s@example.net"}, {"to": "help@example.com"}])
def test_sendgrid_bad_envelope(client, rt_client, envelope):
    resp = _sendgrid(client, envelope)

    assert resp.status_code == 400
    assert rt_client.posts == []


# SparkPost


def _relay_batch(*messages):
    return [{"msys": {"relay_message": m}} for m in messages]


def _relay_message(rcpt_to, email=RAW, is_base64=False):
    return {
        "msg_from": "sender@example.net",
        "rcpt_to": rcpt_to,
        "content": {"email_rfc822": email, "email_rfc822_is_base64": is_base64, "subject": "hi"},
    }


def test_sparkpost_head(client):
    assert client.head("/spark").status_code == 200


def test_sparkpost_events_acknowledged(client):
    events = [
        {"msys": {"message_event": {"type": "delivery", "event_id": "1"}}},
        {"msys": {"track_event": {"type": "open", "event_id": "2"}}},
    ]
    resp = client.post("/spark", json=events)

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_sparkpost_events_bad_json(client):
    resp = client.post("/spark", content=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400


def test_sparkpost_relay(client, rt_client):
    resp = client.post("/spark/mx", json=_relay_batch(_relay_message("help@example.com")))

    assert resp.status_code == 204
    assert rt_client.posts == [("help@example.com", RAW)]


def test_sparkpost_relay_base64(client, rt_client):
    encoded = base64.b64encode(RAW.encode("utf-8")).decode("ascii")
    resp = client.post("/spark/mx", json=_relay_batch(_relay_message("help@example.com", encoded, True)))

    assert resp.status_code == 204
    assert rt_client.posts == [("help@example.com", RAW.encode("utf-8"))]


def test_sparkpost_relay_not_found(client):
    resp = client.post("/spark/mx", json=_relay_batch(_relay_message("nobody@example.com")))
    assert resp.status_code == 404


def test_sparkpost_relay_stops_at_first_failure(client, rt_client):
    batch = _relay_batch(_relay_message("broken@example.com"), _relay_message("help@example.com"))
    resp = client.post("/spark/mx", json=batch)

    assert resp.status_code == 503
    assert [r for r, _ in rt_client.posts] == ["broken@example.com"]


def test_sparkpost_relay_bad_json(client):
    resp = client.post("/spark/mx", content=b"[{", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400

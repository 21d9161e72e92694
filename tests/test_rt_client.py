"""RTClient form posting and failure detection."""

import time
from unittest.mock import patch

import pytest
import requests
from conftest import FakeSession, make_response

from rtmail.common.deadline import DeadlineExceededError
from rtmail.rt.client import QueueNotFoundError, RTClient, RTError
from rtmail.rt.relay import relay_message
from rtmail.rt.schemas import RTConfig

RT_URL = "https://rt.example.org/REST/1.0/NoAuth/mail-gateway"


@pytest.fixture
def config():
    return RTConfig.model_validate({"rt-url": RT_URL, "queues": {"help": "help", "support@example.com": "support"}})


def test_postmail_posts_form(config):
    session = FakeSession(make_response(200, "ok: Message recorded"))
    client = RTClient(config, session=session, timeout=(1.0, 2.0))

    client.postmail("help-comment@example.com", "From: a@b\r\n\r\nhi")

    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == RT_URL
    assert kwargs["data"] == {"queue": "help", "action": "comment", "message": "From: a@b\r\n\r\nhi"}
    assert kwargs["timeout"] == (1.0, 2.0)


def test_postmail_passes_bytes_through(config):
    session = FakeSession(make_response(200, "ok"))
    client = RTClient(config, session=session)

    client.postmail("support@example.com", b"raw bytes")

    assert session.calls[0][2]["data"]["message"] == b"raw bytes"
    assert session.calls[0][2]["data"]["action"] == "correspond"


def test_postmail_unroutable_raises_not_found_without_posting(config):
    session = FakeSession()
    client = RTClient(config, session=session)

    with pytest.raises(QueueNotFoundError) as exc_info:
        client.postmail("nobody@example.com", "msg")

    assert exc_info.value.not_found is True
    assert exc_info.value.recipient == "nobody@example.com"
    assert session.calls == []


def test_postmail_failure_in_body(config):
    client = RTClient(config, session=FakeSession(make_response(200, "not ok - failure: queue disabled")))

    with pytest.raises(RTError) as exc_info:
        client.postmail("help@example.com", "msg")
    assert exc_info.value.not_found is False


def test_postmail_error_status(config):
    client = RTClient(config, session=FakeSession(make_response(500, "Internal Server Error")))

    with pytest.raises(RTError, match="500"):
        client.postmail("help@example.com", "msg")


def test_postmail_transport_error(config):
    client = RTClient(config, session=FakeSession(requests.exceptions.ConnectionError("refused")))

    with pytest.raises(RTError, match="postform err"):
        client.postmail("help@example.com", "msg")


def test_postmail_records_metric(config):
    client = RTClient(config, session=FakeSession(make_response(200, "ok")))

    with patch("rtmail.rt.client.track_rt_post") as mock_track:
        client.postmail("help@example.com", "msg")
        with pytest.raises(QueueNotFoundError):
            client.postmail("nobody@example.com", "msg")

    assert [c.args[0] for c in mock_track.call_args_list] == ["ok", "not_found"]


def test_from_file(tmp_path):
    path = tmp_path / "rt-mail.json"
    path.write_text('{"rt-url": "%s", "queues": {"help": "help"}}' % RT_URL)

    client = RTClient.from_file(str(path), session=FakeSession())

    assert client.config.rt_url == RT_URL
    assert client.router.resolve("help@x.example").queue == "help"


def test_postmail_timeout_clamped_to_deadline(config):
    session = FakeSession(make_response(200, "ok"))
    client = RTClient(config, session=session, timeout=(5.0, 10.0))

    client.postmail("help@example.com", "raw", deadline=time.monotonic() + 0.5)

    connect, read = session.calls[0][2]["timeout"]
    assert connect <= 0.5
    assert read <= 0.5


def test_relay_through_client_honours_deadline(config):
    session = FakeSession(make_response(200, "ok"))
    client = RTClient(config, session=session, timeout=(5.0, 10.0))

    relay_message(client, ["help@example.com"], "raw", deadline=time.monotonic() + 0.5)

    assert max(session.calls[0][2]["timeout"]) <= 0.5


def test_postmail_after_deadline_does_not_post(config):
    session = FakeSession()
    client = RTClient(config, session=session)

    with pytest.raises(DeadlineExceededError):
        client.postmail("help@example.com", "raw", deadline=time.monotonic() - 1)
    assert session.calls == []

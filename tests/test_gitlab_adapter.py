import json

import pytest
from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from conftest import FakeResponse, FakeSession
from hookbot.channels import ChannelReplyError, ConfigValidationError, GitLabAdapter
from hookbot.models import (
    ChannelType,
    GitLabReplyContext,
    NormalizedMessage,
    SlackReplyContext,
)

CONFIG = {"base_url": "https://gitlab.example.com/", "token": "glpat-1"}
HEADERS = {"X-Gitlab-Token": "s3cret", "X-Gitlab-Event": "Note Hook"}


def _note_payload(**attributes) -> dict:
    object_attributes = {
        "note": "@opencode ask why does it crash?",
        "noteable_type": "Issue",
        "system": False,
        "url": "https://gitlab.example.com/grp/app/-/issues/7#note_1",
    }
    object_attributes.update(attributes)
    return {
        "object_kind": "note",
        "project_id": 42,
        "project": {"id": 42, "web_url": "https://gitlab.example.com/grp/app"},
        "user": {"username": "alice"},
        "issue": {"iid": 7, "title": "Crash on start"},
        "object_attributes": object_attributes,
    }


def _client(adapter, received, secret="s3cret", config=CONFIG):
    app = FastAPI()
    handler = adapter.build_handler("cfg-1", secret, config, received.append)

    @app.api_route("/hook", methods=["GET", "POST"])
    async def hook(request: Request):
        return await handler(request)

    return TestClient(app)


def test_note_on_issue_is_dispatched():
    received = []
    client = _client(GitLabAdapter(session=FakeSession()), received)

    resp = client.post("/hook", content=json.dumps(_note_payload()), headers=HEADERS)

    assert resp.status_code == 200
    assert len(received) == 1
    message = received[0]
    assert message.channel is ChannelType.GITLAB
    assert message.channel_config_id == "cfg-1"
    assert message.title == "Crash on start"
    assert message.text == "@opencode ask why does it crash?"
    assert message.author == "alice"
    assert message.external_ref.endswith("/-/issues/7#note_1")
    assert message.reply_context == GitLabReplyContext(project_id=42, issue_iid=7)


def test_external_ref_falls_back_to_issue_url():
    adapter = GitLabAdapter(session=FakeSession())
    payload = _note_payload()
    del payload["object_attributes"]["url"]
    result = adapter.parse_webhook("cfg-1", CONFIG, HEADERS, json.dumps(payload).encode())
    assert result.message.external_ref == "https://gitlab.example.com/grp/app/-/issues/7"


@pytest.mark.parametrize("token", ["wrong", ""])
def test_wrong_token_is_forbidden(token):
    received = []
    client = _client(GitLabAdapter(session=FakeSession()), received)
    resp = client.post(
        "/hook",
        content=json.dumps(_note_payload()),
        headers={**HEADERS, "X-Gitlab-Token": token},
    )
    assert resp.status_code == 403
    assert received == []


def test_non_post_is_rejected():
    client = _client(GitLabAdapter(session=FakeSession()), [])
    assert client.get("/hook", headers=HEADERS).status_code == 405


@pytest.mark.parametrize(
    "body,status",
    [(b"", 400), (b"{not json", 422), (b"[1, 2]", 422)],
)
def test_bad_bodies(body, status):
    received = []
    client = _client(GitLabAdapter(session=FakeSession()), received)
    resp = client.post("/hook", content=body, headers=HEADERS)
    assert resp.status_code == status
    assert received == []


def _with(**overrides) -> dict:
    payload = _note_payload()
    payload.update(overrides)
    return payload


@pytest.mark.parametrize(
    "payload",
    [
        _with(object_attributes="oops"),
        _with(issue=["iid", 7]),
        _with(user="alice"),
        _with(project=42, project_id=None),
        _note_payload(note={"text": "hi"}),
        _with(issue={"iid": "seven", "title": "Crash"}),
    ],
)
def test_wrongly_typed_note_is_unprocessable(payload):
    received = []
    client = _client(GitLabAdapter(session=FakeSession()), received)
    resp = client.post("/hook", content=json.dumps(payload), headers=HEADERS)
    assert resp.status_code == 422
    assert received == []


@pytest.mark.parametrize(
    "headers,payload",
    [
        ({**HEADERS, "X-Gitlab-Event": "Push Hook"}, _note_payload()),
        (HEADERS, _note_payload(noteable_type="MergeRequest")),
        (HEADERS, _note_payload(system=True)),
    ],
)
def test_ignored_events_are_acknowledged(headers, payload):
    received = []
    client = _client(GitLabAdapter(session=FakeSession()), received)
    resp = client.post("/hook", content=json.dumps(payload), headers=headers)
    assert resp.status_code == 200
    assert received == []


def test_confidential_notes_are_processed():
    received = []
    client = _client(GitLabAdapter(session=FakeSession()), received)
    resp = client.post(
        "/hook",
        content=json.dumps(_note_payload()),
        headers={**HEADERS, "X-Gitlab-Event": "Confidential Note Hook"},
    )
    assert resp.status_code == 200
    assert len(received) == 1


def test_validate_config_names_missing_key():
    adapter = GitLabAdapter(session=FakeSession())
    adapter.validate_config(CONFIG)
    with pytest.raises(ConfigValidationError, match="missing required field: token"):
        adapter.validate_config({"base_url": "https://gitlab.example.com"})


def _message() -> NormalizedMessage:
    return NormalizedMessage(
        channel=ChannelType.GITLAB,
        channel_config_id="cfg-1",
        external_ref="ref",
        title="t",
        text="x",
        author="alice",
        reply_context=GitLabReplyContext(project_id=42, issue_iid=7),
    )


def test_send_reply_posts_note():
    session = FakeSession([FakeResponse({"id": 1}, status_code=201)])
    GitLabAdapter(session=session).send_reply(CONFIG, _message(), "hello")

    call = session.requests[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://gitlab.example.com/api/v4/projects/42/issues/7/notes"
    assert call["headers"] == {"PRIVATE-TOKEN": "glpat-1"}
    assert call["json"] == {"body": "hello"}
    assert call["timeout"] == 30.0


def test_send_reply_uses_configured_timeout(repository, settings):
    repository.set_setting("gitlab_http_timeout", "5s")
    session = FakeSession([FakeResponse({}, status_code=201)])
    GitLabAdapter(settings=settings, session=session).send_reply(CONFIG, _message(), "x")
    assert session.requests[0]["timeout"] == 5.0


def test_send_reply_raises_on_http_error():
    session = FakeSession([FakeResponse({"message": "403 Forbidden"}, status_code=403)])
    with pytest.raises(ChannelReplyError, match="status 403"):
        GitLabAdapter(session=session).send_reply(CONFIG, _message(), "hello")


def test_send_reply_wraps_transport_errors(request_exception):
    session = FakeSession([request_exception])
    with pytest.raises(ChannelReplyError):
        GitLabAdapter(session=session).send_reply(CONFIG, _message(), "hello")


def test_send_reply_rejects_foreign_context():
    message = _message()
    message.reply_context = SlackReplyContext(channel="C1", thread_ts="1")
    session = FakeSession()
    with pytest.raises(ChannelReplyError):
        GitLabAdapter(session=session).send_reply(CONFIG, message, "hello")
    assert session.requests == []

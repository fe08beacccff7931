import pytest

from conftest import FakeResponse, FakeSession
from hookbot.channels import ChannelRegistry, GitLabAdapter
from hookbot.dispatch import (
    AnalysisError,
    AnalysisSessionClient,
    AnalysisTimeout,
    Dispatcher,
)
from hookbot.models import (
    ChannelType,
    GitLabReplyContext,
    NormalizedMessage,
    TaskStatus,
    TriggerMode,
)

GITLAB_CONFIG = {"base_url": "https://gitlab.example.com", "token": "glpat-1"}


class _FakeAnalysisClient:
    def __init__(self, result: str = "Use a mutex.", error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = []

    def analyze(self, prompt: str, title: str) -> str:
        self.calls.append({"prompt": prompt, "title": title})
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def reply_session():
    return FakeSession()


@pytest.fixture
def registry(settings, reply_session):
    registry = ChannelRegistry()
    registry.register(GitLabAdapter(settings=settings, session=reply_session))
    return registry


@pytest.fixture
def gitlab_config(make_channel_config, repository):
    config = make_channel_config("gitlab", GITLAB_CONFIG, id="cfg-1")
    repository.set_trigger_keywords(
        config.project_id,
        [("@opencode ask", TriggerMode.ASK), ("@opencode do", TriggerMode.DO)],
    )
    return config


def _message(text="@opencode ask why is the cache stale?") -> NormalizedMessage:
    return NormalizedMessage(
        channel=ChannelType.GITLAB,
        channel_config_id="cfg-1",
        external_ref="https://gitlab.example.com/grp/app/-/issues/7",
        title="Stale cache",
        text=text,
        author="alice",
        reply_context=GitLabReplyContext(project_id=42, issue_iid=7),
        project_id="proj-1",
    )


def _dispatcher(repository, registry, settings, client):
    return Dispatcher(repository, registry, settings, client_factory=lambda: client)


def _reply_bodies(session):
    return [r["json"]["body"] for r in session.requests]


def test_matching_message_completes_task(
    repository, registry, settings, gitlab_config, reply_session
):
    reply_session.queue(FakeResponse({}, 201), FakeResponse({}, 201))
    client = _FakeAnalysisClient()

    task = _dispatcher(repository, registry, settings, client).handle_message(_message())

    assert task is not None
    stored = repository.get_task(task.id)
    assert stored.status is TaskStatus.COMPLETED
    assert stored.result == "Use a mutex."
    assert stored.trigger_mode == "ask"
    assert stored.trigger_keyword == "@opencode ask"
    assert stored.project_id == "proj-1"
    assert stored.channel_config_id == "cfg-1"
    assert stored.started_at is not None and stored.completed_at is not None

    bodies = _reply_bodies(reply_session)
    assert len(bodies) == 2
    assert "received your request (ask mode)" in bodies[0]
    assert "Use a mutex." in bodies[1]
    assert all(
        r["url"].endswith("/api/v4/projects/42/issues/7/notes")
        for r in reply_session.requests
    )

    prompt = client.calls[0]["prompt"]
    assert "## Title: Stale cache" in prompt
    assert "### Message from @alice:" in prompt
    assert client.calls[0]["title"].startswith("[gitlab/ask]")


def test_first_keyword_in_mode_order_wins(
    repository, registry, settings, gitlab_config, reply_session
):
    reply_session.queue(FakeResponse({}, 201), FakeResponse({}, 201))
    task = _dispatcher(
        repository, registry, settings, _FakeAnalysisClient()
    ).handle_message(_message("@opencode do it, @opencode ask first"))
    assert task.trigger_mode == "ask"


def test_no_keyword_means_no_task_and_no_reply(
    repository, registry, settings, gitlab_config, reply_session
):
    client = _FakeAnalysisClient()
    result = _dispatcher(repository, registry, settings, client).handle_message(
        _message("just a regular comment")
    )
    assert result is None
    assert repository.tasks == {}
    assert reply_session.requests == []
    assert client.calls == []


def test_analysis_failure_marks_task_failed(
    repository, registry, settings, gitlab_config, reply_session
):
    reply_session.queue(FakeResponse({}, 201), FakeResponse({}, 201))
    client = _FakeAnalysisClient(error=AnalysisTimeout("analysis timed out"))

    task = _dispatcher(repository, registry, settings, client).handle_message(_message())

    stored = repository.get_task(task.id)
    assert stored.status is TaskStatus.FAILED
    assert stored.error_message == "analysis timed out"
    assert stored.result is None
    bodies = _reply_bodies(reply_session)
    assert len(bodies) == 2
    assert "analysis timed out" in bodies[1]
    assert "error" in bodies[1]


def test_unexpected_client_error_marks_task_failed(
    repository, registry, settings, gitlab_config, reply_session
):
    reply_session.queue(FakeResponse({}, 201), FakeResponse({}, 201))
    client = _FakeAnalysisClient(error=KeyError("parts"))

    task = _dispatcher(repository, registry, settings, client).handle_message(_message())

    stored = repository.get_task(task.id)
    assert stored.status is TaskStatus.FAILED
    assert "unexpected error" in stored.error_message
    assert len(_reply_bodies(reply_session)) == 2


def test_malformed_analysis_response_marks_task_failed(
    repository, registry, settings, gitlab_config, reply_session
):
    reply_session.queue(FakeResponse({}, 201), FakeResponse({}, 201))
    analysis_session = FakeSession(
        [
            FakeResponse({"id": "ses_1"}),
            FakeResponse({"info": "oops", "parts": [{"type": "text", "text": "x"}]}),
            FakeResponse({}, 204),
        ]
    )
    client = AnalysisSessionClient(
        "http://opencode:4096", "opencode", "pw", session=analysis_session
    )

    task = _dispatcher(repository, registry, settings, client).handle_message(_message())

    stored = repository.get_task(task.id)
    assert stored.status is TaskStatus.FAILED
    assert "unexpected response shape" in stored.error_message
    bodies = _reply_bodies(reply_session)
    assert len(bodies) == 2
    assert "unexpected response shape" in bodies[1]


def test_unregistered_adapter_creates_no_task(
    repository, settings, make_channel_config, reply_session
):
    make_channel_config("gitlab", GITLAB_CONFIG, id="cfg-1")
    repository.set_trigger_keywords("proj-1", [("@opencode ask", "ask")])

    result = _dispatcher(
        repository, ChannelRegistry(), settings, _FakeAnalysisClient()
    ).handle_message(_message())

    assert result is None
    assert repository.tasks == {}


def test_unknown_channel_config_aborts(repository, registry, settings):
    client = _FakeAnalysisClient()
    assert (
        _dispatcher(repository, registry, settings, client).handle_message(_message())
        is None
    )
    assert repository.tasks == {}
    assert client.calls == []


def test_reply_failures_do_not_stop_the_flow(
    repository, registry, settings, gitlab_config, reply_session, caplog
):
    reply_session.queue(
        FakeResponse({"message": "403"}, 403), FakeResponse({"message": "403"}, 403)
    )
    with caplog.at_level("ERROR", logger="hookbot.dispatch.dispatcher"):
        task = _dispatcher(
            repository, registry, settings, _FakeAnalysisClient()
        ).handle_message(_message())

    assert repository.get_task(task.id).status is TaskStatus.COMPLETED
    assert "Failed to send ack reply" in caplog.text
    assert "Failed to send result reply" in caplog.text


def test_keyword_lookup_failure_aborts(registry, settings, gitlab_config, repository):
    def broken(project_id):
        raise RuntimeError("db down")

    repository.get_trigger_keywords = broken
    result = _dispatcher(
        repository, registry, settings, _FakeAnalysisClient()
    ).handle_message(_message())
    assert result is None
    assert repository.tasks == {}


def test_status_update_failure_is_logged(
    repository, registry, settings, gitlab_config, reply_session, caplog
):
    reply_session.queue(FakeResponse({}, 201), FakeResponse({}, 201))
    original = repository.update_task_status

    def flaky(task_id, status, **kwargs):
        if status is TaskStatus.PROCESSING:
            raise RuntimeError("lost connection")
        return original(task_id, status, **kwargs)

    repository.update_task_status = flaky
    with caplog.at_level("ERROR", logger="hookbot.dispatch.dispatcher"):
        _dispatcher(
            repository, registry, settings, _FakeAnalysisClient()
        ).handle_message(_message())

    assert "Failed to move task" in caplog.text
    # The final update is rejected by the lifecycle because processing was skipped.
    assert "completed" in caplog.text


def test_default_client_factory_uses_settings(repository, registry, settings, monkeypatch):
    created = []

    def fake_from_settings(cls, store, session=None):
        created.append(store)
        return _FakeAnalysisClient(error=AnalysisError("x"))

    monkeypatch.setattr(
        "hookbot.dispatch.dispatcher.AnalysisSessionClient.from_settings",
        classmethod(fake_from_settings),
    )
    dispatcher = Dispatcher(repository, registry, settings)
    client = dispatcher._client_factory()
    assert created == [settings]
    assert isinstance(client, _FakeAnalysisClient)


def test_review_request_scenario(
    repository, registry, settings, make_channel_config, reply_session
):
    make_channel_config("gitlab", GITLAB_CONFIG, id="cfg-1")
    repository.set_trigger_keywords("proj-1", [("@opencode", "ask")])
    reply_session.queue(FakeResponse({}, 201), FakeResponse({}, 201))

    _dispatcher(
        repository, registry, settings, _FakeAnalysisClient("Looks good overall.")
    ).handle_message(_message("hey @opencode please review"))

    (task,) = repository.tasks.values()
    assert task.status is TaskStatus.COMPLETED
    bodies = _reply_bodies(reply_session)
    assert len(bodies) >= 2
    assert "ask" in bodies[0]
    assert "Looks good overall." in bodies[1]

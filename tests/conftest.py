import json
import pathlib
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest
import requests
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from hookbot.app_logging import init_logging
from hookbot.models import ChannelConfig
from hookbot.storage import InMemoryDispatchRepository, SettingsStore


class FakeResponse:
    def __init__(
        self, payload: Any = None, status_code: int = 200, text: str | None = None
    ):
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Stand-in for :class:`requests.Session` recording every call.

    Queued items are returned in order; exceptions are raised instead.
    """

    def __init__(self, responses: List[Any] | None = None):
        self._responses = list(responses or [])
        self.requests: List[Dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        if not self._responses:
            raise AssertionError(f"no more responses queued for {method} {url}")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("POST", url, **kwargs)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def repository():
    return InMemoryDispatchRepository()


@pytest.fixture
def settings(repository):
    return SettingsStore(repository)


@pytest.fixture
def make_channel_config(repository):
    def _make(channel_type: str, config: Dict[str, Any], **overrides: Any) -> ChannelConfig:
        now = datetime.now(timezone.utc)
        values: Dict[str, Any] = {
            "id": f"cfg-{channel_type}",
            "project_id": "proj-1",
            "channel_type": channel_type,
            "config": config,
            "webhook_secret": "s3cret",
            "webhook_path": f"demo/{channel_type}",
            "enabled": True,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        return repository.add_channel_config(ChannelConfig(**values))

    return _make


@pytest.fixture
def request_exception():
    return requests.ConnectionError("connection refused")


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app

"""Base abstractions for chat channel adapters."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import requests
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from ..models import ChannelType, NormalizedMessage
from ..storage.settings import SettingsStore

OnMessage = Callable[[NormalizedMessage], None]
RequestHandler = Callable[[Request], Awaitable[Response]]


class ConfigValidationError(ValueError):
    """Raised when a channel configuration misses a required key."""


class ChannelReplyError(RuntimeError):
    """Raised when a reply could not be delivered to the channel."""


@dataclass
class WebhookResult:
    """Outcome of verifying and parsing one webhook request."""

    status_code: int = 200
    message: NormalizedMessage | None = None
    content: dict[str, Any] | None = None
    detail: str | None = None

    @classmethod
    def reject(cls, status_code: int, detail: str) -> "WebhookResult":
        return cls(status_code=status_code, detail=detail)


class ChannelAdapter(ABC):
    """Abstract base class encapsulating channel-specific behaviour."""

    #: Stable identifier used in channel configs and the registry.
    channel_type: ChannelType
    #: Keys that must be present in the channel configuration.
    required_config_keys: tuple[str, ...] = ()
    #: Setting holding the outbound HTTP timeout for replies.
    timeout_setting: str | None = None

    def __init__(
        self,
        *,
        settings: SettingsStore | None = None,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(
            f"hookbot.channels.{self.channel_type.value}"
        )

    # ------------------------------------------------------------------
    # Contract

    def validate_config(self, config: Mapping[str, Any]) -> None:
        """Raise :class:`ConfigValidationError` naming the first missing key."""

        for key in self.required_config_keys:
            if key not in (config or {}):
                raise ConfigValidationError(f"missing required field: {key}")

    def build_handler(
        self,
        channel_config_id: str,
        secret: str,
        config: Mapping[str, Any],
        on_message: OnMessage,
    ) -> RequestHandler:
        """Return a request handler bound to one channel configuration.

        Verification and parsing run before the response is produced. The
        extracted message is handed to ``on_message`` as a background task of
        the response, so it only runs once the response has been sent.
        """

        config = dict(config or {})

        async def handler(request: Request) -> Response:
            if request.method != "POST":
                return PlainTextResponse("method not allowed", status_code=405)
            body = await request.body()
            if not self.verify_request(secret, config, request.headers, body):
                self.logger.warning(
                    "%s webhook verification failed (channel_config=%s)",
                    self.channel_type.value,
                    channel_config_id,
                )
                return PlainTextResponse("forbidden", status_code=403)
            result = self.parse_webhook(
                channel_config_id, config, request.headers, body
            )
            return self._render(result, on_message)

        return handler

    @abstractmethod
    def verify_request(
        self,
        secret: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        """Validate authenticity of the webhook request."""

    @abstractmethod
    def parse_webhook(
        self,
        channel_config_id: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> WebhookResult:
        """Convert a verified webhook payload into at most one message."""

    @abstractmethod
    def send_reply(
        self, config: Mapping[str, Any], message: NormalizedMessage, text: str
    ) -> None:
        """Post ``text`` back to the channel the message came from."""

    # ------------------------------------------------------------------
    # Helpers

    def _render(self, result: WebhookResult, on_message: OnMessage) -> Response:
        background = (
            BackgroundTask(on_message, result.message)
            if result.message is not None and result.status_code < 400
            else None
        )
        if result.content is not None:
            return JSONResponse(
                result.content, status_code=result.status_code, background=background
            )
        if result.status_code >= 400:
            return PlainTextResponse(
                result.detail or "bad request", status_code=result.status_code
            )
        return Response(status_code=result.status_code, background=background)

    def _http_timeout(self) -> float:
        if self.settings is None or self.timeout_setting is None:
            return 30.0
        return self.settings.get_duration(self.timeout_setting).total_seconds()

    def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        try:
            return self.session.post(
                url, json=payload, headers=headers or {}, timeout=self._http_timeout()
            )
        except requests.RequestException as exc:
            raise ChannelReplyError(
                f"{self.channel_type.value} api call failed: {exc}"
            ) from exc

    @staticmethod
    def _decode_api_result(response: requests.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ChannelReplyError(
                f"undecodable api response (status {response.status_code})"
            ) from exc
        if not isinstance(data, dict):
            raise ChannelReplyError("unexpected api response shape")
        return data

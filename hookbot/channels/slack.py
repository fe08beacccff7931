"""Slack Events API channel adapter."""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any

from ..models import ChannelType, NormalizedMessage, SlackReplyContext
from .base import ChannelAdapter, ChannelReplyError, WebhookResult

SLACK_API_BASE = "https://slack.com/api"
MESSAGE_EVENT_TYPES = frozenset({"message", "app_mention"})


def compute_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    """Return the ``v0=`` signature Slack sends for ``body``."""

    base = b"v0:" + timestamp.encode("utf-8") + b":" + body
    digest = hmac.new(signing_secret.encode("utf-8"), base, hashlib.sha256).hexdigest()
    return f"v0={digest}"


def verify_signature(
    signing_secret: str, timestamp: str | None, signature: str | None, body: bytes
) -> bool:
    if not timestamp or not signature:
        return False
    expected = compute_signature(signing_secret, timestamp, body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


class SlackAdapter(ChannelAdapter):
    channel_type = ChannelType.SLACK
    required_config_keys = ("bot_token", "signing_secret")
    timeout_setting = "slack_http_timeout"

    def verify_request(
        self,
        secret: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        signing_secret = config.get("signing_secret") or ""
        if not signing_secret:
            self.logger.warning("slack signing_secret not configured; skipping verification")
            return True
        return verify_signature(
            str(signing_secret),
            headers.get("X-Slack-Request-Timestamp"),
            headers.get("X-Slack-Signature"),
            body,
        )

    def parse_webhook(
        self,
        channel_config_id: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> WebhookResult:
        try:
            envelope = json.loads(body)
        except ValueError:
            return WebhookResult.reject(400, "bad request")
        if not isinstance(envelope, dict):
            return WebhookResult.reject(400, "bad request")

        if envelope.get("type") == "url_verification":
            return WebhookResult(content={"challenge": envelope.get("challenge", "")})
        if envelope.get("type") != "event_callback":
            return WebhookResult()

        event = envelope.get("event") or {}
        if not isinstance(event, dict):
            return WebhookResult.reject(400, "bad request")
        if not all(
            isinstance(event.get(field) or "", str)
            for field in ("type", "user", "channel", "ts", "thread_ts", "text")
        ):
            return WebhookResult.reject(400, "bad request")
        if event.get("type") not in MESSAGE_EVENT_TYPES or not event.get("user"):
            return WebhookResult()

        channel = event.get("channel") or ""
        ts = event.get("ts") or ""
        message = NormalizedMessage(
            channel=self.channel_type,
            channel_config_id=channel_config_id,
            external_ref=f"slack://{channel}/{ts}",
            title=f"Slack message in #{channel}",
            text=event.get("text") or "",
            author=event["user"],
            reply_context=SlackReplyContext(
                channel=channel, thread_ts=event.get("thread_ts") or ts
            ),
        )
        return WebhookResult(message=message)

    def send_reply(
        self, config: Mapping[str, Any], message: NormalizedMessage, text: str
    ) -> None:
        context = message.reply_context
        if not isinstance(context, SlackReplyContext):
            raise ChannelReplyError("invalid reply context for slack")
        bot_token = config.get("bot_token") or ""
        if not bot_token:
            raise ChannelReplyError("missing bot_token in config")
        api_base = str(config.get("api_base_url") or SLACK_API_BASE).rstrip("/")
        response = self._post_json(
            f"{api_base}/chat.postMessage",
            {
                "channel": context.channel,
                "thread_ts": context.thread_ts,
                "text": text,
                "mrkdwn": True,
            },
            {"Authorization": f"Bearer {bot_token}"},
        )
        result = self._decode_api_result(response)
        if not result.get("ok"):
            raise ChannelReplyError(f"slack api error: {result.get('error')}")

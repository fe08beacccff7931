"""Telegram channel adapter."""
from __future__ import annotations

import hmac
import json
from typing import Any, Mapping

from ..models import ChannelType, NormalizedMessage, TelegramReplyContext
from .base import ChannelAdapter, ChannelReplyError, WebhookResult

TELEGRAM_API_BASE = "https://api.telegram.org"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class TelegramAdapter(ChannelAdapter):
    channel_type = ChannelType.TELEGRAM
    required_config_keys = ("bot_token",)
    timeout_setting = "telegram_http_timeout"

    def verify_request(
        self,
        secret: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        if not secret:
            return True
        received = headers.get("X-Telegram-Bot-Api-Secret-Token") or ""
        return hmac.compare_digest(received.encode("utf-8"), secret.encode("utf-8"))

    def parse_webhook(
        self,
        channel_config_id: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> WebhookResult:
        try:
            update = json.loads(body)
        except ValueError:
            return WebhookResult.reject(400, "bad request")
        if not isinstance(update, dict):
            return WebhookResult.reject(400, "bad request")

        message = update.get("message")
        if message is None:
            return WebhookResult()
        if not isinstance(message, dict):
            return WebhookResult.reject(400, "bad request")

        text = message.get("text")
        chat = message.get("chat") or {}
        user = message.get("from") or {}
        if (
            not isinstance(text or "", str)
            or not isinstance(chat, dict)
            or not isinstance(user, dict)
        ):
            return WebhookResult.reject(400, "bad request")
        if not text:
            return WebhookResult()

        chat_id = chat.get("id")
        message_id = message.get("message_id")
        if chat_id is None or message_id is None:
            return WebhookResult()
        if not _is_int(chat_id) or not _is_int(message_id):
            return WebhookResult.reject(400, "bad request")

        return WebhookResult(
            message=NormalizedMessage(
                channel=self.channel_type,
                channel_config_id=channel_config_id,
                external_ref=f"tg://chat/{chat_id}/msg/{message_id}",
                title=str(chat.get("title") or f"Chat {chat_id}"),
                text=text,
                author=str(user.get("username") or ""),
                reply_context=TelegramReplyContext(
                    chat_id=chat_id, message_id=message_id
                ),
            )
        )

    def send_reply(
        self, config: Mapping[str, Any], message: NormalizedMessage, text: str
    ) -> None:
        context = message.reply_context
        if not isinstance(context, TelegramReplyContext):
            raise ChannelReplyError("invalid reply context for telegram")
        bot_token = config.get("bot_token") or ""
        if not bot_token:
            raise ChannelReplyError("missing bot_token in config")
        parse_mode = (
            self.settings.get_str("telegram_parse_mode") if self.settings else "Markdown"
        )
        api_base = str(config.get("api_base_url") or TELEGRAM_API_BASE).rstrip("/")
        response = self._post_json(
            f"{api_base}/bot{bot_token}/sendMessage",
            {
                "chat_id": context.chat_id,
                "reply_to_message_id": context.message_id,
                "text": text,
                "parse_mode": parse_mode,
                "disable_web_page_preview": True,
            },
        )
        result = self._decode_api_result(response)
        if not result.get("ok"):
            raise ChannelReplyError(f"telegram api error: {result.get('description')}")

"""GitLab issue-comment channel adapter."""

from __future__ import annotations

import hmac
import json
from collections.abc import Mapping
from typing import Any

from ..models import ChannelType, GitLabReplyContext, NormalizedMessage
from .base import ChannelAdapter, ChannelReplyError, WebhookResult

NOTE_EVENTS = frozenset({"Note Hook", "Confidential Note Hook"})


class GitLabAdapter(ChannelAdapter):
    channel_type = ChannelType.GITLAB
    required_config_keys = ("base_url", "token")
    timeout_setting = "gitlab_http_timeout"

    def verify_request(
        self,
        secret: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        received = headers.get("X-Gitlab-Token") or ""
        return hmac.compare_digest(received.encode("utf-8"), (secret or "").encode("utf-8"))

    def parse_webhook(
        self,
        channel_config_id: str,
        config: Mapping[str, Any],
        headers: Mapping[str, str],
        body: bytes,
    ) -> WebhookResult:
        if headers.get("X-Gitlab-Event") not in NOTE_EVENTS:
            return WebhookResult()
        if not body:
            return WebhookResult.reject(400, "bad request")
        try:
            payload = json.loads(body)
        except ValueError:
            self.logger.error("gitlab webhook payload is not valid JSON")
            return WebhookResult.reject(422, "unprocessable")
        if not isinstance(payload, dict):
            return WebhookResult.reject(422, "unprocessable")

        attributes = payload.get("object_attributes") or {}
        issue = payload.get("issue") or {}
        project = payload.get("project") or {}
        user = payload.get("user") or {}
        if not all(isinstance(obj, dict) for obj in (attributes, issue, project, user)):
            self.logger.error("gitlab note payload has malformed nested objects")
            return WebhookResult.reject(422, "unprocessable")

        noteable_type = attributes.get("noteable_type") or payload.get("noteable_type")
        if noteable_type != "Issue" or attributes.get("system"):
            return WebhookResult()

        try:
            issue_iid = int(issue.get("iid"))
            project_id = int(payload.get("project_id") or project.get("id"))
        except (TypeError, ValueError):
            self.logger.error("gitlab note without project or issue identifiers")
            return WebhookResult.reject(422, "unprocessable")

        fields = (
            attributes.get("url"),
            attributes.get("note"),
            issue.get("title"),
            user.get("username"),
        )
        if not all(isinstance(value or "", str) for value in fields):
            self.logger.error("gitlab note payload has non-string text fields")
            return WebhookResult.reject(422, "unprocessable")

        web_url = attributes.get("url") or (
            f"{project.get('web_url', '')}/-/issues/{issue_iid}"
        )
        message = NormalizedMessage(
            channel=self.channel_type,
            channel_config_id=channel_config_id,
            external_ref=web_url,
            title=issue.get("title") or "",
            text=attributes.get("note") or "",
            author=user.get("username") or "",
            reply_context=GitLabReplyContext(project_id=project_id, issue_iid=issue_iid),
        )
        return WebhookResult(message=message)

    def send_reply(
        self, config: Mapping[str, Any], message: NormalizedMessage, text: str
    ) -> None:
        context = message.reply_context
        if not isinstance(context, GitLabReplyContext):
            raise ChannelReplyError("invalid reply context for gitlab")
        base_url = str(config.get("base_url") or "").rstrip("/")
        token = config.get("token") or ""
        if not base_url or not token:
            raise ChannelReplyError("missing base_url or token in config")
        url = (
            f"{base_url}/api/v4/projects/{context.project_id}"
            f"/issues/{context.issue_iid}/notes"
        )
        response = self._post_json(url, {"body": text}, {"PRIVATE-TOKEN": str(token)})
        if response.status_code >= 300:
            raise ChannelReplyError(
                f"gitlab api error: status {response.status_code}: {response.text}"
            )

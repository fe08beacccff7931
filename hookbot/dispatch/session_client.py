"""HTTP client for the remote analysis (opencode) server.

One analysis is a short-lived remote session: create it, send a single
prompt, read back the text parts of the answer and delete the session again.
Deletion always runs, with its own timeout, even when sending failed or the
analysis budget is exhausted.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import requests
from requests.auth import HTTPBasicAuth

from ..storage.settings import SettingsStore


class AnalysisError(RuntimeError):
    """Raised when the analysis server fails or reports a logical error."""


class AnalysisTimeout(AnalysisError):
    """Raised when the analysis budget is exhausted."""


@dataclass(frozen=True)
class AnalysisSession:
    id: str
    title: str = ""


class AnalysisSessionClient:
    """Synchronous client for the session/message API of the analysis server."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout: timedelta = timedelta(minutes=5),
        cleanup_timeout: timedelta = timedelta(seconds=10),
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout.total_seconds()
        self.cleanup_timeout = cleanup_timeout.total_seconds()
        self.session = session or requests.Session()
        self.auth = HTTPBasicAuth(username, password)
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls, settings: SettingsStore, session: requests.Session | None = None
    ) -> "AnalysisSessionClient":
        return cls(
            settings.get_str("opencode_server_url"),
            settings.get_str("opencode_server_auth_user"),
            settings.get_str("opencode_server_auth_password"),
            timeout=settings.get_duration("analyzer_timeout"),
            cleanup_timeout=settings.get_duration("analyzer_cleanup_timeout"),
            session=session,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, prompt: str, title: str) -> str:
        """Run one prompt/response exchange in a fresh session."""

        deadline = time.monotonic() + self.timeout
        session = self.create_session(title, timeout=self._remaining(deadline))
        try:
            return self.send_message(
                session.id, prompt, timeout=self._remaining(deadline)
            )
        finally:
            try:
                self.delete_session(session.id)
            except AnalysisError as exc:
                self.logger.warning(
                    "Failed to delete analysis session %s: %s", session.id, exc
                )

    def create_session(self, title: str, *, timeout: float | None = None) -> AnalysisSession:
        response = self._request(
            "POST", "/session", json={"title": title}, timeout=timeout
        )
        if response.status_code not in (200, 201):
            raise AnalysisError(
                f"create session failed: status {response.status_code}: {response.text}"
            )
        data = self._decode(response)
        session_id = data.get("id")
        if not session_id:
            raise AnalysisError("create session failed: response has no id")
        self.logger.info("Analysis session created: %s", session_id)
        return AnalysisSession(id=str(session_id), title=data.get("title") or "")

    def send_message(
        self, session_id: str, prompt: str, *, timeout: float | None = None
    ) -> str:
        self.logger.info(
            "Sending prompt to analysis session %s (%d chars)", session_id, len(prompt)
        )
        response = self._request(
            "POST",
            f"/session/{session_id}/message",
            json={"parts": [{"type": "text", "text": prompt}]},
            timeout=timeout,
        )
        if response.status_code != 200:
            raise AnalysisError(
                f"send message failed: status {response.status_code}: {response.text}"
            )
        data = self._decode(response)
        info = data.get("info") or {}
        if not isinstance(info, dict):
            raise AnalysisError("unexpected response shape: info")
        error = info.get("error")
        if error:
            if isinstance(error, dict):
                name = error.get("name") or "error"
                detail = error.get("message")
                extra = error.get("data")
                if not detail and isinstance(extra, dict):
                    detail = extra.get("message")
                reason = f"analysis error: {name}"
                if detail:
                    reason = f"{reason}: {detail}"
                raise AnalysisError(reason)
            raise AnalysisError(f"analysis error: {error}")
        parts = data.get("parts") or []
        if not isinstance(parts, list):
            raise AnalysisError("unexpected response shape: parts")
        chunks = [
            part.get("text")
            for part in parts
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        if not all(isinstance(chunk or "", str) for chunk in chunks):
            raise AnalysisError("unexpected response shape: text part")
        text = "".join(chunk or "" for chunk in chunks)
        if not text:
            raise AnalysisError("analysis server returned an empty response")
        self.logger.info(
            "Received analysis for session %s (%d chars)", session_id, len(text)
        )
        return text

    def delete_session(self, session_id: str) -> None:
        response = self._request(
            "DELETE", f"/session/{session_id}", timeout=self.cleanup_timeout
        )
        if response.status_code not in (200, 204):
            raise AnalysisError(
                f"delete session failed: status {response.status_code}: {response.text}"
            )
        self.logger.info("Analysis session deleted: %s", session_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AnalysisTimeout("analysis timed out")
        return remaining

    def _request(
        self, method: str, path: str, *, timeout: float | None = None, **kwargs: Any
    ) -> requests.Response:
        try:
            return self.session.request(
                method,
                f"{self.base_url}{path}",
                auth=self.auth,
                timeout=timeout if timeout is not None else self.timeout,
                **kwargs,
            )
        except requests.Timeout as exc:
            raise AnalysisTimeout(f"{method} {path} timed out") from exc
        except requests.RequestException as exc:
            raise AnalysisError(f"http request failed: {exc}") from exc

    @staticmethod
    def _decode(response: requests.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise AnalysisError("decode response failed") from exc
        if not isinstance(data, dict):
            raise AnalysisError("unexpected response shape")
        return data

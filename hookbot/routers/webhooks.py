"""Webhook ingestion routes for external messaging channels."""

from __future__ import annotations

import hashlib
import logging

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse

from ..channels import ChannelRegistry, ConfigValidationError, OnMessage
from ..dispatch import DispatchRunner
from ..models import ChannelConfig, NormalizedMessage, WebhookDelivery
from ..storage import DispatchRepository, SettingsStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _repository(request: Request) -> DispatchRepository:
    return request.app.state.repository


def _registry(request: Request) -> ChannelRegistry:
    return request.app.state.registry


def _runner(request: Request) -> DispatchRunner:
    return request.app.state.runner


def _settings(request: Request) -> SettingsStore:
    return request.app.state.settings


def _make_on_message(
    config: ChannelConfig,
    runner: DispatchRunner,
    repository: DispatchRepository,
    settings: SettingsStore,
    body: bytes,
) -> OnMessage:
    def on_message(message: NormalizedMessage) -> None:
        message.project_id = config.project_id
        message.channel_config_id = config.id

        if settings.get_bool("webhook_dedup_enabled"):
            payload_hash = hashlib.sha256(body).hexdigest()
            event_uuid = f"{config.id}:{payload_hash}"
            try:
                if repository.is_webhook_processed(event_uuid):
                    logger.info("Skipping duplicate webhook delivery %s", event_uuid)
                    return
                repository.record_webhook_delivery(
                    WebhookDelivery(
                        event_uuid=event_uuid,
                        event_type=config.channel_type,
                        payload_hash=payload_hash,
                    )
                )
            except Exception:
                logger.exception("Webhook dedup check failed for %s", event_uuid)

        runner.submit(message)

    return on_message


@router.api_route("/hook/{path:path}", methods=_ALL_METHODS)
async def receive_webhook(path: str, request: Request) -> Response:
    """Route an inbound webhook to the adapter of its channel config."""

    repository = _repository(request)
    try:
        config = repository.get_channel_config_by_path(path)
    except Exception:
        logger.exception("Failed to look up channel config for /hook/%s", path)
        return PlainTextResponse(
            "internal error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    if config is None or not config.enabled:
        return PlainTextResponse("not found", status_code=status.HTTP_404_NOT_FOUND)

    adapter = _registry(request).get(config.channel_type)
    if adapter is None:
        logger.error(
            "No adapter registered for channel type %s (config %s)",
            config.channel_type,
            config.id,
        )
        return PlainTextResponse(
            "channel not supported",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    try:
        adapter.validate_config(config.config)
    except ConfigValidationError as exc:
        logger.error("Invalid channel config %s: %s", config.id, exc)
        return PlainTextResponse(
            "invalid channel config",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    # Starlette caches the body, so the adapter handler reads the same bytes.
    body = await request.body()
    handler = adapter.build_handler(
        config.id,
        config.webhook_secret,
        config.config,
        _make_on_message(
            config, _runner(request), repository, _settings(request), body
        ),
    )
    return await handler(request)

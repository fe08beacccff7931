"""Utility script to bootstrap the database with a demo project and channel."""

from __future__ import annotations

import logging
import os
import secrets
import time
from dataclasses import dataclass

import psycopg
from dotenv import load_dotenv
from psycopg.types.json import Jsonb
from sqlalchemy.engine import make_url

from hookbot.models import ChannelType, TriggerMode
from hookbot.storage import ensure_schema

logger = logging.getLogger("seed")

DEFAULT_KEYWORDS: tuple[tuple[str, TriggerMode], ...] = (
    ("@opencode ask", TriggerMode.ASK),
    ("@opencode plan", TriggerMode.PLAN),
    ("@opencode do", TriggerMode.DO),
)

_CHANNEL_CONFIG_ENV: dict[ChannelType, tuple[str, ...]] = {
    ChannelType.GITLAB: ("base_url", "token"),
    ChannelType.SLACK: ("bot_token", "signing_secret"),
    ChannelType.TELEGRAM: ("bot_token",),
}


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    project_name: str
    channel_type: ChannelType
    channel_config: dict[str, str]
    webhook_path: str
    webhook_secret: str


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    try:
        parsed = make_url(db_url)
    except Exception:  # pragma: no cover - defensive fallback
        return db_url
    if parsed.password is None:
        return db_url
    return parsed.render_as_string(hide_password=True)


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return direct

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql://{auth}@{host}:{port}/{database}"


def _load_config() -> SeedConfig:
    """Load seed configuration from environment variables.

    Channel credentials come from ``SEED_<CHANNEL>_<KEY>`` variables, e.g.
    ``SEED_GITLAB_TOKEN`` or ``SEED_SLACK_SIGNING_SECRET``.
    """

    raw_type = os.getenv("SEED_CHANNEL_TYPE", ChannelType.GITLAB.value).strip().lower()
    try:
        channel_type = ChannelType(raw_type)
    except ValueError as exc:
        raise RuntimeError(f"Unsupported SEED_CHANNEL_TYPE: {raw_type}") from exc

    channel_config = {
        key: os.getenv(f"SEED_{channel_type.value.upper()}_{key.upper()}", "")
        for key in _CHANNEL_CONFIG_ENV[channel_type]
    }
    missing = [key for key, value in channel_config.items() if not value]
    if missing:
        logger.warning(
            "Channel config for %s is missing %s; replies will fail until set.",
            channel_type.value,
            ", ".join(missing),
        )

    return SeedConfig(
        db_url=_build_database_url(),
        project_name=os.getenv("SEED_PROJECT_NAME", "Demo Project").strip(),
        channel_type=channel_type,
        channel_config=channel_config,
        webhook_path=os.getenv("SEED_WEBHOOK_PATH", f"demo/{channel_type.value}").strip("/"),
        webhook_secret=os.getenv("SEED_WEBHOOK_SECRET") or secrets.token_hex(16),
    )


def wait_for_database(max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    db_url = _build_database_url()
    safe_url = _safe_url(db_url)

    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(db_url, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except Exception as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return


def _provision_project(conn: psycopg.Connection, config: SeedConfig) -> str:
    """Create or reuse the demo project, channel config and keywords."""

    with conn.cursor() as cur:
        cur.execute("SELECT id::text FROM projects WHERE name = %s", (config.project_name,))
        row = cur.fetchone()
        if row is None:
            cur.execute(
                "INSERT INTO projects (name) VALUES (%s) RETURNING id::text",
                (config.project_name,),
            )
            row = cur.fetchone()
            logger.info("Created project %s (%s)", row[0], config.project_name)
        else:
            logger.info("Project %s already exists; reusing.", config.project_name)
        project_id = row[0]

        cur.execute(
            "SELECT id::text FROM channel_configs WHERE webhook_path = %s",
            (config.webhook_path,),
        )
        if cur.fetchone() is None:
            cur.execute(
                """
                INSERT INTO channel_configs
                    (project_id, channel_type, config, webhook_secret, webhook_path)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    project_id,
                    config.channel_type.value,
                    Jsonb(config.channel_config),
                    config.webhook_secret,
                    config.webhook_path,
                ),
            )
            logger.info(
                "Created %s channel at /hook/%s (secret %s)",
                config.channel_type.value,
                config.webhook_path,
                config.webhook_secret,
            )
        else:
            logger.info("Channel at /hook/%s already exists; reusing.", config.webhook_path)

        for keyword, mode in DEFAULT_KEYWORDS:
            cur.execute(
                """
                INSERT INTO trigger_keywords (project_id, mode, keyword)
                VALUES (%s, %s, %s)
                ON CONFLICT (project_id, keyword) DO NOTHING
                """,
                (project_id, mode.value, keyword),
            )
    conn.commit()
    return project_id


def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    wait_for_database()

    config = _load_config()
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    with psycopg.connect(config.db_url) as conn:
        applied = ensure_schema(conn)
        logger.info("Schema ensured (%d migration(s) applied).", len(applied))
        project_id = _provision_project(conn, config)

    logger.info("Seed process completed. Project ID: %s", project_id)


if __name__ == "__main__":
    main()

"""Create projects, channel configs, trigger keywords, tasks and settings."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_dispatch_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        _UUID,
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    """Create the dispatch tables with supporting indexes."""

    op.create_table(
        "projects",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("repo_url", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "channel_configs",
        _id_column(),
        sa.Column(
            "project_id",
            _UUID,
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel_type", sa.String(length=32), nullable=False),
        sa.Column(
            "config",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "webhook_secret", sa.Text(), nullable=False, server_default=sa.text("''")
        ),
        sa.Column("webhook_path", sa.String(length=255), nullable=False),
        sa.Column(
            "enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "channel_type IN ('gitlab', 'slack', 'telegram')",
            name="ck_channel_configs_channel_type",
        ),
    )
    op.create_index(
        "ix_channel_configs_webhook_path_unique",
        "channel_configs",
        ["webhook_path"],
        unique=True,
    )
    op.create_index(
        "ix_channel_configs_project_id", "channel_configs", ["project_id"]
    )

    op.create_table(
        "trigger_keywords",
        _id_column(),
        sa.Column(
            "project_id",
            _UUID,
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("mode", sa.String(length=16), nullable=False),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "mode IN ('ask', 'plan', 'do')", name="ck_trigger_keywords_mode"
        ),
        sa.UniqueConstraint(
            "project_id", "keyword", name="uq_trigger_keywords_project_keyword"
        ),
    )

    op.create_table(
        "tasks",
        _id_column(),
        sa.Column(
            "project_id",
            _UUID,
            sa.ForeignKey("projects.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "channel_config_id",
            _UUID,
            sa.ForeignKey("channel_configs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("channel_type", sa.String(length=32), nullable=False),
        sa.Column("trigger_mode", sa.String(length=16), nullable=False),
        sa.Column("trigger_keyword", sa.String(length=255), nullable=False),
        sa.Column("external_ref", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("title", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("message_body", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("author", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_tasks_status",
        ),
    )
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_created_at", "tasks", ["created_at"])

    op.create_table(
        "webhook_deliveries",
        _id_column(),
        sa.Column("event_uuid", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "processed", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_webhook_deliveries_event_uuid_unique",
        "webhook_deliveries",
        ["event_uuid"],
        unique=True,
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("value", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _timestamp("updated_at"),
    )


def downgrade() -> None:
    """Remove the dispatch tables and related indexes."""

    op.drop_table("settings")

    op.drop_index(
        "ix_webhook_deliveries_event_uuid_unique", table_name="webhook_deliveries"
    )
    op.drop_table("webhook_deliveries")

    op.drop_index("ix_tasks_created_at", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_project_id", table_name="tasks")
    op.drop_table("tasks")

    op.drop_table("trigger_keywords")

    op.drop_index("ix_channel_configs_project_id", table_name="channel_configs")
    op.drop_index(
        "ix_channel_configs_webhook_path_unique", table_name="channel_configs"
    )
    op.drop_table("channel_configs")

    op.drop_table("projects")

"""Create membership tables (groups, members, webhook_events)

Revision ID: a1c4e2f0b7d3
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c4e2f0b7d3"
down_revision = None
branch_labels = None
depends_on = None

LIVE_MEMBERS = sa.text("status <> 'removido'")
GROUP_KEY = sa.text("coalesce(group_id, '')")


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("telegram_group_id", sa.BigInteger(), nullable=True),
        sa.Column("telegram_admin_group_id", sa.BigInteger(), nullable=True),
        sa.Column("checkout_url", sa.String(length=512), nullable=True),
        sa.Column("provider_plan_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_groups_provider_plan_id", "groups", ["provider_plan_id"], unique=True)

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("telegram_id", sa.BigInteger(), nullable=True),
        sa.Column("telegram_username", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id"), nullable=True),
        sa.Column("provider_subscription_id", sa.String(length=64), nullable=True),
        sa.Column("payer_id", sa.String(length=64), nullable=True),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("last_payment_id", sa.String(length=64), nullable=True),
        sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="trial"),
        sa.Column("trial_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("inadimplente_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("kicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('trial', 'ativo', 'inadimplente', 'removido')",
            name="ck_members_status",
        ),
    )
    op.create_index("ix_members_telegram_id", "members", ["telegram_id"])
    op.create_index("ix_members_email", "members", ["email"])
    op.create_index("ix_members_group_id", "members", ["group_id"])
    op.create_index("ix_members_status", "members", ["status"])
    op.create_index(
        "ix_members_provider_subscription_id", "members", ["provider_subscription_id"]
    )
    op.create_index(
        "uq_members_telegram_group_live",
        "members",
        ["telegram_id", GROUP_KEY],
        unique=True,
        postgresql_where=LIVE_MEMBERS,
    )
    op.create_index(
        "uq_members_email_group_live",
        "members",
        ["email", GROUP_KEY],
        unique=True,
        postgresql_where=LIVE_MEMBERS,
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("group_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_webhook_events_idempotency_key", "webhook_events", ["idempotency_key"], unique=True
    )
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_created_at", "webhook_events", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_created_at", table_name="webhook_events")
    op.drop_index("ix_webhook_events_status", table_name="webhook_events")
    op.drop_index("ix_webhook_events_idempotency_key", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("uq_members_email_group_live", table_name="members")
    op.drop_index("uq_members_telegram_group_live", table_name="members")
    op.drop_index("ix_members_provider_subscription_id", table_name="members")
    op.drop_index("ix_members_status", table_name="members")
    op.drop_index("ix_members_group_id", table_name="members")
    op.drop_index("ix_members_email", table_name="members")
    op.drop_index("ix_members_telegram_id", table_name="members")
    op.drop_table("members")

    op.drop_index("ix_groups_provider_plan_id", table_name="groups")
    op.drop_table("groups")

"""Add member_notifications table

Revision ID: c7e91d2a4f60
Revises: a1c4e2f0b7d3
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "c7e91d2a4f60"
down_revision = "a1c4e2f0b7d3"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "member_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False, server_default="telegram"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_member_notifications_member_kind_sent",
        "member_notifications",
        ["member_id", "kind", "sent_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_member_notifications_member_kind_sent", table_name="member_notifications")
    op.drop_table("member_notifications")

"""Gamification baseline: profiles, badges, user_badges, daily_checkins

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("full_name", sa.String(100), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("ix_profiles_xp_desc", "profiles", ["xp"])

    op.create_table(
        "badges",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("icon", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
    )

    op.create_table(
        "user_badges",
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "badge_id",
            sa.String(64),
            sa.ForeignKey("badges.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "awarded_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    op.create_table(
        "daily_checkins",
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("checkin_date", sa.Date(), primary_key=True),
        sa.Column("xp_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )


def downgrade() -> None:
    op.drop_table("daily_checkins")
    op.drop_table("user_badges")
    op.drop_table("badges")
    op.drop_index("ix_profiles_xp_desc", table_name="profiles")
    op.drop_table("profiles")

"""Create the authentication tables.

Revision ID: 001_auth_tables
Revises:
Create Date: 2026-10-19

- app_user: local accounts, case-insensitively unique username and email
- user_one_time_token: hashed email-verification and password-reset tokens
- app_user_oauth_link: external provider identities with encrypted tokens
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_auth_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    # pgcrypto provides gen_random_uuid() on PostgreSQL < 13
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "app_user",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("username", sa.String(20), nullable=False),
        sa.Column("email", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=True),
        _timestamp("email_verified_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "uq_app_user_username_lower",
        "app_user",
        [sa.text("lower(username)")],
        unique=True,
    )
    op.create_index(
        "uq_app_user_email_lower",
        "app_user",
        [sa.text("lower(email)")],
        unique=True,
    )

    op.create_table(
        "user_one_time_token",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("app_user.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("purpose", sa.String(20), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        _timestamp("last_used_at", nullable=True),
        sa.Column("request_ip", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "purpose IN ('email_verification', 'password_reset')",
            name="ck_user_one_time_token_purpose",
        ),
    )
    op.create_index(
        "ix_user_one_time_token_user_id", "user_one_time_token", ["user_id"]
    )
    # At most one unused token per (user, purpose); target of the upsert
    op.create_index(
        "uq_user_one_time_token_user_purpose_unused",
        "user_one_time_token",
        ["user_id", "purpose"],
        unique=True,
        postgresql_where=sa.text("last_used_at IS NULL"),
    )

    op.create_table(
        "app_user_oauth_link",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("app_user.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_user_id", sa.String(255), nullable=False),
        sa.Column("issuer", sa.Text(), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        _timestamp("access_token_expires_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("revoked_at", nullable=True),
    )
    op.create_index(
        "ix_app_user_oauth_link_user_id", "app_user_oauth_link", ["user_id"]
    )
    op.create_index(
        "uq_app_user_oauth_link_user_provider_active",
        "app_user_oauth_link",
        ["user_id", "provider"],
        unique=True,
        postgresql_where=sa.text("revoked_at IS NULL"),
    )
    op.create_index(
        "uq_app_user_oauth_link_provider_subject_active",
        "app_user_oauth_link",
        ["provider", "provider_user_id"],
        unique=True,
        postgresql_where=sa.text("revoked_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_table("app_user_oauth_link")
    op.drop_table("user_one_time_token")
    op.drop_table("app_user")

"""Create accounts, profiles, used usernames, sessions, pending registrations and tickets.

Revision ID: 001
Revises:
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


revision = "001"
down_revision = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("account_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("username", sa.String(128), nullable=False),
        sa.Column("username_lower", sa.String(128), nullable=False),
        sa.Column("host", sa.String(512), nullable=True),
        sa.Column("password_hash", sa.String(128), nullable=True),
        sa.Column("token_hash", sa.String(64), unique=True, nullable=True),
        sa.Column("is_root", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("username_lower", "host", name="uq_accounts_username_lower_host"),
    )
    op.create_index(
        "ix_accounts_local_username_lower",
        "accounts",
        ["username_lower"],
        unique=True,
        postgresql_where=sa.text("host IS NULL"),
    )

    op.create_table(
        "user_profiles",
        sa.Column(
            "account_id",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.account_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("email_verify_code", sa.String(128), nullable=True),
    )
    op.create_index("ix_user_profiles_email", "user_profiles", ["email"])

    op.create_table(
        "used_usernames",
        sa.Column("username", sa.String(128), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "sessions",
        sa.Column("session_id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.account_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), unique=True, nullable=False),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_sessions_account_id", "sessions", ["account_id"])

    op.create_table(
        "pending_registrations",
        sa.Column("pending_registration_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(32), unique=True, nullable=False),
        sa.Column("username", sa.String(128), nullable=False),
        sa.Column("password_hash", sa.String(128), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "registration_tickets",
        sa.Column("ticket_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(64), unique=True, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "used_by_id",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.account_id", ondelete="SET NULL"),
            unique=True,
            nullable=True,
        ),
        sa.Column(
            "pending_registration_id",
            UUID(as_uuid=True),
            sa.ForeignKey("pending_registrations.pending_registration_id", ondelete="SET NULL"),
            unique=True,
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("registration_tickets")
    op.drop_table("pending_registrations")
    op.drop_table("sessions")
    op.drop_table("used_usernames")
    op.drop_table("user_profiles")
    op.drop_table("accounts")

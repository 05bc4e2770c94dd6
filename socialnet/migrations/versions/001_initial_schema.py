"""Initial schema — users, roles, user_roles, refresh_tokens.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. Tables in FK dependency order (users, roles → user_roles, refresh_tokens)
  2. Indexes
  3. Seed rows for the default role names

ON DELETE policies:
  refresh_tokens.user_id → CASCADE (token owned by user)
  user_roles.*           → CASCADE (association rows owned by both sides)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    """Apply the full initial schema and seed the default roles."""

    # ── Step 1: users ──────────────────────────────────────────────────────
    # email is stored trimmed and lower-cased by the application.

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("TRUE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    # ── Step 2: roles + user_roles ─────────────────────────────────────────

    roles = op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    op.create_table(
        "user_roles",
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_user_roles_user"),
            nullable=False,
        ),
        sa.Column(
            "role_id",
            sa.Integer(),
            sa.ForeignKey("roles.id", ondelete="CASCADE", name="fk_user_roles_role"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("user_id", "role_id", name="pk_user_roles"),
    )

    # ── Step 3: refresh_tokens ─────────────────────────────────────────────
    # FK: user_id ON DELETE CASCADE.
    # revoked_at IS NULL and expires_at > now() = active.

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("created_by_ip", sa.String(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by_ip", sa.String(64), nullable=True),
        sa.Column("replaced_by_token", sa.String(128), nullable=True),
        sa.Column("revocation_reason", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("token", name="uq_refresh_tokens_token"),
    )

    # ── Step 4: indexes ────────────────────────────────────────────────────

    op.create_index("idx_refresh_tokens_user", "refresh_tokens", ["user_id"])

    # Partial index backing find_active_refresh_tokens_for_user / revoke-all.
    op.create_index(
        "idx_refresh_tokens_user_active",
        "refresh_tokens",
        ["user_id", "expires_at"],
        postgresql_where=sa.text("revoked_at IS NULL"),
    )

    # ── Step 5: seed roles ─────────────────────────────────────────────────

    op.bulk_insert(roles, [
        {"name": "Admin"},
        {"name": "User"},
        {"name": "Moderator"},
    ])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.

    Provided for local development reset. Migrations are append-only in
    production; prefer a corrective migration over a rollback.
    """
    op.drop_index("idx_refresh_tokens_user_active", table_name="refresh_tokens")
    op.drop_index("idx_refresh_tokens_user", table_name="refresh_tokens")

    op.drop_table("refresh_tokens")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_table("users")

"""
models/user.py — User, Role and the user_roles association table.

No business logic. No imports from services or routes.
Emails are stored normalized (trimmed, lower-cased); the repository
normalizes before every write and lookup.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, String, Table, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialnet.app.extensions import db


# Role names seeded by migration 001.
ROLE_ADMIN = "Admin"
ROLE_USER = "User"
ROLE_MODERATOR = "Moderator"
DEFAULT_ROLE_NAMES = (ROLE_ADMIN, ROLE_USER, ROLE_MODERATOR)


user_roles = Table(
    "user_roles",
    db.metadata,
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(db.Model):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Role id={self.id} name={self.name!r}>"


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Self-describing PBKDF2 encoding, see services/password_hasher.py.
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────
    # Read by the repository only; services receive flat UserRecord structs.

    roles: Mapped[list[Role]] = relationship(
        Role,
        secondary=user_roles,
        lazy="selectin",
    )

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email!r}>"

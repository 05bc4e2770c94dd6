"""
models/refresh_token.py — RefreshToken table definition.

No business logic. No imports from services or routes.

A row is active while revoked_at IS NULL and now < expires_at. Revocation
fields are written once and never cleared; rows are never deleted by the
auth core (the user FK cascades on account deletion).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialnet.app.extensions import db


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE: the token goes with its owning user.
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # 64 random bytes, base64 without padding (86 chars).
    token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    created_by_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    revoked_by_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Set only when the row was superseded by rotation.
    replaced_by_token: Mapped[str | None] = mapped_column(String(128), nullable=True)

    revocation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<RefreshToken id={self.id} "
            f"user_id={self.user_id} "
            f"revoked_at={self.revoked_at}>"
        )

"""
User model with ULID primary keys.

A user belongs to one organization, has one role, and carries its own
grant/revoke overrides in the ``permissions`` JSON column.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, Boolean, ForeignKey, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


def empty_overrides() -> Dict[str, Any]:
    return {"grant": [], "revoke": []}


class User(Base, TimestampMixin):
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Role; RESTRICT keeps a role from disappearing under its users
    role_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )

    # Per-user overrides: {"grant": [...], "revoke": [...]}
    permissions: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=empty_overrides)

    # Bumped on every override save; clients may send it back to detect concurrent edits
    permissions_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    role: Mapped["Role"] = relationship(  # type: ignore
        "Role",
        foreign_keys=[role_id],
        lazy="selectin"
    )

    organization: Mapped["Organization"] = relationship(  # type: ignore
        "Organization",
        foreign_keys=[organization_id],
        lazy="selectin"
    )

    @property
    def role_slug(self) -> str | None:
        return self.role.slug if self.role is not None else None

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"

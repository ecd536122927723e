"""
SQLAlchemy model for the users table.

Only the identity and role columns the marketplace core needs are mapped;
profile, portfolio and membership data live with the outer application.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Roles
    role_client: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    role_doer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    role_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.ACTIVE.value
    )

    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def role(self) -> str:
        if self.role_admin:
            return "admin"
        if self.role_doer:
            return "doer"
        return "client"

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, status={self.status})>"

"""
User model with ULID primary keys.
"""
import enum
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class GlobalRole(str, enum.Enum):
    """Platform-wide role claim carried in the access token."""
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    USER = "USER"
    MEMBER = "MEMBER"
    SUPPORT = "SUPPORT"


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.

    Uses ULID instead of auto-incrementing integers for better distributed systems support.
    Credentials live with the external auth service; this row holds the profile
    and the global role claim the token is minted from.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    global_role: Mapped[GlobalRole] = mapped_column(
        SQLEnum(GlobalRole),
        default=GlobalRole.USER,
        nullable=False,
        index=True
    )

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, global_role={self.global_role})>"

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from medrecord.db.session import Base
from medrecord.utils.dates import utcnow

ROLES = ("admin", "doctor", "staff")


class User(Base):
    """Clinic staff account. Credentials live with the identity provider."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="staff", server_default=text("'staff'"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

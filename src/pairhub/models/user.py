"""SQLAlchemy User model."""

from datetime import datetime

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pairhub.models.base import Base, UTCDateTime, new_id, utcnow


class User(Base):
    """A registered account holder.

    Each user owns a coin balance that pays for pairing attempts and for
    every minute one of their sessions stays connected.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    last_pairing_request_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, doc="When the user last passed admission"
    )

    __table_args__ = (Index("ix_users_email", "email"),)

    def debit(self, amount: int) -> int:
        """Subtract *amount* coins, clamping at zero. Returns the amount taken."""
        taken = min(self.coins, max(amount, 0))
        self.coins -= taken
        return taken

    def to_public(self) -> dict:
        return {"id": self.id, "email": self.email, "coins": self.coins}

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} coins={self.coins}>"

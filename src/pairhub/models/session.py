"""SQLAlchemy SessionMeta model and the session status state machine."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pairhub.models.base import Base, UTCDateTime, utcnow


class SessionStatus(str, enum.Enum):
    PAIRING = "pairing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    SUSPENDED = "suspended"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self not in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({SessionStatus.PAIRING, SessionStatus.CONNECTED})

# Allowed moves; terminal states have no outgoing edges.
TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PAIRING: frozenset(
        {SessionStatus.CONNECTED, SessionStatus.DISCONNECTED, SessionStatus.FAILED}
    ),
    SessionStatus.CONNECTED: frozenset(
        {SessionStatus.DISCONNECTED, SessionStatus.FAILED, SessionStatus.SUSPENDED}
    ),
    SessionStatus.DISCONNECTED: frozenset(),
    SessionStatus.FAILED: frozenset(),
    SessionStatus.SUSPENDED: frozenset(),
}

# Which timestamp column a transition stamps.
_STAMPS = {
    SessionStatus.CONNECTED: "connected_at",
    SessionStatus.DISCONNECTED: "disconnected_at",
    SessionStatus.FAILED: "failed_at",
    SessionStatus.SUSPENDED: "suspended_at",
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


class SessionMeta(Base):
    """Durable record of one bot session.

    Rows are never deleted; a finished session simply stays in its
    terminal status as history.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    phone_number: Mapped[str] = mapped_column(String(15), nullable=False)
    folder: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(
            SessionStatus,
            native_enum=False,
            length=16,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=SessionStatus.PAIRING,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    pairing_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    pairing_code_ttl: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pairing_created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    connected_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    disconnected_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    suspended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_charged_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_sessions_owner", "owner_user_id"),
        Index("ix_sessions_status", "status"),
    )

    def apply_transition(self, target: SessionStatus, at: datetime) -> bool:
        """Move to *target* and stamp the matching timestamp.

        Returns ``False`` (and changes nothing) when the move is not allowed,
        which is always the case once the session is terminal.
        """
        if not can_transition(self.status, target):
            return False
        self.status = target
        setattr(self, _STAMPS[target], at)
        if target is SessionStatus.CONNECTED:
            self.last_charged_at = at
        return True

    def to_public(self) -> dict:
        def iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "ownerUserId": self.owner_user_id,
            "phoneNumber": self.phone_number,
            "createdAt": iso(self.created_at),
            "status": self.status.value,
            "folder": self.folder,
            "pairingCode": self.pairing_code,
            "pairingCodeTtl": self.pairing_code_ttl,
            "pairingCreatedAt": iso(self.pairing_created_at),
            "connectedAt": iso(self.connected_at),
            "disconnectedAt": iso(self.disconnected_at),
            "failedAt": iso(self.failed_at),
            "suspendedAt": iso(self.suspended_at),
            "lastChargedAt": iso(self.last_charged_at),
        }

    def __repr__(self) -> str:
        return f"<SessionMeta id={self.id} phone={self.phone_number!r} status={self.status.value}>"

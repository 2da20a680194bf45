"""Invitation tickets and pending (unconfirmed) registrations."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from provisioning.database import Base


class PendingRegistration(Base):
    __tablename__ = "pending_registrations"

    pending_registration_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(128), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        doc="Start of the confirmation window; expiry is derived from it",
    )


class RegistrationTicket(Base):
    """Invitation code.

    unused -> provisionally claimed (used_at + pending_registration_id set)
    -> consumed (used_by_id set), or unused -> consumed directly.
    """

    __tablename__ = "registration_tickets"

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    used_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.account_id", ondelete="SET NULL"),
        unique=True, nullable=True,
    )
    pending_registration_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("pending_registrations.pending_registration_id", ondelete="SET NULL"),
        unique=True, nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

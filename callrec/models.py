"""Call Recording Ingest - SQLAlchemy ORM models.

Database tables:
1. users
2. leads
3. sim_cards
4. call_logs
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class User(Base):
    """Authenticated caller (employee, manager or admin)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # One of: employee, manager, admin
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="employee")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # SHA256 hex digest of the bearer token (the raw token is never stored)
    api_token_hash: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class Lead(Base):
    """Sales lead that call logs are recorded against."""

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="New")
    sector: Mapped[str | None] = mapped_column(String(128), nullable=True)
    region: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Owning employee; only the owner (or an elevated role) may log calls
    assigned_to: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class SimCard(Base):
    """SIM card used to place a call."""

    __tablename__ = "sim_cards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sim_number: Mapped[str] = mapped_column(String(32), nullable=False)
    carrier: Mapped[str | None] = mapped_column(String(64), nullable=True)


class CallLog(Base):
    """One completed call, optionally linked to a stored recording.

    Invariant: no two rows with a non-null file_hash share the same value.
    Enforced by a unique index (NULLs are not considered equal).
    """

    __tablename__ = "call_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    lead_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("leads.id"), nullable=False, index=True
    )
    employee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=False, index=True
    )
    uploaded_by: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=True
    )
    sim_card_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("sim_cards.id"), nullable=True
    )

    call_status: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    call_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(64), nullable=True)
    follow_up_required: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    follow_up_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    call_quality: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Recording linkage
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Timestamps
    call_start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    lead: Mapped[Lead] = relationship(foreign_keys=[lead_id], lazy="joined")
    employee: Mapped[User] = relationship(foreign_keys=[employee_id], lazy="joined")
    sim_card: Mapped[SimCard | None] = relationship(foreign_keys=[sim_card_id], lazy="joined")

    __table_args__ = (
        Index("uq_call_logs_file_hash", "file_hash", unique=True),
        Index("ix_call_logs_lead_employee", "lead_id", "employee_id"),
    )

from __future__ import annotations
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Boolean, Enum as SqlEnum, ForeignKey, Index, JSON, text
from sqlalchemy.types import DateTime, Integer, String

Base = declarative_base()

CHECKIN_METHOD_QR = "qr_code"

def utcnow():
    return datetime.now(timezone.utc)

class AttendanceStatus(str, Enum):
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    ABSENT = "absent"

# events and event_sessions belong to the event-management service; mapped read-only here

class Event(Base):
    __tablename__ = "events"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    location_coordinates: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    geofence_radius: Mapped[int | None] = mapped_column(Integer, nullable=True)  # meters
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

class EventSession(Base):
    __tablename__ = "event_sessions"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(255))
    location_coordinates: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    geofence_radius: Mapped[int | None] = mapped_column(Integer, nullable=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

class Attendance(Base):
    __tablename__ = "attendance"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("events.id"), nullable=False)
    event_session_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("event_sessions.id"), nullable=True)
    volunteer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)  # identity provider subject
    check_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    check_in_method: Mapped[str] = mapped_column(String(16), default=CHECKIN_METHOD_QR, nullable=False)
    check_in_location: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    location_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        SqlEnum(AttendanceStatus, name="attendance_status", values_callable=lambda e: [m.value for m in e]),
        default=AttendanceStatus.CHECKED_IN,
        nullable=False,
    )

    __table_args__ = (
        # at most one active check-in per volunteer per event
        Index(
            "uq_attendance_checked_in",
            "event_id",
            "volunteer_id",
            unique=True,
            postgresql_where=text("status = 'checked_in'"),
            sqlite_where=text("status = 'checked_in'"),
        ),
        Index("ix_attendance_event_time", "event_id", "check_in_time"),
    )

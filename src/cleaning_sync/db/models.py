"""Database models for the cleaning sync service."""

from datetime import datetime, date, time
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cleaning_sync.config import JobSource, JobStatus


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Property(Base):
    """A host's property, optionally linked to a calendar feed."""

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    host_id: Mapped[str] = mapped_column(String(64), index=True)
    label: Mapped[str] = mapped_column(String(255), default="")
    # Jobs are joined to properties by address, not id
    address: Mapped[str] = mapped_column(String(500), unique=True)
    feed_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_sync_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Property {self.id} {self.address}>"


class CleaningJob(Base):
    """A cleaning job at a property address."""

    __tablename__ = "cleaning_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    address: Mapped[str] = mapped_column(String(500), index=True)
    property_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("properties.id", ondelete="SET NULL"), nullable=True
    )
    host_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    source: Mapped[str] = mapped_column(String(10), default=JobSource.MANUAL.value)
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.OPEN.value, index=True)

    # Feed identity (feed jobs only)
    reservation_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    scheduled_date: Mapped[date] = mapped_column(Date)
    scheduled_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    cleaning_type: Mapped[str] = mapped_column(String(20), default="checkout")
    estimated_duration_hours: Mapped[int] = mapped_column(Integer, default=3)
    notes: Mapped[str] = mapped_column(Text, default="")

    # Guest details copied from the reservation
    check_in_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    check_out_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    nights_stayed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    guest_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    reservation_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    assigned_cleaner_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    assigned_cleaner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("address", "reservation_id", name="uq_job_reservation"),
    )

    @property
    def is_feed_owned(self) -> bool:
        return self.source == JobSource.FEED.value

    def __repr__(self) -> str:
        return f"<CleaningJob {self.id} {self.address} {self.scheduled_date} {self.status}>"

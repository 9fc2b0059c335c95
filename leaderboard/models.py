from __future__ import annotations

from datetime import date, datetime
from sqlalchemy import JSON, BigInteger, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leaderboard.db import Base


class Event(Base):
    __tablename__ = "events"

    event_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    event_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    event_timezone: Mapped[str] = mapped_column(String(100))
    # declared category keys, in display order
    categories: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    cutoff_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    # category key -> raw operator string (absolute datetime or time of day)
    category_start_times: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    # bumped on every change that affects results
    data_version: Mapped[int] = mapped_column(Integer, default=0)

    csv_uploads: Mapped[list["CsvUpload"]] = relationship(
        "CsvUpload", back_populates="event", cascade="all, delete-orphan"
    )
    disqualifications: Mapped[list["Disqualification"]] = relationship(
        "Disqualification", back_populates="event", cascade="all, delete-orphan"
    )


class CsvUpload(Base):
    __tablename__ = "csv_uploads"
    __table_args__ = (UniqueConstraint("event_id", "kind", name="uq_csv_upload_kind"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.event_id"))
    kind: Mapped[str] = mapped_column(String(20))  # master | start | finish | checkpoint
    filename: Mapped[str] = mapped_column(String(255), default="")
    text: Mapped[str] = mapped_column(Text)
    rows: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    event: Mapped[Event] = relationship("Event", back_populates="csv_uploads")


class Disqualification(Base):
    __tablename__ = "disqualifications"
    __table_args__ = (UniqueConstraint("event_id", "epc", name="uq_dq_epc"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.event_id"))
    epc: Mapped[str] = mapped_column(String(100))

    event: Mapped[Event] = relationship("Event", back_populates="disqualifications")

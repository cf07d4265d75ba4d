from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

UTC = dt.timezone.utc

TIMER_ROW_ID = 1

SOURCE_MANUAL = "manual"
SOURCE_COMMIT = "commit"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    is_client = Column(Boolean, nullable=False, default=False)
    client_path = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    entries = relationship("TimeEntry", back_populates="project")


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __table_args__ = (CheckConstraint("end_time >= start_time", name="ck_time_entries_end_after_start"),)

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    task = Column(Text, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_seconds = Column(Integer, nullable=False, default=0)
    tags = Column(SQLiteJSON, nullable=False, default=list)
    source = Column(String(20), nullable=False, default=SOURCE_MANUAL, index=True)
    commit_hash = Column(String(64), nullable=True, unique=True)
    classification = Column(String(20), nullable=True)
    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    project = relationship("Project", back_populates="entries")

    @property
    def duration(self) -> dt.timedelta:
        return _as_utc(self.end_time) - _as_utc(self.start_time)

    @property
    def project_name(self) -> str:
        return self.project.name if self.project is not None else ""

    def apply_times(self, start: dt.datetime, end: dt.datetime) -> None:
        start_utc = _as_utc(start)
        end_utc = _as_utc(end)
        self.start_time = start_utc
        self.end_time = end_utc
        self.duration_seconds = int((end_utc - start_utc).total_seconds())


class ActiveTimer(Base):
    """The running timer. The primary key is pinned to one value, so the table
    holds at most one row and a second insert fails on the database side."""

    __tablename__ = "timer"
    __table_args__ = (CheckConstraint(f"id = {TIMER_ROW_ID}", name="ck_timer_singleton"),)

    id = Column(Integer, primary_key=True, default=TIMER_ROW_ID, autoincrement=False)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    task = Column(Text, nullable=True)
    tags = Column(SQLiteJSON, nullable=False, default=list)
    start_time = Column(DateTime(timezone=True), nullable=False)

    project = relationship("Project")

    def elapsed(self, now: dt.datetime) -> dt.timedelta:
        return _as_utc(now) - _as_utc(self.start_time)


class StoreMetadata(Base):
    __tablename__ = "store_metadata"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

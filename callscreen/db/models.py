"""Database models."""
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CallSessionRecord(Base):
    """Live call session, deleted when the call ends."""

    __tablename__ = "call_sessions"

    call_sid = Column(String, primary_key=True)
    state = Column(String, default="INITIAL", nullable=False)
    started_at = Column(Float, nullable=False)  # epoch seconds
    answered = Column(Boolean, default=False, nullable=False)
    transcript_window = Column(Text, default="", nullable=False)
    machine_signal = Column(String, nullable=True)
    fired_actions = Column(JSON, default=list, nullable=False)  # List of action tags
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class EndedCallRecord(Base):
    """Call id whose call has ended, kept so late callbacks cannot revive it."""

    __tablename__ = "ended_calls"

    call_sid = Column(String, primary_key=True)
    ended_at = Column(Float, nullable=False, index=True)  # epoch seconds

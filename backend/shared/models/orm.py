"""
SQLAlchemy 2.0 ORM models for matchsync.
Column types degrade to portable equivalents on SQLite (used by the test suite).
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
SerialPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class MatchORM(Base):
    __tablename__ = "matches"

    # Provider-scoped fixture id (source-of-record provider)
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    kickoff: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    match_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="SCHEDULED")
    minute: Mapped[Optional[int]] = mapped_column(Integer)

    home_team_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    home_team: Mapped[str] = mapped_column(String(100), nullable=False)
    home_team_crest: Mapped[Optional[str]] = mapped_column(String(255))
    home_score: Mapped[Optional[int]] = mapped_column(Integer)
    away_team_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    away_team: Mapped[str] = mapped_column(String(100), nullable=False)
    away_team_crest: Mapped[Optional[str]] = mapped_column(String(255))
    away_score: Mapped[Optional[int]] = mapped_column(Integer)

    competition_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    competition: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    competition_emblem: Mapped[Optional[str]] = mapped_column(String(255))
    stage: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    group_name: Mapped[Optional[str]] = mapped_column(String(50))
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="football-data")
    venue: Mapped[Optional[str]] = mapped_column(String(200))
    statistics: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    events: Mapped[list["MatchEventORM"]] = relationship(
        back_populates="match",
        order_by="MatchEventORM.id",
        cascade="all, delete-orphan",
    )


class MatchEventORM(Base):
    __tablename__ = "match_events"

    id: Mapped[int] = mapped_column(SerialPK, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    minute: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    player: Mapped[Optional[str]] = mapped_column(String(100))
    team: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    match: Mapped["MatchORM"] = relationship(back_populates="events")


class AllowedLeagueORM(Base):
    __tablename__ = "allowed_leagues"

    id: Mapped[int] = mapped_column(SerialPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    football_data_id: Mapped[Optional[int]] = mapped_column(Integer)
    api_football_id: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AuditLogORM(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(SerialPK, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    details: Mapped[Optional[str]] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .enums import AppRole, WizardStep

JSONType = JSON().with_variant(JSONB(), "postgresql")


class TrainingSession(Base):
    __tablename__ = "training_sessions"
    __table_args__ = (
        CheckConstraint(
            "total_teams >= 1 AND total_teams <= 12",
            name="ck_training_sessions_total_teams_range",
        ),
    )

    # Creation time in epoch milliseconds, stored as text.
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    group_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_teams: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    is_report_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_timer_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timer_end_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    participants: Mapped[list["Participant"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )
    reports: Mapped[list["Report"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )

    def __str__(self) -> str:
        return f"{self.group_name} ({self.id})"


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("session_id", "team_id", "name", name="uq_participants_session_team_name"),
        CheckConstraint("team_id >= 1", name="ck_participants_team_id_positive"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("training_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    current_step: Mapped[WizardStep] = mapped_column(
        Enum(WizardStep, name="wizard_step"),
        nullable=False,
        default=WizardStep.INTRO,
    )
    collected_facts: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    personal_notes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    gap_analysis: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=lambda: {"current": "", "ideal": ""}
    )
    power_calculation: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    root_causes: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    solutions: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=lambda: {"short_term": "", "prevention": ""}
    )
    final_report: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    session: Mapped[TrainingSession] = relationship(back_populates="participants")
    auth_sessions: Mapped[list["AuthSession"]] = relationship(
        back_populates="participant", cascade="all, delete-orphan"
    )

    @property
    def team_name(self) -> str:
        return f"{self.team_id}조"

    def __str__(self) -> str:
        return f"{self.team_id}조 {self.name}"


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        UniqueConstraint("session_id", "team_id", "user_name", name="uq_reports_session_team_user"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("training_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    report: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    report_image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    submitted_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    session: Mapped[TrainingSession] = relationship(back_populates="reports")

    def __str__(self) -> str:
        title = (self.report or {}).get("title") or "-"
        return f"{self.team_id}조 {self.user_name}: {title}"


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    role: Mapped[AppRole] = mapped_column(Enum(AppRole, name="app_role"), nullable=False)
    participant_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    user_agent: Mapped[str | None] = mapped_column(String(512))
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    participant: Mapped[Participant | None] = relationship(back_populates="auth_sessions")

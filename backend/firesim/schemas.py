from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import AppRole, WizardStep


# --- Auth ---
class AdminLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    password: str = Field(min_length=1, max_length=128)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    session_id: UUID | None = None


class MeRead(BaseModel):
    role: AppRole
    participant_id: UUID | None = None
    training_session_id: str | None = None
    team_id: int | None = None
    name: str | None = None


# --- Training sessions ---
class TrainingSessionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    group_name: str = Field(min_length=1, max_length=255)
    total_teams: int = Field(default=6, ge=1, le=12)


class TrainingSessionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    group_name: str | None = Field(default=None, min_length=1, max_length=255)
    total_teams: int | None = Field(default=None, ge=1, le=12)
    is_report_enabled: bool | None = None


class TrainingSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    group_name: str
    total_teams: int
    is_report_enabled: bool
    is_timer_running: bool
    timer_end_time: int | None = None
    created_at: datetime


class TimerStartRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    duration_minutes: int = Field(default=60, ge=1, le=360)


class TimerView(BaseModel):
    is_running: bool
    end_time: int | None = None
    remaining_seconds: int = 0
    display: str = "--:--"
    is_urgent: bool = False


class SessionStateRead(BaseModel):
    session: TrainingSessionRead
    timer: TimerView


# --- Participants / wizard ---
class JoinRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    team_id: int = Field(ge=1, le=12)
    name: str = Field(min_length=1, max_length=100)


class GapAnalysis(BaseModel):
    current: str = ""
    ideal: str = ""


class Solutions(BaseModel):
    short_term: str = ""
    prevention: str = ""


class FinalReportData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(default="", max_length=255)
    members: str = Field(default="", max_length=1000)
    contents: str = Field(default="", max_length=5000)
    situation: str = Field(default="", max_length=5000)
    definition: str = Field(default="", max_length=5000)
    cause: str = Field(default="", max_length=5000)
    solution: str = Field(default="", max_length=5000)
    prevention: str = Field(default="", max_length=5000)
    schedule: str = Field(default="", max_length=5000)


class StepGuideRead(BaseModel):
    title: str
    objective: str
    tip: str


class InfoCardRead(BaseModel):
    label: str
    image_url: str


class ParticipantRead(BaseModel):
    id: UUID
    session_id: str
    team_id: int
    team_name: str
    name: str
    current_step: WizardStep
    collected_facts: list[str] = Field(default_factory=list)
    personal_notes: list[str] = Field(default_factory=list)
    gap_analysis: GapAnalysis = Field(default_factory=GapAnalysis)
    power_calculation: list[dict[str, Any]] = Field(default_factory=list)
    root_causes: dict[str, str] = Field(default_factory=dict)
    solutions: Solutions = Field(default_factory=Solutions)
    final_report: FinalReportData | None = None
    progress: float
    show_guide: bool
    guide: StepGuideRead | None = None
    info_cards: list[InfoCardRead] = Field(default_factory=list)


class JoinResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    participant: ParticipantRead


class FactsSubmit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    facts: list[str] = Field(max_length=20)


class GapSubmit(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    current: str = Field(default="", max_length=5000)
    ideal: str = Field(default="", max_length=5000)


class AnalysisSubmit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    active_devices: list[str] = Field(default_factory=list, max_length=50)
    causes: dict[str, str] = Field(default_factory=dict)


class SolutionSubmit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    short_term: str = Field(default="", max_length=5000)
    prevention: str = Field(default="", max_length=5000)


class NoteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(max_length=2000)

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Note must not be blank")
        return value


# --- Reports ---
class ReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: str
    team_id: int
    user_name: str
    report: FinalReportData
    report_image_url: str | None = None
    submitted_at: int


class ReportImageAttach(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_base64: str = Field(min_length=1)
    mime_type: Literal["image/png", "image/jpeg"] = "image/png"

    @field_validator("image_base64", mode="before")
    @classmethod
    def strip_data_url_prefix(cls, value: Any) -> Any:
        if isinstance(value, str) and value.startswith("data:") and "," in value:
            return value.split(",", 1)[1]
        return value


# --- Scenario ---
class StepRead(BaseModel):
    step: WizardStep
    label: str


class ScenarioRead(BaseModel):
    info: dict[str, str]
    steps: list[StepRead]
    facts_pool: list[str]
    min_facts: int
    power_devices: list[dict[str, Any]]
    max_power_limit: int
    cause_questions: list[dict[str, Any]]
    solution_hint: str
    guides: dict[WizardStep, StepGuideRead]

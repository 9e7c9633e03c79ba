from __future__ import annotations

import os
from typing import Any
from uuid import UUID

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import scenario
from .admin import setup_admin
from .auth import (
    get_current_auth_session,
    get_current_participant,
    issue_access_token,
    verify_admin_password,
)
from .database import Base, engine, get_db
from .enums import STEP_LABELS_KO, WIZARD_STEPS, AppRole
from .logger import logger
from .models import AuthSession, Participant
from .schemas import (
    AdminLoginRequest,
    AnalysisSubmit,
    FactsSubmit,
    FinalReportData,
    GapSubmit,
    JoinRequest,
    JoinResponse,
    MeRead,
    NoteCreate,
    ParticipantRead,
    ReportImageAttach,
    ReportRead,
    ScenarioRead,
    SessionStateRead,
    SolutionSubmit,
    TimerStartRequest,
    Token,
    TrainingSessionCreate,
    TrainingSessionRead,
    TrainingSessionUpdate,
)
from .security.rate_limit import enforce_key_rate_limit, rate_limit_dependency
from .security.rbac import assert_session_scope, require_permission
from .services import image_service, report_service, session_service, wizard_service
from .ws import (
    publish_reports,
    publish_session_deleted,
    publish_session_state,
    publish_sessions,
    ws_router,
)


def _parse_allowed_origins(raw_value: str) -> list[str]:
    return [origin.strip() for origin in raw_value.split(",") if origin.strip()]


ALLOWED_ORIGINS = _parse_allowed_origins(
    os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )
)
ALLOWED_ORIGIN_REGEX = os.getenv(
    "ALLOWED_ORIGIN_REGEX",
    r"^http://(?:localhost|127\.0\.0\.1|(?:\d{1,3}\.){3}\d{1,3})(?::\d{1,5})?$",
)

report_service.REPORT_MEDIA_DIR.mkdir(parents=True, exist_ok=True)

app = FastAPI(title="FireSim Factory 3", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    expose_headers=["Content-Disposition"],
)
app.mount(
    report_service.REPORT_MEDIA_URL_PREFIX,
    StaticFiles(directory=report_service.REPORT_MEDIA_DIR),
    name="media",
)
setup_admin(app)
app.include_router(ws_router)

INVALID_PASSWORD_DETAIL = "Invalid admin password"

admin_login_rate_limit = rate_limit_dependency("auth_admin_login", max_requests=10, window_seconds=60)
join_rate_limit = rate_limit_dependency("session_join", max_requests=60, window_seconds=60)
IMAGE_RATE_LIMIT_PER_MINUTE = int(os.getenv("IMAGE_RATE_LIMIT_PER_MINUTE", "10"))


def image_rate_limit(current_session: AuthSession = Depends(get_current_auth_session)) -> None:
    # Counted per auth session, not per client address.
    enforce_key_rate_limit(
        f"image_generate:{current_session.id}",
        max_requests=IMAGE_RATE_LIMIT_PER_MINUTE,
        window_seconds=60,
    )


async def image_prompt(request: Request) -> Any:
    try:
        body = await request.json()
    except ValueError as exc:
        raise image_service.ImageGenerationError(500, "Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        return None
    return body.get("prompt")


@app.exception_handler(image_service.ImageGenerationError)
async def image_generation_error_handler(
    request: Request, exc: image_service.ImageGenerationError
) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def commit_or_400(db: Session, detail: str, status_code: int = 400) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status_code, detail=detail) from exc


def participant_read(db: Session, participant: Participant) -> ParticipantRead:
    session_obj = wizard_service.load_participant_session(db, participant)
    return ParticipantRead(**wizard_service.participant_state(participant, session_obj))


def session_state_read(session_obj) -> SessionStateRead:
    return SessionStateRead(
        session=TrainingSessionRead.model_validate(session_obj),
        timer=session_service.timer_view(session_obj),
    )


# --- Scenario ---
@app.get("/api/scenario", response_model=ScenarioRead)
def read_scenario():
    return ScenarioRead(
        info=scenario.SCENARIO_INFO,
        steps=[{"step": step, "label": STEP_LABELS_KO[step]} for step in WIZARD_STEPS],
        facts_pool=list(scenario.FACTS_POOL),
        min_facts=scenario.MIN_FACTS,
        power_devices=scenario.initial_power_data(),
        max_power_limit=scenario.MAX_POWER_LIMIT,
        cause_questions=[
            {key: value for key, value in item.items() if key != "correct"}
            for item in scenario.CAUSE_QUESTIONS
        ],
        solution_hint=scenario.SOLUTION_HINT,
        guides=scenario.STEP_GUIDES,
    )


# --- Auth ---
@app.post("/api/auth/admin/login", response_model=Token, dependencies=[Depends(admin_login_rate_limit)])
def admin_login(payload: AdminLoginRequest, request: Request, db: Session = Depends(get_db)):
    if not verify_admin_password(payload.password):
        logger.warning("Rejected admin login attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=INVALID_PASSWORD_DETAIL,
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token, auth_session = issue_access_token(
        db, AppRole.ADMIN, user_agent=request.headers.get("user-agent")
    )
    db.commit()
    logger.info("Admin signed in (auth session {})", auth_session.id)
    return {"access_token": access_token, "token_type": "bearer", "session_id": auth_session.id}


@app.post("/api/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout_current_session(
    current_session: AuthSession = Depends(get_current_auth_session),
    db: Session = Depends(get_db),
):
    current_session.is_revoked = True
    db.commit()


@app.get("/api/auth/me", response_model=MeRead)
def read_me(current_session: AuthSession = Depends(get_current_auth_session)):
    participant = current_session.participant
    if participant is None:
        return MeRead(role=current_session.role)
    return MeRead(
        role=current_session.role,
        participant_id=participant.id,
        training_session_id=participant.session_id,
        team_id=participant.team_id,
        name=participant.name,
    )


# --- Training sessions ---
@app.get("/api/sessions", response_model=list[TrainingSessionRead])
def list_sessions(db: Session = Depends(get_db)):
    return session_service.list_sessions(db)


@app.post(
    "/api/sessions",
    response_model=TrainingSessionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("sessions:write"))],
)
def create_session(
    payload: TrainingSessionCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    obj = session_service.create_session(db, payload.group_name, payload.total_teams)
    commit_or_400(db, "Session already exists", status_code=409)
    background_tasks.add_task(publish_sessions)
    return obj


@app.get("/api/sessions/{session_id}", response_model=SessionStateRead)
def get_session(session_id: str, db: Session = Depends(get_db)):
    return session_state_read(session_service.get_session_or_404(db, session_id))


@app.patch(
    "/api/sessions/{session_id}",
    response_model=TrainingSessionRead,
    dependencies=[Depends(require_permission("sessions:write"))],
)
def update_session(
    session_id: str,
    payload: TrainingSessionUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    obj = session_service.update_session(db, session_id, payload.model_dump(exclude_unset=True))
    commit_or_400(db, "Invalid session update")
    background_tasks.add_task(publish_session_state, session_id)
    background_tasks.add_task(publish_sessions)
    return obj


@app.delete(
    "/api/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_permission("sessions:write"))],
)
def delete_session(
    session_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    session_service.delete_session(db, session_id)
    db.commit()
    background_tasks.add_task(publish_session_deleted, session_id)


@app.post(
    "/api/sessions/{session_id}/timer/start",
    response_model=SessionStateRead,
    dependencies=[Depends(require_permission("timer:write"))],
)
def start_timer(
    session_id: str,
    payload: TimerStartRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    obj = session_service.start_timer(db, session_id, payload.duration_minutes)
    db.commit()
    background_tasks.add_task(publish_session_state, session_id)
    background_tasks.add_task(publish_sessions)
    return session_state_read(obj)


@app.post(
    "/api/sessions/{session_id}/timer/stop",
    response_model=SessionStateRead,
    dependencies=[Depends(require_permission("timer:write"))],
)
def stop_timer(
    session_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    obj = session_service.stop_timer(db, session_id)
    db.commit()
    background_tasks.add_task(publish_session_state, session_id)
    background_tasks.add_task(publish_sessions)
    return session_state_read(obj)


# --- Participants ---
@app.post(
    "/api/sessions/{session_id}/join",
    response_model=JoinResponse,
    dependencies=[Depends(join_rate_limit)],
)
def join_session(
    session_id: str,
    payload: JoinRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    participant = session_service.join_session(db, session_id, payload.team_id, payload.name)
    commit_or_400(db, "Participant already joined", status_code=409)
    access_token, _ = issue_access_token(
        db, AppRole.STUDENT, participant=participant, user_agent=request.headers.get("user-agent")
    )
    db.commit()
    return JoinResponse(access_token=access_token, participant=participant_read(db, participant))


@app.get("/api/participants/me", response_model=ParticipantRead)
def read_participant(
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    return participant_read(db, participant)


def _apply_wizard_change(db: Session, participant: Participant) -> ParticipantRead:
    db.commit()
    return participant_read(db, participant)


@app.post(
    "/api/participants/me/start",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def wizard_start(participant: Participant = Depends(get_current_participant), db: Session = Depends(get_db)):
    wizard_service.start(participant)
    return _apply_wizard_change(db, participant)


@app.post(
    "/api/participants/me/jump-to-report",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def wizard_jump_to_report(
    participant: Participant = Depends(get_current_participant), db: Session = Depends(get_db)
):
    wizard_service.jump_to_report(participant)
    return _apply_wizard_change(db, participant)


@app.post(
    "/api/participants/me/return-to-intro",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def wizard_return_to_intro(
    participant: Participant = Depends(get_current_participant), db: Session = Depends(get_db)
):
    wizard_service.return_to_intro(participant)
    return _apply_wizard_change(db, participant)


@app.post(
    "/api/participants/me/facts",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def wizard_submit_facts(
    payload: FactsSubmit,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    wizard_service.submit_facts(participant, payload.facts)
    return _apply_wizard_change(db, participant)


@app.post(
    "/api/participants/me/gap",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def wizard_submit_gap(
    payload: GapSubmit,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    wizard_service.submit_gap(participant, payload.current, payload.ideal)
    return _apply_wizard_change(db, participant)


@app.post(
    "/api/participants/me/analysis",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def wizard_submit_analysis(
    payload: AnalysisSubmit,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    wizard_service.submit_analysis(participant, payload.active_devices, payload.causes)
    return _apply_wizard_change(db, participant)


@app.post(
    "/api/participants/me/solution",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def wizard_submit_solution(
    payload: SolutionSubmit,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    wizard_service.submit_solution(participant, payload.short_term, payload.prevention)
    return _apply_wizard_change(db, participant)


@app.post(
    "/api/participants/me/notes",
    response_model=ParticipantRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def add_note(
    payload: NoteCreate,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    wizard_service.add_note(participant, payload.text)
    return _apply_wizard_change(db, participant)


@app.delete(
    "/api/participants/me/notes/{index}",
    response_model=ParticipantRead,
    dependencies=[Depends(require_permission("wizard:write"))],
)
def delete_note(
    index: int,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    wizard_service.delete_note(participant, index)
    return _apply_wizard_change(db, participant)


@app.get("/api/participants/me/report-draft", response_model=FinalReportData)
def read_report_draft(participant: Participant = Depends(get_current_participant)):
    return wizard_service.build_report_draft(participant)


@app.post(
    "/api/participants/me/report",
    response_model=ReportRead,
    dependencies=[Depends(require_permission("reports:write"))],
)
def submit_report(
    payload: FinalReportData,
    background_tasks: BackgroundTasks,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
):
    session_obj = wizard_service.load_participant_session(db, participant)
    obj = report_service.submit_report(db, participant, session_obj, payload.model_dump())
    commit_or_400(db, "Report was submitted concurrently, retry", status_code=409)
    background_tasks.add_task(publish_reports, participant.session_id)
    return obj


@app.post(
    "/api/participants/me/infographic",
    dependencies=[Depends(require_permission("images:generate")), Depends(image_rate_limit)],
)
def generate_participant_infographic(participant: Participant = Depends(get_current_participant)):
    draft = wizard_service.build_report_draft(participant)
    return image_service.generate_infographic(draft, participant.team_name)


# --- Reports ---
@app.get(
    "/api/sessions/{session_id}/reports",
    response_model=list[ReportRead],
    dependencies=[Depends(require_permission("reports:read"))],
)
def list_reports(session_id: str, db: Session = Depends(get_db)):
    session_service.get_session_or_404(db, session_id)
    return report_service.list_reports(db, session_id)


@app.get(
    "/api/sessions/{session_id}/reports/team/{team_id}",
    response_model=ReportRead,
    dependencies=[Depends(require_permission("reports:read"))],
)
def get_report_by_team(session_id: str, team_id: int, db: Session = Depends(get_db)):
    session_service.get_session_or_404(db, session_id)
    return report_service.get_report_by_team(db, session_id, team_id)


@app.get(
    "/api/sessions/{session_id}/reports/export.csv",
    dependencies=[Depends(require_permission("reports:read"))],
)
def export_reports_csv(session_id: str, db: Session = Depends(get_db)):
    session_obj = session_service.get_session_or_404(db, session_id)
    filename, body = report_service.export_reports_csv(
        session_obj, report_service.list_reports(db, session_id)
    )
    return Response(
        content=body.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": report_service.content_disposition(filename)},
    )


@app.get(
    "/api/reports/{report_id}/export.json",
    dependencies=[Depends(require_permission("reports:read"))],
)
def export_report_json(report_id: UUID, db: Session = Depends(get_db)):
    filename, body = report_service.export_report_json(report_service.get_report_or_404(db, report_id))
    return Response(
        content=body.encode("utf-8"),
        media_type="application/json; charset=utf-8",
        headers={"Content-Disposition": report_service.content_disposition(filename)},
    )


@app.post("/api/reports/{report_id}/image", response_model=ReportRead)
def attach_report_image(
    report_id: UUID,
    payload: ReportImageAttach,
    background_tasks: BackgroundTasks,
    current_session: AuthSession = Depends(get_current_auth_session),
    db: Session = Depends(get_db),
):
    obj = report_service.get_report_or_404(db, report_id)
    assert_session_scope(current_session, obj.session_id)
    participant = current_session.participant
    if current_session.role == AppRole.STUDENT and (
        participant is None
        or participant.team_id != obj.team_id
        or participant.name != obj.user_name
    ):
        raise HTTPException(status_code=403, detail="Only the report author can attach an image")

    report_service.attach_report_image(obj, payload.image_base64, payload.mime_type)
    db.commit()
    background_tasks.add_task(publish_reports, obj.session_id)
    return obj


# --- Image proxy ---
@app.post(
    "/api/generate-image",
    dependencies=[Depends(require_permission("images:generate")), Depends(image_rate_limit)],
)
def generate_image(prompt: Any = Depends(image_prompt)) -> Any:
    return image_service.generate_image(prompt)

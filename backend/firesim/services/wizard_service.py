from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from .. import scenario
from ..enums import GUIDED_STEPS, WIZARD_STEPS, WizardStep
from ..logger import logger
from ..models import Participant, TrainingSession

# operation -> (required current step, next step)
TRANSITIONS: dict[str, tuple[WizardStep, WizardStep]] = {
    "start": (WizardStep.INTRO, WizardStep.SITUATION),
    "jump_to_report": (WizardStep.INTRO, WizardStep.REPORT),
    "submit_facts": (WizardStep.SITUATION, WizardStep.DEFINITION),
    "submit_gap": (WizardStep.DEFINITION, WizardStep.ANALYSIS),
    "submit_analysis": (WizardStep.ANALYSIS, WizardStep.SOLUTION),
    "submit_solution": (WizardStep.SOLUTION, WizardStep.REPORT),
}


def _unprocessable(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


def progress(step: WizardStep) -> float:
    index = WIZARD_STEPS.index(step)
    return max(0.0, index / (len(WIZARD_STEPS) - 1) * 100)


def show_guide(step: WizardStep) -> bool:
    return step in GUIDED_STEPS


def _require_step(participant: Participant, operation: str) -> None:
    expected, _ = TRANSITIONS[operation]
    if participant.current_step != expected:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {operation} from step {participant.current_step.value}",
        )


def _advance(participant: Participant, operation: str) -> None:
    _require_step(participant, operation)
    expected, target = TRANSITIONS[operation]
    participant.current_step = target
    logger.debug(
        "Participant {} moved {} -> {}", participant.id, expected.value, target.value
    )


def start(participant: Participant) -> None:
    _advance(participant, "start")


def jump_to_report(participant: Participant) -> None:
    _advance(participant, "jump_to_report")


def return_to_intro(participant: Participant) -> None:
    if participant.current_step == WizardStep.INTRO:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already at INTRO")
    participant.current_step = WizardStep.INTRO


def submit_facts(participant: Participant, facts: list[str]) -> None:
    _require_step(participant, "submit_facts")

    selected: list[str] = []
    for fact in facts:
        if fact not in scenario.FACTS_POOL:
            raise _unprocessable(f"Unknown fact: {fact}")
        if fact not in selected:
            selected.append(fact)
    if len(selected) < scenario.MIN_FACTS:
        raise _unprocessable(f"Select at least {scenario.MIN_FACTS} facts")

    participant.collected_facts = selected
    _advance(participant, "submit_facts")


def submit_gap(participant: Participant, current: str, ideal: str) -> None:
    _require_step(participant, "submit_gap")

    current = (current or "").strip()
    ideal = (ideal or "").strip()
    if not current or not ideal:
        raise _unprocessable("Both current and ideal state are required")

    participant.gap_analysis = {"current": current, "ideal": ideal}
    _advance(participant, "submit_gap")


def build_power_calculation(active_devices: list[str]) -> list[dict[str, Any]]:
    power_data = scenario.initial_power_data()
    known = {item["device"] for item in power_data}
    unknown = [name for name in active_devices if name not in known]
    if unknown:
        raise _unprocessable(f"Unknown device: {unknown[0]}")

    active = set(active_devices)
    for item in power_data:
        item["active"] = item["device"] in active
    return power_data


def submit_analysis(
    participant: Participant,
    active_devices: list[str],
    causes: dict[str, str],
) -> None:
    _require_step(participant, "submit_analysis")

    power_data = build_power_calculation(active_devices)
    if not scenario.is_overloaded(power_data):
        raise _unprocessable(
            f"Reproduced load must exceed {scenario.MAX_POWER_LIMIT} W "
            f"(got {scenario.total_wattage(power_data)} W)"
        )

    answers: dict[str, str] = {}
    for question in scenario.CAUSE_QUESTIONS:
        answer = causes.get(question["key"])
        if answer not in question["options"]:
            raise _unprocessable(f"Answer required for {question['title']}")
        answers[question["key"]] = answer

    participant.power_calculation = power_data
    participant.root_causes = answers
    _advance(participant, "submit_analysis")


def submit_solution(participant: Participant, short_term: str, prevention: str) -> None:
    _require_step(participant, "submit_solution")
    # Blank plans are accepted.
    participant.solutions = {"short_term": short_term or "", "prevention": prevention or ""}
    _advance(participant, "submit_solution")


def add_note(participant: Participant, text: str) -> None:
    text = (text or "").strip()
    if not text:
        raise _unprocessable("Note must not be blank")
    participant.personal_notes = [*(participant.personal_notes or []), text]


def delete_note(participant: Participant, index: int) -> None:
    notes = list(participant.personal_notes or [])
    if index < 0 or index >= len(notes):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    del notes[index]
    participant.personal_notes = notes


def build_report_draft(participant: Participant) -> dict[str, str]:
    if participant.final_report:
        return dict(participant.final_report)

    gap = participant.gap_analysis or {}
    solutions = participant.solutions or {}
    return {
        "title": f"{participant.team_name} 화재사고 분석 보고서",
        "members": participant.name,
        "contents": scenario.DEFAULT_REPORT_CONTENTS,
        "situation": gap.get("current", ""),
        "definition": gap.get("ideal", ""),
        "cause": scenario.DEFAULT_REPORT_CAUSE,
        "solution": solutions.get("short_term", ""),
        "prevention": solutions.get("prevention", ""),
        "schedule": scenario.DEFAULT_REPORT_SCHEDULE,
    }


def participant_state(participant: Participant, session: TrainingSession) -> dict[str, Any]:
    step = participant.current_step
    guide = scenario.STEP_GUIDES.get(step) if show_guide(step) else None
    return {
        "id": participant.id,
        "session_id": participant.session_id,
        "team_id": participant.team_id,
        "team_name": participant.team_name,
        "name": participant.name,
        "current_step": step,
        "collected_facts": participant.collected_facts or [],
        "personal_notes": participant.personal_notes or [],
        "gap_analysis": participant.gap_analysis or {"current": "", "ideal": ""},
        "power_calculation": participant.power_calculation or scenario.initial_power_data(),
        "root_causes": participant.root_causes or {},
        "solutions": participant.solutions or {"short_term": "", "prevention": ""},
        "final_report": participant.final_report,
        "progress": progress(step),
        "show_guide": guide is not None,
        "guide": guide,
        "info_cards": [
            {"label": scenario.card_label(path), "image_url": path}
            for path in scenario.team_info_cards(participant.team_id, session.total_teams)
        ],
    }


def load_participant_session(db: Session, participant: Participant) -> TrainingSession:
    session_obj = db.get(TrainingSession, participant.session_id)
    if session_obj is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session_obj

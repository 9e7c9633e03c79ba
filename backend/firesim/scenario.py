"""
Сценарий "제3공장 화재사고": статичное содержимое тренажёра.
Fact pool, power-load experiment, 5-whys questions, step guides and the
evidence cards that are split between teams.
"""
from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any

from .enums import WizardStep

# ── Incident summary ────────────────────────────────────────────────────────
SCENARIO_INFO: dict[str, str] = {
    "title": "긴급 속보: 제3공장 화재 발생",
    "date": "8월 4일 오전 10:30",
    "location": "제3공장 생산라인",
    "damage": "인명사고 발생 (전치 4주)",
    "hidden_issue": "???",
    "ceo_order": "1시간 내로 현상파악 → 문제정의 → 원인분석 → 해결방안 → 재발방지대책을 보고하게!",
    "video_url": "https://raw.githubusercontent.com/1970jjh/image-upload/main/fire.mp4",
}

# ── Step 1: fact finding ────────────────────────────────────────────────────
# Objective facts are mixed with opinions and noise on purpose.
FACTS_POOL: tuple[str, ...] = (
    "8월 4일 오전 10:30분경 화재 발생",
    "생산팀 박계장 전치 4주 화상 입음",
    "화재로 인해 공장 가동 전면 중단됨",
    "납기일은 8월 12일로 일주일 남음",
    "최근 공장 주변에 야생 고양이가 자주 출몰함",
    "박계장은 평소 안전모를 잘 쓰지 않음 (의견)",
    "3공장 사고 시점에 남은 생산량은 4,000 unit",
    "소화기가 작동하지 않아 초기 진압 실패",
    "구내식당 메뉴가 맛이 없어서 불만이 많음",
)
MIN_FACTS = 3

# ── Step 3: power-load experiment ───────────────────────────────────────────
MAX_POWER_LIMIT = 16_000  # W, rated capacity of the Factory 3 panel

INITIAL_POWER_DATA: tuple[dict[str, Any], ...] = (
    {"device": "사출 성형기", "count": 2, "watts": 5_000, "active": False},
    {"device": "대형 에어컨", "count": 2, "watts": 2_500, "active": False},
    {"device": "컨베이어 벨트", "count": 3, "watts": 800, "active": False},
    {"device": "전기 히터 (무단 반입)", "count": 4, "watts": 1_000, "active": False},
    {"device": "조명 설비", "count": 10, "watts": 100, "active": False},
    {"device": "커피 머신", "count": 1, "watts": 1_500, "active": False},
)

# ── Step 3: 5 whys ──────────────────────────────────────────────────────────
CAUSE_QUESTIONS: tuple[dict[str, Any], ...] = (
    {
        "key": "evacuation",
        "title": "Why 1. 인명피해 발생?",
        "question": "박계장은 왜 제때 대피하지 못했는가?",
        "options": (
            "대피 방송 시스템 고장",
            "비상구 앞 자재 적재로 탈출 지연",
            "안전화 미착용으로 인한 부상",
        ),
        "correct": "비상구 앞 자재 적재로 탈출 지연",
    },
    {
        "key": "initial_suppression",
        "title": "Why 2. 초기진압 실패?",
        "question": "왜 작은 불이 큰 화재로 번졌는가?",
        "options": (
            "소방차 진입로 부족",
            "소화기 노후화로 인한 작동 불량",
            "스프링클러 오작동",
        ),
        "correct": "소화기 노후화로 인한 작동 불량",
    },
)

# ── Step 4 hint ─────────────────────────────────────────────────────────────
SOLUTION_HINT = "1공장(400) + 4공장(600) = 1,000/day"

# ── Learning guides ─────────────────────────────────────────────────────────
STEP_GUIDES: dict[WizardStep, dict[str, str]] = {
    WizardStep.SITUATION: {
        "title": "Step 1. 현상 파악 (Fact Finding)",
        "objective": "의견과 추측을 걸러내고 객관적 사실(Fact)만 모읍니다.",
        "tip": "누가, 언제, 어디서, 무엇을 했는지 확인 가능한 내용만 고르세요.",
    },
    WizardStep.DEFINITION: {
        "title": "Step 2. 문제 정의 (Gap Analysis)",
        "objective": "현재 모습(As-Is)과 바람직한 모습(To-Be)의 차이를 정의합니다.",
        "tip": "차이가 곧 해결해야 할 문제입니다. 수치로 표현하면 더 명확합니다.",
    },
    WizardStep.ANALYSIS: {
        "title": "Step 3. 원인 분석 (Root Cause)",
        "objective": "전력 사용량을 재현하고 5 Whys로 근본 원인을 찾습니다.",
        "tip": "직접 원인 뒤에 숨은 관리상의 원인을 끝까지 추적하세요.",
    },
    WizardStep.SOLUTION: {
        "title": "Step 4. 해결 방안 (Solution)",
        "objective": "납기를 지키기 위한 단기 대책과 재발 방지 대책을 수립합니다.",
        "tip": "다른 공장의 생산 여력을 활용할 수 있는지 확인하세요.",
    },
}

# ── Evidence cards ──────────────────────────────────────────────────────────
INFO_CARD_IMAGES: tuple[str, ...] = (
    "/static/info-cards/01_출입기록.png",
    "/static/info-cards/02_전력계통도.png",
    "/static/info-cards/03_소화기점검표.png",
    "/static/info-cards/04_CCTV캡처.png",
    "/static/info-cards/05_생산일정표.png",
    "/static/info-cards/06_비상구사진.png",
    "/static/info-cards/07_안전교육일지.png",
    "/static/info-cards/08_설비반입대장.png",
    "/static/info-cards/09_목격자진술.png",
    "/static/info-cards/10_공장별생산능력.png",
    "/static/info-cards/11_소방점검결과.png",
    "/static/info-cards/12_전력사용량로그.png",
)

# ── Report defaults ─────────────────────────────────────────────────────────
DEFAULT_REPORT_CONTENTS = "1. 개요\n2. 현상 파악\n3. 원인 분석\n4. 해결 방안"
DEFAULT_REPORT_CAUSE = "전력 과부하, 소화기 미작동, 관리 소홀"
DEFAULT_REPORT_SCHEDULE = "즉시: 소화기 교체\n1주 내: 안전 교육\n1달 내: 설비 증설"


def team_name(team_id: int) -> str:
    return f"{team_id}조"


def initial_power_data() -> list[dict[str, Any]]:
    return [dict(item) for item in INITIAL_POWER_DATA]


def total_wattage(power_data: list[dict[str, Any]]) -> int:
    return sum(
        int(item.get("count", 0)) * int(item.get("watts", 0))
        for item in power_data
        if item.get("active")
    )


def is_overloaded(power_data: list[dict[str, Any]]) -> bool:
    return total_wattage(power_data) > MAX_POWER_LIMIT


def cause_question(key: str) -> dict[str, Any] | None:
    for question in CAUSE_QUESTIONS:
        if question["key"] == key:
            return question
    return None


def team_info_cards(team_id: int, total_teams: int) -> list[str]:
    """Contiguous slice of INFO_CARD_IMAGES owned by ``team_id``.

    Cards are spread as evenly as possible: every team gets ``n // teams``
    cards and the first ``n % teams`` teams get one more.
    """
    if total_teams < 1 or team_id < 1 or team_id > total_teams:
        return []
    total_images = len(INFO_CARD_IMAGES)
    base_count, remainder = divmod(total_images, total_teams)

    start_index = 0
    for previous_team in range(1, team_id):
        start_index += base_count + (1 if previous_team <= remainder else 0)
    my_count = base_count + (1 if team_id <= remainder else 0)
    return list(INFO_CARD_IMAGES[start_index : start_index + my_count])


def card_label(path: str) -> str:
    filename = PurePosixPath(path).name
    return filename.split(".")[0]

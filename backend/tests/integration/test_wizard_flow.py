from __future__ import annotations

import base64
import json
from urllib.parse import unquote

from fastapi.testclient import TestClient

from firesim import scenario
from firesim.enums import WizardStep

ALL_DEVICES = [item["device"] for item in scenario.INITIAL_POWER_DATA]
CORRECT_CAUSES = {item["key"]: item["correct"] for item in scenario.CAUSE_QUESTIONS}


def walk_to_report(client: TestClient, headers: dict[str, str]) -> dict:
    response = client.post("/api/participants/me/start", headers=headers)
    assert response.status_code == 200, response.text
    assert response.json()["show_guide"] is True

    response = client.post(
        "/api/participants/me/facts",
        headers=headers,
        json={"facts": list(scenario.FACTS_POOL[:3])},
    )
    assert response.status_code == 200, response.text
    assert response.json()["current_step"] == "DEFINITION"

    response = client.post(
        "/api/participants/me/gap",
        headers=headers,
        json={"current": "공장 가동 중단, 잔여 4,000 unit", "ideal": "8월 12일까지 납기 준수"},
    )
    assert response.status_code == 200, response.text

    response = client.post(
        "/api/participants/me/analysis",
        headers=headers,
        json={"active_devices": ALL_DEVICES, "causes": CORRECT_CAUSES},
    )
    assert response.status_code == 200, response.text
    assert response.json()["root_causes"] == CORRECT_CAUSES

    response = client.post(
        "/api/participants/me/solution",
        headers=headers,
        json={"short_term": "1공장과 4공장 대체 생산", "prevention": "소화기 전수 교체"},
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_full_wizard_flow(client: TestClient, create_training_session, join_student) -> None:
    session = create_training_session()
    student = join_student(session["id"])

    state = walk_to_report(client, student["headers"])
    assert state["current_step"] == "REPORT"
    assert state["progress"] == 100
    assert state["show_guide"] is False
    assert state["collected_facts"] == list(scenario.FACTS_POOL[:3])
    assert state["gap_analysis"]["ideal"] == "8월 12일까지 납기 준수"
    assert sum(item["active"] for item in state["power_calculation"]) == len(ALL_DEVICES)

    draft = client.get("/api/participants/me/report-draft", headers=student["headers"])
    assert draft.status_code == 200
    assert draft.json()["title"] == "1조 화재사고 분석 보고서"
    assert draft.json()["members"] == "김철수"
    assert draft.json()["situation"] == "공장 가동 중단, 잔여 4,000 unit"
    assert draft.json()["solution"] == "1공장과 4공장 대체 생산"

    back = client.post("/api/participants/me/return-to-intro", headers=student["headers"])
    assert back.status_code == 200
    assert back.json()["current_step"] == "INTRO"
    assert back.json()["solutions"]["prevention"] == "소화기 전수 교체"


def test_wizard_rejects_invalid_input(client: TestClient, create_training_session, join_student) -> None:
    session = create_training_session()
    headers = join_student(session["id"])["headers"]

    out_of_order = client.post(
        "/api/participants/me/facts", headers=headers, json={"facts": list(scenario.FACTS_POOL[:3])}
    )
    assert out_of_order.status_code == 409

    client.post("/api/participants/me/start", headers=headers)
    too_few = client.post(
        "/api/participants/me/facts", headers=headers, json={"facts": list(scenario.FACTS_POOL[:2])}
    )
    assert too_few.status_code == 422

    client.post("/api/participants/me/facts", headers=headers, json={"facts": list(scenario.FACTS_POOL[:3])})
    blank_gap = client.post(
        "/api/participants/me/gap", headers=headers, json={"current": "  ", "ideal": "x"}
    )
    assert blank_gap.status_code == 422

    client.post("/api/participants/me/gap", headers=headers, json={"current": "a", "ideal": "b"})
    under_limit = client.post(
        "/api/participants/me/analysis",
        headers=headers,
        json={"active_devices": ALL_DEVICES[:1], "causes": CORRECT_CAUSES},
    )
    assert under_limit.status_code == 422

    missing_cause = client.post(
        "/api/participants/me/analysis",
        headers=headers,
        json={"active_devices": ALL_DEVICES, "causes": {"evacuation": CORRECT_CAUSES["evacuation"]}},
    )
    assert missing_cause.status_code == 422

    state = client.get("/api/participants/me", headers=headers).json()
    assert state["current_step"] == "ANALYSIS"
    assert state["guide"]["title"] == scenario.STEP_GUIDES[WizardStep.ANALYSIS]["title"]


def test_notes_add_and_delete(client: TestClient, create_training_session, join_student) -> None:
    session = create_training_session()
    headers = join_student(session["id"])["headers"]

    first = client.post("/api/participants/me/notes", headers=headers, json={"text": "  비상구 확인  "})
    assert first.status_code == 201
    client.post("/api/participants/me/notes", headers=headers, json={"text": "소화기 점검일"})

    blank = client.post("/api/participants/me/notes", headers=headers, json={"text": "   "})
    assert blank.status_code == 422

    deleted = client.delete("/api/participants/me/notes/0", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["personal_notes"] == ["소화기 점검일"]

    missing = client.delete("/api/participants/me/notes/5", headers=headers)
    assert missing.status_code == 404


def test_admin_cannot_use_wizard(client: TestClient, admin_headers) -> None:
    response = client.post("/api/participants/me/start", headers=admin_headers)
    assert response.status_code == 403


def test_report_submission_gate_and_exports(
    client: TestClient, admin_headers, create_training_session, join_student
) -> None:
    session = create_training_session(group_name="안전관리 3기")
    author = join_student(session["id"], team_id=2, name="이영희")
    idle = join_student(session["id"], team_id=3, name="박민수")
    walk_to_report(client, author["headers"])

    draft = client.get("/api/participants/me/report-draft", headers=author["headers"]).json()

    gated = client.post("/api/participants/me/report", headers=author["headers"], json=draft)
    assert gated.status_code == 403

    client.patch(
        f"/api/sessions/{session['id']}", headers=admin_headers, json={"is_report_enabled": True}
    )

    wrong_step = client.post("/api/participants/me/report", headers=idle["headers"], json=draft)
    assert wrong_step.status_code == 409

    untitled = client.post(
        "/api/participants/me/report", headers=author["headers"], json={**draft, "title": " "}
    )
    assert untitled.status_code == 422

    submitted = client.post(
        "/api/participants/me/report",
        headers=author["headers"],
        json={**draft, "situation": "첫 줄\n둘째 줄"},
    )
    assert submitted.status_code == 200, submitted.text
    report = submitted.json()
    assert report["team_id"] == 2
    assert report["user_name"] == "이영희"

    resubmitted = client.post(
        "/api/participants/me/report",
        headers=author["headers"],
        json={**draft, "title": "2조 최종 보고서"},
    )
    assert resubmitted.json()["id"] == report["id"]

    listed = client.get(f"/api/sessions/{session['id']}/reports", headers=admin_headers)
    assert listed.status_code == 200
    assert [item["report"]["title"] for item in listed.json()] == ["2조 최종 보고서"]

    by_team = client.get(f"/api/sessions/{session['id']}/reports/team/2", headers=admin_headers)
    assert by_team.status_code == 200
    assert client.get(
        f"/api/sessions/{session['id']}/reports/team/3", headers=admin_headers
    ).status_code == 404

    csv_response = client.get(f"/api/sessions/{session['id']}/reports/export.csv", headers=admin_headers)
    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    assert csv_response.content.startswith(b"\xef\xbb\xbf")
    assert unquote(csv_response.headers["content-disposition"]).endswith("안전관리 3기_전체보고서.csv")

    json_response = client.get(f"/api/reports/{report['id']}/export.json", headers=admin_headers)
    assert json_response.status_code == 200
    assert json.loads(json_response.content)["report"]["title"] == "2조 최종 보고서"
    assert unquote(json_response.headers["content-disposition"]).endswith("2조_이영희_보고서.json")

    participant = client.get("/api/participants/me", headers=author["headers"]).json()
    assert participant["final_report"]["title"] == "2조 최종 보고서"


def test_empty_csv_export_is_not_found(client: TestClient, admin_headers, create_training_session) -> None:
    session = create_training_session()
    response = client.get(f"/api/sessions/{session['id']}/reports/export.csv", headers=admin_headers)
    assert response.status_code == 404


def test_report_image_attach_is_owner_only(
    client: TestClient, admin_headers, create_training_session, join_student
) -> None:
    session = create_training_session()
    author = join_student(session["id"], team_id=1, name="김철수")
    teammate = join_student(session["id"], team_id=1, name="최지우")
    client.patch(f"/api/sessions/{session['id']}", headers=admin_headers, json={"is_report_enabled": True})
    client.post("/api/participants/me/jump-to-report", headers=author["headers"])
    draft = client.get("/api/participants/me/report-draft", headers=author["headers"]).json()
    report = client.post("/api/participants/me/report", headers=author["headers"], json=draft).json()

    image = base64.b64encode(b"\x89PNG\r\n\x1a\nimage-bytes").decode()

    forbidden = client.post(
        f"/api/reports/{report['id']}/image",
        headers=teammate["headers"],
        json={"image_base64": image},
    )
    assert forbidden.status_code == 403

    attached = client.post(
        f"/api/reports/{report['id']}/image",
        headers=author["headers"],
        json={"image_base64": f"data:image/png;base64,{image}", "mime_type": "image/png"},
    )
    assert attached.status_code == 200, attached.text
    image_url = attached.json()["report_image_url"]
    assert image_url.startswith(f"/media/reports/{session['id']}/1조_김철수_")

    served = client.get(image_url)
    assert served.status_code == 200
    assert served.content == b"\x89PNG\r\n\x1a\nimage-bytes"

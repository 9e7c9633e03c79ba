from __future__ import annotations

import os

from fastapi.testclient import TestClient

ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]


def test_admin_login_me_logout_flow(client: TestClient) -> None:
    login_response = client.post("/api/auth/admin/login", json={"password": ADMIN_PASSWORD})
    assert login_response.status_code == 200, login_response.text
    token = login_response.json()
    assert token["token_type"] == "bearer"
    assert token["session_id"]
    headers = {"Authorization": f"Bearer {token['access_token']}"}

    me_response = client.get("/api/auth/me", headers=headers)
    assert me_response.status_code == 200, me_response.text
    assert me_response.json()["role"] == "ADMIN"
    assert me_response.json()["participant_id"] is None

    logout_response = client.post("/api/auth/logout", headers=headers)
    assert logout_response.status_code == 204, logout_response.text

    me_after_logout = client.get("/api/auth/me", headers=headers)
    assert me_after_logout.status_code == 401


def test_wrong_admin_password_is_rejected(client: TestClient) -> None:
    response = client.post("/api/auth/admin/login", json={"password": "wrong"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid admin password"


def test_admin_login_is_rate_limited(client: TestClient) -> None:
    for _ in range(10):
        client.post("/api/auth/admin/login", json={"password": "wrong"})

    response = client.post("/api/auth/admin/login", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) >= 1


def test_student_me_reports_participant(client: TestClient, create_training_session, join_student) -> None:
    session = create_training_session()
    student = join_student(session["id"], team_id=2, name="이영희")

    response = client.get("/api/auth/me", headers=student["headers"])
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["role"] == "STUDENT"
    assert body["training_session_id"] == session["id"]
    assert body["team_id"] == 2
    assert body["name"] == "이영희"


def test_garbage_token_is_rejected(client: TestClient) -> None:
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401

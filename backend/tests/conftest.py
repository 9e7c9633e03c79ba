from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="firesim-tests-"))

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["ADMIN_PASSWORD"] = "test-admin-password"
os.environ["REPORT_MEDIA_DIR"] = str(_TEST_ROOT / "media")
os.environ.pop("GEMINI_API_KEY", None)

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL or f"sqlite:///{_TEST_ROOT / 'firesim.db'}"

ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]


@pytest.fixture(autouse=True)
def reset_rate_limits() -> None:
    from firesim.security.rate_limit import reset_rate_limits as _reset

    _reset()


@pytest.fixture(autouse=True)
def reset_db() -> None:
    from firesim.database import Base, engine

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture
def db_session():
    from firesim.database import SessionLocal

    with SessionLocal() as db:
        yield db


@pytest.fixture
def client() -> TestClient:
    from firesim.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    response = client.post("/api/auth/admin/login", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def create_training_session(
    client: TestClient, admin_headers: dict[str, str]
) -> Callable[..., dict[str, Any]]:
    def _create(group_name: str = "안전관리 1기", total_teams: int = 6) -> dict[str, Any]:
        response = client.post(
            "/api/sessions",
            headers=admin_headers,
            json={"group_name": group_name, "total_teams": total_teams},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def join_student(client: TestClient) -> Callable[..., dict[str, Any]]:
    def _join(session_id: str, team_id: int = 1, name: str = "김철수") -> dict[str, Any]:
        response = client.post(
            f"/api/sessions/{session_id}/join",
            json={"team_id": team_id, "name": name},
        )
        assert response.status_code == 200, response.text
        data = response.json()
        data["headers"] = {"Authorization": f"Bearer {data['access_token']}"}
        return data

    return _join

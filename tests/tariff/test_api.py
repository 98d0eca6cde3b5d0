from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tariffsense import __version__
from tariffsense.api.app import app
from tariffsense.api.routes_classify import get_engine


@pytest.fixture
def client(make_engine):
    engine = make_engine()
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "version": __version__}


def test_classify_returns_questions(client):
    response = client.post("/api/classify", json={"description": "ceramic coffee mug"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "needs_input"
    assert body["questions"][0]["id"] == "material"
    assert body["run_id"]


def test_classify_with_answer_and_origin(client):
    response = client.post(
        "/api/classify",
        json={"description": "ceramic coffee mug", "origin": "cn", "previous_answers": {"material": "Ceramic"}},
    )

    body = response.json()
    assert body["status"] == "confident"
    assert body["selected_code"] == "6912004400"
    assert body["duty_rate"]["effective_rate"] == pytest.approx(40.0)


def test_answered_rounds_are_honoured(client):
    response = client.post(
        "/api/classify",
        json={"description": "ceramic coffee mug", "previous_answers": {"colour": "white"}, "answered_rounds": 3},
    )

    body = response.json()
    assert body["rounds"] == 3
    assert body["status"] == "ambiguous"
    assert body["questions"] == []


def test_blank_description_rejected(client):
    assert client.post("/api/classify", json={"description": "   "}).status_code == 422


def test_validation_errors_are_normalized(client):
    response = client.post("/api/classify", json={"description": "", "extra": 1})

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    paths = {field["path"] for field in body["fields"]}
    assert "request.description" in paths
    assert "request.extra" in paths


def test_duty_endpoint(client):
    response = client.get("/api/duty/6912.00.44.00", params={"origin": "MX"})

    assert response.status_code == 200
    body = response.json()
    assert body["general_rate"] == "10%"
    assert body["special_programs"] == [{"program": "USMCA (S)", "rate": "Free"}]
    assert body["effective_rate"] == pytest.approx(35.0)


def test_duty_unknown_code(client):
    assert client.get("/api/duty/9999999999").status_code == 404

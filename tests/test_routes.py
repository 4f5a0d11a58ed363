from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from conftest import StubProvider, data_uri, make_jpeg, make_png
from damage_assessor.config import Settings
from damage_assessor.main import create_app
from damage_assessor.services.providers.mock import MockAIProvider


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def client(provider: StubProvider):
    app = create_app(Settings(enable_caching=True, rate_limit_enabled=False), provider=provider)
    with TestClient(app) as test_client:
        yield test_client


def test_assess_damage_round_trip(client: TestClient, provider: StubProvider) -> None:
    response = client.post("/api/assess-damage", json={"image": data_uri("image/jpeg", make_jpeg())})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["enhanced_assessment"] == provider.reply
    assert body["performance"]["cached"] is False
    assert "timestamp" in body


def test_assess_damage_malformed_json(client: TestClient) -> None:
    response = client.post(
        "/api/assess-damage",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_body"


def test_assess_damage_type_mismatch(client: TestClient) -> None:
    response = client.post("/api/assess-damage", json={"image": data_uri("image/jpeg", make_png())})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Image type mismatch"
    assert body["success"] is False


def test_knowledge_search_endpoint(client: TestClient) -> None:
    response = client.get("/api/knowledge-search", params={"q": "ceiling leak"})

    assert response.status_code == 200
    assert response.json()["total_results"] == 1


def test_knowledge_search_requires_query(client: TestClient) -> None:
    response = client.get("/api/knowledge-search")

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid query"


def test_conversation_endpoint_accepts_camel_case_context(client: TestClient) -> None:
    response = client.post(
        "/api/conversation",
        json={
            "question": "Will insurance cover this?",
            "context": {"previousAssessment": {"vision_analysis": "flooded basement", "confidence_score": 0.5}},
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["confidence_score"] == pytest.approx(0.9)
    assert len(body["suggested_questions"]) == 3


def test_conversation_requires_question(client: TestClient) -> None:
    response = client.post("/api/conversation", json={"context": {}})

    assert response.status_code == 400
    assert response.json()["error"] == "Question is required"


def test_stats_report_cache_and_config(client: TestClient) -> None:
    payload = {"image": data_uri("image/jpeg", make_jpeg())}
    client.post("/api/assess-damage", json=payload)
    client.post("/api/assess-damage", json=payload)

    body = client.get("/api/stats").json()

    assert body["success"] is True
    assert body["cache"]["hits"] >= 1
    assert body["cache"]["size"] >= 1
    assert body["cache"]["in_flight"] == 0
    assert body["performance"]["assessment"]["count"] == 1
    assert body["performance"]["assessment_cached"]["count"] == 1
    assert body["config"]["enable_caching"] is True


def test_health_reports_provider_and_cache() -> None:
    app = create_app(Settings(), provider=MockAIProvider())
    with TestClient(app) as test_client:
        body = test_client.get("/health").json()

    assert body["ok"] is True
    assert body["details"] == {"provider": True, "cache": True}


def test_ai_rate_limit_returns_429_with_headers() -> None:
    settings = replace(Settings(), rate_limit_enabled=True, ai_rate_limit=1)
    app = create_app(settings, provider=StubProvider())
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    with TestClient(app) as test_client:
        first = test_client.post("/api/assess-damage", json=payload)
        second = test_client.post("/api/assess-damage", json=payload)

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "1"
    assert second.status_code == 429
    assert second.json()["error_code"] == "rate_limited"
    assert int(second.headers["Retry-After"]) > 0

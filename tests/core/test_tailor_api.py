from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import AsyncIterator, Optional

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
TAILOR_SERVICE_ROOT = ROOT / "services" / "tailor"
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(TAILOR_SERVICE_ROOT))
from libs.core.llm_provider import LLMProviderError  # noqa: E402
from libs.core.models import AgentConfig, ProviderType, StreamChunk, ToolSpec  # noqa: E402
from services.tailor.app import main as tailor_main  # noqa: E402

JOB = "Backend engineer: Python, FastAPI, PostgreSQL."


class _ScriptedProvider:
    def __init__(self, outputs: list[object]) -> None:
        self._outputs = list(outputs)
        self.calls = 0

    async def stream(
        self, *, system_prompt: str, prompt: str, tool: Optional[ToolSpec] = None
    ) -> AsyncIterator[StreamChunk]:
        self.calls += 1
        next_item = self._outputs.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        if isinstance(next_item, dict):
            yield StreamChunk(tool_output=next_item)
        else:
            yield StreamChunk(content=str(next_item))
        yield StreamChunk(done=True)


@pytest.fixture
def client_with(monkeypatch):  # type: ignore[no-untyped-def]
    def _build(outputs: list[object]) -> tuple[TestClient, _ScriptedProvider]:
        provider = _ScriptedProvider(outputs)
        monkeypatch.setattr(tailor_main.app.state, "tailor_provider", provider)
        monkeypatch.setattr(
            tailor_main.app.state,
            "agent_config",
            AgentConfig(provider_type=ProviderType.mock, model="scripted", timeout_s=5.0),
        )
        return TestClient(tailor_main.app), provider

    return _build


def _tailoring_outputs() -> list[object]:
    return [
        "Good overlap on API work.",
        "Designed Python REST services backed by PostgreSQL for internal billing.",
        {"missingKeywords": ["FastAPI"], "criticalKeywords": ["FastAPI"], "niceToHaveKeywords": []},
        {"enrichmentMap": {"0": []}, "rationale": "no framework evidence"},
        "Built REST APIs serving 2M requests per day",
        "APPROVED",
        "APPROVED",
        "APPROVED",
    ]


def _tailor_body() -> dict[str, object]:
    return {
        "description": "Built billing services.",
        "achievements": ["Built APIs serving 2M requests/day"],
        "position": "Backend Engineer",
        "organization": "Initech",
        "job_description": JOB,
    }


def test_healthz_reports_provider_config(client_with) -> None:  # type: ignore[no-untyped-def]
    client, _provider = client_with([])

    response = client.get("/healthz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["provider"] == "mock"
    assert payload["model"] == "scripted"


def test_sort_tech_stack_endpoint_applies_order(client_with) -> None:  # type: ignore[no-untyped-def]
    client, provider = client_with(['{"techOrder": ["FastAPI", "Docker"]}'])

    response = client.post(
        "/sort/tech-stack", json={"technologies": ["Docker", "FastAPI"], "job_description": JOB}
    )

    assert response.status_code == 200
    assert response.json() == {"items": ["FastAPI", "Docker"], "applied": True, "attempts": 1}
    assert provider.calls == 1


def test_sort_skills_endpoint_keeps_original_order_on_rejection(client_with) -> None:  # type: ignore[no-untyped-def]
    client, provider = client_with(["not json", '{"groupOrder": []}'])
    skills = [{"title": "Backend", "skills": [{"text": "Python"}, {"text": "SQL"}]}]

    response = client.post("/sort/skills", json={"skills": skills, "job_description": JOB})

    assert response.status_code == 200
    payload = response.json()
    assert payload["applied"] is False
    assert payload["attempts"] == 2
    assert payload["items"] == [
        {
            "title": "Backend",
            "skills": [
                {"text": "Python", "highlight": False},
                {"text": "SQL", "highlight": False},
            ],
        }
    ]
    assert provider.calls == 2


def test_sort_achievements_endpoint_rejects_blank_job_description(client_with) -> None:  # type: ignore[no-untyped-def]
    client, provider = client_with([])

    response = client.post(
        "/sort/achievements", json={"achievements": [{"text": "A"}], "job_description": ""}
    )

    assert response.status_code == 422
    assert provider.calls == 0


def test_tailor_experience_endpoint_returns_result(client_with) -> None:  # type: ignore[no-untyped-def]
    client, provider = client_with(_tailoring_outputs())

    response = client.post("/tailor-experience", json=_tailor_body())

    assert response.status_code == 200
    payload = response.json()
    assert payload["achievements"] == ["Built REST APIs serving 2M requests per day"]
    assert payload["tech_stack"] is None
    assert payload["degraded"] is False
    assert [loop["status"] for loop in payload["loops"]] == [
        "approved",
        "skipped",
        "approved",
        "approved",
    ]
    assert provider.calls == 8


def test_tailor_experience_endpoint_maps_transport_failure_to_502(client_with) -> None:  # type: ignore[no-untyped-def]
    client, _provider = client_with(
        [LLMProviderError("invalid key", code="auth_error", status=401)]
    )

    response = client.post("/tailor-experience", json=_tailor_body())

    assert response.status_code == 502
    assert "API key" in response.json()["detail"]


def test_tailor_experience_stream_emits_progress_then_result(client_with) -> None:  # type: ignore[no-untyped-def]
    client, _provider = client_with(_tailoring_outputs())

    response = client.post("/tailor-experience/stream", json=_tailor_body())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    events = [json.loads(line) for line in response.text.splitlines() if line.strip()]
    assert events[0]["type"] == "progress"
    assert events[-2] == {"type": "progress", "content": "Experience tailored!", "done": True}
    assert events[-1]["type"] == "result"
    assert events[-1]["result"]["description"].startswith("Designed Python REST services")


def test_tailor_experience_stream_reports_error_line(client_with) -> None:  # type: ignore[no-untyped-def]
    client, _provider = client_with(
        [LLMProviderError("slow down", code="rate_limited", retryable=False, status=429)]
    )

    response = client.post("/tailor-experience/stream", json=_tailor_body())

    events = [json.loads(line) for line in response.text.splitlines() if line.strip()]
    assert events[-1]["type"] == "error"
    assert events[-1]["status_code"] == 502
    assert "rate limiting" in events[-1]["detail"]

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from libs.core import logging as core_logging, tracing
from libs.core.cancellation import CancellationToken
from libs.core.models import Achievement, ExperienceTailoringResult, SkillGroup
from tailor_core import (
    TailorError,
    config_from_env,
    create_provider_from_env,
    describe_config,
    sort_achievements,
    sort_skills,
    sort_tech_stack,
    tailor_experience,
)
from tailor_core.progress import QueueProgress


core_logging.configure_logging("tailor")
tracing.configure_tracing("tailor", os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))
LOGGER = core_logging.get_logger("tailor")

AGENT_CONFIG = config_from_env()
LLM_PROVIDER_INSTANCE = create_provider_from_env()


class TailorExperienceRequest(BaseModel):
    description: str = ""
    achievements: List[str] = Field(default_factory=list)
    position: str = ""
    organization: str = ""
    job_description: str = Field(..., min_length=1)
    tech_stack: Optional[List[str]] = None


class SortSkillsRequest(BaseModel):
    skills: List[SkillGroup] = Field(default_factory=list)
    job_description: str = Field(..., min_length=1)
    max_new_skills: int = Field(default=10, ge=0, le=50)


class SortAchievementsRequest(BaseModel):
    achievements: List[Achievement] = Field(default_factory=list)
    position: str = ""
    organization: str = ""
    job_description: str = Field(..., min_length=1)


class SortTechStackRequest(BaseModel):
    technologies: List[str] = Field(default_factory=list)
    job_description: str = Field(..., min_length=1)


class SortResponse(BaseModel):
    items: List[Any]
    applied: bool
    attempts: int


app = FastAPI(title="Resume Experience Tailoring Service")
app.state.tailor_provider = LLM_PROVIDER_INSTANCE
app.state.agent_config = AGENT_CONFIG


def _http_error(error: TailorError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.detail)


def _run_kwargs(request: Request) -> Dict[str, Any]:
    return {"provider": request.app.state.tailor_provider}


@app.get("/healthz")
def healthz(request: Request) -> Dict[str, Any]:
    return {"status": "ok", **describe_config(request.app.state.agent_config)}


@app.post("/tailor-experience", response_model=ExperienceTailoringResult)
async def tailor_experience_endpoint(
    body: TailorExperienceRequest, request: Request
) -> ExperienceTailoringResult:
    try:
        return await tailor_experience(
            body.description,
            body.achievements,
            body.position,
            body.organization,
            body.job_description,
            body.tech_stack,
            request.app.state.agent_config,
            **_run_kwargs(request),
        )
    except TailorError as exc:
        raise _http_error(exc) from exc


@app.post("/tailor-experience/stream")
async def tailor_experience_stream_endpoint(
    body: TailorExperienceRequest, request: Request
) -> StreamingResponse:
    progress = QueueProgress()
    token = CancellationToken()
    config = request.app.state.agent_config
    kwargs = _run_kwargs(request)

    async def run() -> Dict[str, Any]:
        try:
            result = await tailor_experience(
                body.description,
                body.achievements,
                body.position,
                body.organization,
                body.job_description,
                body.tech_stack,
                config,
                progress,
                cancel_token=token,
                **kwargs,
            )
            return {"type": "result", "result": result.model_dump()}
        except TailorError as exc:
            LOGGER.warning("tailor_stream_failed", status_code=exc.status_code, detail=exc.detail)
            return {"type": "error", "status_code": exc.status_code, "detail": exc.detail}
        finally:
            progress.close()

    async def lines() -> AsyncIterator[str]:
        task = asyncio.create_task(run())
        try:
            while True:
                chunk = await progress.queue.get()
                if chunk is None:
                    break
                payload = {"type": "progress", **chunk.model_dump(exclude_none=True)}
                yield json.dumps(payload, ensure_ascii=False) + "\n"
            yield json.dumps(await task, ensure_ascii=False) + "\n"
        finally:
            if not task.done():
                token.cancel("client_disconnected")
                await asyncio.wait({task})

    return StreamingResponse(lines(), media_type="application/x-ndjson")


@app.post("/sort/skills", response_model=SortResponse)
async def sort_skills_endpoint(body: SortSkillsRequest, request: Request) -> SortResponse:
    try:
        outcome = await sort_skills(
            body.skills,
            body.job_description,
            request.app.state.agent_config,
            max_new_skills=body.max_new_skills,
            **_run_kwargs(request),
        )
    except TailorError as exc:
        raise _http_error(exc) from exc
    return SortResponse(
        items=[group.model_dump() for group in outcome.items],
        applied=outcome.applied,
        attempts=outcome.attempts,
    )


@app.post("/sort/achievements", response_model=SortResponse)
async def sort_achievements_endpoint(body: SortAchievementsRequest, request: Request) -> SortResponse:
    try:
        outcome = await sort_achievements(
            body.achievements,
            body.position,
            body.organization,
            body.job_description,
            request.app.state.agent_config,
            **_run_kwargs(request),
        )
    except TailorError as exc:
        raise _http_error(exc) from exc
    return SortResponse(
        items=[achievement.model_dump() for achievement in outcome.items],
        applied=outcome.applied,
        attempts=outcome.attempts,
    )


@app.post("/sort/tech-stack", response_model=SortResponse)
async def sort_tech_stack_endpoint(body: SortTechStackRequest, request: Request) -> SortResponse:
    try:
        outcome = await sort_tech_stack(
            body.technologies,
            body.job_description,
            request.app.state.agent_config,
            **_run_kwargs(request),
        )
    except TailorError as exc:
        raise _http_error(exc) from exc
    return SortResponse(items=list(outcome.items), applied=outcome.applied, attempts=outcome.attempts)

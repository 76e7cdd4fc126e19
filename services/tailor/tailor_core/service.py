from __future__ import annotations

import os
import uuid
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from libs.core import llm_provider, logging as core_logging
from libs.core.cancellation import CancellationToken
from libs.core.models import (
    Achievement,
    AgentConfig,
    ExperienceTailoringResult,
    ProviderType,
    SkillGroup,
    StreamChunk,
    WorkExperience,
)
from libs.core.tracing import start_span

from .agents import create_sorter_agent, create_tailoring_agents
from .errors import ResponseRejected, RunCancelled, TailorError
from .merge import apply_sorted_achievements, apply_sorted_skills, apply_sorted_tech_stack
from .progress import COMPLETED_MESSAGE, ProgressCallback, emit_progress
from .prompts import (
    build_achievements_sort_prompt,
    build_corrective_prompt,
    build_skills_sort_prompt,
    build_tech_stack_sort_prompt,
)
from .stages import (
    run_achievements_stage,
    run_analysis_stage,
    run_tech_stack_stage,
    run_verification_stage,
)
from .state import InvocationState, SortOutcome
from .validation import (
    DEFAULT_MAX_NEW_SKILLS,
    validate_achievements_sort_response,
    validate_skills_sort_response,
    validate_tech_stack_sort_response,
)

LOGGER = core_logging.get_logger("tailor")

_DEFAULT_CALL_TIMEOUT_S = 60.0
MAX_SORT_ATTEMPTS = 2

_PROVIDER_ALIASES = {
    "openai": ProviderType.openai_compatible,
    "openai-compatible": ProviderType.openai_compatible,
    "openai_compatible": ProviderType.openai_compatible,
    "gemini": ProviderType.gemini,
    "google": ProviderType.gemini,
    "mock": ProviderType.mock,
}

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


def _parse_optional_float(value: str | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_optional_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _resolve_float(primary: str | None, fallback: str | None, default: float) -> float:
    for raw in (primary, fallback):
        parsed = _parse_optional_float(raw)
        if parsed is not None and parsed > 0:
            return parsed
    return default


def _first_env(*names: str) -> str:
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return ""


def config_from_env() -> AgentConfig:
    provider_type = _PROVIDER_ALIASES.get(
        os.getenv("LLM_PROVIDER", "mock").strip().lower(), ProviderType.mock
    )
    key_names = ["LLM_API_KEY"]
    key_names.extend(
        ["GEMINI_API_KEY", "OPENAI_API_KEY"]
        if provider_type == ProviderType.gemini
        else ["OPENAI_API_KEY", "GEMINI_API_KEY"]
    )
    return AgentConfig(
        api_url=_first_env("LLM_API_URL", "OPENAI_BASE_URL"),
        api_key=_first_env(*key_names),
        model=_first_env("LLM_MODEL", "OPENAI_MODEL"),
        provider_type=provider_type,
        temperature=_parse_optional_float(os.getenv("LLM_TEMPERATURE")),
        max_output_tokens=_parse_optional_int(os.getenv("LLM_MAX_OUTPUT_TOKENS")),
        timeout_s=_resolve_float(
            os.getenv("TAILOR_CALL_TIMEOUT_S"),
            os.getenv("OPENAI_TIMEOUT_S"),
            _DEFAULT_CALL_TIMEOUT_S,
        ),
    )


def create_provider_from_env() -> llm_provider.LLMProvider:
    return llm_provider.resolve_provider(config_from_env())


def _provider_for(config: AgentConfig, provider: Optional[llm_provider.LLMProvider]) -> llm_provider.LLMProvider:
    if provider is not None:
        return provider
    try:
        return llm_provider.resolve_provider(config)
    except ValueError as exc:
        raise TailorError(f"provider_misconfigured:{exc}", status_code=500) from exc


def _ensure_active(cancel_token: Optional[CancellationToken]) -> None:
    if cancel_token is not None and cancel_token.cancelled:
        raise RunCancelled(cancel_token.reason)


async def tailor_experience(
    description: str,
    achievements: Sequence[str],
    position: str,
    organization: str,
    job_description: str,
    tech_stack: Optional[Sequence[str]],
    config: AgentConfig,
    on_progress: Optional[ProgressCallback] = None,
    *,
    provider: Optional[llm_provider.LLMProvider] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> ExperienceTailoringResult:
    agents = create_tailoring_agents(_provider_for(config, provider), config.timeout_s)
    state = InvocationState(
        job_description=job_description,
        position=position,
        organization=organization,
        original_description=description,
        original_achievements=tuple(achievements),
        original_tech_stack=tuple(tech_stack or ()),
    )
    run_id = uuid.uuid4().hex
    with core_logging.run_context(run_id, "tailor_experience"), start_span(
        "tailor.tailor_experience",
        attributes={
            "run_id": run_id,
            "achievements": len(state.original_achievements),
            "technologies": len(state.original_tech_stack),
        },
    ):
        LOGGER.info("tailoring_started", position=position, organization=organization)

        _ensure_active(cancel_token)
        analysis = await run_analysis_stage(agents, state, on_progress, cancel_token)
        state = state.evolve(analysis=analysis.analysis, description=analysis.description)

        _ensure_active(cancel_token)
        rewritten = await run_achievements_stage(agents, state, on_progress, cancel_token)
        state = state.evolve(
            achievements=rewritten.achievements, enrichment_map=rewritten.enrichment_map
        ).with_loops(rewritten.report)

        _ensure_active(cancel_token)
        aligned = await run_tech_stack_stage(agents, state, on_progress, cancel_token)
        state = state.evolve(tech_stack=aligned.tech_stack).with_loops(aligned.report)

        _ensure_active(cancel_token)
        verified = await run_verification_stage(agents, state, on_progress, cancel_token)
        state = state.evolve(description=verified.description).with_loops(*verified.reports)

        result = ExperienceTailoringResult(
            description=state.description,
            achievements=list(state.achievements),
            tech_stack=list(state.tech_stack) if state.tech_stack is not None else None,
            loops=list(state.loops),
        )
        LOGGER.info(
            "tailoring_finished",
            degraded=result.degraded,
            loops={report.name: report.status.value for report in result.loops},
        )
    emit_progress(on_progress, COMPLETED_MESSAGE, done=True)
    return result


async def tailor_work_experiences(
    experiences: Sequence[WorkExperience],
    job_description: str,
    config: AgentConfig,
    on_progress: Optional[ProgressCallback] = None,
    *,
    provider: Optional[llm_provider.LLMProvider] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> List[ExperienceTailoringResult]:
    resolved = _provider_for(config, provider)

    def relay(chunk: StreamChunk) -> None:
        if on_progress is not None:
            on_progress(chunk.model_copy(update={"done": False}))

    results: List[ExperienceTailoringResult] = []
    total = len(experiences)
    for index, experience in enumerate(experiences):
        _ensure_active(cancel_token)
        emit_progress(on_progress, f"Tailoring experience {index + 1} of {total}: {experience.position}...")
        results.append(
            await tailor_experience(
                experience.description,
                [achievement.text for achievement in experience.key_achievements],
                experience.position,
                experience.organization,
                job_description,
                experience.technologies,
                config,
                relay,
                provider=resolved,
                cancel_token=cancel_token,
            )
        )
    emit_progress(on_progress, f"Tailored {total} experiences", done=True)
    return results


async def _run_sort(
    feature: str,
    items: Sequence[ItemT],
    prompt: str,
    validate: Callable[[str], ResultT],
    apply: Callable[[ResultT], List[ItemT]],
    config: AgentConfig,
    on_progress: Optional[ProgressCallback],
    provider: Optional[llm_provider.LLMProvider],
    cancel_token: Optional[CancellationToken],
    *,
    start_message: str,
    done_message: str,
) -> SortOutcome[ItemT]:
    if not items:
        LOGGER.info("sort_skipped", feature=feature, reason="empty_input")
        return SortOutcome(items=list(items))
    sorter = create_sorter_agent(_provider_for(config, provider), config.timeout_s)
    run_id = uuid.uuid4().hex
    attempts = 0
    with core_logging.run_context(run_id, feature), start_span(
        "tailor.sort", attributes={"feature": feature, "items": len(items)}
    ):
        emit_progress(on_progress, start_message)
        current_prompt = prompt
        while attempts < MAX_SORT_ATTEMPTS:
            _ensure_active(cancel_token)
            attempts += 1
            response = await sorter.invoke(
                current_prompt, on_progress=on_progress, cancel_token=cancel_token
            )
            try:
                result = validate(response.text)
            except ResponseRejected as exc:
                LOGGER.warning(exc.kind, attempt=attempts, detail=exc.detail)
                current_prompt = build_corrective_prompt(prompt, exc.detail)
                continue
            ordered = apply(result)
            LOGGER.info("sort_applied", attempts=attempts)
            emit_progress(on_progress, done_message, done=True)
            return SortOutcome(items=ordered, sort_result=result, applied=True, attempts=attempts)
        LOGGER.warning("sort_fallback_original_order", attempts=attempts)
    emit_progress(on_progress, "Keeping the original order.", done=True)
    return SortOutcome(items=list(items), sort_result=None, applied=False, attempts=attempts)


async def sort_skills(
    skill_groups: Sequence[SkillGroup],
    job_description: str,
    config: AgentConfig,
    on_progress: Optional[ProgressCallback] = None,
    *,
    provider: Optional[llm_provider.LLMProvider] = None,
    cancel_token: Optional[CancellationToken] = None,
    max_new_skills: int = DEFAULT_MAX_NEW_SKILLS,
) -> SortOutcome[SkillGroup]:
    return await _run_sort(
        "skills_sort",
        skill_groups,
        build_skills_sort_prompt(skill_groups, job_description, max_new_skills),
        lambda raw: validate_skills_sort_response(raw, skill_groups, max_new_skills),
        lambda result: apply_sorted_skills(skill_groups, result),
        config,
        on_progress,
        provider,
        cancel_token,
        start_message="Sorting skills by job relevance...",
        done_message="Skills sorted!",
    )


async def sort_achievements(
    achievements: Sequence[Achievement],
    position: str,
    organization: str,
    job_description: str,
    config: AgentConfig,
    on_progress: Optional[ProgressCallback] = None,
    *,
    provider: Optional[llm_provider.LLMProvider] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> SortOutcome[Achievement]:
    return await _run_sort(
        "achievements_sort",
        achievements,
        build_achievements_sort_prompt(achievements, position, organization, job_description),
        lambda raw: validate_achievements_sort_response(raw, achievements),
        lambda result: apply_sorted_achievements(achievements, result),
        config,
        on_progress,
        provider,
        cancel_token,
        start_message="Sorting achievements by job relevance...",
        done_message="Achievements sorted!",
    )


async def sort_tech_stack(
    technologies: Sequence[str],
    job_description: str,
    config: AgentConfig,
    on_progress: Optional[ProgressCallback] = None,
    *,
    provider: Optional[llm_provider.LLMProvider] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> SortOutcome[str]:
    return await _run_sort(
        "tech_stack_sort",
        technologies,
        build_tech_stack_sort_prompt(technologies, job_description),
        lambda raw: validate_tech_stack_sort_response(raw, technologies),
        lambda result: apply_sorted_tech_stack(technologies, result),
        config,
        on_progress,
        provider,
        cancel_token,
        start_message="Sorting tech stack by job relevance...",
        done_message="Tech stack sorted!",
    )


def describe_config(config: AgentConfig) -> dict[str, Any]:
    return {
        "provider": config.provider_type.value,
        "model": config.model,
        "api_url": config.api_url,
        "timeout_s": config.timeout_s,
    }

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from libs.core import logging as core_logging
from libs.core.cancellation import CancellationToken
from libs.core.models import (
    EnrichmentMapResult,
    KeywordExtractionResult,
    TechStackAlignmentResult,
)
from libs.core.tracing import start_span

from .agents import Agent, TailoringAgents, decode_tool_output
from .loops import run_audit_loop, skipped_report
from .progress import ProgressCallback, emit_progress
from .prompts import (
    build_achievements_prompt,
    build_achievements_refinement_prompt,
    build_analysis_prompt,
    build_description_prompt,
    build_description_refinement_prompt,
    build_enrichment_classification_prompt,
    build_fact_check_prompt,
    build_integrity_audit_prompt,
    build_keyword_extraction_prompt,
    build_relevance_prompt,
    build_tech_stack_alignment_prompt,
    build_tech_stack_refinement_prompt,
    build_tech_stack_validation_prompt,
)
from .state import (
    AchievementsStageResult,
    AnalysisStageResult,
    InvocationState,
    TechStackStageResult,
    VerificationStageResult,
)
from .validation import (
    check_achievements_structure,
    check_description_quality,
    check_tech_stack_additions,
    decode_achievement_lines,
    normalize_identity,
)

LOGGER = core_logging.get_logger("tailor")

INTEGRITY_LOOP = "integrity_audit"
TECH_STACK_LOOP = "tech_stack_validation"
FACT_CHECK_LOOP = "fact_check"
RELEVANCE_LOOP = "relevance"


class _StageContext:
    def __init__(
        self,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> None:
        self.on_progress = on_progress
        self.cancel_token = cancel_token

    def progress(self, message: str) -> None:
        emit_progress(self.on_progress, message)

    async def text(self, agent: Agent, prompt: str) -> str:
        result = await agent.invoke(prompt, on_progress=self.on_progress, cancel_token=self.cancel_token)
        return result.text


async def run_analysis_stage(
    agents: TailoringAgents,
    state: InvocationState,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> AnalysisStageResult:
    ctx = _StageContext(on_progress, cancel_token)
    with start_span("tailor.stage", attributes={"stage": "analysis"}):
        ctx.progress("Analyzing job requirements and experience fit...")
        analysis = await ctx.text(
            agents.analyzer,
            build_analysis_prompt(
                state.job_description,
                state.position,
                state.organization,
                state.original_description,
                state.original_achievements,
            ),
        )
        ctx.progress("Tailoring description to job requirements...")
        description = await ctx.text(
            agents.description_writer,
            build_description_prompt(analysis, state.original_description, state.job_description),
        )
    if not description:
        LOGGER.warning("description_empty", stage="analysis")
        description = state.original_description
    return AnalysisStageResult(analysis=analysis, description=description)


def _sanitize_enrichment_map(raw: Dict[str, List[str]], count: int) -> Dict[str, List[str]]:
    valid_keys = {str(index) for index in range(count)}
    cleaned: Dict[str, List[str]] = {}
    for key, seeds in raw.items():
        key = str(key).strip()
        if key not in valid_keys:
            continue
        cleaned[key] = [seed.strip() for seed in seeds if seed.strip()]
    return cleaned


async def run_achievements_stage(
    agents: TailoringAgents,
    state: InvocationState,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> AchievementsStageResult:
    originals = tuple(state.original_achievements)
    if not originals:
        return AchievementsStageResult(achievements=(), enrichment_map={}, report=skipped_report(INTEGRITY_LOOP))

    ctx = _StageContext(on_progress, cancel_token)
    with start_span("tailor.stage", attributes={"stage": "achievements", "achievements": len(originals)}):
        ctx.progress("Extracting JD keywords for ATS optimization...")
        extraction = await agents.keyword_extractor.invoke(
            build_keyword_extraction_prompt(state.job_description, originals),
            on_progress=on_progress,
            cancel_token=cancel_token,
        )
        keywords = decode_tool_output(
            extraction, KeywordExtractionResult, KeywordExtractionResult(), agent="keyword_extractor"
        )
        candidates = keywords.candidate_keywords()

        ctx.progress("Classifying keyword injection eligibility...")
        enrichment_map: Dict[str, List[str]] = {}
        if candidates:
            classification = await agents.enrichment_classifier.invoke(
                build_enrichment_classification_prompt(candidates, originals, state.job_description),
                on_progress=on_progress,
                cancel_token=cancel_token,
            )
            decoded = decode_tool_output(
                classification,
                EnrichmentMapResult,
                EnrichmentMapResult(rationale="fallback"),
                agent="enrichment_classifier",
            )
            enrichment_map = _sanitize_enrichment_map(decoded.enrichment_map, len(originals))
        else:
            LOGGER.info("enrichment_skipped", reason="no_candidate_keywords")

        base_prompt = build_achievements_prompt(
            state.analysis, state.job_description, originals, enrichment_map
        )

        async def optimize(prompt: str, previous: Tuple[str, ...]) -> Tuple[str, ...]:
            lines = decode_achievement_lines(await ctx.text(agents.achievements_optimizer, prompt))
            if len(lines) != len(originals):
                LOGGER.warning(
                    "achievements_draft_rejected", expected=len(originals), received=len(lines)
                )
                return previous
            return tuple(lines)

        async def audit(draft: Tuple[str, ...]) -> str:
            issues = check_achievements_structure(originals, draft)
            return await ctx.text(
                agents.integrity_auditor,
                build_integrity_audit_prompt(originals, draft, enrichment_map, issues),
            )

        async def revise(draft: Tuple[str, ...], critique: str) -> Tuple[str, ...]:
            return await optimize(build_achievements_refinement_prompt(base_prompt, critique), draft)

        ctx.progress("Enriching achievements with relevant keywords...")
        draft = await optimize(base_prompt, originals)
        ctx.progress("Auditing achievement keyword integrity...")
        outcome = await run_audit_loop(
            INTEGRITY_LOOP, draft, audit=audit, revise=revise, cancel_token=cancel_token
        )
    return AchievementsStageResult(
        achievements=outcome.draft, enrichment_map=enrichment_map, report=outcome.report
    )


def _clean_stack(items: Sequence[str]) -> Tuple[str, ...]:
    seen = set()
    cleaned: List[str] = []
    for item in items:
        text = item.strip()
        key = normalize_identity(text)
        if not text or key in seen:
            continue
        seen.add(key)
        cleaned.append(text)
    return tuple(cleaned)


async def run_tech_stack_stage(
    agents: TailoringAgents,
    state: InvocationState,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> TechStackStageResult:
    original = tuple(state.original_tech_stack)
    if not original:
        return TechStackStageResult(tech_stack=None, report=skipped_report(TECH_STACK_LOOP))

    ctx = _StageContext(on_progress, cancel_token)
    base_prompt = build_tech_stack_alignment_prompt(
        state.job_description, state.description, state.achievements, original
    )

    async def align(prompt: str) -> Tuple[str, ...]:
        result = await agents.tech_stack_aligner.invoke(
            prompt, on_progress=on_progress, cancel_token=cancel_token
        )
        decoded = decode_tool_output(
            result,
            TechStackAlignmentResult,
            TechStackAlignmentResult(tech_stack=list(original), rationale="fallback"),
            agent="tech_stack_aligner",
        )
        return _clean_stack(decoded.tech_stack) or original

    async def audit(draft: Tuple[str, ...]) -> str:
        ctx.progress("Validating tech stack alignment...")
        return await ctx.text(
            agents.tech_stack_validator,
            build_tech_stack_validation_prompt(
                original,
                draft,
                state.description,
                state.achievements,
                state.job_description,
                check_tech_stack_additions(original, draft),
            ),
        )

    async def revise(draft: Tuple[str, ...], critique: str) -> Tuple[str, ...]:
        return await align(build_tech_stack_refinement_prompt(base_prompt, critique))

    with start_span("tailor.stage", attributes={"stage": "tech_stack", "technologies": len(original)}):
        ctx.progress("Aligning tech stack to JD terminology...")
        proposal = await align(base_prompt)
        outcome = await run_audit_loop(
            TECH_STACK_LOOP, proposal, audit=audit, revise=revise, cancel_token=cancel_token
        )
    return TechStackStageResult(tech_stack=outcome.draft, report=outcome.report)


async def run_verification_stage(
    agents: TailoringAgents,
    state: InvocationState,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> VerificationStageResult:
    ctx = _StageContext(on_progress, cancel_token)

    async def rewrite(current: str, critique: str, label: str, instruction: str) -> str:
        revised = await ctx.text(
            agents.description_writer,
            build_description_refinement_prompt(
                state.analysis,
                state.original_description,
                state.job_description,
                critique,
                feedback_label=label,
                instruction=instruction,
            ),
        )
        return revised or current

    async def fact_check(description: str) -> str:
        return await ctx.text(
            agents.fact_checker,
            build_fact_check_prompt(
                state.original_description,
                description,
                state.original_achievements,
                state.achievements,
                state.job_description,
            ),
        )

    async def fact_revise(description: str, critique: str) -> str:
        return await rewrite(
            description, critique, "Fact Check Feedback", "Please revise to address these concerns."
        )

    async def relevance(description: str) -> str:
        return await ctx.text(
            agents.relevance_evaluator,
            build_relevance_prompt(
                state.job_description,
                description,
                state.achievements,
                check_description_quality(state.original_description, description),
            ),
        )

    async def relevance_revise(description: str, critique: str) -> str:
        return await rewrite(
            description,
            critique,
            "Relevance Feedback",
            "Please enhance to better highlight the job alignment.",
        )

    with start_span("tailor.stage", attributes={"stage": "verification"}):
        ctx.progress("Validating factual accuracy...")
        facts = await run_audit_loop(
            FACT_CHECK_LOOP,
            state.description,
            audit=fact_check,
            revise=fact_revise,
            cancel_token=cancel_token,
        )
        ctx.progress("Evaluating alignment quality...")
        aligned = await run_audit_loop(
            RELEVANCE_LOOP,
            facts.draft,
            audit=relevance,
            revise=relevance_revise,
            cancel_token=cancel_token,
        )
    return VerificationStageResult(description=aligned.draft, reports=(facts.report, aligned.report))

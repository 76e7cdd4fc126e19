from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from libs.core import logging as core_logging
from libs.core.cancellation import CancellationToken, CancelledByCaller
from libs.core.llm_provider import LLMProvider, LLMProviderError
from libs.core.models import StreamChunk, ToolSpec
from libs.core.tracing import start_span

from .errors import RunCancelled, TransportFailure
from .progress import ProgressCallback, emit_reasoning
from .prompts import SYSTEM_PROMPTS
from .validation import safe_parse_json

LOGGER = core_logging.get_logger("tailor")

DEFAULT_CALL_TIMEOUT_S = 60.0
DEFAULT_CALL_ATTEMPTS = 2

ModelT = TypeVar("ModelT", bound=BaseModel)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

KEYWORD_EXTRACTION_TOOL = ToolSpec(
    name="finalize_keyword_extraction",
    description="Call this tool to finalize your keyword extraction analysis.",
    parameters={
        "type": "object",
        "properties": {
            "missingKeywords": {**_STRING_LIST, "description": "Keywords in the job description but missing from achievements"},
            "criticalKeywords": {**_STRING_LIST, "description": "Must-have keywords from the job description"},
            "niceToHaveKeywords": {**_STRING_LIST, "description": "Optional keywords from the job description"},
        },
        "required": ["missingKeywords", "criticalKeywords", "niceToHaveKeywords"],
    },
)

ENRICHMENT_CLASSIFICATION_TOOL = ToolSpec(
    name="finalize_enrichment_classification",
    description="Call this tool to output the enrichment map classification.",
    parameters={
        "type": "object",
        "properties": {
            "enrichmentMap": {
                "type": "object",
                "additionalProperties": _STRING_LIST,
                "description": "Map of achievement index string to approved keywords",
            },
            "rationale": {"type": "string", "description": "Brief justification for these decisions"},
        },
        "required": ["enrichmentMap", "rationale"],
    },
)

TECH_STACK_ALIGNMENT_TOOL = ToolSpec(
    name="finalize_tech_stack_alignment",
    description="Call this tool to output the aligned tech stack.",
    parameters={
        "type": "object",
        "properties": {
            "techStack": {**_STRING_LIST, "description": "The fully aligned tech stack"},
            "rationale": {"type": "string", "description": "Brief explanation of changes"},
        },
        "required": ["techStack", "rationale"],
    },
)


@dataclass
class AgentResult:
    text: str
    reasoning: str = ""
    tool_output: Optional[Dict[str, Any]] = None


class Agent:
    def __init__(
        self,
        name: str,
        system_prompt: str,
        provider: LLMProvider,
        *,
        output_tool: Optional[ToolSpec] = None,
        timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        max_attempts: int = DEFAULT_CALL_ATTEMPTS,
    ) -> None:
        self.name = name
        self.system_prompt = system_prompt
        self.provider = provider
        self.output_tool = output_tool
        self.timeout_s = timeout_s
        self.max_attempts = max(1, max_attempts)

    def stream(self, prompt: str) -> AsyncIterator[StreamChunk]:
        return self.provider.stream(
            system_prompt=self.system_prompt,
            prompt=prompt,
            tool=self.output_tool,
        )

    async def invoke(
        self,
        prompt: str,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AgentResult:
        attempt = 0
        while True:
            attempt += 1
            _check_cancelled(cancel_token)
            started_at = time.monotonic()
            try:
                with start_span(
                    "tailor.agent_call",
                    attributes={"agent": self.name, "attempt": attempt, "prompt_chars": len(prompt)},
                ):
                    result = await asyncio.wait_for(
                        self._collect(prompt, on_progress, cancel_token), timeout=self.timeout_s
                    )
            except CancelledByCaller as exc:
                raise RunCancelled(str(exc) or "cancelled") from exc
            except asyncio.TimeoutError as exc:
                failure = TransportFailure("timeout", f"{self.name} exceeded {self.timeout_s}s")
                retryable = True
                cause: Exception = exc
            except LLMProviderError as exc:
                failure = TransportFailure(exc.code, str(exc))
                retryable = exc.retryable
                cause = exc
            else:
                LOGGER.info(
                    "agent_call_finished",
                    agent=self.name,
                    attempt=attempt,
                    duration_ms=int((time.monotonic() - started_at) * 1000),
                    response_chars=len(result.text),
                    tool_output=result.tool_output is not None,
                )
                return result
            LOGGER.warning(
                "agent_call_failed",
                agent=self.name,
                attempt=attempt,
                code=failure.code,
                retryable=retryable,
                error=failure.cause,
            )
            if not retryable or attempt >= self.max_attempts:
                raise failure from cause

    async def _collect(
        self,
        prompt: str,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> AgentResult:
        text: List[str] = []
        reasoning: List[str] = []
        tool_output: Optional[Dict[str, Any]] = None
        iterator = self.stream(prompt).__aiter__()
        try:
            while True:
                try:
                    if cancel_token is None:
                        chunk = await iterator.__anext__()
                    else:
                        chunk = await cancel_token.race(iterator.__anext__())
                except StopAsyncIteration:
                    break
                if chunk.reasoning:
                    reasoning.append(chunk.reasoning)
                    emit_reasoning(on_progress, chunk.reasoning)
                if chunk.content:
                    text.append(chunk.content)
                if chunk.tool_output is not None:
                    tool_output = chunk.tool_output
                if chunk.done:
                    break
        finally:
            close = getattr(iterator, "aclose", None)
            if close is not None:
                await close()
        return AgentResult(text="".join(text).strip(), reasoning="".join(reasoning), tool_output=tool_output)


def decode_tool_output(
    result: AgentResult,
    model_cls: Type[ModelT],
    fallback: ModelT,
    *,
    agent: str = "",
) -> ModelT:
    """Typed view of an agent's structured answer.

    The tool output wins when it validates; otherwise the text is parsed as JSON;
    otherwise ``fallback`` is returned.
    """
    if result.tool_output is not None:
        try:
            return model_cls.model_validate(result.tool_output)
        except ValidationError as exc:
            LOGGER.warning("tool_output_invalid", agent=agent, errors=exc.error_count())
    elif not result.text:
        LOGGER.warning("tool_output_missing", agent=agent)
        return fallback
    return safe_parse_json(result.text, model_cls, fallback)


def _check_cancelled(cancel_token: Optional[CancellationToken]) -> None:
    if cancel_token is not None and cancel_token.cancelled:
        raise RunCancelled(cancel_token.reason)


@dataclass
class TailoringAgents:
    analyzer: Agent
    description_writer: Agent
    keyword_extractor: Agent
    enrichment_classifier: Agent
    achievements_optimizer: Agent
    integrity_auditor: Agent
    tech_stack_aligner: Agent
    tech_stack_validator: Agent
    fact_checker: Agent
    relevance_evaluator: Agent


def create_tailoring_agents(
    provider: LLMProvider, timeout_s: float = DEFAULT_CALL_TIMEOUT_S
) -> TailoringAgents:
    def agent(name: str, tool: Optional[ToolSpec] = None) -> Agent:
        return Agent(name, SYSTEM_PROMPTS[name], provider, output_tool=tool, timeout_s=timeout_s)

    return TailoringAgents(
        analyzer=agent("analyzer"),
        description_writer=agent("description_writer"),
        keyword_extractor=agent("keyword_extractor", KEYWORD_EXTRACTION_TOOL),
        enrichment_classifier=agent("enrichment_classifier", ENRICHMENT_CLASSIFICATION_TOOL),
        achievements_optimizer=agent("achievements_optimizer"),
        integrity_auditor=agent("integrity_auditor"),
        tech_stack_aligner=agent("tech_stack_aligner", TECH_STACK_ALIGNMENT_TOOL),
        tech_stack_validator=agent("tech_stack_validator"),
        fact_checker=agent("fact_checker"),
        relevance_evaluator=agent("relevance_evaluator"),
    )


def create_sorter_agent(provider: LLMProvider, timeout_s: float = DEFAULT_CALL_TIMEOUT_S) -> Agent:
    return Agent("sorter", SYSTEM_PROMPTS["sorter"], provider, timeout_s=timeout_s)

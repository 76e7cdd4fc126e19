from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Optional

ROOT = Path(__file__).resolve().parents[2]
TAILOR_SERVICE_ROOT = ROOT / "services" / "tailor"
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(TAILOR_SERVICE_ROOT))
from libs.core.models import (  # noqa: E402
    Achievement,
    AgentConfig,
    ProviderType,
    Skill,
    SkillGroup,
    StreamChunk,
    ToolSpec,
)
from tailor_core.service import (  # type: ignore  # noqa: E402
    sort_achievements,
    sort_skills,
    sort_tech_stack,
)

CONFIG = AgentConfig(provider_type=ProviderType.mock, timeout_s=5.0)
JOB = "Senior frontend engineer: React, TypeScript, Vite, design systems."


class _ScriptedProvider:
    def __init__(self, outputs: list[object]) -> None:
        self._outputs = list(outputs)
        self.prompts: list[str] = []

    async def stream(
        self, *, system_prompt: str, prompt: str, tool: Optional[ToolSpec] = None
    ) -> AsyncIterator[StreamChunk]:
        self.prompts.append(prompt)
        if not self._outputs:
            raise RuntimeError("no_more_outputs")
        next_item = self._outputs.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        yield StreamChunk(content=str(next_item))
        yield StreamChunk(done=True)


def test_sort_achievements_applies_valid_permutation() -> None:
    originals = [
        Achievement(text="Led team of 5"),
        Achievement(text="Cut costs 20%"),
        Achievement(text="Shipped v2"),
    ]
    provider = _ScriptedProvider(
        [json.dumps({"achievementOrder": ["Shipped v2", "Led team of 5", "Cut costs 20%"]})]
    )

    outcome = asyncio.run(
        sort_achievements(originals, "Engineer", "Acme", JOB, CONFIG, provider=provider)
    )

    assert outcome.applied is True
    assert outcome.attempts == 1
    assert [item.text for item in outcome.items] == ["Shipped v2", "Led team of 5", "Cut costs 20%"]
    assert all(any(item is original for original in originals) for item in outcome.items)
    assert "Led team of 5" in provider.prompts[0]


def test_sort_achievements_reasks_once_with_rejection_reason() -> None:
    originals = [Achievement(text="X"), Achievement(text="Y")]
    provider = _ScriptedProvider(
        [
            json.dumps({"achievementOrder": ["X", "Z"]}),
            json.dumps({"achievementOrder": ["Y", "X"]}),
        ]
    )

    outcome = asyncio.run(sort_achievements(originals, "", "", JOB, CONFIG, provider=provider))

    assert outcome.applied is True
    assert outcome.attempts == 2
    assert [item.text for item in outcome.items] == ["Y", "X"]
    assert "PREVIOUS ATTEMPT REJECTED" in provider.prompts[1]
    assert "Y" in provider.prompts[1]


def test_sort_achievements_keeps_original_order_after_two_rejections() -> None:
    originals = [Achievement(text="X"), Achievement(text="Y")]
    provider = _ScriptedProvider(
        [
            json.dumps({"achievementOrder": ["X", "Z"]}),
            "not json at all",
        ]
    )
    events: list[StreamChunk] = []

    outcome = asyncio.run(
        sort_achievements(originals, "", "", JOB, CONFIG, events.append, provider=provider)
    )

    assert outcome.applied is False
    assert outcome.sort_result is None
    assert outcome.attempts == 2
    assert outcome.items == originals
    assert outcome.items[0] is originals[0]
    assert events[-1].done is True


def test_sort_with_empty_input_makes_no_model_call() -> None:
    provider = _ScriptedProvider([])

    outcome = asyncio.run(sort_tech_stack([], JOB, CONFIG, provider=provider))

    assert outcome.items == []
    assert outcome.applied is False
    assert provider.prompts == []


def test_sort_skills_adds_highlighted_skill() -> None:
    originals = [SkillGroup(title="Frontend", skills=[Skill(text="React")])]
    provider = _ScriptedProvider(
        ['```json\n{"groupOrder":["Frontend"],"skillOrder":{"Frontend":["React","Vite"]}}\n```']
    )

    outcome = asyncio.run(sort_skills(originals, JOB, CONFIG, provider=provider))

    assert outcome.applied is True
    skills = outcome.items[0].skills
    assert [skill.text for skill in skills] == ["React", "Vite"]
    assert skills[1].highlight is True
    assert originals[0].skills == [Skill(text="React")]


def test_sort_tech_stack_applies_permutation() -> None:
    provider = _ScriptedProvider(['{"techOrder": ["React", "Docker"]}'])

    outcome = asyncio.run(sort_tech_stack(["Docker", "React"], JOB, CONFIG, provider=provider))

    assert outcome.applied is True
    assert outcome.items == ["React", "Docker"]


def test_sort_progress_callback_failure_does_not_abort() -> None:
    provider = _ScriptedProvider(['{"techOrder": ["React", "Docker"]}'])

    def _broken(_chunk: Any) -> None:
        raise RuntimeError("ui went away")

    outcome = asyncio.run(
        sort_tech_stack(["Docker", "React"], JOB, CONFIG, _broken, provider=provider)
    )

    assert outcome.applied is True

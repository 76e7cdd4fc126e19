from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Sequence, TypeVar

from libs.core.models import (
    Achievement,
    AchievementsSortResult,
    Skill,
    SkillGroup,
    SkillsSortResult,
    TechStackSortResult,
)

from .errors import MergeError
from .validation import normalize_identity

ItemT = TypeVar("ItemT")


def _reorder_by_text(
    label: str, items: Sequence[ItemT], texts: Sequence[str], order: Sequence[str]
) -> List[ItemT]:
    pool: Dict[str, Deque[ItemT]] = {}
    for item, text in zip(items, texts):
        pool.setdefault(text, deque()).append(item)
    ordered: List[ItemT] = []
    for text in order:
        candidates = pool.get(text)
        if not candidates:
            raise MergeError(f"{label}_not_found:{text}")
        ordered.append(candidates.popleft())
    leftover = [text for text, remaining in pool.items() if remaining]
    if leftover:
        raise MergeError(f"{label}_missing_from_order:{leftover}")
    return ordered


def apply_sorted_achievements(
    original: Sequence[Achievement], result: AchievementsSortResult
) -> List[Achievement]:
    """Reorder the original achievement objects; the returned items are the same instances."""
    return _reorder_by_text(
        "achievement",
        original,
        [achievement.text for achievement in original],
        result.achievement_order,
    )


def apply_sorted_tech_stack(original: Sequence[str], result: TechStackSortResult) -> List[str]:
    return _reorder_by_text("technology", original, list(original), result.tech_order)


def apply_sorted_skills(
    original_groups: Sequence[SkillGroup], result: SkillsSortResult
) -> List[SkillGroup]:
    """Rebuild skill groups in the proposed order.

    Original skills keep their instances. Texts that do not resolve against their
    group become highlighted additions unless an equivalent skill already exists
    anywhere in the output. Original skills or groups the order leaves out are
    appended after the proposed ones, and groups left empty are dropped.
    """
    seen = {
        normalize_identity(skill.text) for group in original_groups for skill in group.skills
    }
    groups_by_title = {group.title: group for group in original_groups}
    titles = list(dict.fromkeys(result.group_order))
    titles.extend(group.title for group in original_groups if group.title not in titles)

    rebuilt: List[SkillGroup] = []
    for title in titles:
        original_group = groups_by_title.get(title)
        original_skills = list(original_group.skills) if original_group else []
        exact = {skill.text: skill for skill in original_skills}
        folded = {normalize_identity(skill.text): skill for skill in original_skills}
        placed: set[int] = set()
        skills: List[Skill] = []
        for text in result.skill_order.get(title, []):
            skill = exact.get(text) or folded.get(normalize_identity(text))
            if skill is not None:
                if id(skill) not in placed:
                    placed.add(id(skill))
                    skills.append(skill)
                continue
            key = normalize_identity(text)
            if not key or key in seen:
                continue
            seen.add(key)
            skills.append(Skill(text=text.strip(), highlight=True))
        skills.extend(skill for skill in original_skills if id(skill) not in placed)
        if not skills:
            continue
        if original_group is not None:
            rebuilt.append(original_group.model_copy(update={"skills": skills}))
        else:
            rebuilt.append(SkillGroup(title=title, skills=skills))
    return rebuilt

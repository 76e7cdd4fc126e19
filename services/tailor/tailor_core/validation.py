from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from libs.core import logging as core_logging
from libs.core.models import (
    Achievement,
    AchievementsSortResult,
    SkillGroup,
    SkillsSortResult,
    TechStackSortResult,
)

from .errors import ResponseRejected

LOGGER = core_logging.get_logger("tailor")

DEFAULT_MAX_NEW_SKILLS = 10
MIN_ACHIEVEMENT_CHARS = 10
MIN_DESCRIPTION_CHARS = 50

ModelT = TypeVar("ModelT", bound=BaseModel)

_OPENING_FENCE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?```\s*$")
_ACHIEVEMENT_LABEL = re.compile(r"^achievement\s*\[\d+\]\s*:\s*", re.IGNORECASE)
_KEYWORDS_LABEL = re.compile(r"^approved keywords for\s*\[\d+\]\s*:", re.IGNORECASE)
_LIST_MARKER = re.compile(r"^(?:[-*•]\s+|\d+[.)]\s+|\[\d+\]\s*)")
_APPROVED_VERDICT = re.compile(r"^APPROVED\b")
_VERDICT_MARKUP = "*_#>` \t\r\n"
_TECH_TOKEN = re.compile(r"[a-z0-9+#]+")
_JS_SUFFIX = re.compile(r"\.?js$")

# Same technology under a different name.
TECH_ALIASES: Dict[str, str] = {
    "k8s": "kubernetes",
    "postgres": "postgresql",
    "psql": "postgresql",
    "golang": "go",
    "node": "nodejs",
    "ts": "typescript",
    "py": "python",
    "aws": "amazon web services",
    "gcp": "google cloud platform",
    "mongo": "mongodb",
}


def normalize_identity(text: str) -> str:
    return text.strip().casefold()


def strip_code_fences(text: str) -> str:
    stripped = (text or "").strip()
    stripped = _OPENING_FENCE.sub("", stripped, count=1)
    stripped = _CLOSING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def extract_json(text: str) -> str:
    """Return the outermost ``{...}`` span of ``text`` or an empty string."""
    stripped = strip_code_fences(text)
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return ""
    return stripped[start : end + 1]


def safe_parse_json(text: str, model_cls: Type[ModelT], fallback: ModelT) -> ModelT:
    """Decode free text into ``model_cls``, falling back instead of raising.

    Tries the fence-stripped text first, then the first object embedded in it.
    """
    for candidate in (strip_code_fences(text), extract_json(text)):
        if not candidate:
            continue
        try:
            return model_cls.model_validate(json.loads(candidate))
        except (json.JSONDecodeError, ValidationError):
            continue
    LOGGER.warning(
        "structured_output_fallback",
        model=model_cls.__name__,
        preview=(text or "")[:120],
    )
    return fallback


def decode_achievement_lines(text: str) -> List[str]:
    decoded: List[str] = []
    for line in strip_code_fences(text).splitlines():
        candidate = line.strip()
        if not candidate or _KEYWORDS_LABEL.match(candidate):
            continue
        candidate = _ACHIEVEMENT_LABEL.sub("", candidate)
        candidate = _LIST_MARKER.sub("", candidate).strip()
        if candidate:
            decoded.append(candidate)
    return decoded


def is_approved(verdict: str) -> bool:
    """Only an upper-case ``APPROVED`` token opening the verdict counts."""
    return bool(_APPROVED_VERDICT.match((verdict or "").lstrip(_VERDICT_MARKUP)))


def check_achievements_structure(original: Sequence[str], rewritten: Sequence[str]) -> List[str]:
    issues: List[str] = []
    if len(rewritten) != len(original):
        issues.append(
            f"Count mismatch: expected {len(original)} achievements, got {len(rewritten)}"
        )
    for index, text in enumerate(rewritten):
        if len((text or "").strip()) < MIN_ACHIEVEMENT_CHARS:
            issues.append(f'Achievement [{index}] is too short or empty: "{text}"')
    return issues


def tech_tokens(item: str) -> Tuple[str, ...]:
    """Word tokens of a technology name with aliases resolved (``React.js`` -> ``react``)."""
    name = normalize_identity(item)
    without_suffix = _JS_SUFFIX.sub("", name).strip(" .")
    if without_suffix:
        name = without_suffix
    tokens: List[str] = []
    for token in _TECH_TOKEN.findall(TECH_ALIASES.get(name, name)):
        tokens.extend(TECH_ALIASES.get(token, token).split())
    return tuple(tokens)


def _traceable(candidate: Tuple[str, ...], known: Tuple[str, ...]) -> bool:
    if not candidate or not known:
        return False
    if candidate == known:
        return True
    shorter, longer = sorted((candidate, known), key=len)
    # Whole-token containment only, and never on a bare short token like "go".
    return set(shorter) <= set(longer) and any(len(token) >= 3 for token in shorter)


def check_tech_stack_additions(original: Sequence[str], proposed: Sequence[str]) -> List[str]:
    issues: List[str] = []
    known = [tech_tokens(item) for item in original if item.strip()]
    unmatched = []
    for item in proposed:
        candidate = tech_tokens(item)
        if not any(_traceable(candidate, existing) for existing in known):
            unmatched.append(item)
    if unmatched:
        issues.append(f"Items not traceable to the original stack: {', '.join(unmatched)}")
    if len(proposed) > len(original) * 2:
        issues.append(
            f"Too many items added: original had {len(original)}, proposed has {len(proposed)}"
        )
    return issues


def check_description_quality(original: str, rewritten: str) -> List[str]:
    issues: List[str] = []
    stripped = (rewritten or "").strip()
    if not stripped:
        issues.append("Rewritten description is empty")
    elif len(stripped) < MIN_DESCRIPTION_CHARS:
        issues.append(
            f"Rewritten description is too short ({len(stripped)} chars, min {MIN_DESCRIPTION_CHARS})"
        )
    if stripped and stripped == (original or "").strip():
        issues.append("Rewritten description is identical to the original")
    return issues


def _load_payload(raw: str, model_cls: Type[ModelT]) -> ModelT:
    cleaned = strip_code_fences(raw)
    try:
        payload: Any = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ResponseRejected(ResponseRejected.MALFORMED, f"invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ResponseRejected(ResponseRejected.MALFORMED, "top-level value is not an object")
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
        raise ResponseRejected(
            ResponseRejected.MALFORMED, f"unexpected shape at {', '.join(fields)}"
        ) from exc


def _require_permutation(label: str, original: Sequence[str], proposed: Sequence[str]) -> None:
    expected = Counter(original)
    received = Counter(proposed)
    duplicates = sorted(
        text for text, count in received.items() if text in expected and count > expected[text]
    )
    missing = sorted((expected - received).keys())
    extra = sorted(text for text in received if text not in expected)
    if duplicates:
        raise ResponseRejected(ResponseRejected.CONTRACT, f"duplicate {label}: {duplicates}")
    if missing:
        raise ResponseRejected(ResponseRejected.CONTRACT, f"missing {label}: {missing}")
    if extra:
        raise ResponseRejected(ResponseRejected.CONTRACT, f"unknown {label}: {extra}")


def validate_achievements_sort_response(
    raw: str, original_achievements: Sequence[Achievement]
) -> AchievementsSortResult:
    result = _load_payload(raw, AchievementsSortResult)
    _require_permutation(
        "achievements",
        [achievement.text for achievement in original_achievements],
        result.achievement_order,
    )
    return result


def validate_tech_stack_sort_response(
    raw: str, original_stack: Sequence[str]
) -> TechStackSortResult:
    result = _load_payload(raw, TechStackSortResult)
    _require_permutation("technologies", list(original_stack), result.tech_order)
    return result


def validate_skills_sort_response(
    raw: str,
    original_groups: Sequence[SkillGroup],
    max_new_skills: int = DEFAULT_MAX_NEW_SKILLS,
) -> SkillsSortResult:
    result = _load_payload(raw, SkillsSortResult)
    contract = ResponseRejected.CONTRACT

    title_counts = Counter(result.group_order)
    repeated = sorted(title for title, count in title_counts.items() if count > 1)
    if repeated:
        raise ResponseRejected(contract, f"duplicate groups in groupOrder: {repeated}")
    missing_groups = [group.title for group in original_groups if group.title not in title_counts]
    if missing_groups:
        raise ResponseRejected(contract, f"missing groups: {missing_groups}")

    originals_by_group: Dict[str, List[str]] = {
        group.title: [skill.text for skill in group.skills] for group in original_groups
    }
    seen = {normalize_identity(text) for texts in originals_by_group.values() for text in texts}
    additions: set[str] = set()

    for title in result.group_order:
        proposed = result.skill_order.get(title)
        original_texts = originals_by_group.get(title)
        if proposed is None:
            if original_texts is not None:
                raise ResponseRejected(contract, f'missing skill order for group "{title}"')
            continue
        if any(not text.strip() for text in proposed):
            raise ResponseRejected(contract, f'blank skill in group "{title}"')
        normalized = [normalize_identity(text) for text in proposed]
        if len(set(normalized)) != len(normalized):
            raise ResponseRejected(contract, f'duplicate skills in group "{title}"')
        if original_texts is not None:
            lost = [text for text in original_texts if text not in proposed]
            if lost:
                raise ResponseRejected(contract, f'missing skills in group "{title}": {lost}')
        known = set(original_texts or [])
        for text in proposed:
            if text in known:
                continue
            key = normalize_identity(text)
            if key not in seen:
                additions.add(key)

    if len(additions) > max_new_skills:
        raise ResponseRejected(
            contract, f"too many new skills: {len(additions)} exceeds limit {max_new_skills}"
        )
    return result


def _parse_or_none(feature: str, validate: Any, *args: Any, **kwargs: Any) -> Optional[Any]:
    try:
        return validate(*args, **kwargs)
    except ResponseRejected as exc:
        LOGGER.warning(exc.kind, feature=feature, detail=exc.detail)
        return None


def parse_skills_sort_response(
    raw: str,
    original_groups: Sequence[SkillGroup],
    max_new_skills: int = DEFAULT_MAX_NEW_SKILLS,
) -> Optional[SkillsSortResult]:
    return _parse_or_none(
        "skills_sort",
        validate_skills_sort_response,
        raw,
        original_groups,
        max_new_skills=max_new_skills,
    )


def parse_achievements_sort_response(
    raw: str, original_achievements: Sequence[Achievement]
) -> Optional[AchievementsSortResult]:
    return _parse_or_none(
        "achievements_sort", validate_achievements_sort_response, raw, original_achievements
    )


def parse_tech_stack_sort_response(
    raw: str, original_stack: Sequence[str]
) -> Optional[TechStackSortResult]:
    return _parse_or_none("tech_stack_sort", validate_tech_stack_sort_response, raw, original_stack)

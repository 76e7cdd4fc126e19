from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
TAILOR_SERVICE_ROOT = ROOT / "services" / "tailor"
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(TAILOR_SERVICE_ROOT))
from libs.core.models import EnrichmentMapResult, TechStackAlignmentResult  # noqa: E402
from tailor_core.validation import (  # type: ignore  # noqa: E402
    check_achievements_structure,
    check_description_quality,
    check_tech_stack_additions,
    decode_achievement_lines,
    extract_json,
    is_approved,
    safe_parse_json,
)


def test_decode_achievement_lines_strips_echoed_labels_and_markers() -> None:
    text = (
        "Achievement [0]: Automated deploys with GitHub Actions\n"
        "Approved keywords for [0]: CI/CD\n"
        "\n"
        "- Cut p95 latency 40%\n"
        "2. Mentored 3 engineers\n"
        "• Wrote the on-call runbook"
    )

    assert decode_achievement_lines(text) == [
        "Automated deploys with GitHub Actions",
        "Cut p95 latency 40%",
        "Mentored 3 engineers",
        "Wrote the on-call runbook",
    ]


def test_decode_achievement_lines_keeps_leading_numbers_that_are_metrics() -> None:
    assert decode_achievement_lines("3.5x faster builds\n40% fewer pages") == [
        "3.5x faster builds",
        "40% fewer pages",
    ]


def test_decode_achievement_lines_returns_empty_list_for_unusable_text() -> None:
    assert decode_achievement_lines("") == []
    assert decode_achievement_lines("```\n\n```") == []
    assert decode_achievement_lines("Approved keywords for [0]: none") == []


def test_safe_parse_json_extracts_first_object_from_prose() -> None:
    fallback = TechStackAlignmentResult(tech_stack=["Go"], rationale="fallback")

    parsed = safe_parse_json(
        'Here you go: {"techStack": ["Go", "gRPC"], "rationale": "evidenced"} thanks',
        TechStackAlignmentResult,
        fallback,
    )

    assert parsed.tech_stack == ["Go", "gRPC"]


def test_safe_parse_json_returns_fallback_on_garbage() -> None:
    fallback = EnrichmentMapResult(rationale="fallback")

    assert safe_parse_json("no json here", EnrichmentMapResult, fallback) is fallback
    assert safe_parse_json('{"enrichmentMap": []}', EnrichmentMapResult, fallback) is fallback


def test_extract_json_handles_fences() -> None:
    assert extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extract_json("nothing") == ""


def test_is_approved_requires_upper_case_verdict_token() -> None:
    assert is_approved("APPROVED")
    assert is_approved("  **APPROVED** - looks good")
    assert not is_approved("  **Approved** - looks good")
    assert not is_approved("approved, though [1] could name the team size")
    assert not is_approved(
        "Approved keywords look fine for [0]. CRITIQUE: [1]: Kubernetes is fabricated"
    )
    assert not is_approved("APPROVEDISH")
    assert not is_approved("CRITIQUE: [0]: too vague")
    assert not is_approved("")


def test_check_achievements_structure_reports_count_and_short_bullets() -> None:
    issues = check_achievements_structure(["a long enough bullet", "another bullet here"], ["short"])

    assert issues[0].startswith("Count mismatch")
    assert 'Achievement [0] is too short' in issues[1]
    assert check_achievements_structure(["original bullet"], ["rewritten bullet text"]) == []


def test_check_tech_stack_additions_flags_untraceable_items_and_growth() -> None:
    issues = check_tech_stack_additions(["Postgres", "k8s"], ["PostgreSQL", "k8s", "Kafka", "Redis", "Go"])

    assert "Kafka" in issues[0]
    assert "PostgreSQL" not in issues[0]
    assert issues[1].startswith("Too many items added")
    assert check_tech_stack_additions(["React"], ["React.js"]) == []


@pytest.mark.parametrize(
    ("original", "proposed"),
    [
        (["Go"], ["Django"]),
        (["Go"], ["MongoDB"]),
        (["Java"], ["JavaScript"]),
        (["SQL"], ["PostgreSQL"]),
        (["Node.js"], ["Nodemon"]),
    ],
)
def test_check_tech_stack_additions_rejects_partial_name_matches(
    original: list[str], proposed: list[str]
) -> None:
    issues = check_tech_stack_additions(original, proposed)

    assert issues == [f"Items not traceable to the original stack: {proposed[0]}"]


def test_check_tech_stack_additions_accepts_aliases_and_qualified_names() -> None:
    assert check_tech_stack_additions(["Golang", "AWS Lambda"], ["Go", "Lambda"]) == []
    assert check_tech_stack_additions(["Node.js", "TypeScript"], ["NodeJS", "TS"]) == []


def test_check_description_quality() -> None:
    assert check_description_quality("same", "same")[-1].endswith("identical to the original")
    assert "too short" in check_description_quality("orig", "Short rewrite.")[0]
    assert check_description_quality("orig", "")[0] == "Rewritten description is empty"
    assert check_description_quality("orig", "x" * 60) == []

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
TAILOR_SERVICE_ROOT = ROOT / "services" / "tailor"
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(TAILOR_SERVICE_ROOT))
from libs.core.models import Achievement, Skill, SkillGroup  # noqa: E402
from tailor_core import prompts  # type: ignore  # noqa: E402

JOB = "Platform engineer with Kubernetes and Terraform."
RULE = prompts.PRESERVE_ITEMS_RULE


def test_skills_sort_prompt_embeds_every_input_and_the_contract() -> None:
    groups = [
        SkillGroup(title="Cloud", skills=[Skill(text="AWS"), Skill(text="GCP")]),
        SkillGroup(title="Languages", skills=[Skill(text="Go")]),
    ]

    prompt = prompts.build_skills_sort_prompt(groups, JOB, max_new_skills=4)

    for fragment in (JOB, "Cloud", "Languages", "AWS", "GCP", "Go", RULE, '"groupOrder"', '"skillOrder"'):
        assert fragment in prompt
    assert "at most 4" in prompt


def test_achievements_sort_prompt_numbers_the_exact_texts() -> None:
    achievements = [Achievement(text="Migrated 40 services"), Achievement(text="Cut toil 30%")]

    prompt = prompts.build_achievements_sort_prompt(achievements, "SRE", "Initech", JOB)

    assert "1. Migrated 40 services" in prompt
    assert "2. Cut toil 30%" in prompt
    assert "Position: SRE" in prompt
    assert "Organization: Initech" in prompt
    assert '"achievementOrder"' in prompt
    assert RULE in prompt
    assert JOB in prompt


def test_tech_stack_sort_prompt_lists_technologies() -> None:
    prompt = prompts.build_tech_stack_sort_prompt(["Terraform", "Python"], JOB)

    assert '["Terraform", "Python"]' in prompt
    assert '"techOrder"' in prompt
    assert RULE in prompt


def test_seeded_achievements_prompt_lists_approved_keywords_per_index() -> None:
    prompt = prompts.build_achievements_prompt(
        "analysis text",
        JOB,
        ["Automated deploys", "Wrote runbooks"],
        {"0": ["CI/CD", "Terraform"]},
    )

    assert "Achievement [0]: Automated deploys" in prompt
    assert "Approved keywords for [0]: CI/CD, Terraform" in prompt
    assert "Approved keywords for [1]: none" in prompt
    assert "exactly 2 achievements" in prompt
    assert "analysis text" in prompt
    assert RULE in prompt


def test_integrity_audit_prompt_carries_structural_findings() -> None:
    prompt = prompts.build_integrity_audit_prompt(
        ["Automated deploys"],
        ["Automated CI/CD deploys"],
        {"0": ["CI/CD"]},
        ["Count mismatch: expected 1 achievements, got 2"],
    )

    assert "[0] Automated deploys" in prompt
    assert "[0] Automated CI/CD deploys" in prompt
    assert "[0]: CI/CD" in prompt
    assert "- Count mismatch" in prompt


def test_description_refinement_prompt_appends_feedback() -> None:
    prompt = prompts.build_description_refinement_prompt(
        "analysis",
        "Ran the platform team.",
        JOB,
        "CRITIQUE: overstated scope",
        feedback_label="Relevance Feedback",
        instruction="Please enhance.",
    )

    assert "Original Description:\nRan the platform team." in prompt
    assert "Relevance Feedback: CRITIQUE: overstated scope" in prompt
    assert prompt.endswith("Please enhance.")


def test_corrective_prompt_keeps_base_prompt_and_reason() -> None:
    prompt = prompts.build_corrective_prompt("BASE PROMPT", "missing achievements: ['Y']")

    assert prompt.startswith("BASE PROMPT")
    assert "missing achievements: ['Y']" in prompt


def test_every_tailoring_prompt_embeds_job_description() -> None:
    built = [
        prompts.build_analysis_prompt(JOB, "SRE", "Initech", "desc", ["a"]),
        prompts.build_description_prompt("analysis", "desc", JOB),
        prompts.build_keyword_extraction_prompt(JOB, ["a"]),
        prompts.build_enrichment_classification_prompt(["Go"], ["a"], JOB),
        prompts.build_tech_stack_alignment_prompt(JOB, "desc", ["a"], ["Go"]),
        prompts.build_tech_stack_validation_prompt(["Go"], ["Go"], "desc", ["a"], JOB),
        prompts.build_fact_check_prompt("desc", "new desc", ["a"], ["b"], JOB),
        prompts.build_relevance_prompt(JOB, "desc", ["a"]),
    ]

    for prompt in built:
        assert JOB in prompt
        assert RULE in prompt


def test_system_prompts_name_structured_output_tools() -> None:
    assert "finalize_keyword_extraction" in prompts.SYSTEM_PROMPTS["keyword_extractor"]
    assert "finalize_enrichment_classification" in prompts.SYSTEM_PROMPTS["enrichment_classifier"]
    assert "finalize_tech_stack_alignment" in prompts.SYSTEM_PROMPTS["tech_stack_aligner"]

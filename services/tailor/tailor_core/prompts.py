from __future__ import annotations

import json
from typing import Dict, List, Mapping, Sequence

from libs.core.models import Achievement, SkillGroup

PRESERVE_ITEMS_RULE = (
    "Do not add, remove, or modify existing items unless explicitly asked to add new ones."
)

SYSTEM_PROMPTS: Dict[str, str] = {
    "analyzer": (
        "You are a Job-Experience Alignment Analyst. Analyze the job description and work "
        "experience to determine alignment potential.\n\n"
        "ANALYSIS DIMENSIONS:\n"
        "1. Core Requirements: key skills, technologies, and responsibilities in the job description\n"
        "2. Experience Strengths: what aspects of this experience align well\n"
        "3. Alignment Potential: realistic degree of match (High/Medium/Low)\n"
        "4. Transferable Skills: skills from the experience applicable to the requirements\n"
        "5. Honest Gaps: areas where the experience genuinely does not match\n\n"
        "OUTPUT: A structured analysis with an alignment score and specific recommendations for emphasis."
    ),
    "description_writer": (
        "You are a Professional Resume Writer specializing in truthful optimization.\n\n"
        "Rewrite the work experience description to emphasize job-relevant aspects.\n\n"
        "CRITICAL RULES:\n"
        "1. NEVER FABRICATE: only use facts from the original description\n"
        "2. EMPHASIZE RELEVANCE: highlight aspects that align with the job requirements\n"
        "3. HONEST FRAMING: use the job's terminology only when it is accurate\n"
        "4. CONCISE: 1 sentence maximum\n"
        "5. Do not add technologies, skills, or responsibilities that are not in the original\n\n"
        "OUTPUT: Only the rewritten description text, nothing else."
    ),
    "keyword_extractor": (
        "You are a Job Description Keyword Extraction Specialist.\n\n"
        "Given a job description and the original achievements, identify keywords that are "
        "MISSING from the achievements and could improve ATS keyword matching.\n\n"
        "CATEGORIES: technologies, methodologies, domains, and soft skills only when the job "
        "explicitly weights them.\n\n"
        "criticalKeywords = appear 2+ times in the job description or are listed as required\n"
        "niceToHaveKeywords = appear once or in preferred qualifications\n\n"
        "You MUST call the `finalize_keyword_extraction` tool with your result. "
        "Do not output raw JSON text."
    ),
    "enrichment_classifier": (
        "You are an Achievement Keyword Injection Auditor and a strict gatekeeper.\n\n"
        "For each achievement, decide which candidate keywords can be LEGITIMATELY woven in "
        "without fabrication. Approve a keyword only on conceptual overlap, a technology "
        "umbrella relationship, domain alignment, or a tool the described outcome implies.\n\n"
        "Never approve a keyword that names a tool the achievement does not reference or imply, "
        "that requires expertise absent from the achievement, or that changes what was accomplished.\n\n"
        "You MUST call the `finalize_enrichment_classification` tool with your result. "
        "Keys are 0-based achievement indices as strings; an empty array means no injection."
    ),
    "achievements_optimizer": (
        "You are a Resume Achievement Optimizer with keyword enrichment capability.\n\n"
        "Rewrite achievements to emphasize job-relevant impact and naturally weave in ONLY the "
        "approved keywords listed for each achievement index.\n\n"
        "RULES:\n"
        "1. Only inject keywords approved for that index, never other keywords\n"
        "2. Keywords must read naturally, never keyword-stuffed\n"
        "3. All metrics, outcomes, and scope must remain unchanged\n"
        "4. Skip a keyword that does not fit naturally\n"
        "5. Return each achievement on its own line, same count and order as the input\n"
        '6. Never start a line with "Achievement [N]:" or any index prefix\n\n'
        "OUTPUT: Plain rewritten achievement text only, one per line. No labels, no numbering."
    ),
    "integrity_auditor": (
        "You are an Achievement Integrity Auditor specializing in keyword injection detection.\n\n"
        "For each rewritten achievement, verify that every newly introduced keyword maps back to "
        "a real concept in the original achievement, could be defended in a technical interview, "
        "and does not imply deeper ownership than the original.\n\n"
        "VERDICTS:\n"
        '- "APPROVED" when all achievements pass\n'
        '- "CRITIQUE: [index]: <issue> | Corrected: <rewritten achievement>" otherwise'
    ),
    "tech_stack_aligner": (
        "You are a Tech Stack ATS Alignment Specialist.\n\n"
        "Given the current tech stack, the job description, and the FINALIZED description and "
        "achievements, produce an aligned tech stack:\n"
        "1. Normalize aliases to the job's canonical form when they are the same technology "
        "(k8s -> Kubernetes, Postgres -> PostgreSQL)\n"
        "2. Prefer the job's exact capitalization for identical technologies\n"
        "3. Keep only specific tools, frameworks, languages, and products; drop concepts and methodologies\n"
        "4. Add a technology only if the job asks for it AND it is explicitly named in the "
        "finalized description or achievements\n\n"
        "Original items come first, additions last.\n\n"
        "You MUST call the `finalize_tech_stack_alignment` tool with your result. "
        "Do not output raw JSON text."
    ),
    "tech_stack_validator": (
        "You are a Tech Stack Alignment Auditor.\n\n"
        "Verify the proposed tech stack: normalized items are the same technology, every new item "
        "is evidenced in the description or achievements, and no concepts or methodologies remain.\n\n"
        'Respond "APPROVED" or "CRITIQUE: <specific issue>".'
    ),
    "fact_checker": (
        "You are a Resume Fact-Checking Auditor.\n\n"
        "Verify the rewritten experience: no fabricated claims, metrics unchanged, terminology "
        "does not misrepresent the work, technologies are accurate, and scope is not exaggerated.\n\n"
        'If factually accurate, respond "APPROVED". '
        'Otherwise respond "CRITIQUE: <specific factual inaccuracies>" with corrections.'
    ),
    "relevance_evaluator": (
        "You are a Job-Resume Alignment Evaluator.\n\n"
        "Evaluate whether the rewritten experience highlights relevance to the job: appropriate "
        "terminology, emphasis on relevant impact, clear transferable skills, and honest positioning.\n\n"
        'If well aligned, respond "APPROVED". Otherwise respond "CRITIQUE: <specific suggestions>".'
    ),
    "sorter": (
        "You are an expert tech recruiter who orders resume content by relevance to a job. "
        "You return only the requested JSON and never drop or rename the items you are given."
    ),
}


def _numbered(items: Sequence[str]) -> str:
    return "\n".join(f"{index + 1}. {text}" for index, text in enumerate(items))


def _indexed(items: Sequence[str]) -> str:
    return "\n".join(f"[{index}] {text}" for index, text in enumerate(items))


def _seeds_for(enrichment_map: Mapping[str, List[str]], index: int) -> str:
    seeds = enrichment_map.get(str(index)) or []
    return ", ".join(seeds) if seeds else "none"


def build_analysis_prompt(
    job_description: str,
    position: str,
    organization: str,
    description: str,
    achievements: Sequence[str],
) -> str:
    return (
        f"Job Description:\n{job_description}\n\n"
        f"Position: {position}\n"
        f"Organization: {organization}\n"
        f"Description: {description}\n"
        f"Achievements:\n" + "\n".join(achievements) + "\n\n"
        f"{PRESERVE_ITEMS_RULE}\n"
        "Return a plain-text alignment analysis."
    )


def build_description_prompt(analysis: str, description: str, job_description: str) -> str:
    return (
        f"Analysis:\n{analysis}\n\n"
        f"Original Description:\n{description}\n\n"
        f"Job Description:\n{job_description}\n\n"
        "Only facts from the original description may appear. "
        f"{PRESERVE_ITEMS_RULE}\n"
        "Return only the rewritten description text."
    )


def build_description_refinement_prompt(
    analysis: str,
    description: str,
    job_description: str,
    critique: str,
    *,
    feedback_label: str = "Fact Check Feedback",
    instruction: str = "Please revise to address these concerns.",
) -> str:
    return (
        f"{build_description_prompt(analysis, description, job_description)}\n\n"
        f"{feedback_label}: {critique}\n\n"
        f"{instruction}"
    )


def build_keyword_extraction_prompt(job_description: str, achievements: Sequence[str]) -> str:
    return (
        f"Job Description:\n{job_description}\n\n"
        "Original Achievements:\n" + "\n".join(achievements) + "\n\n"
        "Identify job description keywords missing from the achievements for ATS optimization. "
        "Only list keywords that are ABSENT from the achievements text.\n"
        f"{PRESERVE_ITEMS_RULE}\n"
        'Output shape: {"missingKeywords": [...], "criticalKeywords": [...], "niceToHaveKeywords": [...]}'
    )


def build_enrichment_classification_prompt(
    candidate_keywords: Sequence[str],
    achievements: Sequence[str],
    job_description: str,
) -> str:
    return (
        f"Candidate JD Keywords: {', '.join(candidate_keywords)}\n\n"
        f"Original Achievements (indexed):\n{_indexed(achievements)}\n\n"
        f"Job Description:\n{job_description}\n\n"
        "For each achievement index, determine which candidate keywords can be legitimately injected.\n"
        f"{PRESERVE_ITEMS_RULE}\n"
        'Output shape: {"enrichmentMap": {"0": ["keyword"], "1": []}, "rationale": "..."}'
    )


def build_achievements_prompt(
    analysis: str,
    job_description: str,
    achievements: Sequence[str],
    enrichment_map: Mapping[str, List[str]],
) -> str:
    seeded = "\n\n".join(
        f"Achievement [{index}]: {text}\nApproved keywords for [{index}]: {_seeds_for(enrichment_map, index)}"
        for index, text in enumerate(achievements)
    )
    return (
        f"Analysis:\n{analysis}\n\n"
        f"Job Description:\n{job_description}\n\n"
        f"{seeded}\n\n"
        f"Rewrite exactly {len(achievements)} achievements. {PRESERVE_ITEMS_RULE} "
        "Metrics and facts stay as written.\n"
        "Output shape: one rewritten achievement per line, in input order, without labels or numbering."
    )


def build_achievements_refinement_prompt(base_prompt: str, critique: str) -> str:
    return (
        f"{base_prompt}\n\n"
        f"Integrity Audit Feedback:\n{critique}\n\n"
        "Please revise to address the flagged issues, keeping only legitimately defensible keyword usage."
    )


def build_integrity_audit_prompt(
    original: Sequence[str],
    rewritten: Sequence[str],
    enrichment_map: Mapping[str, List[str]],
    structural_issues: Sequence[str] = (),
) -> str:
    seeds = "\n".join(f"[{index}]: {_seeds_for(enrichment_map, index)}" for index in range(len(original)))
    report = "\n".join(f"- {issue}" for issue in structural_issues) if structural_issues else "- none"
    return (
        f"Original Achievements:\n{_indexed(original)}\n\n"
        f"Rewritten Achievements:\n{_indexed(rewritten)}\n\n"
        f"Injected keyword seeds per achievement:\n{seeds}\n\n"
        f"Structural check findings:\n{report}\n\n"
        f"{PRESERVE_ITEMS_RULE}\n"
        'Respond "APPROVED" or "CRITIQUE: [index]: <issue> | Corrected: <rewritten achievement>".'
    )


def build_tech_stack_alignment_prompt(
    job_description: str,
    description: str,
    achievements: Sequence[str],
    tech_stack: Sequence[str],
) -> str:
    return (
        f"Job Description:\n{job_description}\n\n"
        f"Finalized Description:\n{description}\n\n"
        "Finalized Achievements:\n" + "\n".join(achievements) + "\n\n"
        f"Current Tech Stack:\n{', '.join(tech_stack)}\n\n"
        f"{PRESERVE_ITEMS_RULE} Renaming to a canonical alias and dropping non-technologies "
        "are the only permitted edits; additions must be evidenced above.\n"
        'Output shape: {"techStack": ["..."], "rationale": "..."}'
    )


def build_tech_stack_refinement_prompt(base_prompt: str, critique: str) -> str:
    return (
        f"{base_prompt}\n\n"
        f"Validation Critique:\n{critique}\n\n"
        "Please adjust the tech stack to address these concerns."
    )


def build_tech_stack_validation_prompt(
    original: Sequence[str],
    proposed: Sequence[str],
    description: str,
    achievements: Sequence[str],
    job_description: str,
    deterministic_issues: Sequence[str] = (),
) -> str:
    report = "\n".join(f"- {issue}" for issue in deterministic_issues) if deterministic_issues else "- none"
    return (
        f"Job Description:\n{job_description}\n\n"
        f"Original Stack: {', '.join(original)}\n"
        f"Proposed Stack: {', '.join(proposed)}\n\n"
        f"Evidence Context:\nDescription: {description}\n"
        "Achievements:\n" + "\n".join(achievements) + "\n\n"
        f"Automated findings:\n{report}\n\n"
        f"{PRESERVE_ITEMS_RULE}\n"
        'Respond "APPROVED" or "CRITIQUE: <specific issue>".'
    )


def build_fact_check_prompt(
    original_description: str,
    rewritten_description: str,
    original_achievements: Sequence[str],
    rewritten_achievements: Sequence[str],
    job_description: str,
) -> str:
    return (
        f"Job Description:\n{job_description}\n\n"
        f"Original Description: {original_description}\n"
        f"Rewritten Description: {rewritten_description}\n\n"
        "Original Achievements:\n" + "\n".join(original_achievements) + "\n\n"
        "Rewritten Achievements:\n" + "\n".join(rewritten_achievements) + "\n\n"
        f"{PRESERVE_ITEMS_RULE}\n"
        'Respond "APPROVED" or "CRITIQUE: <specific factual inaccuracies>".'
    )


def build_relevance_prompt(
    job_description: str,
    description: str,
    achievements: Sequence[str],
    quality_issues: Sequence[str] = (),
) -> str:
    report = "\n".join(f"- {issue}" for issue in quality_issues) if quality_issues else "- none"
    return (
        f"Job Description:\n{job_description}\n\n"
        f"Rewritten Content:\nDescription: {description}\n"
        "Achievements:\n" + "\n".join(achievements) + "\n\n"
        f"Description quality findings:\n{report}\n\n"
        f"{PRESERVE_ITEMS_RULE}\n"
        'Respond "APPROVED" or "CRITIQUE: <specific suggestions>".'
    )


def build_skills_sort_prompt(
    skill_groups: Sequence[SkillGroup],
    job_description: str,
    max_new_skills: int = 10,
) -> str:
    skills_data = [
        {"title": group.title, "skills": [skill.text for skill in group.skills]}
        for group in skill_groups
    ]
    return (
        "You optimize resume skills sections for recruiter relevance.\n\n"
        f"TARGET JOB DESCRIPTION:\n{job_description}\n\n"
        "CURRENT SKILLS DATA (JSON format):\n"
        f"{json.dumps(skills_data, ensure_ascii=False, indent=2)}\n\n"
        "YOUR TASK:\n"
        "Sort the skill groups, and the skills within each group, by relevance to the job.\n\n"
        "CRITICAL RULES:\n"
        f"1. {PRESERVE_ITEMS_RULE}\n"
        "2. Every existing skill MUST remain in its original group, spelled exactly as provided\n"
        "3. Every existing group MUST appear in groupOrder\n"
        f"4. You are asked to add new skills only when the job requires them and they are clearly "
        f"implied by the existing skills; add at most {max_new_skills} in total\n"
        "5. Never repeat a skill, in any casing, within or across groups\n\n"
        "OUTPUT FORMAT (JSON only, no explanation):\n"
        "{\n"
        '  "groupOrder": ["Group Title 1", "Group Title 2"],\n'
        '  "skillOrder": {"Group Title 1": ["skill1", "skill2"], "Group Title 2": ["skill1"]}\n'
        "}\n\n"
        "IMPORTANT: Return ONLY valid JSON. No markdown, no code blocks."
    )


def build_achievements_sort_prompt(
    achievements: Sequence[Achievement],
    position: str,
    organization: str,
    job_description: str,
) -> str:
    texts = [achievement.text for achievement in achievements]
    return (
        "You order resume achievements for recruiter relevance.\n\n"
        f"TARGET JOB DESCRIPTION:\n{job_description}\n\n"
        "WORK EXPERIENCE CONTEXT:\n"
        f"Position: {position}\n"
        f"Organization: {organization}\n\n"
        f"CURRENT ACHIEVEMENTS (in current order):\n{_numbered(texts)}\n\n"
        "CRITICAL RULES:\n"
        f"1. {PRESERVE_ITEMS_RULE}\n"
        "2. Use the EXACT achievement text as provided, character for character\n"
        "3. Most job-relevant achievements first; irrelevant ones last but NEVER removed\n\n"
        "OUTPUT FORMAT (JSON only, no explanation):\n"
        '{"achievementOrder": ["exact text of most relevant achievement", "..."]}\n\n'
        "IMPORTANT: Return ONLY valid JSON. No markdown, no code blocks."
    )


def build_tech_stack_sort_prompt(technologies: Sequence[str], job_description: str) -> str:
    return (
        "You order a resume tech stack for recruiter relevance.\n\n"
        f"TARGET JOB DESCRIPTION:\n{job_description}\n\n"
        f"CURRENT TECH STACK:\n{json.dumps(list(technologies), ensure_ascii=False)}\n\n"
        "CRITICAL RULES:\n"
        f"1. {PRESERVE_ITEMS_RULE}\n"
        "2. Technologies named in the job first, strongly related ones next, the rest last\n"
        "3. Use the exact spelling provided\n\n"
        "OUTPUT FORMAT (JSON only, no explanation):\n"
        '{"techOrder": ["tech1", "tech2"]}\n\n'
        "IMPORTANT: Return ONLY valid JSON. No markdown, no code blocks."
    )


def build_corrective_prompt(base_prompt: str, rejection: str) -> str:
    return (
        f"{base_prompt}\n\n"
        f"PREVIOUS ATTEMPT REJECTED: {rejection}\n"
        "Return the complete JSON again, fixing this problem. "
        "Include every original item exactly once and nothing the rules forbid."
    )

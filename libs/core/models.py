from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ProviderType(str, Enum):
    openai_compatible = "openai-compatible"
    gemini = "gemini"
    mock = "mock"


class LoopStatus(str, Enum):
    drafting = "drafting"
    auditing = "auditing"
    approved = "approved"
    exhausted = "exhausted"
    skipped = "skipped"


class _WireModel(BaseModel):
    """Base for payloads exchanged with the model or the caller in camelCase."""

    model_config = ConfigDict(populate_by_name=True)


class Skill(BaseModel):
    text: str
    highlight: bool = False


class SkillGroup(BaseModel):
    title: str
    skills: List[Skill] = Field(default_factory=list)


class Achievement(BaseModel):
    text: str


class SkillsSortResult(_WireModel):
    group_order: List[str] = Field(alias="groupOrder")
    skill_order: Dict[str, List[str]] = Field(alias="skillOrder")


class AchievementsSortResult(_WireModel):
    achievement_order: List[str] = Field(alias="achievementOrder")


class TechStackSortResult(_WireModel):
    tech_order: List[str] = Field(alias="techOrder")


class KeywordExtractionResult(_WireModel):
    missing_keywords: List[str] = Field(default_factory=list, alias="missingKeywords")
    critical_keywords: List[str] = Field(default_factory=list, alias="criticalKeywords")
    nice_to_have_keywords: List[str] = Field(default_factory=list, alias="niceToHaveKeywords")

    def candidate_keywords(self) -> List[str]:
        """Critical first, then nice-to-have, then any missing keyword not listed yet."""
        listed = list(self.critical_keywords) + list(self.nice_to_have_keywords)
        extra = [
            keyword
            for keyword in self.missing_keywords
            if keyword not in self.critical_keywords and keyword not in self.nice_to_have_keywords
        ]
        return listed + extra


class EnrichmentMapResult(_WireModel):
    enrichment_map: Dict[str, List[str]] = Field(default_factory=dict, alias="enrichmentMap")
    rationale: str = ""


class TechStackAlignmentResult(_WireModel):
    tech_stack: List[str] = Field(default_factory=list, alias="techStack")
    rationale: str = ""


class StreamChunk(BaseModel):
    content: Optional[str] = None
    reasoning: Optional[str] = None
    tool_output: Optional[Dict[str, Any]] = None
    done: bool = False


class ToolSpec(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any]


class AgentConfig(BaseModel):
    api_url: str = ""
    api_key: str = ""
    model: str = ""
    provider_type: ProviderType = ProviderType.openai_compatible
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    timeout_s: float = 60.0


class LoopReport(BaseModel):
    name: str
    status: LoopStatus
    iterations: int = 0
    critiques: List[str] = Field(default_factory=list)


class ExperienceTailoringResult(BaseModel):
    description: str
    achievements: List[str]
    tech_stack: Optional[List[str]] = None
    loops: List[LoopReport] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def degraded(self) -> bool:
        return any(loop.status == LoopStatus.exhausted for loop in self.loops)


class WorkExperience(BaseModel):
    organization: str = ""
    position: str = ""
    description: str = ""
    key_achievements: List[Achievement] = Field(default_factory=list)
    technologies: List[str] = Field(default_factory=list)

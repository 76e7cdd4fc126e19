from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from libs.core.models import LoopReport

ItemT = TypeVar("ItemT")


@dataclass(frozen=True)
class InvocationState:
    """Everything one tailoring run knows. Stages read it and never mutate it."""

    job_description: str
    position: str
    organization: str
    original_description: str
    original_achievements: Tuple[str, ...]
    original_tech_stack: Tuple[str, ...] = ()
    analysis: str = ""
    description: str = ""
    achievements: Tuple[str, ...] = ()
    tech_stack: Optional[Tuple[str, ...]] = None
    enrichment_map: Dict[str, List[str]] = field(default_factory=dict)
    loops: Tuple[LoopReport, ...] = ()

    def evolve(self, **changes: Any) -> "InvocationState":
        return replace(self, **changes)

    def with_loops(self, *reports: LoopReport) -> "InvocationState":
        return replace(self, loops=self.loops + tuple(reports))


@dataclass(frozen=True)
class AnalysisStageResult:
    analysis: str
    description: str


@dataclass(frozen=True)
class AchievementsStageResult:
    achievements: Tuple[str, ...]
    enrichment_map: Dict[str, List[str]]
    report: LoopReport


@dataclass(frozen=True)
class TechStackStageResult:
    tech_stack: Optional[Tuple[str, ...]]
    report: LoopReport


@dataclass(frozen=True)
class VerificationStageResult:
    description: str
    reports: Tuple[LoopReport, ...]


@dataclass
class SortOutcome(Generic[ItemT]):
    """Result of one sorting run.

    ``items`` is the reordered list when ``applied`` is true and the caller's
    original list otherwise.
    """

    items: List[ItemT]
    sort_result: Optional[Any] = None
    applied: bool = False
    attempts: int = 0

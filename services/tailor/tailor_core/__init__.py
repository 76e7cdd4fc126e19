from .errors import MergeError, RunCancelled, TailorError, TransportFailure
from .service import (
    config_from_env,
    create_provider_from_env,
    describe_config,
    sort_achievements,
    sort_skills,
    sort_tech_stack,
    tailor_experience,
    tailor_work_experiences,
)
from .state import SortOutcome

__all__ = [
    "TailorError",
    "TransportFailure",
    "RunCancelled",
    "MergeError",
    "SortOutcome",
    "config_from_env",
    "create_provider_from_env",
    "describe_config",
    "tailor_experience",
    "tailor_work_experiences",
    "sort_skills",
    "sort_achievements",
    "sort_tech_stack",
]

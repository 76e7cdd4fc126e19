from __future__ import annotations

from typing import Dict, Set

from .models import LoopStatus

LOOP_TRANSITIONS: Dict[LoopStatus, Set[LoopStatus]] = {
    LoopStatus.drafting: {LoopStatus.auditing, LoopStatus.skipped},
    LoopStatus.auditing: {LoopStatus.approved, LoopStatus.drafting, LoopStatus.exhausted},
    LoopStatus.approved: set(),
    LoopStatus.exhausted: set(),
    LoopStatus.skipped: set(),
}

TERMINAL_LOOP_STATUSES: Set[LoopStatus] = {
    status for status, targets in LOOP_TRANSITIONS.items() if not targets
}


class InvalidTransition(Exception):
    def __init__(self, current: LoopStatus, new: LoopStatus) -> None:
        super().__init__(f"invalid loop transition {current.value} -> {new.value}")
        self.current = current
        self.new = new


def validate_loop_transition(current: LoopStatus, new: LoopStatus) -> bool:
    return new in LOOP_TRANSITIONS.get(current, set())


def advance_loop(current: LoopStatus, new: LoopStatus) -> LoopStatus:
    if not validate_loop_transition(current, new):
        raise InvalidTransition(current, new)
    return new


def is_terminal(status: LoopStatus) -> bool:
    return status in TERMINAL_LOOP_STATUSES

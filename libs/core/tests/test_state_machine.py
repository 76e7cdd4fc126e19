import pytest

from libs.core import models, state_machine


def test_audit_loop_transitions():
    assert state_machine.validate_loop_transition(
        models.LoopStatus.drafting, models.LoopStatus.auditing
    )
    assert state_machine.validate_loop_transition(
        models.LoopStatus.auditing, models.LoopStatus.drafting
    )
    assert state_machine.validate_loop_transition(
        models.LoopStatus.auditing, models.LoopStatus.exhausted
    )


def test_invalid_loop_transition():
    assert not state_machine.validate_loop_transition(
        models.LoopStatus.drafting, models.LoopStatus.approved
    )
    with pytest.raises(state_machine.InvalidTransition):
        state_machine.advance_loop(models.LoopStatus.approved, models.LoopStatus.drafting)


def test_terminal_statuses():
    assert state_machine.TERMINAL_LOOP_STATUSES == {
        models.LoopStatus.approved,
        models.LoopStatus.exhausted,
        models.LoopStatus.skipped,
    }
    assert not state_machine.is_terminal(models.LoopStatus.auditing)

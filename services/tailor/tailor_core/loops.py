from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from libs.core import logging as core_logging
from libs.core.cancellation import CancellationToken
from libs.core.models import LoopReport, LoopStatus
from libs.core.state_machine import advance_loop
from libs.core.tracing import start_span

from .errors import RunCancelled
from .validation import is_approved

LOGGER = core_logging.get_logger("tailor")

DEFAULT_MAX_ITERATIONS = 2

DraftT = TypeVar("DraftT")


@dataclass
class LoopOutcome(Generic[DraftT]):
    draft: DraftT
    report: LoopReport


def skipped_report(name: str) -> LoopReport:
    return LoopReport(name=name, status=advance_loop(LoopStatus.drafting, LoopStatus.skipped))


async def run_audit_loop(
    name: str,
    draft: DraftT,
    *,
    audit: Callable[[DraftT], Awaitable[str]],
    revise: Callable[[DraftT, str], Awaitable[DraftT]],
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    cancel_token: Optional[CancellationToken] = None,
) -> LoopOutcome[DraftT]:
    """Audit ``draft`` until approved or the iteration bound is reached.

    A critique before the last iteration is handed to ``revise``; on the last
    iteration the current draft is kept and the loop ends ``exhausted``.
    """
    status = LoopStatus.drafting
    critiques: List[str] = []
    iteration = 0
    with start_span("tailor.loop", attributes={"loop": name, "max_iterations": max_iterations}) as span:
        while iteration < max_iterations:
            if cancel_token is not None and cancel_token.cancelled:
                raise RunCancelled(cancel_token.reason)
            iteration += 1
            status = advance_loop(status, LoopStatus.auditing)
            verdict = (await audit(draft)).strip()
            if is_approved(verdict):
                status = advance_loop(status, LoopStatus.approved)
                break
            critiques.append(verdict)
            if iteration >= max_iterations:
                status = advance_loop(status, LoopStatus.exhausted)
                break
            status = advance_loop(status, LoopStatus.drafting)
            LOGGER.info("loop_revision_requested", loop=name, iteration=iteration)
            draft = await revise(draft, verdict)
        span.set_attribute("loop.status", status.value)
        span.set_attribute("loop.iterations", iteration)
    LOGGER.info("loop_finished", loop=name, status=status.value, iterations=iteration)
    return LoopOutcome(
        draft=draft,
        report=LoopReport(name=name, status=status, iterations=iteration, critiques=critiques),
    )

"""
approval_engines.sequencer -- Pure step-ordering engine.

Responsibility:
    Given the steps of one approval chain and an action on its pending
    step, compute every resulting status change: which step becomes
    pending next, which step a rejection pushes back to, and whether the
    instance completes or is cancelled.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types and kernel exceptions.

Invariants enforced:
    - Single pending step: every outcome deactivates the acted-on step
      before at most one other step becomes ``action_pending``.
    - Monotonic sequencing: approval and escalation only ever activate a
      higher sequence; only rejection moves the cursor downward.
    - Completion exactness: ``completed`` is produced only when the
      acted-on step is the highest sequence and it was approved or
      escalated.
    - Cancellation: only a rejection produces ``cancelled``.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ValueError if the acted-on step is unknown or not ``action_pending``.
    - NoNextApproverError if an escalation has no inactive higher step.
    - RoutingError subclasses from ``validate_routing`` on malformed chains.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import date, timedelta
from uuid import UUID

from approval_kernel.domain.workflow import (
    PASSED_STEP_STATUSES,
    HistoryAction,
    InstanceStatus,
    RoutingStep,
    SequencerOutcome,
    StepStatus,
    StepTransition,
    WorkflowStep,
)
from approval_kernel.exceptions import (
    EmptyRoutingError,
    InvalidSequenceError,
    MissingRoleError,
    NoNextApproverError,
)

DEFAULT_LEAD_TIME_DAYS = 5


# =========================================================================
# Creation-time helpers
# =========================================================================


def validate_routing(routing: Sequence[RoutingStep], subject_ref: str = "") -> None:
    """Reject a routing chain that is empty, gapped, duplicated or role-less.

    Sequences must be exactly 1..N in any input order.

    Raises:
        EmptyRoutingError: No steps.
        MissingRoleError: A step has a blank role.
        InvalidSequenceError: Sequences are not 1..N.
    """
    if not routing:
        raise EmptyRoutingError(subject_ref)

    for step in routing:
        if not step.role or not step.role.strip():
            raise MissingRoleError(step.sequence)

    sequences = sorted(step.sequence for step in routing)
    if sequences[0] < 1:
        raise InvalidSequenceError(sequences, "sequences must start at 1")
    if len(set(sequences)) != len(sequences):
        raise InvalidSequenceError(sequences, "duplicate sequence numbers")
    if sequences != list(range(1, len(sequences) + 1)):
        raise InvalidSequenceError(sequences, "sequence numbers have gaps")


def compute_cutoff_date(due_date: date, lead_time_days: int | None) -> date:
    """Deadline after which the pending step is force-advanced.

    ``None`` lead time means the default of five days.
    """
    if lead_time_days is None:
        lead_time_days = DEFAULT_LEAD_TIME_DAYS
    if lead_time_days < 0:
        raise ValueError(f"lead_time_days must be >= 0, got {lead_time_days}")
    return due_date - timedelta(days=lead_time_days)


def is_past_cutoff(cutoff_date: date, today: date) -> bool:
    """True once the cutoff date has passed (strictly earlier than today)."""
    return cutoff_date < today


# =========================================================================
# Queries
# =========================================================================


def ordered(steps: Iterable[WorkflowStep]) -> list[WorkflowStep]:
    return sorted(steps, key=lambda s: s.sequence)


def find_pending_step(steps: Iterable[WorkflowStep]) -> WorkflowStep | None:
    """Return the single ``action_pending`` step, or None.

    Raises:
        ValueError: More than one step is pending.
    """
    pending = [s for s in steps if s.status == StepStatus.ACTION_PENDING]
    if len(pending) > 1:
        raise ValueError(
            f"{len(pending)} steps are action_pending: "
            f"{sorted(s.sequence for s in pending)}"
        )
    return pending[0] if pending else None


def _acted_step(steps: Sequence[WorkflowStep], step_id: UUID) -> WorkflowStep:
    for step in steps:
        if step.step_id == step_id:
            if step.status != StepStatus.ACTION_PENDING:
                raise ValueError(
                    f"Step {step_id} is {step.status.value}, not action_pending"
                )
            return step
    raise ValueError(f"Step {step_id} is not part of this chain")


def _reopen(step: WorkflowStep, action: HistoryAction) -> StepTransition:
    return StepTransition(
        step_id=step.step_id,
        sequence=step.sequence,
        from_status=step.status,
        to_status=StepStatus.ACTION_PENDING,
        action=action,
    )


def _decide(step: WorkflowStep, to_status: StepStatus, action: HistoryAction) -> StepTransition:
    return StepTransition(
        step_id=step.step_id,
        sequence=step.sequence,
        from_status=StepStatus.ACTION_PENDING,
        to_status=to_status,
        action=action,
    )


# =========================================================================
# Transitions
# =========================================================================


def activate_first(steps: Sequence[WorkflowStep]) -> SequencerOutcome:
    """Activate the sequence-1 step of a freshly created chain.

    Raises:
        ValueError: The chain is empty or a step is already active.
    """
    chain = ordered(steps)
    if not chain:
        raise ValueError("Cannot activate an empty chain")
    if any(s.status != StepStatus.INACTIVE for s in chain):
        raise ValueError("All steps must be inactive before activation")

    first = chain[0]
    return SequencerOutcome(
        transitions=(_reopen(first, HistoryAction.ACTIVATED),),
        instance_status=InstanceStatus.IN_PROGRESS,
        activated_step_id=first.step_id,
    )


def advance_on_approval(
    steps: Sequence[WorkflowStep],
    approved_step_id: UUID,
) -> SequencerOutcome:
    """Approve the pending step and activate the next higher sequence.

    The next step is activated whatever its current status, so a step
    that rejected earlier gets a fresh decision once the chain comes back
    up to it.  Approving the highest sequence completes the instance.
    """
    chain = ordered(steps)
    acted = _acted_step(chain, approved_step_id)
    decided = _decide(acted, StepStatus.APPROVED, HistoryAction.APPROVED)

    higher = [s for s in chain if s.sequence > acted.sequence]
    if not higher:
        return SequencerOutcome(
            transitions=(decided,),
            instance_status=InstanceStatus.COMPLETED,
        )

    nxt = higher[0]
    return SequencerOutcome(
        transitions=(decided, _reopen(nxt, HistoryAction.ACTIVATED)),
        instance_status=InstanceStatus.IN_PROGRESS,
        activated_step_id=nxt.step_id,
    )


def escalation_target(
    steps: Sequence[WorkflowStep],
    escalated_step_id: UUID,
) -> WorkflowStep | None:
    """The step a forced advancement would activate, or None if it completes.

    Raises:
        NoNextApproverError: Higher steps exist but none is inactive.
    """
    chain = ordered(steps)
    acted = _acted_step(chain, escalated_step_id)
    higher = [s for s in chain if s.sequence > acted.sequence]
    if not higher:
        return None
    for step in higher:
        if step.status == StepStatus.INACTIVE:
            return step
    raise NoNextApproverError(str(acted.step_id), acted.sequence)


def advance_on_escalation(
    steps: Sequence[WorkflowStep],
    escalated_step_id: UUID,
) -> SequencerOutcome:
    """Force the pending step past its deadline.

    The next step is the lowest higher sequence that is still
    ``inactive``; steps that already rejected are by-passed and never
    reopened.  Escalating the highest sequence completes the instance.

    Raises:
        NoNextApproverError: Higher steps exist but none is inactive.
    """
    chain = ordered(steps)
    acted = _acted_step(chain, escalated_step_id)
    nxt = escalation_target(chain, escalated_step_id)
    decided = _decide(acted, StepStatus.ESCALATED, HistoryAction.ESCALATED)

    if nxt is None:
        return SequencerOutcome(
            transitions=(decided,),
            instance_status=InstanceStatus.COMPLETED,
        )

    return SequencerOutcome(
        transitions=(decided, _reopen(nxt, HistoryAction.ACTIVATED)),
        instance_status=InstanceStatus.IN_PROGRESS,
        activated_step_id=nxt.step_id,
    )


def revert_on_rejection(
    steps: Sequence[WorkflowStep],
    rejected_step_id: UUID,
) -> SequencerOutcome:
    """Reject the pending step and push the chain back one approver.

    The target is the highest lower sequence that passed (approved or
    escalated).  If every step of the chain is now rejected, or nothing
    below passed, the instance is cancelled.  Higher steps keep their
    status.
    """
    chain = ordered(steps)
    acted = _acted_step(chain, rejected_step_id)
    decided = _decide(acted, StepStatus.REJECTED, HistoryAction.REJECTED)

    others = [s for s in chain if s.step_id != acted.step_id]
    if all(s.status == StepStatus.REJECTED for s in others):
        return SequencerOutcome(
            transitions=(decided,),
            instance_status=InstanceStatus.CANCELLED,
        )

    passed = [
        s for s in chain
        if s.sequence < acted.sequence and s.status in PASSED_STEP_STATUSES
    ]
    if not passed:
        return SequencerOutcome(
            transitions=(decided,),
            instance_status=InstanceStatus.CANCELLED,
        )

    target = passed[-1]
    return SequencerOutcome(
        transitions=(decided, _reopen(target, HistoryAction.REVERTED)),
        instance_status=InstanceStatus.IN_PROGRESS,
        activated_step_id=target.step_id,
    )


def apply_outcome(
    steps: Sequence[WorkflowStep],
    outcome: SequencerOutcome,
) -> list[WorkflowStep]:
    """Return the chain with ``outcome`` applied (used by property tests and replays)."""
    changes = {t.step_id: t.to_status for t in outcome.transitions}
    return [
        replace(s, status=changes[s.step_id]) if s.step_id in changes else s
        for s in ordered(steps)
    ]

"""
Hypothesis property tests for the pure sequencer.

Drives randomly sized chains through random sequences of approve, reject
and escalate actions on whatever step is pending, and checks after every
transition:
- exactly one pending step while the instance is in progress, none after
- approval and escalation only activate a higher sequence
- completion happens iff the highest step is approved or escalated
- cancellation only follows a rejection
- escalation never reopens a rejected step
"""

from __future__ import annotations

from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.sequencer import (
    activate_first,
    advance_on_approval,
    advance_on_escalation,
    apply_outcome,
    find_pending_step,
    revert_on_rejection,
)
from approval_kernel.domain.workflow import (
    STEP_TRANSITIONS,
    InstanceStatus,
    SequencerOutcome,
    StepStatus,
    WorkflowStep,
)
from approval_kernel.exceptions import NoNextApproverError

_ACTIONS = {
    "approve": advance_on_approval,
    "reject": revert_on_rejection,
    "escalate": advance_on_escalation,
}


def _fresh_chain(length: int) -> list[WorkflowStep]:
    instance_id = uuid4()
    chain = [
        WorkflowStep(
            step_id=uuid4(),
            instance_id=instance_id,
            sequence=i,
            role=f"role_{i}",
            status=StepStatus.INACTIVE,
        )
        for i in range(1, length + 1)
    ]
    return apply_outcome(chain, activate_first(chain))


def _act(name: str, chain: list[WorkflowStep], step_id) -> SequencerOutcome | None:
    """Apply one action; None when an escalation has nowhere to go."""
    try:
        return _ACTIONS[name](chain, step_id)
    except NoNextApproverError:
        assert name == "escalate"
        return None


chain_lengths = st.integers(min_value=1, max_value=6)
action_runs = st.lists(st.sampled_from(sorted(_ACTIONS)), min_size=1, max_size=40)


class TestSequencerProperties:
    @settings(max_examples=300, deadline=None)
    @given(length=chain_lengths, actions=action_runs)
    def test_single_pending_step(self, length, actions):
        """Exactly one pending step while in progress, none once terminal."""
        chain = _fresh_chain(length)
        for name in actions:
            pending = find_pending_step(chain)
            outcome = _act(name, chain, pending.step_id)
            if outcome is None:
                continue
            chain = apply_outcome(chain, outcome)

            pending_count = sum(s.status == StepStatus.ACTION_PENDING for s in chain)
            if outcome.is_terminal:
                assert pending_count == 0
                break
            assert pending_count == 1
            assert find_pending_step(chain).step_id == outcome.activated_step_id

    @settings(max_examples=300, deadline=None)
    @given(length=chain_lengths, actions=action_runs)
    def test_forward_actions_are_monotonic(self, length, actions):
        """Approval and escalation move up; rejection moves down."""
        chain = _fresh_chain(length)
        for name in actions:
            pending = find_pending_step(chain)
            outcome = _act(name, chain, pending.step_id)
            if outcome is None:
                continue
            if outcome.activated_step_id is not None:
                activated = next(s for s in chain if s.step_id == outcome.activated_step_id)
                if name == "reject":
                    assert activated.sequence < pending.sequence
                else:
                    assert activated.sequence > pending.sequence
            chain = apply_outcome(chain, outcome)
            if outcome.is_terminal:
                break

    @settings(max_examples=300, deadline=None)
    @given(length=chain_lengths, actions=action_runs)
    def test_completion_exactness(self, length, actions):
        """Completion happens iff the highest step passes."""
        chain = _fresh_chain(length)
        for name in actions:
            pending = find_pending_step(chain)
            outcome = _act(name, chain, pending.step_id)
            if outcome is None:
                continue
            is_last = pending.sequence == length
            completes = outcome.instance_status == InstanceStatus.COMPLETED

            assert completes == (is_last and name in ("approve", "escalate"))
            if outcome.instance_status == InstanceStatus.CANCELLED:
                assert name == "reject"

            chain = apply_outcome(chain, outcome)
            if outcome.is_terminal:
                break

    @settings(max_examples=200, deadline=None)
    @given(length=chain_lengths, actions=action_runs)
    def test_every_transition_is_legal(self, length, actions):
        """Every emitted transition is allowed by the status table."""
        chain = _fresh_chain(length)
        for name in actions:
            pending = find_pending_step(chain)
            outcome = _act(name, chain, pending.step_id)
            if outcome is None:
                continue
            for transition in outcome.transitions:
                assert transition.to_status in STEP_TRANSITIONS[transition.from_status]
            assert outcome.transitions[0].step_id == pending.step_id
            chain = apply_outcome(chain, outcome)
            if outcome.is_terminal:
                break

    @settings(max_examples=300, deadline=None)
    @given(length=chain_lengths, actions=action_runs)
    def test_escalation_never_reopens_rejected(self, length, actions):
        """Escalation only activates inactive steps."""
        chain = _fresh_chain(length)
        for name in actions:
            pending = find_pending_step(chain)
            outcome = _act(name, chain, pending.step_id)
            if outcome is None:
                higher = [s for s in chain if s.sequence > pending.sequence]
                assert higher
                assert all(s.status == StepStatus.REJECTED for s in higher)
                continue
            if name == "escalate" and outcome.activated_step_id is not None:
                activated = next(s for s in chain if s.step_id == outcome.activated_step_id)
                assert activated.status == StepStatus.INACTIVE
            chain = apply_outcome(chain, outcome)
            if outcome.is_terminal:
                break

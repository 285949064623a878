"""
Tests for DecisionProcessor -- the transactional decision core.

Validates preconditions (pending step, in-progress instance, role held),
the approve / reject / escalate consequences, history written per status
change, notifications, and that completion side effects never revert a
completed instance.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from approval_kernel.domain.notifications import NotificationEvent, RecordingNotifier
from approval_kernel.domain.workflow import (
    AssigneeKind,
    DecisionAction,
    DecisionOutcome,
    HistoryAction,
    InstanceStatus,
    StepStatus,
)
from approval_kernel.exceptions import (
    InstanceNotInProgressError,
    NoNextApproverError,
    StaleStepError,
    StepNotFoundError,
    UnauthorizedActorError,
    WorkflowNotFoundError,
)
from approval_kernel.models.execution_record import ExecutionRecordModel
from approval_kernel.services.decision_processor import (
    SYSTEM_ESCALATION_ACTOR,
    DecisionProcessor,
)
from approval_kernel.services.notification_dispatcher import NotificationDispatcher
from tests.conftest import ROLE_A, ROLE_B, ROLE_C, TEST_CREATOR, as_utc


def _approve(processor, snapshot, sequence, actor, notes=None):
    return processor.submit_decision(
        snapshot.instance.instance_id,
        snapshot.step(sequence).step_id,
        DecisionAction.APPROVE,
        actor,
        notes,
    )


def _reject(processor, snapshot, sequence, actor, notes=None):
    return processor.submit_decision(
        snapshot.instance.instance_id,
        snapshot.step(sequence).step_id,
        DecisionAction.REJECT,
        actor,
        notes,
    )


def _record_count(session) -> int:
    return session.execute(select(func.count(ExecutionRecordModel.id))).scalar_one()


class TestApprove:
    def test_approval_activates_next_step(self, create_instance, decision_processor, reload):
        """Approval decides step 1 and activates step 2."""
        snapshot = create_instance()

        result = _approve(decision_processor, snapshot, 1, "alice", "looks fine")

        assert result.is_ok
        assert result.outcome == DecisionOutcome.OK
        assert result.activated_step_id == snapshot.step(2).step_id
        assert result.instance_status == InstanceStatus.IN_PROGRESS

        after = reload(snapshot.instance.instance_id)
        assert after.step(1).status == StepStatus.APPROVED
        assert after.step(1).decided_by == "alice"
        assert after.step(1).notes == "looks fine"
        assert after.step(1).decided_at is not None
        assert after.pending_step.sequence == 2

    def test_approval_writes_one_entry_per_change(self, create_instance, decision_processor, reload):
        """One history entry per status change."""
        snapshot = create_instance()
        _approve(decision_processor, snapshot, 1, "alice")

        history = reload(snapshot.instance.instance_id).history
        assert [h.action for h in history] == [
            HistoryAction.INITIATED,
            HistoryAction.ACTIVATED,
            HistoryAction.APPROVED,
            HistoryAction.ACTIVATED,
        ]
        assert history[2].actor == "alice"
        assert history[2].from_status == "action_pending"
        assert history[2].to_status == "approved"
        assert history[3].step_id == snapshot.step(2).step_id

    def test_action_accepts_plain_string(self, create_instance, decision_processor):
        """Actions may be passed as plain strings."""
        snapshot = create_instance()
        result = decision_processor.submit_decision(
            snapshot.instance.instance_id, snapshot.step(1).step_id, "approve", "amir",
        )
        assert result.is_ok

    def test_next_role_is_notified(self, create_instance, decision_processor, notifier):
        """The next role hears that its step is waiting."""
        snapshot = create_instance()
        notifier.sent.clear()

        _approve(decision_processor, snapshot, 1, "alice")

        sent = notifier.for_event(NotificationEvent.STEP_ACTIVATED)
        assert [(r.kind, r.value) for r, _ in sent] == [(AssigneeKind.ROLE, ROLE_B)]


class TestCompletion:
    def test_last_approval_completes_and_creates_record(
        self, session, create_instance, decision_processor, reload,
    ):
        """Final approval completes the instance and runs the side effect."""
        snapshot = create_instance()
        _approve(decision_processor, snapshot, 1, "alice")
        _approve(decision_processor, snapshot, 2, "bob")
        result = _approve(decision_processor, snapshot, 3, "carol")

        assert result.instance_status == InstanceStatus.COMPLETED
        assert result.activated_step_id is None
        assert result.completion is not None
        assert result.completion.created
        assert result.completion.record.record_type == "maintenance_job"
        assert result.completion_error is None

        after = reload(snapshot.instance.instance_id)
        assert after.instance.status == InstanceStatus.COMPLETED
        assert after.instance.resolved_at is not None
        assert after.pending_step is None
        assert after.history[-1].action == HistoryAction.COMPLETED
        assert after.history[-1].step_id is None
        assert _record_count(session) == 1

    def test_completion_notifies_creator_and_responsible_role(
        self, create_instance, decision_processor, notifier,
    ):
        """Completion reaches the creator and the responsible role."""
        snapshot = create_instance(roles=(ROLE_A,))
        _approve(decision_processor, snapshot, 1, "alice")

        recipients = {
            (r.kind, r.value)
            for r, _ in notifier.for_event(NotificationEvent.WORKFLOW_COMPLETED)
        }
        assert (AssigneeKind.ACTOR, TEST_CREATOR) in recipients
        assert (AssigneeKind.ROLE, ROLE_B) in recipients

    def test_completion_failure_keeps_instance_completed(
        self, session, create_instance, role_directory, audit_trail, deterministic_clock, reload,
    ):
        """A failing side effect is reported but never reverts completion."""
        class BrokenHandler:
            def on_completed(self, instance):
                raise RuntimeError("work order system unavailable")

        processor = DecisionProcessor(
            session,
            role_directory,
            audit_trail=audit_trail,
            completion_handler=BrokenHandler(),
            clock=deterministic_clock,
        )
        snapshot = create_instance(roles=(ROLE_A,))

        result = _approve(processor, snapshot, 1, "alice")

        assert result.is_ok
        assert result.instance_status == InstanceStatus.COMPLETED
        assert result.completion is None
        assert "work order system unavailable" in result.completion_error
        assert reload(snapshot.instance.instance_id).instance.status == InstanceStatus.COMPLETED

    def test_without_handler_no_record(self, session, create_instance, role_directory, audit_trail):
        """No handler, no execution record."""
        processor = DecisionProcessor(session, role_directory, audit_trail=audit_trail)
        snapshot = create_instance(roles=(ROLE_A,))

        result = _approve(processor, snapshot, 1, "alice")

        assert result.instance_status == InstanceStatus.COMPLETED
        assert result.completion is None
        assert _record_count(session) == 0


class TestReject:
    def test_rejection_pushes_back_to_previous_approver(
        self, create_instance, decision_processor, reload, notifier,
    ):
        """Rejection reopens the previous approver's step."""
        snapshot = create_instance()
        _approve(decision_processor, snapshot, 1, "alice", "ok")
        notifier.sent.clear()

        result = _reject(decision_processor, snapshot, 2, "bob", "missing quote")

        assert result.activated_step_id == snapshot.step(1).step_id
        after = reload(snapshot.instance.instance_id)
        assert after.step(1).status == StepStatus.ACTION_PENDING
        assert after.step(1).decided_by is None
        assert after.step(1).notes is None
        assert after.step(2).status == StepStatus.REJECTED
        assert after.step(2).notes == "missing quote"
        assert after.step(3).status == StepStatus.INACTIVE
        assert [h.action for h in after.history][-2:] == [
            HistoryAction.REJECTED,
            HistoryAction.REVERTED,
        ]

        reverted = notifier.for_event(NotificationEvent.STEP_REVERTED)
        assert [r.value for r, _ in reverted] == [ROLE_A]

    def test_rejecting_first_step_cancels(
        self, session, create_instance, decision_processor, reload, notifier,
    ):
        """Rejecting step 1 cancels the instance."""
        snapshot = create_instance()

        result = _reject(decision_processor, snapshot, 1, "alice")

        assert result.instance_status == InstanceStatus.CANCELLED
        after = reload(snapshot.instance.instance_id)
        assert after.instance.status == InstanceStatus.CANCELLED
        assert after.pending_step is None
        assert after.history[-1].action == HistoryAction.CANCELLED
        assert _record_count(session) == 0
        assert notifier.for_event(NotificationEvent.WORKFLOW_CANCELLED)

    def test_reapproval_reactivates_rejecting_step(
        self, create_instance, decision_processor, reload,
    ):
        """After push-back, re-approval hands the chain back up."""
        snapshot = create_instance()
        _approve(decision_processor, snapshot, 1, "alice")
        _reject(decision_processor, snapshot, 2, "bob")
        _approve(decision_processor, snapshot, 1, "alice")

        after = reload(snapshot.instance.instance_id)
        assert after.step(2).status == StepStatus.ACTION_PENDING
        assert after.step(1).status == StepStatus.APPROVED


class TestPreconditions:
    def test_actor_without_role_is_unauthorized(
        self, create_instance, decision_processor, reload, captured_logs,
    ):
        """The actor must hold the step's role."""
        snapshot = create_instance()

        with pytest.raises(UnauthorizedActorError) as exc_info:
            _approve(decision_processor, snapshot, 1, "bob")
        assert exc_info.value.code == "UNAUTHORIZED"
        assert exc_info.value.required_role == ROLE_A

        after = reload(snapshot.instance.instance_id)
        assert after.step(1).status == StepStatus.ACTION_PENDING
        assert len(after.history) == len(snapshot.history)
        assert any(r["message"] == "decision_unauthorized" for r in captured_logs())

    def test_revoked_role_applies_to_next_attempt(
        self, create_instance, decision_processor, role_directory,
    ):
        """Role changes are seen on the next decision."""
        snapshot = create_instance()
        role_directory.revoke("alice", ROLE_A)

        with pytest.raises(UnauthorizedActorError):
            _approve(decision_processor, snapshot, 1, "alice")

        role_directory.grant("alice", ROLE_A)
        assert _approve(decision_processor, snapshot, 1, "alice").is_ok

    def test_deciding_inactive_step_is_stale(self, create_instance, decision_processor):
        """Only the pending step can be decided."""
        snapshot = create_instance()

        with pytest.raises(StaleStepError) as exc_info:
            _approve(decision_processor, snapshot, 2, "bob")
        assert exc_info.value.current_status == "inactive"

    def test_deciding_twice_is_stale(self, create_instance, decision_processor):
        """The second decision on a step is stale."""
        snapshot = create_instance()
        _approve(decision_processor, snapshot, 1, "alice")

        with pytest.raises(StaleStepError):
            _approve(decision_processor, snapshot, 1, "amir")

    def test_unknown_instance(self, decision_processor):
        """Unknown instance ids raise WorkflowNotFoundError."""
        with pytest.raises(WorkflowNotFoundError):
            decision_processor.submit_decision(uuid4(), uuid4(), "approve", "alice")

    def test_step_from_other_instance(self, create_instance, decision_processor):
        """A step of another instance is not found here."""
        first = create_instance()
        second = create_instance()

        with pytest.raises(StepNotFoundError):
            decision_processor.submit_decision(
                first.instance.instance_id,
                second.step(1).step_id,
                "approve",
                "alice",
            )

    def test_terminal_instance_rejects_decisions(self, create_instance, decision_processor):
        """Decisions on a finished instance are refused."""
        snapshot = create_instance(roles=(ROLE_A, ROLE_B))
        _reject(decision_processor, snapshot, 1, "alice")

        with pytest.raises(InstanceNotInProgressError):
            _approve(decision_processor, snapshot, 1, "alice")

    def test_unknown_action(self, create_instance, decision_processor):
        """Only approve and reject are accepted."""
        snapshot = create_instance()
        with pytest.raises(ValueError):
            decision_processor.submit_decision(
                snapshot.instance.instance_id, snapshot.step(1).step_id, "escalate", "alice",
            )


class TestNotificationFailure:
    def test_notifier_failure_does_not_unwind_decision(
        self, session, create_instance, role_directory, audit_trail, deterministic_clock,
        reload, captured_logs,
    ):
        """A notifier that raises is logged; the decision stands."""
        class ExplodingNotifier:
            def notify(self, recipient, event, context):
                raise ConnectionError("push gateway down")

        processor = DecisionProcessor(
            session,
            role_directory,
            audit_trail=audit_trail,
            dispatcher=NotificationDispatcher(ExplodingNotifier()),
            clock=deterministic_clock,
        )
        snapshot = create_instance()

        result = _approve(processor, snapshot, 1, "alice")

        assert result.is_ok
        assert reload(snapshot.instance.instance_id).pending_step.sequence == 2
        assert any(r["message"] == "notification_dispatch_failed" for r in captured_logs())

    def test_refused_executor_does_not_unwind_decision(
        self, session, create_instance, role_directory, audit_trail, deterministic_clock,
        reload, captured_logs,
    ):
        """An executor that is already shut down behaves like a failed delivery."""
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        processor = DecisionProcessor(
            session,
            role_directory,
            audit_trail=audit_trail,
            dispatcher=NotificationDispatcher(RecordingNotifier(), executor=executor),
            clock=deterministic_clock,
        )
        snapshot = create_instance()

        result = _approve(processor, snapshot, 1, "alice")

        assert result.is_ok
        after = reload(snapshot.instance.instance_id)
        assert after.step(1).status == StepStatus.APPROVED
        assert after.pending_step.sequence == 2
        failures = [r for r in captured_logs() if r["message"] == "notification_dispatch_failed"]
        assert failures
        assert failures[0]["exc_type"] == "RuntimeError"


class TestForceEscalate:
    def test_escalation_skips_role_check(self, create_instance, decision_processor, reload):
        """The system actor escalates without holding the role."""
        snapshot = create_instance()

        result = decision_processor.force_escalate(
            snapshot.instance.instance_id, snapshot.step(1).step_id,
        )

        assert result.is_ok
        after = reload(snapshot.instance.instance_id)
        assert after.step(1).status == StepStatus.ESCALATED
        assert after.step(1).decided_by == SYSTEM_ESCALATION_ACTOR
        assert after.instance.escalated_at is not None
        assert after.pending_step.sequence == 2
        assert after.history[-2].action == HistoryAction.ESCALATED

    def test_escalating_last_step_completes(self, session, create_instance, decision_processor):
        """Forcing the last step completes the instance and its record."""
        snapshot = create_instance(roles=(ROLE_C,))

        result = decision_processor.force_escalate(
            snapshot.instance.instance_id, snapshot.step(1).step_id,
        )

        assert result.instance_status == InstanceStatus.COMPLETED
        assert result.completion.created
        assert _record_count(session) == 1

    def test_explicit_now_stamps_the_escalation(self, create_instance, decision_processor, reload):
        """The sweep's as-of time is recorded, not the processor clock."""
        snapshot = create_instance()
        as_of = datetime(2024, 3, 27, 6, 0, tzinfo=timezone.utc)

        decision_processor.force_escalate(
            snapshot.instance.instance_id, snapshot.step(1).step_id, now=as_of,
        )

        after = reload(snapshot.instance.instance_id)
        assert as_utc(after.step(1).decided_at) == as_of
        assert as_utc(after.instance.escalated_at) == as_of
        assert as_utc(after.history[-1].timestamp) == as_of
        assert as_utc(after.history[-2].timestamp) == as_of

    def test_no_inactive_higher_step_changes_nothing(
        self, session, create_instance, decision_processor, reload,
    ):
        """Rejected higher steps are never reopened by a forced advancement."""
        snapshot = create_instance()
        _approve(decision_processor, snapshot, 1, "alice")
        _approve(decision_processor, snapshot, 2, "bob")
        _reject(decision_processor, snapshot, 3, "carol")
        _reject(decision_processor, snapshot, 2, "bob")
        before = reload(snapshot.instance.instance_id)
        assert [s.status for s in before.steps] == [
            StepStatus.ACTION_PENDING, StepStatus.REJECTED, StepStatus.REJECTED,
        ]

        with pytest.raises(NoNextApproverError) as exc_info:
            decision_processor.force_escalate(
                snapshot.instance.instance_id, snapshot.step(1).step_id,
            )

        assert exc_info.value.sequence == 1
        after = reload(snapshot.instance.instance_id)
        assert after.steps == before.steps
        assert after.history == before.history
        assert after.instance.escalated_at is None


class TestDecisionLogging:
    def test_decision_log_carries_context(self, create_instance, decision_processor, captured_logs):
        """Decision logs carry instance, step and actor."""
        snapshot = create_instance()
        _approve(decision_processor, snapshot, 1, "alice")

        recorded = [r for r in captured_logs() if r["message"] == "decision_recorded"]
        assert len(recorded) == 1
        assert recorded[0]["instance_id"] == str(snapshot.instance.instance_id)
        assert recorded[0]["actor"] == "alice"
        assert recorded[0]["action"] == "approve"

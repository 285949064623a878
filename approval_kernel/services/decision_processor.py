"""
approval_kernel.services.decision_processor -- Transactional decision core.

Responsibility:
    Applies an APPROVE or REJECT from a human approver, or a forced
    ESCALATE from the sweeper, to the pending step of an instance, then
    applies the sequencer's consequences, writes history, requests
    notifications and runs the completion side effect.

Architecture position:
    Kernel > Services.  May import from domain/, models/, and the pure
    sequencer in approval_engines.

Invariants enforced:
    - Compare-and-swap: the ``action_pending -> decided`` change is one
      conditional UPDATE (``WHERE id = :step AND status = 'action_pending'``).
      Exactly one of several concurrent writers (humans or the sweeper)
      matches a row; the others get StaleStepError and change nothing.
    - Fresh chain: after winning the CAS the chain is re-read from the
      database, so the sequencer never works on a stale identity map.
    - One history entry per status change, including the instance's
      terminal transition.
    - Completion is isolated: the side effect runs in a SAVEPOINT; its
      failure is logged and reported, and the instance stays completed.

Failure modes:
    - WorkflowNotFoundError / StepNotFoundError -- unknown ids.
    - InstanceNotInProgressError -- instance already terminal.
    - StaleStepError -- step not pending, or the CAS lost a race.
    - UnauthorizedActorError -- actor does not hold the step's role.
    - NoNextApproverError -- escalation found no inactive higher step;
      raised before the step is touched.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_engines.sequencer import (
    advance_on_approval,
    advance_on_escalation,
    escalation_target,
    revert_on_rejection,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.roles import RoleDirectory, actor_holds_role
from approval_kernel.domain.workflow import (
    CompletionOutcome,
    DecisionAction,
    DecisionOutcome,
    DecisionResult,
    HistoryAction,
    InstanceStatus,
    SequencerOutcome,
    StepStatus,
    WorkflowStep,
)
from approval_kernel.exceptions import (
    InstanceNotInProgressError,
    StaleStepError,
    StepNotFoundError,
    UnauthorizedActorError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.workflow import (
    WorkflowInstanceModel,
    WorkflowStepModel,
)
from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.completion_handler import CompletionHandler
from approval_kernel.services.notification_dispatcher import NotificationDispatcher

logger = get_logger("services.decision")

SYSTEM_ESCALATION_ACTOR = "system:escalation"

_DECISION_STATUS = {
    DecisionAction.APPROVE: StepStatus.APPROVED,
    DecisionAction.REJECT: StepStatus.REJECTED,
}


class DecisionProcessor:
    """Applies decisions and escalations to approval chains.

    Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        role_directory: RoleDirectory,
        audit_trail: AuditTrail | None = None,
        dispatcher: NotificationDispatcher | None = None,
        completion_handler: CompletionHandler | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._roles = role_directory
        self._clock = clock or SystemClock()
        self._audit = audit_trail or AuditTrail(session, self._clock)
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._completion = completion_handler

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def submit_decision(
        self,
        instance_id: UUID,
        step_id: UUID,
        action: DecisionAction | str,
        actor: str,
        notes: str | None = None,
    ) -> DecisionResult:
        """Record a human APPROVE or REJECT on the instance's pending step."""
        action = DecisionAction(action)
        with LogContext.bind(
            instance_id=str(instance_id), step_id=str(step_id), actor=actor,
        ):
            instance, step = self._load_pending(instance_id, step_id)

            if not actor_holds_role(self._roles, actor, step.role):
                logger.warning(
                    "decision_unauthorized",
                    extra={"required_role": step.role, "action": action.value},
                )
                raise UnauthorizedActorError(actor, step.role, str(step_id))

            result = self._transition(
                instance, step, _DECISION_STATUS[action], actor, notes,
            )
            logger.info(
                "decision_recorded",
                extra={
                    "action": action.value,
                    "instance_status": result.instance_status.value,
                    "activated_step_id": (
                        str(result.activated_step_id)
                        if result.activated_step_id else None
                    ),
                },
            )
            return result

    def force_escalate(
        self,
        instance_id: UUID,
        step_id: UUID,
        actor: str = SYSTEM_ESCALATION_ACTOR,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> DecisionResult:
        """Force the pending step forward past its deadline.

        Shares the CAS with ``submit_decision``; a human decision that
        lands first makes this raise StaleStepError.  ``now`` stamps the
        step, the history and ``escalated_at`` (default: the clock).
        """
        with LogContext.bind(
            instance_id=str(instance_id), step_id=str(step_id), actor=actor,
        ):
            instance, step = self._load_pending(instance_id, step_id)
            escalation_target(self._chain(instance_id), step.id)
            result = self._transition(
                instance, step, StepStatus.ESCALATED, actor, notes, now,
            )
            logger.info(
                "step_escalated",
                extra={
                    "sequence": step.sequence,
                    "role": step.role,
                    "instance_status": result.instance_status.value,
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load_pending(
        self, instance_id: UUID, step_id: UUID,
    ) -> tuple[WorkflowInstanceModel, WorkflowStepModel]:
        instance = self._session.get(WorkflowInstanceModel, instance_id)
        if instance is None:
            raise WorkflowNotFoundError(str(instance_id))

        step = self._session.get(WorkflowStepModel, step_id)
        if step is None or step.instance_id != instance_id:
            raise StepNotFoundError(str(instance_id), str(step_id))

        if instance.status != InstanceStatus.IN_PROGRESS.value:
            raise InstanceNotInProgressError(str(instance_id), instance.status)
        if step.status != StepStatus.ACTION_PENDING.value:
            raise StaleStepError(str(step_id), step.status)
        return instance, step

    def _chain(self, instance_id: UUID) -> list[WorkflowStep]:
        models = self._session.execute(
            select(WorkflowStepModel)
            .where(WorkflowStepModel.instance_id == instance_id)
            .order_by(WorkflowStepModel.sequence)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def _compare_and_swap(
        self,
        step_id: UUID,
        to_status: StepStatus,
        actor: str,
        notes: str | None,
        now: datetime,
    ) -> None:
        result = self._session.execute(
            update(WorkflowStepModel)
            .where(
                WorkflowStepModel.id == step_id,
                WorkflowStepModel.status == StepStatus.ACTION_PENDING.value,
            )
            .values(
                status=to_status.value,
                decided_by=actor,
                decided_at=now,
                notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self._session.execute(
                select(WorkflowStepModel.status).where(
                    WorkflowStepModel.id == step_id,
                )
            ).scalar_one_or_none()
            logger.info(
                "decision_lost_race",
                extra={"attempted_status": to_status.value, "current_status": current},
            )
            raise StaleStepError(str(step_id), current)

    def _fresh_chain(
        self, instance_id: UUID,
    ) -> tuple[WorkflowInstanceModel, list[WorkflowStepModel]]:
        instance = self._session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        steps = list(self._session.execute(
            select(WorkflowStepModel)
            .where(WorkflowStepModel.instance_id == instance_id)
            .order_by(WorkflowStepModel.sequence)
            .execution_options(populate_existing=True)
        ).scalars().all())
        return instance, steps

    def _transition(
        self,
        instance: WorkflowInstanceModel,
        step: WorkflowStepModel,
        to_status: StepStatus,
        actor: str,
        notes: str | None,
        now: datetime | None = None,
    ) -> DecisionResult:
        now = now or self._clock.now()
        instance_id, step_id = instance.id, step.id

        self._compare_and_swap(step_id, to_status, actor, notes, now)

        instance, steps = self._fresh_chain(instance_id)

        # The chain as it stood when the CAS matched.
        before: list[WorkflowStep] = []
        for model in steps:
            dto = model.to_dto()
            if model.id == step_id:
                dto = replace(dto, status=StepStatus.ACTION_PENDING)
            before.append(dto)

        outcome = self._sequence(before, step_id, to_status)
        self._apply(instance, steps, outcome, actor, notes, now)

        instance_dto = instance.to_dto()
        self._dispatcher.dispatch_outcome(
            instance_dto, [m.to_dto() for m in steps], outcome, actor,
        )

        completion, completion_error = None, None
        if outcome.instance_status == InstanceStatus.COMPLETED:
            completion, completion_error = self._run_completion(instance)

        return DecisionResult(
            outcome=DecisionOutcome.OK,
            instance_id=instance_id,
            step_id=step_id,
            action=to_status.value,
            instance_status=outcome.instance_status,
            activated_step_id=outcome.activated_step_id,
            completion=completion,
            completion_error=completion_error,
        )

    @staticmethod
    def _sequence(
        before: list[WorkflowStep], step_id: UUID, to_status: StepStatus,
    ) -> SequencerOutcome:
        if to_status == StepStatus.APPROVED:
            return advance_on_approval(before, step_id)
        if to_status == StepStatus.REJECTED:
            return revert_on_rejection(before, step_id)
        return advance_on_escalation(before, step_id)

    def _apply(
        self,
        instance: WorkflowInstanceModel,
        steps: list[WorkflowStepModel],
        outcome: SequencerOutcome,
        actor: str,
        notes: str | None,
        now: datetime,
    ) -> None:
        by_id = {m.id: m for m in steps}
        decided, *consequences = outcome.transitions

        self._audit.record(
            instance.id,
            decided.action,
            actor,
            step_id=decided.step_id,
            from_status=decided.from_status,
            to_status=decided.to_status,
            notes=notes,
            timestamp=now,
        )

        for transition in consequences:
            model = by_id[transition.step_id]
            model.status = transition.to_status.value
            model.decided_by = None
            model.decided_at = None
            model.notes = None
            self._session.flush()
            self._audit.record(
                instance.id,
                transition.action,
                actor,
                step_id=transition.step_id,
                from_status=transition.from_status,
                to_status=transition.to_status,
                timestamp=now,
            )

        if decided.action == HistoryAction.ESCALATED and instance.escalated_at is None:
            instance.escalated_at = now

        if outcome.is_terminal:
            instance.status = outcome.instance_status.value
            instance.resolved_at = now
            terminal_action = (
                HistoryAction.COMPLETED
                if outcome.instance_status == InstanceStatus.COMPLETED
                else HistoryAction.CANCELLED
            )
            self._audit.record(
                instance.id,
                terminal_action,
                actor,
                from_status=InstanceStatus.IN_PROGRESS.value,
                to_status=outcome.instance_status.value,
                timestamp=now,
            )
            logger.info(
                "workflow_instance_resolved",
                extra={"instance_status": outcome.instance_status.value},
            )

        self._session.flush()

    def _run_completion(
        self, instance: WorkflowInstanceModel,
    ) -> tuple[CompletionOutcome | None, str | None]:
        if self._completion is None:
            return None, None
        try:
            with self._session.begin_nested():
                return self._completion.on_completed(instance.to_dto()), None
        except Exception as exc:
            logger.exception(
                "completion_side_effect_failed",
                extra={"workflow_type": instance.workflow_type},
            )
            return None, f"{type(exc).__name__}: {exc}"

"""
approval_services.engine -- WorkflowEngine, the public approval surface.

Responsibility:
    Creates every service exactly once for a session and exposes the four
    engine operations: ``create_instance``, ``submit_decision``,
    ``get_instance`` and ``run_escalation_sweep``.  Workflow types are
    resolved through the active configuration, so callers can rely on the
    configured routing chain and default lead time.

Architecture position:
    Services -- composes approval_kernel, approval_batch and
    approval_config.  The single point of dependency injection.

Invariants enforced:
    - ``submit_decision`` never raises for the expected workflow outcomes;
      unauthorized, stale and unknown-id failures come back as a
      ``DecisionResult`` carrying the outcome and error code.
    - A failed decision is rolled back to a SAVEPOINT, so the caller's
      transaction is never left half-written.
    - Notifications are delivered only once the caller commits.

Non-goals:
    - Does NOT commit.  Callers own the transaction (``session_scope``).

Usage:
    with session_scope() as session:
        engine = WorkflowEngine(session, get_active_config(), directory)
        instance_id = engine.create_instance(
            "asset:PUMP-7", due_date, None,
            workflow_type="maintenance", created_by="planner",
        )
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Executor
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from approval_batch.completion_retry import CompletionRetrier, CompletionRetrySummary
from approval_batch.sweeper import EscalationSweeper
from approval_batch.triggers import DueSubjectSource, InstanceTrigger, TriggerSummary
from approval_config.bridges import build_completion_registry, routing_for
from approval_config.schema import ApprovalConfigurationSet
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.notifications import Notifier, SubjectLookup
from approval_kernel.domain.roles import RoleDirectory
from approval_kernel.domain.workflow import (
    DecisionAction,
    DecisionOutcome,
    DecisionResult,
    RoutingStep,
    SweepSummary,
    WorkflowSnapshot,
)
from approval_kernel.exceptions import (
    InstanceNotInProgressError,
    StaleStepError,
    StepNotFoundError,
    UnauthorizedActorError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.completion_handler import ExecutionRecordCompletionHandler
from approval_kernel.services.decision_processor import DecisionProcessor
from approval_kernel.services.notification_dispatcher import NotificationDispatcher
from approval_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.engine")

DEFAULT_TENANT = "default"


def _outcome_for(exc: Exception) -> DecisionOutcome:
    if isinstance(exc, UnauthorizedActorError):
        return DecisionOutcome.UNAUTHORIZED
    if isinstance(exc, (StaleStepError, InstanceNotInProgressError)):
        return DecisionOutcome.STALE_STEP
    return DecisionOutcome.NOT_FOUND


class WorkflowEngine:
    """Central factory and facade for the approval engine.

    Contract:
        Receives a Session, the active configuration and a RoleDirectory.
        Constructs every service once, sharing the session, the clock and
        the notification dispatcher.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
    """

    def __init__(
        self,
        session: Session,
        config: ApprovalConfigurationSet,
        role_directory: RoleDirectory,
        notifier: Notifier | None = None,
        subject_lookup: SubjectLookup | None = None,
        clock: Clock | None = None,
        executor: Executor | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()

        self.audit_trail = AuditTrail(session, self._clock)
        self.dispatcher = NotificationDispatcher(
            notifier, subject_lookup, executor, session=session,
        )
        self.completion_handler = ExecutionRecordCompletionHandler(
            session,
            build_completion_registry(config),
            dispatcher=self.dispatcher,
            clock=self._clock,
        )
        self.workflows = WorkflowService(
            session, self.audit_trail, self.dispatcher, self._clock,
        )
        self.processor = DecisionProcessor(
            session,
            role_directory,
            audit_trail=self.audit_trail,
            dispatcher=self.dispatcher,
            completion_handler=self.completion_handler,
            clock=self._clock,
        )
        self.sweeper = EscalationSweeper(
            session,
            self.processor,
            clock=self._clock,
            actor=config.engine.escalation_actor,
            batch_limit=config.engine.sweep_batch_limit,
        )
        self.retrier = CompletionRetrier(
            session,
            self.completion_handler,
            batch_limit=config.engine.sweep_batch_limit,
        )

    @property
    def config(self) -> ApprovalConfigurationSet:
        return self._config

    # -------------------------------------------------------------------------
    # Engine operations
    # -------------------------------------------------------------------------

    def create_instance(
        self,
        subject_ref: str,
        due_date: date,
        lead_time_days: int | None = None,
        routing_steps: Sequence[RoutingStep] | None = None,
        *,
        workflow_type: str,
        created_by: str,
        tenant_id: str = DEFAULT_TENANT,
    ) -> UUID:
        """Create a chain for ``subject_ref`` and activate its first step.

        ``lead_time_days`` and ``routing_steps`` default to the workflow
        type's configuration.
        """
        definition = self._config.workflow(workflow_type)
        if lead_time_days is None:
            lead_time_days = definition.default_lead_time_days
        if routing_steps is None:
            routing_steps = routing_for(self._config, workflow_type)

        instance = self.workflows.create_instance(
            subject_ref,
            due_date,
            lead_time_days,
            routing_steps,
            workflow_type=workflow_type,
            tenant_id=tenant_id,
            created_by=created_by,
        )
        return instance.instance_id

    def submit_decision(
        self,
        instance_id: UUID,
        step_id: UUID,
        action: DecisionAction | str,
        actor: str,
        notes: str | None = None,
    ) -> DecisionResult:
        action = DecisionAction(action)
        savepoint = self._session.begin_nested()
        try:
            result = self.processor.submit_decision(
                instance_id, step_id, action, actor, notes,
            )
        except (
            UnauthorizedActorError,
            WorkflowNotFoundError,
            StepNotFoundError,
            StaleStepError,
            InstanceNotInProgressError,
        ) as exc:
            savepoint.rollback()
            return DecisionResult(
                outcome=_outcome_for(exc),
                instance_id=instance_id,
                step_id=step_id,
                action=action.value,
                error_code=exc.code,
                message=str(exc),
            )
        except Exception:
            savepoint.rollback()
            raise
        savepoint.commit()
        return result

    def get_instance(self, instance_id: UUID) -> WorkflowSnapshot:
        """Instance header, steps and history.  Raises WorkflowNotFoundError."""
        return self.workflows.get_instance(instance_id)

    def run_escalation_sweep(self, now: datetime | None = None) -> SweepSummary:
        return self.sweeper.run(now)

    # -------------------------------------------------------------------------
    # Batch helpers
    # -------------------------------------------------------------------------

    def retry_completions(self) -> CompletionRetrySummary:
        return self.retrier.run()

    def run_triggers(
        self,
        workflow_type: str,
        source: DueSubjectSource,
        today: date | None = None,
    ) -> TriggerSummary:
        """Create chains for subjects coming due within the type's horizon."""
        definition = self._config.workflow(workflow_type)
        if definition.trigger_horizon_days is None:
            logger.info(
                "trigger_not_configured",
                extra={"workflow_type": workflow_type},
            )
            return TriggerSummary()

        trigger = InstanceTrigger(
            self._session,
            self.workflows,
            workflow_type,
            routing_for(self._config, workflow_type),
            horizon_days=definition.trigger_horizon_days,
            default_lead_time_days=definition.default_lead_time_days,
        )
        return trigger.run(source, today or self._clock.today())

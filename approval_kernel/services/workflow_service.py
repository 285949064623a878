"""
approval_kernel.services.workflow_service -- Instance creation and reads.

Responsibility:
    Creates workflow instances with their full step chain and activates
    the first step; loads instance snapshots (header, steps, history).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    sequencer in approval_engines.

Invariants enforced:
    - Fail closed: routing is validated before anything is written.
    - One in-flight chain per (tenant_id, subject_ref): checked here and
      backed by a partial unique index.
    - Cutoff date is computed once, at creation.
    - Creation writes exactly two history entries: ``initiated`` on the
      instance and ``activated`` on step 1.

Failure modes:
    - RoutingError subclasses on an invalid chain.
    - DuplicateInstanceError if the subject already has an in-flight chain.
    - WorkflowNotFoundError from ``get_instance`` on an unknown id.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_engines.sequencer import (
    activate_first,
    compute_cutoff_date,
    validate_routing,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    HistoryAction,
    InstanceStatus,
    RoutingStep,
    StepStatus,
    WorkflowInstance,
    WorkflowSnapshot,
)
from approval_kernel.exceptions import (
    DuplicateInstanceError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.workflow import (
    WorkflowInstanceModel,
    WorkflowStepModel,
)
from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.notification_dispatcher import NotificationDispatcher

logger = get_logger("services.workflow")

IN_FLIGHT_STATUSES = (InstanceStatus.INITIATED.value, InstanceStatus.IN_PROGRESS.value)


class WorkflowService:
    """Creates and reads workflow instances.

    Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        audit_trail: AuditTrail | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit_trail or AuditTrail(session, self._clock)
        self._dispatcher = dispatcher or NotificationDispatcher()

    def create_instance(
        self,
        subject_ref: str,
        due_date: date,
        lead_time_days: int | None,
        routing_steps: Sequence[RoutingStep],
        *,
        workflow_type: str,
        tenant_id: str,
        created_by: str,
    ) -> WorkflowInstance:
        """Create an instance, its steps, and activate step 1."""
        validate_routing(routing_steps, subject_ref)
        cutoff = compute_cutoff_date(due_date, lead_time_days)
        lead_time = (due_date - cutoff).days

        existing = self.find_in_flight(tenant_id, subject_ref)
        if existing is not None:
            raise DuplicateInstanceError(
                tenant_id, subject_ref, str(existing.instance_id),
            )

        now = self._clock.now()
        instance = WorkflowInstanceModel(
            tenant_id=tenant_id,
            workflow_type=workflow_type,
            subject_ref=subject_ref,
            due_date=due_date,
            lead_time_days=lead_time,
            cutoff_date=cutoff,
            status=InstanceStatus.INITIATED.value,
            created_at=now,
            created_by=created_by,
        )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(instance)
            self._session.flush()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateInstanceError(tenant_id, subject_ref) from exc
        savepoint.commit()

        with LogContext.bind(instance_id=str(instance.id), tenant_id=tenant_id):
            self._audit.record(
                instance.id,
                HistoryAction.INITIATED,
                created_by,
                to_status=InstanceStatus.INITIATED.value,
                timestamp=now,
            )

            step_models = [
                WorkflowStepModel(
                    instance_id=instance.id,
                    sequence=routing.sequence,
                    role=routing.role,
                    status=StepStatus.INACTIVE.value,
                )
                for routing in sorted(routing_steps, key=lambda r: r.sequence)
            ]
            self._session.add_all(step_models)
            self._session.flush()

            outcome = activate_first([m.to_dto() for m in step_models])
            by_id = {m.id: m for m in step_models}
            for transition in outcome.transitions:
                by_id[transition.step_id].status = transition.to_status.value
                self._audit.record(
                    instance.id,
                    transition.action,
                    created_by,
                    step_id=transition.step_id,
                    from_status=transition.from_status,
                    to_status=transition.to_status,
                    timestamp=now,
                )
            instance.status = outcome.instance_status.value
            self._session.flush()

            dto = instance.to_dto()
            self._dispatcher.dispatch_outcome(
                dto, [m.to_dto() for m in step_models], outcome, created_by,
            )

            logger.info(
                "workflow_instance_created",
                extra={
                    "workflow_type": workflow_type,
                    "subject_ref": subject_ref,
                    "step_count": len(step_models),
                    "cutoff_date": cutoff.isoformat(),
                },
            )

        return dto

    def get_instance(self, instance_id: UUID) -> WorkflowSnapshot:
        """Header, steps ordered by sequence, history ordered by entry."""
        model = self.load_instance_model(instance_id)
        steps = self._session.execute(
            select(WorkflowStepModel)
            .where(WorkflowStepModel.instance_id == instance_id)
            .order_by(WorkflowStepModel.sequence)
        ).scalars().all()
        return WorkflowSnapshot(
            instance=model.to_dto(),
            steps=tuple(s.to_dto() for s in steps),
            history=tuple(self._audit.entries_for(instance_id)),
        )

    def find_in_flight(
        self, tenant_id: str, subject_ref: str,
    ) -> WorkflowInstance | None:
        """The non-terminal instance for a subject, if any."""
        model = self._session.execute(
            select(WorkflowInstanceModel).where(
                WorkflowInstanceModel.tenant_id == tenant_id,
                WorkflowInstanceModel.subject_ref == subject_ref,
                WorkflowInstanceModel.status.in_(IN_FLIGHT_STATUSES),
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def has_completed_cycle(
        self, tenant_id: str, subject_ref: str, due_date: date,
    ) -> bool:
        """True if the subject already completed a chain for this due date."""
        found = self._session.execute(
            select(WorkflowInstanceModel.id).where(
                WorkflowInstanceModel.tenant_id == tenant_id,
                WorkflowInstanceModel.subject_ref == subject_ref,
                WorkflowInstanceModel.due_date == due_date,
                WorkflowInstanceModel.status == InstanceStatus.COMPLETED.value,
            ).limit(1)
        ).scalar_one_or_none()
        return found is not None

    def load_instance_model(self, instance_id: UUID) -> WorkflowInstanceModel:
        """Load instance model by id, raise if not found."""
        model = self._session.get(WorkflowInstanceModel, instance_id)
        if model is None:
            raise WorkflowNotFoundError(str(instance_id))
        return model

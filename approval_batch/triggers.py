"""
InstanceTrigger -- Automatic creation of approval chains for due subjects.

Contract:
    Given subjects (assets due for maintenance or inspection, vendor
    contracts ending soon) and today's date, creates one workflow instance
    per subject whose due date falls within the configured horizon.

Architecture: approval_batch.  Imports from approval_kernel services.

Invariants enforced:
    - Idempotent per subject: subjects with an in-flight chain, or a chain
      already completed for the same due date, are skipped.
    - SAVEPOINT isolation per subject.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.workflow import RoutingStep
from approval_kernel.exceptions import DuplicateInstanceError
from approval_kernel.logging_config import get_logger
from approval_kernel.services.workflow_service import WorkflowService

logger = get_logger("batch.triggers")

SYSTEM_TRIGGER_ACTOR = "system:trigger"


@dataclass(frozen=True)
class DueSubject:
    """A subject that needs an approval chain by ``due_date``."""

    tenant_id: str
    subject_ref: str
    due_date: date
    lead_time_days: int | None = None


class DueSubjectSource(Protocol):
    """Supplies subjects whose due date is on or before ``horizon_end``."""

    def due_subjects(self, horizon_end: date) -> Iterable[DueSubject]:
        ...


@dataclass(frozen=True)
class TriggerSummary:
    considered: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0
    instance_ids: tuple[UUID, ...] = field(default_factory=tuple)


class InstanceTrigger:
    """Creates instances of one workflow type for subjects coming due.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        workflow_service: WorkflowService,
        workflow_type: str,
        routing: Sequence[RoutingStep],
        horizon_days: int,
        default_lead_time_days: int | None = None,
        actor: str = SYSTEM_TRIGGER_ACTOR,
    ) -> None:
        self._session = session
        self._workflows = workflow_service
        self._workflow_type = workflow_type
        self._routing = tuple(routing)
        self._horizon_days = horizon_days
        self._default_lead_time = default_lead_time_days
        self._actor = actor

    def run(self, source: DueSubjectSource, today: date) -> TriggerSummary:
        horizon_end = today + timedelta(days=self._horizon_days)
        considered = skipped = errors = 0
        created: list[UUID] = []

        for subject in source.due_subjects(horizon_end):
            if subject.due_date > horizon_end:
                continue
            considered += 1

            if self._already_handled(subject):
                skipped += 1
                continue

            savepoint = self._session.begin_nested()
            try:
                instance = self._workflows.create_instance(
                    subject.subject_ref,
                    subject.due_date,
                    subject.lead_time_days
                    if subject.lead_time_days is not None
                    else self._default_lead_time,
                    self._routing,
                    workflow_type=self._workflow_type,
                    tenant_id=subject.tenant_id,
                    created_by=self._actor,
                )
                savepoint.commit()
                created.append(instance.instance_id)
            except DuplicateInstanceError:
                savepoint.rollback()
                skipped += 1
            except Exception:
                savepoint.rollback()
                errors += 1
                logger.exception(
                    "trigger_create_failed",
                    extra={
                        "subject_ref": subject.subject_ref,
                        "workflow_type": self._workflow_type,
                    },
                )

        summary = TriggerSummary(
            considered=considered,
            created=len(created),
            skipped=skipped,
            errors=errors,
            instance_ids=tuple(created),
        )
        logger.info(
            "instance_trigger_completed",
            extra={
                "workflow_type": self._workflow_type,
                "horizon_end": horizon_end.isoformat(),
                "considered": summary.considered,
                "instances_created": summary.created,
                "skipped": summary.skipped,
                "errors": summary.errors,
            },
        )
        return summary

    def _already_handled(self, subject: DueSubject) -> bool:
        if self._workflows.find_in_flight(subject.tenant_id, subject.subject_ref):
            return True
        return self._workflows.has_completed_cycle(
            subject.tenant_id, subject.subject_ref, subject.due_date,
        )

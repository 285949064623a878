"""
EscalationSweeper -- Forced advancement of overdue approval chains.

Contract:
    Scans ``in_progress`` instances whose cutoff date has passed and that
    have not been escalated yet, and force-advances each one's pending
    step through ``DecisionProcessor.force_escalate``.

Architecture: approval_batch.  Imports from approval_kernel (models,
    services, domain).  Nothing in approval_kernel imports from here.

Invariants enforced:
    - SAVEPOINT isolation per instance: one failure never aborts the sweep.
    - Shared CAS: the sweeper and human approvers race on the same
      conditional UPDATE; losing it is a ``skipped`` no-op.
    - Non-duplication: ``escalated_at`` is stamped on the first forced
      advancement, so a second sweep in the same window selects nothing.
    - Rejected steps are never reopened: an instance whose higher steps
      all rejected is reported as ``no_next_approver`` and left unchanged.
    - Escalations are stamped with the sweep's ``now`` (default: the Clock).
"""

from __future__ import annotations

import time
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    InstanceStatus,
    StepStatus,
    SweepDetail,
    SweepItemStatus,
    SweepSummary,
)
from approval_kernel.exceptions import (
    InstanceNotInProgressError,
    NoNextApproverError,
    StaleStepError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import (
    WorkflowInstanceModel,
    WorkflowStepModel,
)
from approval_kernel.services.decision_processor import (
    SYSTEM_ESCALATION_ACTOR,
    DecisionProcessor,
)

logger = get_logger("batch.sweeper")


def _as_date(now: datetime) -> date:
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.date()


class EscalationSweeper:
    """Batch escalation of overdue pending steps.

    Contract:
        - ``run(now)`` returns a ``SweepSummary`` with per-instance details.
        - ``eligible_instance_ids(today)`` is the scan, exposed for tests.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT manage background threads -- that is the scheduler's job.
    """

    def __init__(
        self,
        session: Session,
        processor: DecisionProcessor,
        clock: Clock | None = None,
        actor: str = SYSTEM_ESCALATION_ACTOR,
        batch_limit: int | None = None,
    ) -> None:
        self._session = session
        self._processor = processor
        self._clock = clock or SystemClock()
        self._actor = actor
        self._batch_limit = batch_limit

    def eligible_instance_ids(self, today: date) -> list[UUID]:
        stmt = (
            select(WorkflowInstanceModel.id)
            .where(
                WorkflowInstanceModel.status == InstanceStatus.IN_PROGRESS.value,
                WorkflowInstanceModel.cutoff_date < today,
                WorkflowInstanceModel.escalated_at.is_(None),
            )
            .order_by(
                WorkflowInstanceModel.cutoff_date,
                WorkflowInstanceModel.created_at,
            )
        )
        if self._batch_limit is not None:
            stmt = stmt.limit(self._batch_limit)
        return list(self._session.execute(stmt).scalars().all())

    def run(self, now: datetime | None = None) -> SweepSummary:
        now = now or self._clock.now()
        today = _as_date(now)
        started = time.monotonic()

        instance_ids = self.eligible_instance_ids(today)
        escalated = completed = skipped = no_next = errors = 0
        details: list[SweepDetail] = []

        for instance_id in instance_ids:
            detail = self._sweep_one(instance_id, now)
            details.append(detail)
            if detail.status == SweepItemStatus.COMPLETED:
                escalated += 1
                completed += 1
            elif detail.status == SweepItemStatus.ESCALATED:
                escalated += 1
            elif detail.status == SweepItemStatus.SKIPPED:
                skipped += 1
            elif detail.status == SweepItemStatus.NO_NEXT_APPROVER:
                no_next += 1
            else:
                errors += 1

        summary = SweepSummary(
            scanned=len(instance_ids),
            escalated=escalated,
            completed=completed,
            skipped=skipped,
            no_next_approver=no_next,
            errors=errors,
            details=tuple(details),
        )
        logger.info(
            "escalation_sweep_completed",
            extra={
                "as_of": today.isoformat(),
                "scanned": summary.scanned,
                "escalated": summary.escalated,
                "completed": summary.completed,
                "skipped": summary.skipped,
                "no_next_approver": summary.no_next_approver,
                "errors": summary.errors,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return summary

    def _sweep_one(self, instance_id: UUID, now: datetime) -> SweepDetail:
        subject_ref: str | None = None
        step_id: UUID | None = None
        savepoint = self._session.begin_nested()
        try:
            instance = self._session.get(WorkflowInstanceModel, instance_id)
            subject_ref, cutoff = instance.subject_ref, instance.cutoff_date
            pending = self._session.execute(
                select(WorkflowStepModel).where(
                    WorkflowStepModel.instance_id == instance_id,
                    WorkflowStepModel.status == StepStatus.ACTION_PENDING.value,
                )
            ).scalar_one_or_none()

            if pending is None:
                savepoint.rollback()
                logger.warning(
                    "escalation_no_pending_step",
                    extra={"instance_id": str(instance_id)},
                )
                return SweepDetail(
                    instance_id=instance_id,
                    status=SweepItemStatus.SKIPPED,
                    subject_ref=subject_ref,
                    message="no pending step",
                )

            step_id = pending.id
            result = self._processor.force_escalate(
                instance_id,
                step_id,
                actor=self._actor,
                notes=f"Auto-escalated: cutoff {cutoff.isoformat()} passed",
                now=now,
            )
            savepoint.commit()

            status = (
                SweepItemStatus.COMPLETED
                if result.instance_status == InstanceStatus.COMPLETED
                else SweepItemStatus.ESCALATED
            )
            return SweepDetail(
                instance_id=instance_id,
                status=status,
                step_id=step_id,
                subject_ref=subject_ref,
                message=result.completion_error,
            )

        except NoNextApproverError as exc:
            savepoint.rollback()
            logger.warning(
                "escalation_no_next_approver",
                extra={"instance_id": str(instance_id), "sequence": exc.sequence},
            )
            return SweepDetail(
                instance_id=instance_id,
                status=SweepItemStatus.NO_NEXT_APPROVER,
                step_id=step_id,
                subject_ref=subject_ref,
                message=str(exc),
            )

        except (StaleStepError, InstanceNotInProgressError) as exc:
            savepoint.rollback()
            logger.info(
                "escalation_skipped",
                extra={"instance_id": str(instance_id), "reason": exc.code},
            )
            return SweepDetail(
                instance_id=instance_id,
                status=SweepItemStatus.SKIPPED,
                message=str(exc),
            )

        except Exception as exc:
            savepoint.rollback()
            logger.exception(
                "escalation_failed",
                extra={"instance_id": str(instance_id)},
            )
            return SweepDetail(
                instance_id=instance_id,
                status=SweepItemStatus.ERROR,
                message=f"{type(exc).__name__}: {exc}",
            )
